from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from gridlens.errors import GridLensError


@dataclass(frozen=True)
class ViewerConfig:
    """Tunables for the interactive engine.

    Every field has a default; a YAML file may override any subset of them.
    """

    history_size: int = 500
    min_column_width: int = 3
    max_column_width: int = 40
    width_sample_rows: int = 200
    fuzzy_threshold: float = 0.5
    suggestion_cutoff: float = 0.6
    max_suggestions: int = 3
    workers: Optional[int] = None
    cache_size: int = 16
    sql_table_name: str = "df"
    ellipsis: str = "…"

    def __post_init__(self) -> None:
        if self.min_column_width < 1:
            raise GridLensError(
                "E_CONFIG_VALUE",
                "min_column_width must be at least 1.",
                hint=f"Got {self.min_column_width}.",
            )
        if self.max_column_width < self.min_column_width:
            raise GridLensError(
                "E_CONFIG_VALUE",
                "max_column_width must not be smaller than min_column_width.",
                hint=f"Got min={self.min_column_width}, max={self.max_column_width}.",
            )
        if self.history_size < 1 or self.cache_size < 1 or self.width_sample_rows < 1:
            raise GridLensError(
                "E_CONFIG_VALUE",
                "history_size, cache_size and width_sample_rows must be positive.",
            )
        if self.workers is not None and self.workers < 1:
            raise GridLensError("E_CONFIG_VALUE", "workers must be positive when set.")

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "ViewerConfig":
        if not isinstance(data, dict):
            raise GridLensError(
                "E_CONFIG_TYPE",
                "Configuration must be a mapping.",
                hint="Example: {max_column_width: 30, history_size: 200}",
            )
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            raise GridLensError(
                "E_CONFIG_KEY",
                "Unknown configuration key(s): " + ", ".join(map(str, unknown)) + ".",
                hint="Known keys: " + ", ".join(sorted(known)),
            )
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            default = known[key].default
            if value is None and default is None:
                kwargs[key] = None
                continue
            expected = type(default) if default is not None else int
            if expected is float and isinstance(value, int) and not isinstance(value, bool):
                value = float(value)
            if not isinstance(value, expected) or isinstance(value, bool) != (expected is bool):
                raise GridLensError(
                    "E_CONFIG_TYPE",
                    f"Configuration key {key!r} expects {expected.__name__}, got {type(value).__name__}.",
                )
            kwargs[key] = value
        return cls(**kwargs)


def load_config(path: Optional[Union[str, Path]] = None) -> ViewerConfig:
    """Read a YAML configuration file; no path means defaults."""
    if path is None:
        return ViewerConfig()
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise GridLensError(
            "E_CONFIG_READ",
            f"Could not read configuration file '{p}': {e}",
        ) from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise GridLensError(
            "E_CONFIG_PARSE",
            f"Failed to parse YAML: {e}",
            hint="Check indentation and quoting.",
        ) from e
    return ViewerConfig.from_mapping(data or {})
