from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from gridlens.errors import GridLensError
from gridlens.models.transforms import TRANSFORM_REGISTRY, Transform
from gridlens.util import _norm_path


def _transform_to_ir(t: Transform) -> Dict[str, Any]:
    d = t.to_dict()
    if not d["params"]:
        d.pop("params")
    return d


def _transform_from_ir(d: Dict[str, Any], index: int) -> Transform:
    if not isinstance(d, dict):
        raise GridLensError(
            "E_IR_STEP",
            f"IR step #{index} must be a mapping.",
            hint="Example: - {op: filter, params: {where: 'age >= 30'}}",
        )
    op = d.get("op")
    if not isinstance(op, str) or op not in TRANSFORM_REGISTRY:
        raise GridLensError(
            "E_IR_STEP",
            f"IR step #{index} has unknown op {op!r}.",
            hint="Supported ops: " + ", ".join(sorted(TRANSFORM_REGISTRY.keys())),
        )
    params = d.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise GridLensError(
            "E_IR_STEP",
            f"IR step #{index} 'params' must be a mapping.",
            hint="Example: params: {where: \"age >= 30\"}",
        )
    return Transform(op, params=params)


def _source_to_ir(source: Dict[str, Any]) -> Dict[str, Any]:
    d: Dict[str, Any] = {"uri": source["uri"]}
    if source.get("type") is not None:
        d["type"] = source["type"]
    if source.get("options"):
        d["options"] = dict(source["options"])
    return d


def pipeline_to_ir(steps: Sequence[Transform], source: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Serialize steps (and optionally the source they apply to) to a YAML-friendly dict."""
    pipe: Dict[str, Any] = {}
    if source is not None:
        pipe["source"] = _source_to_ir(source)
    pipe["steps"] = [_transform_to_ir(s) for s in steps]
    return {"gridlens": 0, "pipeline": pipe}


def _normalize_ir(ir: Any, *, base_dir: Optional[Path]) -> Dict[str, Any]:
    """Normalize IR structure and paths.

    Guarantees:
      - returns a dict with keys: gridlens, pipeline
      - pipeline.source.uri (when present) is normalized against base_dir
      - missing steps become []
    """
    if not isinstance(ir, dict):
        raise GridLensError(
            "E_IR_ROOT",
            "IR must be a mapping at the root.",
            hint="Expected keys: gridlens, pipeline.",
        )

    version = ir.get("gridlens", 0)
    if version != 0:
        raise GridLensError(
            "E_IR_VERSION",
            f"Unsupported IR version: {version!r}.",
            hint="Supported: gridlens: 0",
        )

    pipe = ir.get("pipeline")
    if not isinstance(pipe, dict):
        raise GridLensError(
            "E_IR_PIPELINE",
            "IR requires a 'pipeline' mapping.",
            hint="Example: {gridlens: 0, pipeline: {steps: [...]}}",
        )
    pipe2: Dict[str, Any] = dict(pipe)

    source = pipe2.get("source")
    if source is not None:
        if not isinstance(source, dict) or not isinstance(source.get("uri"), str):
            raise GridLensError(
                "E_IR_SOURCE",
                "IR pipeline.source must be a mapping with a 'uri' string.",
                hint="Example: source: {uri: people.csv, type: csv}",
            )
        source2 = dict(source)
        source2["uri"] = _norm_path(source2["uri"], base_dir=base_dir)
        if source2.get("options") is None:
            source2["options"] = {}
        pipe2["source"] = source2

    steps = pipe2.get("steps")
    if steps is None:
        steps = []
    if not isinstance(steps, list):
        raise GridLensError(
            "E_IR_STEPS",
            "IR pipeline.steps must be a list.",
            hint="Example: steps: [{op: filter, params: {where: 'age >= 30'}}]",
        )
    pipe2["steps"] = steps
    return {"gridlens": 0, "pipeline": pipe2}


def pipeline_from_ir(
    ir: Any, *, base_dir: Optional[Path] = None
) -> Tuple[Tuple[Transform, ...], Optional[Dict[str, Any]]]:
    """Deserialize steps and the optional source descriptor from IR."""
    ir = _normalize_ir(ir, base_dir=base_dir)
    pipe = ir["pipeline"]
    steps: List[Transform] = [_transform_from_ir(item, i) for i, item in enumerate(pipe["steps"])]
    return tuple(steps), pipe.get("source")
