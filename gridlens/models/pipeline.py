from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import yaml

from gridlens.errors import GridLensError, QueryError
from gridlens.models.table import Table, TableSchema
from gridlens.models.transforms import PipelineContext, Transform
from gridlens.schema import pipeline_from_ir, pipeline_to_ir

logger = logging.getLogger(__name__)


def apply(
    base: Table,
    steps: Sequence[Transform],
    *,
    table_name: str = "df",
    context: Optional[PipelineContext] = None,
) -> Table:
    """Run every step in order, the first one against `base`.

    Pure: the same base and steps always produce an identical table.
    Raises ParseError/QueryError from the first failing step, with the
    step's position recorded as `step_index` on the error.
    """
    ctx = context if context is not None else PipelineContext(table_name=table_name)
    table = base
    for i, step in enumerate(steps):
        try:
            table = step.apply(table, context=ctx)
        except GridLensError as e:
            e.step_index = i
            raise
    return table


def steps_key(steps: Sequence[Transform]) -> str:
    h = hashlib.sha256()
    for s in steps:
        h.update(s.content_key().encode("utf-8"))
        h.update(b"\x00")
    return h.hexdigest()


@dataclass(frozen=True)
class EvaluationRequest:
    """Everything a worker needs to evaluate one generation."""

    generation: int
    base: Table
    steps: Tuple[Transform, ...]
    key: str
    table_name: str = "df"

    def evaluate(self) -> Table:
        return apply(self.base, self.steps, table_name=self.table_name)


class QueryPipeline:
    """Base table plus an ordered list of steps and the latest materialized view.

    Every edit bumps `generation`. A result is installed only when it carries
    the latest generation; until then `view` keeps showing the previous result.
    Results are cached by step content, so undo/reset usually resolve at once.
    """

    def __init__(
        self,
        base: Table,
        steps: Sequence[Transform] = (),
        *,
        table_name: str = "df",
        cache_size: int = 16,
    ):
        self.base = base
        self.table_name = table_name
        self.generation = 0
        self.steps: Tuple[Transform, ...] = ()
        self.committed: Tuple[Transform, ...] = ()
        self.view: Table = base
        self.pending: Optional[int] = None
        self._cache_size = cache_size
        self._cache: "OrderedDict[str, Table]" = OrderedDict()
        self._remember(steps_key(()), base)
        if steps:
            self.steps = tuple(steps)

    # ---------- state ----------
    @property
    def busy(self) -> bool:
        return self.pending is not None

    @property
    def dirty(self) -> bool:
        """Steps were edited but no evaluation has been requested for them."""
        return self.steps != self.committed and self.pending is None

    def schema(self) -> Optional[TableSchema]:
        """Best static guess of the schema the current steps produce."""
        n = len(self.committed)
        if self.steps[:n] == self.committed:
            sch: Optional[TableSchema] = self.view.schema()
            rest = self.steps[n:]
        else:
            sch = self.base.schema()
            rest = self.steps
        for step in rest:
            if sch is None:
                return None
            sch = step.output_schema(sch)
        return sch

    def cached(self, steps: Sequence[Transform]) -> Optional[Table]:
        return self._cache.get(steps_key(steps))

    # ---------- edits ----------
    def push(self, step: Transform) -> Optional[EvaluationRequest]:
        """Append a step after validating it against the known schema."""
        step.validate(self.schema())
        self.steps = self.steps + (step,)
        return self.request()

    def undo(self) -> Optional[EvaluationRequest]:
        if not self.steps:
            raise QueryError(
                "E_NOTHING_TO_UNDO",
                "There are no pipeline steps to undo.",
            )
        self._cache.pop(steps_key(self.steps), None)
        self.steps = self.steps[:-1]
        return self.request()

    def reset(self) -> Optional[EvaluationRequest]:
        self.steps = ()
        return self.request()

    def replace(self, steps: Sequence[Transform]) -> Optional[EvaluationRequest]:
        for step in steps:
            step.validate()
        self.steps = tuple(steps)
        return self.request()

    def request(self) -> Optional[EvaluationRequest]:
        """Start a new generation for the current steps.

        Returns None when the result is already cached and was installed.
        """
        self.generation += 1
        key = steps_key(self.steps)
        hit = self._cache.get(key)
        if hit is not None:
            self._cache.move_to_end(key)
            self.view = hit
            self.committed = self.steps
            self.pending = None
            return None
        self.pending = self.generation
        return EvaluationRequest(self.generation, self.base, self.steps, key, self.table_name)

    # ---------- results ----------
    def install(self, generation: int, steps: Sequence[Transform], table: Table) -> bool:
        if generation != self.generation:
            logger.debug("discarding stale result: generation %s, latest %s", generation, self.generation)
            return False
        self.view = table
        self.committed = tuple(steps)
        self.pending = None
        self._remember(steps_key(steps), table)
        return True

    def reject(self, generation: int, error: GridLensError) -> bool:
        """Drop the failing step and everything after it.

        Steps before the failing one are kept even if their own result was
        superseded; `dirty` then tells the caller to request them again.
        """
        if generation != self.generation:
            logger.debug("discarding stale error: generation %s, latest %s", generation, self.generation)
            return False
        failed = error.step_index
        if failed is None or failed >= len(self.steps):
            failed = max(len(self.steps) - 1, 0)
        logger.info("pipeline step %s rejected: %s", failed + 1, error.message)
        self.steps = self.steps[:failed]
        self.pending = None
        return True

    def _remember(self, key: str, table: Table) -> None:
        self._cache[key] = table
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)

    # ---------- documents ----------
    def to_ir(self, source: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return pipeline_to_ir(self.steps, source)

    def to_yaml(self, path: Optional[Union[str, Path]] = None, *, source: Optional[Dict[str, Any]] = None) -> str:
        """Dump the steps to YAML. If `path` is provided, also write the file."""
        text = yaml.safe_dump(self.to_ir(source), sort_keys=False, allow_unicode=True)
        if path is not None:
            p = Path(path)
            try:
                p.write_text(text, encoding="utf-8")
            except OSError as e:
                raise GridLensError(
                    "E_IR_WRITE",
                    f"Could not write pipeline file '{p}': {e}",
                    hint="Check the directory exists and is writable.",
                ) from e
        return text

    @staticmethod
    def steps_from_yaml(path: Union[str, Path]) -> Tuple[Tuple[Transform, ...], Optional[Dict[str, Any]]]:
        """Read steps (and the recorded source, if any) from a YAML document."""
        p = Path(path)
        try:
            text = p.read_text(encoding="utf-8")
        except OSError as e:
            raise GridLensError(
                "E_IR_READ",
                f"Could not read pipeline file '{p}': {e}",
            ) from e
        try:
            ir = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise GridLensError(
                "E_YAML_PARSE",
                f"Failed to parse YAML: {e}",
                hint="Check indentation and quoting.",
            ) from e
        return pipeline_from_ir(ir, base_dir=p.parent)

    def __str__(self) -> str:
        parts = [f"Pipeline(base={self.base}, generation={self.generation})"]
        for s in self.steps:
            parts.append(f"  -> {s}")
        return "\n".join(parts)
