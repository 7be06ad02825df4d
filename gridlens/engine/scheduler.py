from __future__ import annotations

import logging
import os
import queue
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple, Union

from gridlens.errors import GridLensError
from gridlens.models.pipeline import EvaluationRequest
from gridlens.models.sources import Source
from gridlens.models.table import Table
from gridlens.models.transforms import Transform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationResult:
    tab_id: int
    generation: int
    steps: Tuple[Transform, ...]
    table: Optional[Table] = None
    error: Optional[GridLensError] = None


@dataclass(frozen=True)
class LoadResult:
    tab_id: int
    source: Source
    table: Optional[Table] = None
    error: Optional[GridLensError] = None


Message = Union[EvaluationResult, LoadResult]


def _internal_error(e: Exception) -> GridLensError:
    return GridLensError(
        "E_INTERNAL",
        f"Unexpected {type(e).__name__}: {e}",
        hint="See the log file for the traceback.",
    )


def run_evaluation(tab_id: int, request: EvaluationRequest) -> EvaluationResult:
    try:
        table = request.evaluate()
    except GridLensError as e:
        logger.debug("tab %s generation %s failed: %s", tab_id, request.generation, e.code)
        return EvaluationResult(tab_id, request.generation, request.steps, error=e)
    except Exception as e:
        logger.exception("tab %s generation %s crashed", tab_id, request.generation)
        return EvaluationResult(tab_id, request.generation, request.steps, error=_internal_error(e))
    return EvaluationResult(tab_id, request.generation, request.steps, table=table)


def run_load(tab_id: int, source: Source) -> LoadResult:
    try:
        table = source.load()
    except GridLensError as e:
        logger.info("loading %s failed: %s", source.uri, e.code)
        return LoadResult(tab_id, source, error=e)
    except Exception as e:
        logger.exception("loading %s crashed", source.uri)
        return LoadResult(tab_id, source, error=_internal_error(e))
    return LoadResult(tab_id, source, table=table)


class ExecutionScheduler:
    """Runs loads and pipeline evaluations off the main loop.

    Completed work is posted as a message on a thread-safe queue; the main
    loop polls it next to terminal events. Nothing here decides whether a
    result is still wanted: that is the generation check on the pipeline.

    With `inline=True` work runs synchronously inside `submit_*`, which keeps
    headless tests deterministic.
    """

    def __init__(self, workers: Optional[int] = None, *, inline: bool = False):
        self.inline = inline
        self.workers = workers or os.cpu_count() or 1
        self._results: "queue.Queue[Message]" = queue.Queue()
        self._in_flight: Set[Future] = set()
        self._executor: Optional[ThreadPoolExecutor] = None
        if not inline:
            self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="gridlens")

    @property
    def in_flight(self) -> int:
        self._in_flight = {f for f in self._in_flight if not f.done()}
        return len(self._in_flight)

    def _submit(self, fn, *args) -> None:
        if self._executor is None:
            self._results.put(fn(*args))
            return
        self._in_flight = {f for f in self._in_flight if not f.done()}
        self._in_flight.add(self._executor.submit(self._run, fn, *args))

    def _run(self, fn, *args) -> None:
        self._results.put(fn(*args))

    def submit_evaluation(self, tab_id: int, request: EvaluationRequest) -> None:
        logger.debug("tab %s: evaluating generation %s (%d steps)", tab_id, request.generation, len(request.steps))
        self._submit(run_evaluation, tab_id, request)

    def submit_load(self, tab_id: int, source: Source) -> None:
        logger.debug("tab %s: loading %s", tab_id, source.uri)
        self._submit(run_load, tab_id, source)

    def poll(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Next completed message, waiting up to `timeout` seconds (None: don't wait)."""
        try:
            if timeout is None:
                return self._results.get_nowait()
            return self._results.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Message]:
        out: List[Message] = []
        while True:
            msg = self.poll()
            if msg is None:
                return out
            out.append(msg)

    def wait_idle(self) -> None:
        """Block until every submitted job has posted its result."""
        for f in list(self._in_flight):
            f.result()
        self._in_flight.clear()

    def shutdown(self, wait: bool = False) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
