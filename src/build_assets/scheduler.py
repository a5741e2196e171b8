"""Scheduler abstraction for target execution.

Schedulers decouple *what to build* from *where it runs*.

- LocalScheduler: run in-process, one target after another (default).
- PoolScheduler:  persistent pool of worker processes (``--jobs N``).

Steps shipped to a worker are rebuilt there from their identity:
module, class name and ``identity_kwargs()``.  Only the CompletedState
comes back; context mutations made in the worker stay there.
"""

from __future__ import annotations

import dataclasses
import importlib
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from build_assets.pipeline import CompletedState, PipelineStep
from build_assets.work_item import WorkItem

logger = logging.getLogger("pipeline.scheduler")

Job = Tuple[PipelineStep, WorkItem]


# ---------------------------------------------------------------------------
# Shared serialization helpers
# ---------------------------------------------------------------------------

def _step_identity(step: PipelineStep) -> Tuple[str, str, str]:
    """Return (module_name, class_name, kwargs_json) so the step can be rebuilt remotely."""
    return type(step).__module__, type(step).__name__, json.dumps(step.identity_kwargs())


def _run_step_from_identity(
    step_module: str,
    step_class: str,
    step_kwargs_json: str,
    work_item_json: str,
) -> dict:
    """Reconstruct a step in a worker process, run it, return the result as a dict.

    Must stay importable at module top level for pickling (multiprocessing).
    """
    mod = importlib.import_module(step_module)
    cls = getattr(mod, step_class)
    step = cls(**json.loads(step_kwargs_json))
    wi = WorkItem.from_json(work_item_json)
    cs = step.run(wi.attributes)
    return dataclasses.asdict(cs)


def _init_worker(log_level: int) -> None:
    logging.basicConfig(level=log_level, format="[%(levelname)s] %(message)s")
    if log_level > logging.DEBUG:
        logging.getLogger("pipeline.gltf").setLevel(logging.ERROR)


def _failed(exc: BaseException) -> CompletedState:
    return CompletedState(
        success=False,
        timestamp=CompletedState.now_iso(),
        duration_s=0.0,
        error={"type": type(exc).__name__, "message": str(exc)},
    )


# ---------------------------------------------------------------------------
# Scheduler ABC
# ---------------------------------------------------------------------------

class Scheduler(ABC):
    """Abstract execution backend for a pipeline step + work item."""

    @abstractmethod
    def execute(self, step: PipelineStep, work_item: WorkItem) -> CompletedState:
        """Run *step* against *work_item* and return the result."""
        raise NotImplementedError()  # pragma: no cover

    def execute_all(self, jobs: Sequence[Job]) -> List[CompletedState]:
        """Run every (step, work_item) pair; results keep the job order."""
        return [self.execute(step, work_item) for step, work_item in jobs]

    def shutdown(self) -> None:
        return None


# ---------------------------------------------------------------------------
# LocalScheduler
# ---------------------------------------------------------------------------

class LocalScheduler(Scheduler):
    """Run the step in the current process (same as calling step.run directly)."""

    def execute(self, step: PipelineStep, work_item: WorkItem) -> CompletedState:
        return step.run(work_item.attributes)


# ---------------------------------------------------------------------------
# PoolScheduler
# ---------------------------------------------------------------------------

class PoolScheduler(Scheduler):
    """Persistent pool of worker processes.

    Targets are independent of each other, so ``execute_all`` submits all
    of them before waiting on any.  Uses ``multiprocessing.get_context("spawn")``
    so workers start from a clean interpreter.

    Args:
        workers:   Number of worker processes (default: 4).
        timeout:   Per-item timeout in seconds (default: None = no timeout).
        log_level: Logging level configured in each worker.
    """

    def __init__(
        self,
        workers: int = 4,
        timeout: Optional[float] = None,
        log_level: int = logging.INFO,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.workers = workers
        self.timeout = timeout
        self.log_level = log_level
        self._pool = None

    def _get_pool(self):
        if self._pool is None:
            import multiprocessing
            ctx = multiprocessing.get_context("spawn")
            self._pool = ctx.Pool(
                processes=self.workers,
                initializer=_init_worker,
                initargs=(self.log_level,),
            )
            logger.info("PoolScheduler: spawned %d worker(s)", self.workers)
        return self._pool

    def _submit(self, step: PipelineStep, work_item: WorkItem):
        return self._get_pool().apply_async(
            _run_step_from_identity,
            args=(*_step_identity(step), work_item.to_json()),
        )

    def _wait(self, async_result: Any) -> CompletedState:
        import multiprocessing
        try:
            data: Dict[str, Any] = async_result.get(timeout=self.timeout)
        except multiprocessing.TimeoutError:
            return CompletedState(
                success=False,
                timestamp=CompletedState.now_iso(),
                duration_s=0.0,
                error={
                    "type": "TimeoutError",
                    "message": f"Pool worker timed out after {self.timeout}s",
                },
            )
        except Exception as exc:
            return _failed(exc)
        return CompletedState(**data)

    def execute(self, step: PipelineStep, work_item: WorkItem) -> CompletedState:
        try:
            pending = self._submit(step, work_item)
        except Exception as exc:
            return _failed(exc)
        return self._wait(pending)

    def execute_all(self, jobs: Sequence[Job]) -> List[CompletedState]:
        pending = []
        for step, work_item in jobs:
            try:
                pending.append(self._submit(step, work_item))
            except Exception as exc:
                pending.append(exc)
        return [
            _failed(p) if isinstance(p, Exception) else self._wait(p)
            for p in pending
        ]

    def shutdown(self) -> None:
        """Terminate worker processes and release resources."""
        if self._pool is not None:
            self._pool.terminate()
            self._pool.join()
            self._pool = None
            logger.info("PoolScheduler: workers shut down")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.shutdown()

    def __del__(self):
        self.shutdown()
