"""Pipeline primitives: CompletedState, PipelineStep and Pipeline.

Composable step orchestration for asset builds.  A Pipeline IS-A
PipelineStep, so a per-target pipeline can nest a per-file pipeline.

  - Middleware chain wrapping every step run (skip, state, requirements,
    logging, timing, execute/rollback)
  - Ordering of steps by requires/provides
  - WorkItem support via run_item()
  - GeneratorStep / CollectorStep for fan-out (one work item per source
    file) and fan-in (per-file results collected back into the target)
  - Scheduler hook so a step can run somewhere other than in-process

This module has no third-party dependencies.
"""

from __future__ import annotations

import dataclasses
import datetime
import functools
import hashlib
import heapq
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from build_assets.work_item import WorkItem

logger = logging.getLogger("pipeline")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class CompletedState:
    success: bool
    timestamp: str
    duration_s: float
    provides: List[str] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    signature: Optional[str] = None

    @staticmethod
    def now_iso() -> str:
        now = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
        return now.strftime("%Y-%m-%dT%H:%M:%SZ")


class ExitCode(IntEnum):
    OK = 0
    MISSING_REQUIREMENT = 1
    STEP_EXCEPTION = 2
    INVALID_RETURN = 3
    STEP_FAILED = 4
    CONFIG_ERROR = 5


_MISSING = "missing requirements"
_INVALID = "invalid CompletedState"
_VALIDATION = "validation failed"


def exit_code_from(cs: CompletedState) -> ExitCode:
    """Map a CompletedState to an ExitCode suitable for sys.exit()."""
    if cs.success:
        return ExitCode.OK
    err = cs.error or {}
    msg = err.get("message", "")
    if _MISSING in msg:
        return ExitCode.MISSING_REQUIREMENT
    if err.get("type"):
        return ExitCode.STEP_EXCEPTION
    if _INVALID in msg:
        return ExitCode.INVALID_RETURN
    return ExitCode.STEP_FAILED


def _failed(message: str, exc_type: Optional[str] = None, **extra: Any) -> CompletedState:
    error: Dict[str, Any] = {"message": message}
    if exc_type:
        error["type"] = exc_type
    return CompletedState(
        success=False, timestamp=CompletedState.now_iso(), duration_s=0.0, error=error, **extra,
    )


def _succeeded(provides: Iterable[str], **extra: Any) -> CompletedState:
    return CompletedState(
        success=True, timestamp=CompletedState.now_iso(), duration_s=0.0,
        provides=list(provides), **extra,
    )


# ---------------------------------------------------------------------------
# Abstract base
# ---------------------------------------------------------------------------

class PipelineStep(ABC):
    """Abstract base for pipeline steps.

    Subclasses implement `run(context)` and may optionally override
    `validate` and `rollback`.  Steps that should be runnable in a
    worker process also override `identity_kwargs`.
    """

    name: str
    version: str
    requires: Set[str]
    provides: Set[str]
    idempotent: bool
    continue_on_error: bool

    def __init__(
        self,
        name: str,
        requires: Optional[Iterable[str]] = None,
        provides: Optional[Iterable[str]] = None,
        idempotent: bool = True,
        continue_on_error: bool = False,
        version: str = "0.0.0",
        scheduler: Any = None,
    ) -> None:
        self.name = name
        self.version = version
        self.requires = set(requires or [])
        self.provides = set(provides or [])
        self.idempotent = idempotent
        self.continue_on_error = continue_on_error
        self._scheduler = scheduler

    @abstractmethod
    def run(self, context: Dict[str, Any]) -> CompletedState:  # pragma: no cover
        raise NotImplementedError()

    def validate(self, context: Dict[str, Any]) -> bool:
        return all(key in context for key in self.provides)

    def rollback(self, context: Dict[str, Any]) -> None:
        return None

    def identity_kwargs(self) -> Dict[str, Any]:
        """JSON-serializable constructor kwargs that rebuild this step elsewhere."""
        return {}


def _short_signature(value: Any) -> str:
    try:
        raw = json.dumps(value, sort_keys=True, default=str).encode("utf-8")
    except (TypeError, ValueError):
        raw = str(value).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()[:12]


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

@dataclass
class _StepExecContext:
    """Carries metadata through the middleware chain."""
    step: PipelineStep
    context: Dict[str, Any]
    step_key: str
    force: bool


_NextFn = Callable[[], CompletedState]
_Middleware = Callable[[_StepExecContext, _NextFn], CompletedState]


def _idempotent_skip_mw(ctx: _StepExecContext, next_fn: _NextFn) -> CompletedState:
    """Reuse the recorded state of an idempotent step that already succeeded."""
    prev = ctx.context.get("step_states", {}).get(ctx.step_key)
    if ctx.force or not ctx.step.idempotent or not (prev and prev.get("success")):
        return next_fn()
    logger.info("SKIP  %s (idempotent, already succeeded)", ctx.step_key)
    return CompletedState(**{k: prev[k] for k in CompletedState.__dataclass_fields__})


def _requirements_check_mw(ctx: _StepExecContext, next_fn: _NextFn) -> CompletedState:
    missing = sorted(r for r in ctx.step.requires if r not in ctx.context)
    if not missing:
        return next_fn()
    logger.error("FAIL  %s — %s: %s", ctx.step_key, _MISSING, missing)
    return _failed(f"{_MISSING}: {missing}")


def _describe_failure(cs: CompletedState) -> str:
    err = cs.error or {}
    msg = err.get("message", "")
    if err.get("type"):
        return f"{err['type']}: {msg}"
    if msg.startswith(_VALIDATION):
        return _VALIDATION
    if msg.startswith(_INVALID):
        return "invalid return type"
    return msg


def _logging_mw(ctx: _StepExecContext, next_fn: _NextFn) -> CompletedState:
    logger.info("START %s", ctx.step_key)
    cs = next_fn()
    if cs.success:
        logger.info("OK    %s (%.3fs)", ctx.step_key, cs.duration_s)
    else:
        logger.error("FAIL  %s — %s (%.3fs)", ctx.step_key, _describe_failure(cs), cs.duration_s)
    return cs


def _timing_mw(ctx: _StepExecContext, next_fn: _NextFn) -> CompletedState:
    start = time.time()
    cs = next_fn()
    cs.duration_s = time.time() - start
    return cs


def _state_write_mw(ctx: _StepExecContext, next_fn: _NextFn) -> CompletedState:
    """Record the final CompletedState under context['step_states']."""
    cs = next_fn()
    ctx.context.setdefault("step_states", {})[ctx.step_key] = dataclasses.asdict(cs)
    return cs


def _rollback(ctx: _StepExecContext) -> None:
    try:
        ctx.step.rollback(ctx.context)
    except Exception:
        logger.exception("rollback of %s failed", ctx.step_key)


def _execute_mw(ctx: _StepExecContext, next_fn: _NextFn) -> CompletedState:
    """Run the step; turn exceptions, bad returns and failed validation into failures."""
    try:
        cs = next_fn()
    except Exception as exc:
        _rollback(ctx)
        return _failed(str(exc), type(exc).__name__)

    if not isinstance(cs, CompletedState):
        return _failed(f"{_INVALID} returned")

    if cs.success and not ctx.step.validate(ctx.context):
        cs = dataclasses.replace(cs, success=False, error={
            "message": (
                f"{_VALIDATION}: provides keys "
                f"{sorted(ctx.step.provides)} not all present in context"
            ),
        })

    if not cs.success:
        _rollback(ctx)
    return cs


default_middleware: List[_Middleware] = [
    _idempotent_skip_mw,
    _state_write_mw,
    _requirements_check_mw,
    _logging_mw,
    _timing_mw,
    _execute_mw,
]


def _build_chain(
    middleware: List[_Middleware],
    ctx: _StepExecContext,
    core: _NextFn,
) -> _NextFn:
    """middleware[0] wraps middleware[1] wraps ... wraps core."""
    fn = core
    for mw in reversed(middleware):
        fn = functools.partial(mw, ctx, fn)
    return fn


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def _topo_sort(steps: List[PipelineStep]) -> List[PipelineStep]:
    """Order steps so every provider runs before the steps requiring its keys.

    Declared order breaks ties between independent steps.
    Raises ValueError on cycles.
    """
    provider: Dict[str, int] = {}
    for i, step in enumerate(steps):
        for key in step.provides:
            provider[key] = i

    dependents: List[List[int]] = [[] for _ in steps]
    pending = [0] * len(steps)
    for i, step in enumerate(steps):
        for dep in {provider[k] for k in step.requires if k in provider} - {i}:
            dependents[dep].append(i)
            pending[i] += 1

    ready = [i for i, n in enumerate(pending) if n == 0]
    heapq.heapify(ready)
    order: List[int] = []
    while ready:
        i = heapq.heappop(ready)
        order.append(i)
        for j in dependents[i]:
            pending[j] -= 1
            if pending[j] == 0:
                heapq.heappush(ready, j)

    if len(order) != len(steps):
        stuck = [steps[i].name for i in range(len(steps)) if i not in set(order)]
        raise ValueError(f"Cycle detected among steps: {stuck}")
    return [steps[i] for i in order]


# ---------------------------------------------------------------------------
# Fan-out / fan-in
# ---------------------------------------------------------------------------

class GeneratorStep(PipelineStep):
    """Fan-out: produce N work items from 1 input work item.

    The orchestrator calls generate() and runs downstream steps once per
    emitted work item.  Emitting nothing leaves downstream steps with no
    items to run on.
    """

    @abstractmethod
    def generate(self, work_item: WorkItem) -> List[WorkItem]:  # pragma: no cover
        raise NotImplementedError()

    def run(self, context: Dict[str, Any]) -> CompletedState:
        return _succeeded(self.provides)


class CollectorStep(PipelineStep):
    """Fan-in: merge N work items (possibly none) into 1."""

    @abstractmethod
    def collect(self, work_items: List[WorkItem]) -> WorkItem:  # pragma: no cover
        raise NotImplementedError()

    def run(self, context: Dict[str, Any]) -> CompletedState:
        return _succeeded(self.provides)


# ---------------------------------------------------------------------------
# Pipeline (composite: IS-A PipelineStep)
# ---------------------------------------------------------------------------

class Pipeline(PipelineStep):
    """Composable pipeline orchestrator.

    A Pipeline IS-A PipelineStep, so it can be nested inside another Pipeline.
    The orchestrator owns timing, step_states writes, and validation calls
    via the middleware chain; steps only do their work.
    """

    steps: List[PipelineStep]
    force: bool

    def __init__(
        self,
        name: str = "pipeline",
        version: str = "1.0",
        steps: Optional[List[PipelineStep]] = None,
        requires: Optional[Iterable[str]] = None,
        provides: Optional[Iterable[str]] = None,
        idempotent: bool = True,
        continue_on_error: bool = False,
        force: bool = False,
        middleware: Optional[List[_Middleware]] = None,
        resolve_order: bool = False,
        scheduler: Any = None,
    ) -> None:
        super().__init__(
            name=name,
            requires=requires,
            provides=provides,
            idempotent=idempotent,
            continue_on_error=continue_on_error,
            version=version,
            scheduler=scheduler,
        )
        self.steps = _topo_sort(list(steps or [])) if resolve_order else list(steps or [])
        self.force = force
        self._middleware = list(default_middleware if middleware is None else middleware)

        # Unset requires/provides are inferred from the children.
        provided: Set[str] = set().union(*(s.provides for s in self.steps))
        if requires is None:
            self.requires = set().union(*(s.requires for s in self.steps)) - provided
        if provides is None:
            self.provides = provided

    # -- WorkItem-aware entry point ------------------------------------------

    def run_item(self, work_item: WorkItem, *, _prefix: str = "", dry_run: bool = False) -> CompletedState:
        """Run the pipeline against a WorkItem.

        Steps receive work_item.attributes as their context dict.
        Fan-out/fan-in (GeneratorStep/CollectorStep) is handled transparently.
        """
        prefix = _prefix or self.name
        context = work_item.attributes
        context.setdefault("step_states", {})

        if dry_run:
            self._dry_run_report(context, prefix)
            return _succeeded(self.provides, meta={"dry_run": True})

        started = time.time()
        force = self.force or context.get("_force", False)
        items = [work_item]
        runs = 0

        for step in self.steps:
            if isinstance(step, GeneratorStep):
                items = self._fan_out(step, items, prefix)
                continue
            if isinstance(step, CollectorStep):
                collected = step.collect(items)
                context.update(collected.attributes)
                collected.attributes = context
                items = [collected]
                continue

            for item in items:
                cs = self._execute_step(step, item.attributes, force=force, prefix=prefix)
                runs += 1
                if not cs.success and not step.continue_on_error:
                    return CompletedState(
                        success=False,
                        timestamp=CompletedState.now_iso(),
                        duration_s=time.time() - started,
                        provides=list(self.provides),
                        error=cs.error,
                        meta={"failed_step": step.name, "work_item": item.id},
                    )

        done = _succeeded(self.provides, meta={"steps_run": runs})
        done.duration_s = time.time() - started
        return done

    def run(self, context: Dict[str, Any], *, _prefix: str = "", dry_run: bool = False) -> CompletedState:
        """Run the pipeline against a plain context dict."""
        return self.run_item(WorkItem(id="default", attributes=context), _prefix=_prefix, dry_run=dry_run)

    def _fan_out(self, step: GeneratorStep, items: List[WorkItem], prefix: str) -> List[WorkItem]:
        generated: List[WorkItem] = []
        for item in items:
            for child in step.generate(item):
                if child.parent_id is None:
                    child.parent_id = item.id
                child.attributes["step_states"] = {}
                generated.append(child)
        logger.info("FAN   %s.%s — %d item(s)", prefix, step.name, len(generated))
        return generated

    def _execute_step(
        self,
        step: PipelineStep,
        context: Dict[str, Any],
        *,
        force: bool,
        prefix: str,
    ) -> CompletedState:
        step_key = f"{prefix}.{step.name}" if prefix else step.name
        ctx = _StepExecContext(step=step, context=context, step_key=step_key, force=force)

        def core() -> CompletedState:
            sched = getattr(step, "_scheduler", None) or self._scheduler
            if sched is not None:
                return sched.execute(step, WorkItem(id=step_key, attributes=context))
            if isinstance(step, Pipeline):
                return step.run(context, _prefix=step_key)
            return step.run(context)

        return _build_chain(self._middleware, ctx, core)()

    # -- dry run ---------------------------------------------------------------

    def _dry_run_report(self, context: Dict[str, Any], prefix: str) -> None:
        """Log the planned steps without running anything."""
        logger.info("DRY-RUN plan for [%s]:", prefix)
        self._dry_run_walk(context, prefix, indent=1)

    def _dry_run_walk(self, context: Dict[str, Any], prefix: str, indent: int) -> None:
        pad = "  " * indent
        for step in self.steps:
            step_key = f"{prefix}.{step.name}"
            missing = sorted(r for r in step.requires if r not in context)
            status = f"BLOCKED (missing: {missing})" if missing else "READY"
            label = next((tag for kind, tag in _DRY_RUN_LABELS if isinstance(step, kind)), "")
            logger.info("%s%s%s — %s", pad, label, step_key, status)
            if isinstance(step, Pipeline):
                step._dry_run_walk(context, step_key, indent + 1)


_DRY_RUN_LABELS = (
    (Pipeline, "[pipeline] "),
    (GeneratorStep, "[fan-out] "),
    (CollectorStep, "[fan-in] "),
)
