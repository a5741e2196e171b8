"""Transform steps: run a map transform per file or a reduce transform per target."""

from __future__ import annotations

import logging
from typing import Any, Dict

from build_assets.pipeline import CompletedState, PipelineStep, _short_signature
from build_assets.pipeline_steps.sources import target_from
from build_assets.transforms import SourceFile, get_map_transform, get_reduce_transform

logger = logging.getLogger("pipeline.steps.transform")


def _sources(context: Dict[str, Any]):
    return [SourceFile(relpath=s["relpath"], path=s["path"]) for s in context["source_files"]]


def _skipped(name: str) -> CompletedState:
    return CompletedState(
        success=True,
        timestamp=CompletedState.now_iso(),
        duration_s=0.0,
        provides=["output_bytes"],
        outputs={"transform": name, "skipped": True},
    )


class TransformFileStep(PipelineStep):
    """Apply the target's map transform to the item's single source file.

    Provides ``output_bytes`` (``None`` when the output is fresh).
    """

    def __init__(self) -> None:
        super().__init__(
            name="transform_file",
            requires=["target", "source_files", "stale"],
            provides=["output_bytes"],
            idempotent=False,
        )

    def run(self, context: Dict[str, Any]) -> CompletedState:
        target = target_from(context)
        if not context["stale"]:
            context["output_bytes"] = None
            return _skipped(target.transform)

        fn = get_map_transform(target.transform)
        (source,) = _sources(context)
        logger.debug("%s: %s %s", target.name, target.transform, source.relpath)
        data = fn(source.read())
        context["output_bytes"] = data
        return CompletedState(
            success=True,
            timestamp=CompletedState.now_iso(),
            duration_s=0.0,
            provides=["output_bytes"],
            outputs={"transform": target.transform, "bytes": len(data)},
            signature=_short_signature([source.relpath, target.transform]),
        )


class ReduceSourcesStep(PipelineStep):
    """Fold all of the target's sources into one output with its reduce transform.

    Provides ``output_bytes`` (``None`` when the output is fresh).
    """

    def __init__(self) -> None:
        super().__init__(
            name="reduce_sources",
            requires=["target", "source_files", "stale"],
            provides=["output_bytes"],
            idempotent=False,
        )

    def run(self, context: Dict[str, Any]) -> CompletedState:
        target = target_from(context)
        if not context["stale"]:
            context["output_bytes"] = None
            return _skipped(target.reduce)

        fn = get_reduce_transform(target.reduce)
        sources = _sources(context)
        logger.info("%s: %s over %d file(s)", target.name, target.reduce, len(sources))
        data = fn(sources)
        context["output_bytes"] = data
        return CompletedState(
            success=True,
            timestamp=CompletedState.now_iso(),
            duration_s=0.0,
            provides=["output_bytes"],
            outputs={"transform": target.reduce, "inputs": len(sources), "bytes": len(data)},
            signature=_short_signature([s.relpath for s in sources] + [target.reduce]),
        )
