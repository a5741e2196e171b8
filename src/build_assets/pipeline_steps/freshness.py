"""Incremental rebuild check."""

from __future__ import annotations

import logging
from typing import Any, Dict

from build_assets.naming import is_up_to_date, read_build_state
from build_assets.pipeline import CompletedState, PipelineStep, _short_signature
from build_assets.pipeline_steps.sources import target_from

logger = logging.getLogger("pipeline.steps.freshness")


def source_signature(context: Dict[str, Any]) -> str:
    """Fingerprint of what an output is built from: source list and transform."""
    target = target_from(context)
    return _short_signature({
        "sources": [s["relpath"] for s in context["source_files"]],
        "transform": target.transform_name,
    })


class CheckFreshnessStep(PipelineStep):
    """Mark the item stale unless its output is still current.

    An output is current when it is at least as new as every source and
    its build record carries the same source signature, so adding or
    removing a source, or switching the transform, forces a rebuild.

    Provides ``stale`` and ``source_signature``.  ``_force`` in the
    context marks everything stale.
    """

    def __init__(self) -> None:
        super().__init__(
            name="check_freshness",
            requires=["target", "source_files", "output_path", "dst_root"],
            provides=["stale", "source_signature"],
            idempotent=False,
        )

    def run(self, context: Dict[str, Any]) -> CompletedState:
        output_path = context["output_path"]
        signature = source_signature(context)
        context["source_signature"] = signature

        if context.get("_force"):
            stale = True
        elif not is_up_to_date([s["path"] for s in context["source_files"]], output_path):
            stale = True
        else:
            state = read_build_state(context["dst_root"], output_path) or {}
            stale = state.get("signature") != signature
            if stale:
                logger.info("sources changed: %s", output_path)
            else:
                logger.info("up to date: %s", output_path)

        context["stale"] = stale
        return CompletedState(
            success=True,
            timestamp=CompletedState.now_iso(),
            duration_s=0.0,
            provides=["stale", "source_signature"],
            outputs={"stale": stale},
            signature=signature,
        )
