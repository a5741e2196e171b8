"""Output steps: write transformed bytes and gather per-file results."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from build_assets.naming import write_build_state, write_bytes_atomic
from build_assets.pipeline import CollectorStep, CompletedState, PipelineStep
from build_assets.work_item import WorkItem

logger = logging.getLogger("pipeline.steps.output")


class WriteOutputStep(PipelineStep):
    """Atomically write ``output_bytes`` to ``output_path``.

    Provides ``output_written``; False when the transform step skipped a
    fresh output.  A failed write leaves any previous output in place.
    After a write the source signature goes into the output's build record.
    """

    def __init__(self) -> None:
        super().__init__(
            name="write_output",
            requires=["output_bytes", "output_path"],
            provides=["output_written"],
            idempotent=False,
        )

    def run(self, context: Dict[str, Any]) -> CompletedState:
        output_path = context["output_path"]
        data = context["output_bytes"]
        written = data is not None
        if written:
            write_bytes_atomic(output_path, data)
            if context.get("source_signature") is not None:
                write_build_state(context["dst_root"], output_path, {
                    "target": context["target"]["name"],
                    "signature": context["source_signature"],
                    "sources": [s["relpath"] for s in context.get("source_files", [])],
                })
            logger.info("wrote %s (%d bytes)", output_path, len(data))
        context["output_written"] = written
        # Drop the payload so the context stays small and serializable.
        context["output_bytes"] = None
        return CompletedState(
            success=True,
            timestamp=CompletedState.now_iso(),
            duration_s=0.0,
            provides=["output_written"],
            outputs={"output_path": output_path, "written": written},
        )

    def rollback(self, context: Dict[str, Any]) -> None:
        context.pop("output_written", None)


class CollectOutputsStep(CollectorStep):
    """Fan-in: gather per-file outputs into ``outputs`` and ``skipped`` lists."""

    def __init__(self) -> None:
        super().__init__(name="collect_outputs", requires=[], provides=["outputs", "skipped"])

    def collect(self, work_items: List[WorkItem]) -> WorkItem:
        outputs: List[str] = []
        skipped: List[str] = []
        for item in work_items:
            path = item.attributes.get("output_path")
            if path is None:
                continue
            if item.attributes.get("output_written"):
                outputs.append(path)
                item.output_files.append(path)
            else:
                skipped.append(path)
        return WorkItem(
            id="outputs",
            attributes={"outputs": outputs, "skipped": skipped},
            output_files=list(outputs),
        )


def summarize(context: Dict[str, Any]) -> Dict[str, Any]:
    """Written/skipped output lists for a finished target context."""
    if "outputs" in context:
        return {"outputs": list(context["outputs"]), "skipped": list(context["skipped"])}
    path = context.get("output_path")
    if path is None:
        return {"outputs": [], "skipped": []}
    if context.get("output_written"):
        return {"outputs": [os.path.abspath(path)], "skipped": []}
    return {"outputs": [], "skipped": [os.path.abspath(path)]}
