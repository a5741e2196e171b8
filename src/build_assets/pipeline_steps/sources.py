"""Source steps: match a target's files and name its outputs."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from build_assets.naming import DestinationNamer
from build_assets.pipeline import CompletedState, GeneratorStep, PipelineStep
from build_assets.targets import DirectorySource, Target
from build_assets.work_item import WorkItem

logger = logging.getLogger("pipeline.steps.sources")


def target_from(context: Dict[str, Any]) -> Target:
    """Rebuild the Target carried in a work item's context."""
    return Target.from_dict(context["target"])


class ResolveSourcesStep(PipelineStep):
    """List the files a target reads, sorted by path below the source root."""

    def __init__(self) -> None:
        super().__init__(
            name="resolve_sources",
            requires=["target", "src_root"],
            provides=["source_files"],
            idempotent=False,
        )

    def run(self, context: Dict[str, Any]) -> CompletedState:
        target = target_from(context)
        files = target.source.files(context["src_root"])
        context["source_files"] = [{"relpath": f.relpath, "path": f.path} for f in files]

        if not files:
            logger.warning(
                "%s: no files match %s in %s",
                target.name, target.source.describe(), context["src_root"],
            )
        else:
            logger.info(
                "%s: matched %d file(s) for %s",
                target.name, len(files), target.source.describe(),
            )
        return CompletedState(
            success=True,
            timestamp=CompletedState.now_iso(),
            duration_s=0.0,
            provides=["source_files"],
            outputs={"source_count": len(files)},
        )


class FanOutSourcesStep(GeneratorStep):
    """Emit one WorkItem per matched source file.

    Each emitted WorkItem has:
        source_files: The single source, as ``[{"relpath", "path"}]``.
        output_path:  Where the transformed file goes.
    """

    def __init__(self) -> None:
        super().__init__(name="fan_out_sources", requires=["source_files"], provides=[])

    def _namer(self, target: Target, context: Dict[str, Any]) -> DestinationNamer:
        if isinstance(target.source, DirectorySource) and target.dest:
            return DestinationNamer(
                context["src_root"], context["dst_root"],
                subdir=target.dest, base=target.source.subdir,
            )
        return DestinationNamer(context["src_root"], context["dst_root"])

    def generate(self, work_item: WorkItem) -> List[WorkItem]:
        context = work_item.attributes
        target = target_from(context)
        namer = self._namer(target, context)

        items = []
        for source in context.get("source_files", []):
            if isinstance(target.source, DirectorySource):
                output_path = namer(source["path"])
            else:
                output_path = os.path.join(context["dst_root"], target.dest)
            items.append(
                work_item.child(
                    id=source["relpath"],
                    input_files=[source["path"]],
                    source_files=[source],
                    output_path=output_path,
                )
            )
        return items


class NameOutputStep(PipelineStep):
    """Set ``output_path`` for a target with a single named output."""

    def __init__(self) -> None:
        super().__init__(
            name="name_output",
            requires=["target", "dst_root"],
            provides=["output_path"],
            idempotent=False,
        )

    def run(self, context: Dict[str, Any]) -> CompletedState:
        target = target_from(context)
        if not target.dest:
            return CompletedState(
                success=False,
                timestamp=CompletedState.now_iso(),
                duration_s=0.0,
                error={"message": f"target {target.name!r} has no dest"},
            )
        context["output_path"] = os.path.join(context["dst_root"], target.dest)
        return CompletedState(
            success=True,
            timestamp=CompletedState.now_iso(),
            duration_s=0.0,
            provides=["output_path"],
            outputs={"output_path": context["output_path"]},
        )
