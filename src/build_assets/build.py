"""build-assets: run the asset build targets.

Each target becomes a Pipeline over one WorkItem:

    map     resolve_sources → fan_out_sources → [check_freshness → transform_file
            → write_output] per file → collect_outputs
    reduce  resolve_sources → name_output → check_freshness → reduce_sources
            → write_output

Usage:
    build-assets                          # every enabled target
    build-assets trees-temperate props    # named targets (disabled ones too)
    build-assets --list
    build-assets --dry-run -v
    build-assets --jobs 4 --report build/report.json
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from build_assets.config import ConfigError, DEFAULT_CONFIG_NAME, load_config
from build_assets.naming import write_json_atomic
from build_assets.pipeline import (
    CompletedState,
    ExitCode,
    Pipeline,
    PipelineStep,
    exit_code_from,
)
from build_assets.pipeline_steps import (
    CheckFreshnessStep,
    CollectOutputsStep,
    FanOutSourcesStep,
    NameOutputStep,
    ReduceSourcesStep,
    ResolveSourcesStep,
    TransformFileStep,
    WriteOutputStep,
)
from build_assets.pipeline_steps.output import summarize
from build_assets.scheduler import LocalScheduler, PoolScheduler, Scheduler
from build_assets.targets import Target
from build_assets.work_item import WorkItem

logger = logging.getLogger("build_assets")


# ---------------------------------------------------------------------------
# Per-target pipeline
# ---------------------------------------------------------------------------

def _steps_for(target: Target) -> List[PipelineStep]:
    if target.mode == "reduce":
        return [
            ResolveSourcesStep(),
            NameOutputStep(),
            CheckFreshnessStep(),
            ReduceSourcesStep(),
            WriteOutputStep(),
        ]
    per_file = Pipeline(
        name="file",
        steps=[CheckFreshnessStep(), TransformFileStep(), WriteOutputStep()],
    )
    return [ResolveSourcesStep(), FanOutSourcesStep(), per_file, CollectOutputsStep()]


class TargetPipeline(Pipeline):
    """The pipeline that builds one target.

    Rebuildable from ``identity_kwargs()`` so a PoolScheduler worker can
    run it.  On success the CompletedState's outputs carry the written and
    skipped output paths.
    """

    def __init__(self, target: Union[Target, Dict[str, Any]], force: bool = False) -> None:
        if isinstance(target, dict):
            target = Target.from_dict(target)
        self.target = target
        super().__init__(
            name=target.name,
            steps=_steps_for(target),
            force=force,
            resolve_order=target.mode == "reduce",
        )

    def identity_kwargs(self) -> Dict[str, Any]:
        return {"target": self.target.to_dict(), "force": self.force}

    def run_item(self, work_item: WorkItem, *, _prefix: str = "", dry_run: bool = False) -> CompletedState:
        cs = super().run_item(work_item, _prefix=_prefix, dry_run=dry_run)
        if cs.success and not dry_run:
            cs.outputs = summarize(work_item.attributes)
        return cs


def build_target_pipeline(target: Target, force: bool = False) -> TargetPipeline:
    return TargetPipeline(target, force=force)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

@dataclass
class TargetResult:
    name: str
    state: CompletedState

    @property
    def success(self) -> bool:
        return self.state.success

    @property
    def outputs(self) -> List[str]:
        return list(self.state.outputs.get("outputs", []))

    @property
    def skipped(self) -> List[str]:
        return list(self.state.outputs.get("skipped", []))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "duration_s": round(self.state.duration_s, 3),
            "outputs": self.outputs,
            "skipped": self.skipped,
            "error": self.state.error,
            "meta": self.state.meta,
        }


@dataclass
class BuildReport:
    results: List[TargetResult] = field(default_factory=list)
    not_run: List[str] = field(default_factory=list)
    dry_run: bool = False
    duration_s: float = 0.0

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results) and not self.not_run

    @property
    def failed(self) -> List[TargetResult]:
        return [r for r in self.results if not r.success]

    def exit_code(self) -> ExitCode:
        """OK, or the exit code of the first failed target."""
        for result in self.results:
            if not result.success:
                return exit_code_from(result.state)
        return ExitCode.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": CompletedState.now_iso(),
            "success": self.success,
            "dry_run": self.dry_run,
            "duration_s": round(self.duration_s, 3),
            "targets": [r.to_dict() for r in self.results],
            "not_run": list(self.not_run),
        }


def run_targets(
    targets: Sequence[Target],
    src_root: str,
    dst_root: str,
    *,
    force: bool = False,
    dry_run: bool = False,
    scheduler: Optional[Scheduler] = None,
    fail_fast: bool = False,
) -> BuildReport:
    """Build *targets* and report per-target results.

    Targets are independent: by default a failure is recorded and the
    remaining targets still run.  With ``fail_fast`` targets run one after
    another and the rest are listed as not run after the first failure.
    """
    scheduler = scheduler or LocalScheduler()
    start = time.time()
    jobs = [
        (
            build_target_pipeline(t, force=force),
            WorkItem.for_target(t.to_dict(), src_root, dst_root, force=force),
        )
        for t in targets
    ]
    report = BuildReport(dry_run=dry_run)

    if dry_run:
        for pipeline, work_item in jobs:
            cs = pipeline.run_item(work_item, dry_run=True)
            report.results.append(TargetResult(pipeline.name, cs))
    elif fail_fast:
        for position, (pipeline, work_item) in enumerate(jobs):
            cs = scheduler.execute(pipeline, work_item)
            report.results.append(TargetResult(pipeline.name, cs))
            if not cs.success:
                report.not_run = [p.name for p, _ in jobs[position + 1:]]
                break
    else:
        states = scheduler.execute_all(jobs)
        for (pipeline, _), cs in zip(jobs, states):
            report.results.append(TargetResult(pipeline.name, cs))

    report.duration_s = time.time() - start
    for result in report.failed:
        err = result.state.error or {}
        logger.error("target %s failed: %s", result.name, err.get("message", "unknown error"))
    return report


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
    if not verbose:
        # glTF passes log every merge and prune at DEBUG; keep their warnings quiet too.
        logging.getLogger("pipeline.gltf").setLevel(logging.ERROR)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-assets",
        description="Build game assets from the artwork tree.",
    )
    parser.add_argument(
        "targets", nargs="*", metavar="TARGET",
        help="Targets to build (default: every enabled target).",
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG_NAME,
        help=f"Target table (default: ./{DEFAULT_CONFIG_NAME}).",
    )
    parser.add_argument("--src-root", help="Override the config's source root.")
    parser.add_argument("--dst-root", help="Override the config's destination root.")
    parser.add_argument("--force", action="store_true", help="Rebuild even up-to-date outputs.")
    parser.add_argument("--dry-run", action="store_true", help="Log the plan without building.")
    parser.add_argument(
        "--jobs", "-j", type=int, default=1,
        help="Worker processes; targets build in parallel when > 1.",
    )
    parser.add_argument("--list", action="store_true", help="List targets and exit.")
    parser.add_argument(
        "--fail-fast", action="store_true",
        help="Stop at the first failed target.",
    )
    parser.add_argument("--report", help="Write a JSON build report to this path.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return parser


def _list_targets(config) -> None:
    for target in config.targets:
        flag = "" if target.enabled else "  (disabled)"
        dest = f" -> {target.dest}" if target.dest else ""
        print(f"{target.name:<20} {target.transform_name:<14} {target.source.describe()}{dest}{flag}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.jobs < 1:
        parser.error("--jobs must be >= 1")

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error("%s", exc)
        return int(ExitCode.CONFIG_ERROR)

    if args.list:
        _list_targets(config)
        return int(ExitCode.OK)

    try:
        targets = config.targets.select(args.targets)
    except KeyError as exc:
        logger.error("%s", exc.args[0])
        return int(ExitCode.CONFIG_ERROR)

    src_root = os.path.abspath(args.src_root) if args.src_root else config.src_root
    dst_root = os.path.abspath(args.dst_root) if args.dst_root else config.dst_root
    logger.info("Building %d target(s): %s -> %s", len(targets), src_root, dst_root)

    if args.jobs > 1:
        scheduler: Scheduler = PoolScheduler(
            workers=args.jobs,
            log_level=logging.DEBUG if args.verbose else logging.INFO,
        )
    else:
        scheduler = LocalScheduler()

    try:
        report = run_targets(
            targets, src_root, dst_root,
            force=args.force,
            dry_run=args.dry_run,
            scheduler=scheduler,
            fail_fast=args.fail_fast,
        )
    finally:
        scheduler.shutdown()

    if args.report:
        write_json_atomic(args.report, report.to_dict())
        logger.info("Report written to %s", args.report)

    written = sum(len(r.outputs) for r in report.results)
    skipped = sum(len(r.skipped) for r in report.results)
    logger.info(
        "Done: %d target(s), %d failed, %d written, %d up to date (%.2fs)",
        len(report.results), len(report.failed), written, skipped, report.duration_s,
    )
    return int(report.exit_code())


if __name__ == "__main__":
    sys.exit(main())
