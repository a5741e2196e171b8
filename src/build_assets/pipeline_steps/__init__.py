"""Reusable pipeline step library for target builds.

Each module contains PipelineStep subclasses organized by stage.
These are the building blocks ("nodes") the per-target pipelines in
``build_assets.build`` are composed from.

Modules:
    sources    — ResolveSourcesStep, FanOutSourcesStep, NameOutputStep
    freshness  — CheckFreshnessStep
    transform  — TransformFileStep, ReduceSourcesStep
    output     — WriteOutputStep, CollectOutputsStep
"""

from build_assets.pipeline_steps.freshness import CheckFreshnessStep
from build_assets.pipeline_steps.output import CollectOutputsStep, WriteOutputStep
from build_assets.pipeline_steps.sources import (
    FanOutSourcesStep,
    NameOutputStep,
    ResolveSourcesStep,
)
from build_assets.pipeline_steps.transform import ReduceSourcesStep, TransformFileStep

__all__ = [
    "ResolveSourcesStep",
    "FanOutSourcesStep",
    "NameOutputStep",
    "CheckFreshnessStep",
    "TransformFileStep",
    "ReduceSourcesStep",
    "WriteOutputStep",
    "CollectOutputsStep",
]
