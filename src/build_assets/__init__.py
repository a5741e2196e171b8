"""build_assets: game asset build pipeline.

Targets declared in ``assets.json`` read files from the artwork tree,
transform them (copy, optimize .glb models, merge flora into one model,
index a directory) and write the results below the assets tree.

Modules:
    pipeline: PipelineStep, Pipeline, CompletedState, middleware
    work_item: WorkItem data packet
    scheduler: LocalScheduler, PoolScheduler
    naming: output naming, freshness checks, build records, atomic writes
    targets: DirectorySource, FileSource, Target, TargetRegistry
    config: assets.json loading
    transforms: optimize, merge_flora and the transform registry
    pipeline_steps: the steps per-target pipelines are built from
    build: run_targets and the ``build-assets`` CLI
    gltf: GLB codec, document model and optimization passes
"""

__version__ = "0.1.0"
