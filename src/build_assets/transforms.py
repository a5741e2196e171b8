"""Asset transforms applied by build targets.

Map transforms turn one source file's bytes into one output's bytes.
Reduce transforms fold every matched source of a target into a single
output.  Both are looked up by the name used in the target table.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Sequence

from build_assets.gltf.document import Document
from build_assets.gltf.functions import compress, dedup, resample
from build_assets.gltf.io import read_binary, write_binary

logger = logging.getLogger("pipeline.transforms")

FLORA_ALPHA_CUTOFF = 0.1


@dataclass(frozen=True)
class SourceFile:
    """A matched source: its path relative to the source root and on disk."""

    relpath: str
    path: str

    def read(self) -> bytes:
        return Path(self.path).read_bytes()


MapTransform = Callable[[bytes], bytes]
ReduceTransform = Callable[[Sequence[SourceFile]], bytes]


# ---------------------------------------------------------------------------
# Model optimizer
# ---------------------------------------------------------------------------

def optimize(raw: bytes) -> bytes:
    """Resample, deduplicate and compress a .glb model.

    Resampling runs before dedup so collapsed keyframe data can be shared;
    compression runs last on the deduplicated geometry.

    Raises:
        DecodeError: If *raw* is not a valid GLB.
        TransformError: If a pass fails.
    """
    doc = read_binary(raw)
    return write_binary(doc.transform(resample(), dedup(), compress()))


# ---------------------------------------------------------------------------
# Flora merger
# ---------------------------------------------------------------------------

def cleanup_flora(doc: Document) -> Document:
    """Return a copy of a merged flora document ready to be written as one GLB.

    Buffer 0 becomes the only buffer: every accessor (and embedded image) is
    rebound to it and the other buffers are released.  BLEND materials are
    switched to MASK with a 0.1 cutoff, and every camera is detached.
    """
    doc = doc.copy()

    if doc.buffers:
        for index in range(len(doc.accessors)):
            doc.set_accessor_buffer(index, 0)
        for index in range(len(doc.list("images"))):
            doc.set_image_buffer(index, 0)
        for index in reversed(range(1, len(doc.buffers))):
            doc.dispose_buffer(index)

    for material in doc.materials:
        if material.get("alphaMode") == "BLEND":
            material["alphaMode"] = "MASK"
            material["alphaCutoff"] = FLORA_ALPHA_CUTOFF

    for index in reversed(range(len(doc.cameras))):
        doc.detach_camera(index)

    return doc


def merge_flora(docs: Sequence[bytes]) -> bytes:
    """Merge a group of vegetation models into one .glb.

    Documents are folded in sequence order, starting from an empty document.

    Raises:
        DecodeError: If any input is not a valid GLB.
        MergeError: If an input cannot be merged.
    """
    merged = Document()
    for raw in docs:
        merged = merged.merge(read_binary(raw))
    logger.debug("merged %d flora model(s): %r", len(docs), merged)
    return write_binary(cleanup_flora(merged))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def copy_file(raw: bytes) -> bytes:
    return raw


def _flora_merge(sources: Sequence[SourceFile]) -> bytes:
    return merge_flora([source.read() for source in sources])


def catalog_index(sources: Sequence[SourceFile]) -> bytes:
    """JSON index of the matched files, by path relative to the source root."""
    names = sorted(source.relpath for source in sources)
    return (json.dumps(names, indent=2) + "\n").encode("utf-8")


MAP_TRANSFORMS: Dict[str, MapTransform] = {
    "copy": copy_file,
    "optimize": optimize,
}

REDUCE_TRANSFORMS: Dict[str, ReduceTransform] = {
    "flora-merge": _flora_merge,
    "catalog-index": catalog_index,
}


def get_map_transform(name: str) -> MapTransform:
    try:
        return MAP_TRANSFORMS[name]
    except KeyError:
        raise KeyError(
            f"unknown transform {name!r} (expected one of {sorted(MAP_TRANSFORMS)})"
        ) from None


def get_reduce_transform(name: str) -> ReduceTransform:
    try:
        return REDUCE_TRANSFORMS[name]
    except KeyError:
        raise KeyError(
            f"unknown reduce {name!r} (expected one of {sorted(REDUCE_TRANSFORMS)})"
        ) from None
