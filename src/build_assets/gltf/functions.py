"""Optimization passes.

Each factory returns a pass: a callable that edits a Document in place.
Passes are applied with ``Document.transform``::

    doc = doc.transform(resample(), dedup(), compress())
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Callable, Dict, Iterable, Tuple

import numpy as np

from build_assets.gltf import refs
from build_assets.gltf.accessors import (
    UNSIGNED_INT,
    UNSIGNED_SHORT,
    add_accessor_like,
    read_accessor,
    write_accessor,
)
from build_assets.gltf.document import PRUNABLE, Document, align4

logger = logging.getLogger("pipeline.gltf.functions")

Pass = Callable[[Document], None]


# ---------------------------------------------------------------------------
# resample
# ---------------------------------------------------------------------------

def _keyframe_mask(values: np.ndarray, interpolation: str, tolerance: float) -> np.ndarray:
    """Return a boolean mask of keyframes to keep."""
    n = len(values)
    keep = np.ones(n, dtype=bool)
    if n <= 2:
        return keep
    same_as_prev = np.all(np.abs(values[1:] - values[:-1]) <= tolerance, axis=1)
    if interpolation == "STEP":
        keep[1:-1] = ~same_as_prev[:-1]
    else:
        keep[1:-1] = ~(same_as_prev[:-1] & same_as_prev[1:])
    return keep


def resample(tolerance: float = 1e-4) -> Pass:
    """Drop redundant animation keyframes.

    LINEAR: an interior keyframe equal to both neighbours is removed.
    STEP: an interior keyframe equal to the previous one is removed.
    CUBICSPLINE samplers are left alone.  Resampled data goes into new
    accessors, so samplers sharing an input accessor stay consistent.
    """

    def _resample(doc: Document) -> None:
        dropped = 0
        for anim in doc.list("animations"):
            for sampler in anim.get("samplers", []):
                interpolation = sampler.get("interpolation", "LINEAR")
                if interpolation not in ("LINEAR", "STEP"):
                    continue
                times = read_accessor(doc, sampler["input"])
                values = read_accessor(doc, sampler["output"])
                frames = len(times)
                if frames <= 2 or len(values) % frames:
                    continue
                # Morph weights store one row per target per keyframe.
                rows = values.reshape(frames, -1).astype(np.float64)
                keep = _keyframe_mask(rows, interpolation, tolerance)
                if keep.all():
                    continue
                width = values.shape[1]
                sampler["input"] = add_accessor_like(doc, sampler["input"], times[keep])
                sampler["output"] = add_accessor_like(
                    doc, sampler["output"],
                    values.reshape(frames, -1)[keep].reshape(-1, width),
                )
                dropped += int((~keep).sum())
        if dropped:
            logger.debug("resample: dropped %d keyframe(s)", dropped)

    return _resample


# ---------------------------------------------------------------------------
# dedup
# ---------------------------------------------------------------------------

def _canonical_mapping(keys: Iterable[Any]) -> Dict[int, int]:
    """Map every index whose key was seen before to the first index with that key."""
    first: Dict[Any, int] = {}
    mapping: Dict[int, int] = {}
    for index, key in enumerate(keys):
        if key in first:
            mapping[index] = first[key]
        else:
            first[key] = index
    return mapping


def _accessor_key(doc: Document, index: int) -> Tuple[Any, ...]:
    accessor = doc.accessors[index]
    target = None
    if "bufferView" in accessor:
        target = doc.buffer_views[accessor["bufferView"]].get("target")
    data = read_accessor(doc, index)
    return (
        accessor["componentType"],
        accessor["type"],
        accessor.get("normalized", False),
        target,
        data.shape,
        hashlib.sha1(data.tobytes()).hexdigest(),
    )


def _image_key(doc: Document, index: int) -> Tuple[Any, ...]:
    image = doc.list("images")[index]
    if "bufferView" not in image:
        return ("uri", image.get("uri"))
    view = doc.buffer_views[image["bufferView"]]
    start = view.get("byteOffset", 0)
    data = bytes(doc.buffers[view["buffer"]][start:start + view["byteLength"]])
    return ("bytes", image.get("mimeType"), hashlib.sha1(data).hexdigest())


def _json_key(item: Dict[str, Any], ignore: Tuple[str, ...]) -> str:
    return json.dumps(
        {k: v for k, v in item.items() if k not in ignore},
        sort_keys=True,
    )


def dedup() -> Pass:
    """Merge identical accessors, images, samplers, textures, materials and meshes.

    Materials and meshes are compared ignoring ``name``.  References to a
    duplicate are pointed at the first identical entry; the duplicates are
    then pruned.
    """

    def _dedup(doc: Document) -> None:
        merged: Dict[str, int] = {}

        def apply(kind: str, mapping: Dict[int, int]) -> None:
            if mapping:
                refs.remap(doc.gltf, kind, mapping)
                merged[kind] = len(mapping)

        apply("accessors", _canonical_mapping(
            _accessor_key(doc, i) for i in range(len(doc.accessors))
        ))
        apply("images", _canonical_mapping(
            _image_key(doc, i) for i in range(len(doc.list("images")))
        ))
        for kind, ignore in (
            ("samplers", ()),
            ("textures", ()),
            ("materials", ("name",)),
            ("meshes", ("name",)),
        ):
            apply(kind, _canonical_mapping(_json_key(item, ignore) for item in doc.list(kind)))

        doc.prune()
        if merged:
            logger.debug("dedup: merged %s", merged)

    return _dedup


# ---------------------------------------------------------------------------
# compress
# ---------------------------------------------------------------------------

def repack(doc: Document) -> None:
    """Rewrite every buffer to hold only its bufferViews, 4-byte aligned."""
    for buffer_index, blob in enumerate(doc.buffers):
        packed = bytearray()
        for view in doc.buffer_views:
            if view["buffer"] != buffer_index:
                continue
            start = view.get("byteOffset", 0)
            data = blob[start:start + view["byteLength"]]
            packed.extend(b"\x00" * (align4(len(packed)) - len(packed)))
            view["byteOffset"] = len(packed)
            packed.extend(data)
        doc.buffers[buffer_index] = packed
        doc.gltf["buffers"][buffer_index]["byteLength"] = len(packed)


def compress() -> Pass:
    """Lossless geometry compression.

    32-bit index accessors whose values all fit are narrowed to 16 bits
    (65535 is reserved for primitive restart).  Unreferenced data is then
    pruned and every buffer repacked without gaps.
    """

    def _compress(doc: Document) -> None:
        narrowed = 0
        for mesh in doc.meshes:
            for prim in mesh.get("primitives", []):
                index = prim.get("indices")
                if index is None:
                    continue
                accessor = doc.accessors[index]
                if accessor["componentType"] != UNSIGNED_INT:
                    continue
                data = read_accessor(doc, index)
                if data.size and int(data.max()) >= 0xFFFF:
                    continue
                accessor["componentType"] = UNSIGNED_SHORT
                write_accessor(doc, index, data.astype(np.uint16))
                narrowed += 1

        doc.prune()
        before = sum(len(blob) for blob in doc.buffers)
        repack(doc)
        after = sum(len(blob) for blob in doc.buffers)
        logger.debug(
            "compress: narrowed %d index accessor(s), %d -> %d byte(s)",
            narrowed, before, after,
        )

    return _compress


# ---------------------------------------------------------------------------
# prune
# ---------------------------------------------------------------------------

def prune(kinds: Iterable[str] = PRUNABLE) -> Pass:
    """Remove properties nothing references."""
    kinds = tuple(kinds)

    def _prune(doc: Document) -> None:
        doc.prune(kinds)

    return _prune
