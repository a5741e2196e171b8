"""Accessor data as numpy arrays.

Reads honour ``byteStride`` and sparse substitution and return the stored
component values (normalized integers are not rescaled).  Writes never
edit bytes in place: the new data goes into a fresh, tightly packed
bufferView appended to buffer 0, leaving the old view for ``prune``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import numpy as np

from build_assets.gltf.document import Document, align4
from build_assets.gltf.errors import DecodeError

BYTE = 5120
UNSIGNED_BYTE = 5121
SHORT = 5122
UNSIGNED_SHORT = 5123
UNSIGNED_INT = 5125
FLOAT = 5126

ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963

COMPONENT_DTYPES = {
    BYTE: np.dtype("<i1"),
    UNSIGNED_BYTE: np.dtype("<u1"),
    SHORT: np.dtype("<i2"),
    UNSIGNED_SHORT: np.dtype("<u2"),
    UNSIGNED_INT: np.dtype("<u4"),
    FLOAT: np.dtype("<f4"),
}

TYPE_COMPONENTS = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}


def _dtype(component_type: int) -> np.dtype:
    try:
        return COMPONENT_DTYPES[component_type]
    except KeyError:
        raise DecodeError(f"unknown accessor componentType {component_type}") from None


def _components(accessor_type: str) -> int:
    try:
        return TYPE_COMPONENTS[accessor_type]
    except KeyError:
        raise DecodeError(f"unknown accessor type {accessor_type!r}") from None


def _read_view(
    doc: Document,
    view_index: int,
    byte_offset: int,
    dtype: np.dtype,
    count: int,
    components: int,
) -> np.ndarray:
    view = doc.buffer_views[view_index]
    blob = doc.buffers[view["buffer"]]
    element = dtype.itemsize * components
    stride = view.get("byteStride") or element
    start = view.get("byteOffset", 0) + byte_offset
    if count == 0:
        return np.zeros((0, components), dtype=dtype)
    end = start + stride * (count - 1) + element
    view_end = view.get("byteOffset", 0) + view["byteLength"]
    if end > view_end or view_end > len(blob):
        raise DecodeError(
            f"accessor data overruns bufferView {view_index} "
            f"({end} > {min(view_end, len(blob))})"
        )
    arr = np.ndarray(
        shape=(count, components),
        dtype=dtype,
        buffer=blob,
        offset=start,
        strides=(stride, dtype.itemsize),
    )
    return arr.copy()


def read_accessor(doc: Document, index: int) -> np.ndarray:
    """Return accessor *index* as an array of shape ``(count, components)``."""
    accessor = doc.accessors[index]
    dtype = _dtype(accessor["componentType"])
    components = _components(accessor["type"])
    count = accessor["count"]

    if "bufferView" in accessor:
        arr = _read_view(
            doc, accessor["bufferView"], accessor.get("byteOffset", 0),
            dtype, count, components,
        )
    else:
        arr = np.zeros((count, components), dtype=dtype)

    sparse = accessor.get("sparse")
    if sparse is not None:
        indices = sparse["indices"]
        values = sparse["values"]
        idx = _read_view(
            doc, indices["bufferView"], indices.get("byteOffset", 0),
            _dtype(indices["componentType"]), sparse["count"], 1,
        ).reshape(-1)
        arr[idx] = _read_view(
            doc, values["bufferView"], values.get("byteOffset", 0),
            dtype, sparse["count"], components,
        )
    return arr


def append_buffer_view(
    doc: Document,
    data: bytes,
    target: Optional[int] = None,
) -> int:
    """Append *data* to buffer 0 as a new bufferView and return the view index."""
    if not doc.buffers:
        doc.add_buffer()
    blob = doc.buffers[0]
    blob.extend(b"\x00" * (align4(len(blob)) - len(blob)))
    view: Dict[str, Any] = {
        "buffer": 0,
        "byteOffset": len(blob),
        "byteLength": len(data),
    }
    if target is not None:
        view["target"] = target
    blob.extend(data)
    doc.gltf["buffers"][0]["byteLength"] = len(blob)
    views = doc.gltf.setdefault("bufferViews", [])
    views.append(view)
    return len(views) - 1


def _view_target(doc: Document, accessor: Dict[str, Any]) -> Optional[int]:
    if "bufferView" not in accessor:
        return None
    return doc.buffer_views[accessor["bufferView"]].get("target")


def write_accessor(doc: Document, index: int, array: Any) -> None:
    """Replace the data of accessor *index* with *array*.

    The array is cast to the accessor's componentType.  ``count`` is
    updated, sparse storage is dropped, and ``min``/``max`` are recomputed
    when the accessor carries them.
    """
    accessor = doc.accessors[index]
    dtype = _dtype(accessor["componentType"])
    components = _components(accessor["type"])
    arr = np.ascontiguousarray(np.asarray(array).reshape(-1, components), dtype=dtype)

    target = _view_target(doc, accessor)
    accessor["bufferView"] = append_buffer_view(doc, arr.tobytes(), target=target)
    accessor.pop("byteOffset", None)
    accessor.pop("sparse", None)
    accessor["count"] = int(arr.shape[0])

    if "min" in accessor or "max" in accessor:
        if arr.shape[0]:
            accessor["min"] = arr.min(axis=0).tolist()
            accessor["max"] = arr.max(axis=0).tolist()
        else:
            accessor.pop("min", None)
            accessor.pop("max", None)


def add_accessor_like(doc: Document, index: int, array: Any) -> int:
    """Create a new accessor shaped like accessor *index* holding *array*."""
    source = doc.accessors[index]
    accessor = {
        key: source[key]
        for key in ("componentType", "type", "normalized", "name", "min", "max")
        if key in source
    }
    accessor["count"] = 0
    if "bufferView" in source:
        # Carry the view so write_accessor can copy its target.
        accessor["bufferView"] = source["bufferView"]
    accessors = doc.gltf.setdefault("accessors", [])
    accessors.append(accessor)
    new_index = len(accessors) - 1
    write_accessor(doc, new_index, array)
    return new_index
