"""Binary glTF (GLB) document model, codec and optimization passes.

Modules:
    errors     — GltfError, DecodeError, EncodeError, MergeError, TransformError
    refs       — index reference visitor, remap and drop helpers
    document   — Document: glTF JSON + buffer blobs, merge, rebind, dispose
    accessors  — numpy views over accessor data
    io         — read_binary, write_binary (GLB 2.0 container)
    functions  — resample, dedup, compress, prune passes

Usage:

    from build_assets.gltf.io import read_binary, write_binary
    from build_assets.gltf.functions import resample, dedup, compress

    doc = read_binary(raw).transform(resample(), dedup(), compress())
    out = write_binary(doc)
"""

from build_assets.gltf.document import Document
from build_assets.gltf.errors import (
    DecodeError,
    EncodeError,
    GltfError,
    MergeError,
    TransformError,
)

__all__ = [
    "Document",
    "GltfError",
    "DecodeError",
    "EncodeError",
    "MergeError",
    "TransformError",
]
