"""Exceptions raised by the glTF codec, document model and passes."""

from __future__ import annotations


class GltfError(Exception):
    """Base class for every glTF document error."""


class DecodeError(GltfError, ValueError):
    """Raised when bytes are not a valid GLB 2.0 container."""


class EncodeError(GltfError, ValueError):
    """Raised when a document cannot be written as GLB."""


class MergeError(GltfError):
    """Raised when two documents cannot be merged."""


class TransformError(GltfError):
    """Raised when an optimization pass fails internally.

    The failing pass is named in the message and the original exception
    is chained as ``__cause__``.
    """

    def __init__(self, pass_name: str, message: str) -> None:
        super().__init__(f"{pass_name}: {message}")
        self.pass_name = pass_name
