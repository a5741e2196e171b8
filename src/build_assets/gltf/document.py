"""Document: in-memory glTF scene graph.

A Document holds the glTF JSON (``gltf``) and one ``bytearray`` per
entry of its ``buffers`` array.  Operations that build a new document
(``copy``, ``merge``, ``transform``) never mutate their inputs; the
in-place editing methods (``set_accessor_buffer``, ``dispose_buffer``,
``detach_camera``, ``prune``) are meant for a document the caller owns.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from build_assets.gltf import refs
from build_assets.gltf.errors import GltfError, MergeError, TransformError

logger = logging.getLogger("pipeline.gltf.document")

GENERATOR = "build-assets"

# Order matters: each kind is only referenced by kinds earlier in the list
# (or by kinds that are never pruned), so one pass removes everything.
PRUNABLE = (
    "meshes",
    "materials",
    "textures",
    "images",
    "samplers",
    "accessors",
    "bufferViews",
)

Pass = Callable[["Document"], Any]


def align4(value: int) -> int:
    return (value + 3) & ~3


def _union(first: List[str], second: List[str]) -> List[str]:
    return first + [name for name in second if name not in first]


class Document:
    """glTF JSON plus binary buffer data.

    Args:
        gltf:    The glTF JSON object.  Defaults to an empty 2.0 asset.
        buffers: Binary data, one blob per ``gltf["buffers"]`` entry.
    """

    def __init__(
        self,
        gltf: Optional[Dict[str, Any]] = None,
        buffers: Optional[Iterable[bytes]] = None,
    ) -> None:
        if gltf is None:
            gltf = {"asset": {"version": "2.0", "generator": GENERATOR}}
        self.gltf = gltf
        self.buffers: List[bytearray] = [bytearray(b) for b in (buffers or [])]
        declared = len(gltf.get("buffers", []))
        if declared != len(self.buffers):
            raise ValueError(
                f"Document declares {declared} buffer(s) but {len(self.buffers)} "
                f"blob(s) were given"
            )

    # -- listing -----------------------------------------------------------

    def list(self, kind: str) -> List[Dict[str, Any]]:
        """Return the live array for *kind* (empty list when absent)."""
        return refs.get_array(self.gltf, kind)

    @property
    def accessors(self) -> List[Dict[str, Any]]:
        return self.list("accessors")

    @property
    def buffer_views(self) -> List[Dict[str, Any]]:
        return self.list("bufferViews")

    @property
    def materials(self) -> List[Dict[str, Any]]:
        return self.list("materials")

    @property
    def cameras(self) -> List[Dict[str, Any]]:
        return self.list("cameras")

    @property
    def nodes(self) -> List[Dict[str, Any]]:
        return self.list("nodes")

    @property
    def meshes(self) -> List[Dict[str, Any]]:
        return self.list("meshes")

    def copy(self) -> Document:
        return Document(copy.deepcopy(self.gltf), self.buffers)

    def __repr__(self) -> str:
        counts = ", ".join(
            f"{kind}={len(self.list(kind))}"
            for kind in ("buffers", "accessors", "meshes", "materials", "cameras")
        )
        return f"Document({counts})"

    # -- merge -------------------------------------------------------------

    def merge(self, other: Document) -> Document:
        """Return a new document holding every property of *self* and *other*.

        Nothing is deduplicated: the other document's scenes, nodes, meshes,
        materials, buffers and so on are appended with their indices offset.
        The default scene of *self* stays the default scene.

        Raises:
            MergeError: If *other* is *self* or is not a glTF 2.x asset.
        """
        if other is self:
            raise MergeError("cannot merge a document into itself")
        version = str(other.gltf.get("asset", {}).get("version", ""))
        if version.split(".")[0] != "2":
            raise MergeError(f"cannot merge glTF asset version {version!r} into 2.0")

        merged = self.copy()
        incoming = copy.deepcopy(other.gltf)
        default_scene = incoming.pop("scene", None)

        offsets = {kind: len(merged.list(kind)) for kind in refs.KINDS}
        refs.visit_refs(incoming, lambda kind, index: index + offsets[kind])

        for kind in refs.KINDS:
            items = refs.get_array(incoming, kind)
            if items:
                refs.set_array(merged.gltf, kind, merged.list(kind) + items)
        merged.buffers.extend(bytearray(b) for b in other.buffers)

        for key in ("extensionsUsed", "extensionsRequired"):
            names = _union(merged.gltf.get(key, []), incoming.get(key, []))
            if names:
                merged.gltf[key] = names

        if "scene" not in merged.gltf and merged.list("scenes"):
            if default_scene is None:
                merged.gltf["scene"] = 0
            else:
                merged.gltf["scene"] = default_scene + offsets["scenes"]

        logger.debug("merged %r into %r", other, merged)
        return merged

    # -- buffers -----------------------------------------------------------

    def add_buffer(self, data: bytes = b"") -> int:
        """Append a new buffer and return its index."""
        self.gltf.setdefault("buffers", []).append({"byteLength": len(data)})
        self.buffers.append(bytearray(data))
        return len(self.buffers) - 1

    def move_buffer_view(self, view_index: int, buffer_index: int) -> None:
        """Copy a bufferView's bytes into *buffer_index* and point the view at it."""
        view = self.buffer_views[view_index]
        if view["buffer"] == buffer_index:
            return
        start = view.get("byteOffset", 0)
        data = bytes(self.buffers[view["buffer"]][start:start + view["byteLength"]])
        blob = self.buffers[buffer_index]
        blob.extend(b"\x00" * (align4(len(blob)) - len(blob)))
        view["byteOffset"] = len(blob)
        view["buffer"] = buffer_index
        blob.extend(data)
        self.gltf["buffers"][buffer_index]["byteLength"] = len(blob)

    def set_accessor_buffer(self, accessor_index: int, buffer_index: int) -> None:
        """Move the data behind an accessor (dense and sparse) into *buffer_index*."""
        accessor = self.accessors[accessor_index]
        if "bufferView" in accessor:
            self.move_buffer_view(accessor["bufferView"], buffer_index)
        sparse = accessor.get("sparse")
        if sparse is not None:
            self.move_buffer_view(sparse["indices"]["bufferView"], buffer_index)
            self.move_buffer_view(sparse["values"]["bufferView"], buffer_index)

    def set_image_buffer(self, image_index: int, buffer_index: int) -> None:
        image = self.list("images")[image_index]
        if "bufferView" in image:
            self.move_buffer_view(image["bufferView"], buffer_index)

    def dispose_buffer(self, buffer_index: int) -> None:
        """Remove a buffer.

        Unreferenced bufferViews on the buffer are discarded with it.

        Raises:
            ValueError: If a referenced bufferView still lives on the buffer.
        """
        self.prune(kinds=("bufferViews",))
        in_use = [
            i for i, view in enumerate(self.buffer_views) if view["buffer"] == buffer_index
        ]
        if in_use:
            raise ValueError(
                f"buffer {buffer_index} is still used by bufferView(s) {in_use}"
            )
        keep = [i for i in range(len(self.buffers)) if i != buffer_index]
        refs.drop(self.gltf, "buffers", keep)
        del self.buffers[buffer_index]

    # -- cameras -----------------------------------------------------------

    def detach_camera(self, camera_index: int) -> None:
        """Remove a camera and every node reference to it."""
        for node in self.nodes:
            if node.get("camera") == camera_index:
                del node["camera"]
        keep = [i for i in range(len(self.cameras)) if i != camera_index]
        refs.drop(self.gltf, "cameras", keep)

    # -- cleanup -----------------------------------------------------------

    def prune(self, kinds: Iterable[str] = PRUNABLE) -> Dict[str, int]:
        """Remove unreferenced properties; return how many of each were removed."""
        wanted = set(kinds)
        removed: Dict[str, int] = {}
        for kind in PRUNABLE:
            if kind not in wanted:
                continue
            used = refs.collect_refs(self.gltf)[kind]
            total = len(self.list(kind))
            keep = [i for i in range(total) if i in used]
            if len(keep) < total:
                refs.drop(self.gltf, kind, keep)
                removed[kind] = total - len(keep)
        if removed:
            logger.debug("pruned %s", removed)
        return removed

    # -- transforms --------------------------------------------------------

    def transform(self, *passes: Pass) -> Document:
        """Apply *passes* in order to a copy of this document and return it.

        Each pass is a callable that edits the document it is given.

        Raises:
            TransformError: If a pass raises anything other than a GltfError.
        """
        doc = self.copy()
        for fn in passes:
            name = getattr(fn, "__name__", type(fn).__name__).lstrip("_")
            logger.debug("pass %s", name)
            try:
                fn(doc)
            except GltfError:
                raise
            except Exception as exc:
                raise TransformError(name, f"{type(exc).__name__}: {exc}") from exc
        return doc
