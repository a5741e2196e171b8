"""GLB 2.0 container read/write on top of pygltflib.

pygltflib parses and assembles the container (header, JSON chunk, BIN
chunk).  On read the JSON is taken back out of pygltflib's model as plain
dicts for the Document, unset properties are dropped, extensions that
would hide index references are stripped, and the structure is checked
so later passes can index into it safely.  Buffer 0 without a ``uri`` is
the BIN chunk; embedded ``data:`` URIs are decoded.  External buffer
files are not resolved.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import pygltflib

from build_assets.gltf import refs
from build_assets.gltf.accessors import COMPONENT_DTYPES, TYPE_COMPONENTS
from build_assets.gltf.document import Document, align4
from build_assets.gltf.errors import DecodeError, EncodeError

logger = logging.getLogger("pipeline.gltf.io")

GLB_MAGIC = 0x46546C67  # "glTF"
GLB_VERSION = 2
JSON_CHUNK_TYPE = 0x4E4F534A  # "JSON"
BIN_CHUNK_TYPE = 0x004E4942  # "BIN\0"

_HEADER_LENGTH = 12
_CHUNK_HEADER_LENGTH = 8

# Keys a property cannot do without.
_REQUIRED = {
    "bufferViews": ("buffer", "byteLength"),
    "accessors": ("componentType", "count", "type"),
    "meshes": ("primitives",),
    "animations": ("samplers", "channels"),
}


def decode_data_uri(uri: str) -> bytes:
    """Decode a ``data:[<mime>][;base64],<data>`` URI."""
    header, sep, payload = uri.partition(",")
    if not header.startswith("data:") or not sep:
        raise DecodeError(f"invalid data URI: {uri[:32]!r}")
    if any(part.lower() == "base64" for part in header[5:].split(";")[1:]):
        try:
            return base64.b64decode(payload, validate=True)
        except ValueError as exc:
            raise DecodeError(f"invalid base64 in data URI: {exc}") from exc
    return unquote(payload).encode("utf-8")


def _u32(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 4], "little")


def _check_container(data: bytes) -> None:
    """Reject what pygltflib would read leniently: header and JSON chunk framing."""
    if len(data) < _HEADER_LENGTH + _CHUNK_HEADER_LENGTH:
        raise DecodeError(f"GLB too small ({len(data)} bytes)")
    if _u32(data, 0) != GLB_MAGIC:
        raise DecodeError("invalid GLB magic")
    version = _u32(data, 4)
    if version != GLB_VERSION:
        raise DecodeError(f"unsupported GLB version: {version}")
    total_length = _u32(data, 8)
    if total_length > len(data):
        raise DecodeError(f"GLB is truncated ({len(data)} of {total_length} bytes)")
    if _u32(data, 16) != JSON_CHUNK_TYPE:
        raise DecodeError("first GLB chunk is not JSON")
    if _HEADER_LENGTH + _CHUNK_HEADER_LENGTH + _u32(data, 12) > total_length:
        raise DecodeError("GLB chunk exceeds file size")


def _compact(value: Any, keep_empty: bool = False) -> Any:
    """Drop unset (None) and empty properties from pygltflib's JSON.

    Extension payloads may legitimately be empty objects and are kept.
    """
    if isinstance(value, list):
        return [_compact(item) for item in value]
    if not isinstance(value, dict):
        return value
    out = {}
    for key, item in value.items():
        if item is None:
            continue
        if key != "extras":
            item = _compact(item, keep_empty=key == "extensions")
        if not keep_empty and isinstance(item, (list, dict)) and not item:
            continue
        out[key] = item
    return out


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_structure(gltf: Dict[str, Any]) -> None:
    """Raise DecodeError unless every property is well-formed enough to index."""
    for kind in refs.KINDS:
        items = refs.get_array(gltf, kind)
        if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
            raise DecodeError(f"{kind} must be an array of objects")
        for n, item in enumerate(items):
            missing = [key for key in _REQUIRED.get(kind, ()) if key not in item]
            if missing:
                raise DecodeError(f"{kind}[{n}] is missing {', '.join(missing)}")

    for n, accessor in enumerate(gltf.get("accessors", [])):
        if accessor["componentType"] not in COMPONENT_DTYPES:
            raise DecodeError(f"accessors[{n}] has unknown componentType {accessor['componentType']!r}")
        if accessor["type"] not in TYPE_COMPONENTS:
            raise DecodeError(f"accessors[{n}] has unknown type {accessor['type']!r}")
        if not _is_index(accessor["count"]) or accessor["count"] < 0:
            raise DecodeError(f"accessors[{n}] has invalid count {accessor['count']!r}")

    for n, mesh in enumerate(gltf.get("meshes", [])):
        prims = mesh["primitives"]
        if not isinstance(prims, list) or not all(
            isinstance(p, dict) and isinstance(p.get("attributes"), dict) for p in prims
        ):
            raise DecodeError(f"meshes[{n}] has malformed primitives")

    def check(kind: str, index: Any) -> Any:
        size = len(refs.get_array(gltf, kind))
        if not _is_index(index) or not 0 <= index < size:
            raise DecodeError(f"{kind} reference {index!r} out of range (have {size})")
        return index

    refs.visit_refs(gltf, check)


def _check_views(gltf: Dict[str, Any], blobs: List[bytes]) -> None:
    for n, view in enumerate(gltf.get("bufferViews", [])):
        start, length = view.get("byteOffset", 0), view["byteLength"]
        if not (_is_index(start) and _is_index(length)) or start < 0 or length < 0:
            raise DecodeError(f"bufferViews[{n}] has invalid byteOffset or byteLength")
        if start + length > len(blobs[view["buffer"]]):
            raise DecodeError(f"bufferViews[{n}] overruns buffer {view['buffer']}")


def _load(data: bytes) -> Dict[str, Any]:
    try:
        glb = pygltflib.GLTF2.load_from_bytes(data)
        gltf = json.loads(glb.to_json())
        bin_chunk = glb.binary_blob()
    except Exception as exc:
        raise DecodeError(f"invalid GLB: {type(exc).__name__}: {exc}") from exc
    if not isinstance(gltf, dict):
        raise DecodeError("GLB JSON root is not an object")
    return {"gltf": _compact(gltf), "bin": bin_chunk}


def read_binary(data: bytes) -> Document:
    """Parse GLB bytes into a Document.

    Raises:
        DecodeError: If *data* is not a well-formed GLB 2.0 container or
            its JSON is not a structurally valid glTF document.
    """
    data = bytes(data)
    _check_container(data)
    loaded = _load(data)
    gltf: Dict[str, Any] = loaded["gltf"]
    bin_chunk: Optional[bytes] = loaded["bin"]

    try:
        dropped = refs.strip_unsupported_extensions(gltf)
    except (TypeError, ValueError) as exc:
        raise DecodeError(str(exc)) from exc
    if dropped:
        logger.warning("dropped unsupported extension(s): %s", ", ".join(dropped))
    try:
        _check_structure(gltf)
    except (AttributeError, TypeError, KeyError) as exc:
        raise DecodeError(f"malformed glTF JSON: {type(exc).__name__}: {exc}") from exc

    blobs: List[bytes] = []
    for i, buffer in enumerate(gltf.get("buffers", [])):
        uri: Optional[str] = buffer.pop("uri", None)
        if uri is None:
            if i != 0 or bin_chunk is None:
                raise DecodeError(f"buffer {i} has no uri and no BIN chunk")
            blob = bytes(bin_chunk)
        elif uri.startswith("data:"):
            blob = decode_data_uri(uri)
        else:
            raise DecodeError(f"buffer {i} references external file {uri!r}")
        length = buffer.get("byteLength", len(blob))
        if not _is_index(length) or length > len(blob):
            raise DecodeError(f"buffer {i} shorter than its byteLength ({len(blob)} < {length})")
        buffer["byteLength"] = length
        blobs.append(blob[:length])
    _check_views(gltf, blobs)

    doc = Document(gltf, blobs)
    logger.debug("read %d byte(s): %r", len(data), doc)
    return doc


def _without_empty_buffers(doc: Document) -> Document:
    """A copy of *doc* minus zero-length buffers no bufferView points at."""
    used = {view.get("buffer") for view in doc.buffer_views}
    empty = [i for i, blob in enumerate(doc.buffers) if not blob and i not in used]
    if not empty:
        return doc
    doc = doc.copy()
    keep = [i for i in range(len(doc.buffers)) if i not in empty]
    refs.drop(doc.gltf, "buffers", keep)
    doc.buffers = [doc.buffers[i] for i in keep]
    return doc


def write_binary(doc: Document) -> bytes:
    """Serialize a Document to GLB bytes.

    Empty buffers nothing points at are left out.

    Raises:
        EncodeError: If more than one buffer holds data.
    """
    doc = _without_empty_buffers(doc)
    if len(doc.buffers) > 1:
        raise EncodeError(
            f"GLB supports a single buffer; document has {len(doc.buffers)} holding data"
        )

    gltf = {
        key: value for key, value in doc.gltf.items()
        if not (isinstance(value, (list, dict)) and not value)
    }
    blob = b""
    if doc.buffers:
        blob = bytes(doc.buffers[0])
        buffer = dict(doc.gltf["buffers"][0], byteLength=len(blob))
        buffer.pop("uri", None)
        gltf["buffers"] = [buffer]

    try:
        glb = pygltflib.GLTF2.from_json(json.dumps(gltf))
        if doc.buffers:
            glb.set_binary_blob(blob + b"\x00" * (align4(len(blob)) - len(blob)))
        out = b"".join(glb.save_to_bytes())
    except Exception as exc:
        raise EncodeError(f"cannot assemble GLB: {type(exc).__name__}: {exc}") from exc

    logger.debug("wrote %d byte(s): %r", len(out), doc)
    return out
