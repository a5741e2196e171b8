"""Index references between glTF properties.

glTF stores every relationship as an integer index into a top-level
array.  ``visit_refs`` walks every such index in a document's JSON and
replaces it with whatever the callback returns.  Merging (offset every
index), deduplication (point duplicates at a canonical entry) and
pruning (drop entries nothing points at) are all built on it.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List, Set

# Arrays that may be the target of an index reference.  ``lights`` and
# ``variants`` live under root extensions rather than at top level.
KINDS = (
    "scenes",
    "nodes",
    "meshes",
    "materials",
    "textures",
    "images",
    "samplers",
    "accessors",
    "bufferViews",
    "buffers",
    "cameras",
    "skins",
    "animations",
    "lights",
    "variants",
)

RefFn = Callable[[str, int], int]

_LIGHTS_EXT = "KHR_lights_punctual"
_VARIANTS_EXT = "KHR_materials_variants"
_INSTANCING_EXT = "EXT_mesh_gpu_instancing"
_DRACO_EXT = "KHR_draco_mesh_compression"
_IMAGE_SOURCE_EXTS = ("EXT_texture_webp", "KHR_texture_basisu", "MSFT_texture_dds")

# kind -> (root extension, array key)
_ROOT_EXT_ARRAYS = {
    "lights": (_LIGHTS_EXT, "lights"),
    "variants": (_VARIANTS_EXT, "variants"),
}

# Extensions whose index references visit_refs knows about, plus those
# that hold none (material and texture-transform extensions only carry
# textureInfo objects, which texture_infos finds by name).
SUPPORTED_EXTENSIONS = frozenset({
    _LIGHTS_EXT,
    _VARIANTS_EXT,
    _INSTANCING_EXT,
    _DRACO_EXT,
    *_IMAGE_SOURCE_EXTS,
    "KHR_materials_anisotropy",
    "KHR_materials_clearcoat",
    "KHR_materials_dispersion",
    "KHR_materials_emissive_strength",
    "KHR_materials_ior",
    "KHR_materials_iridescence",
    "KHR_materials_pbrSpecularGlossiness",
    "KHR_materials_sheen",
    "KHR_materials_specular",
    "KHR_materials_transmission",
    "KHR_materials_unlit",
    "KHR_materials_volume",
    "KHR_mesh_quantization",
    "KHR_texture_transform",
})


def get_array(gltf: Dict[str, Any], kind: str) -> List[Any]:
    """Return the array for *kind*, or an empty list if the document has none."""
    if kind in _ROOT_EXT_ARRAYS:
        name, key = _ROOT_EXT_ARRAYS[kind]
        return gltf.get("extensions", {}).get(name, {}).get(key, [])
    return gltf.get(kind, [])


def set_array(gltf: Dict[str, Any], kind: str, items: List[Any]) -> None:
    """Store *items* as the array for *kind*, creating containers as needed."""
    if kind in _ROOT_EXT_ARRAYS:
        name, key = _ROOT_EXT_ARRAYS[kind]
        if not items and name not in gltf.get("extensions", {}):
            return
        gltf.setdefault("extensions", {}).setdefault(name, {})[key] = items
        return
    gltf[kind] = items


def _swap(obj: Dict[str, Any], key: str, kind: str, fn: RefFn) -> None:
    if key in obj:
        obj[key] = fn(kind, obj[key])


def _swap_list(obj: Dict[str, Any], key: str, kind: str, fn: RefFn) -> None:
    if key in obj:
        obj[key] = [fn(kind, i) for i in obj[key]]


def texture_infos(obj: Any) -> Iterator[Dict[str, Any]]:
    """Yield every textureInfo object nested in a material.

    Core slots (``baseColorTexture``, ``normalTexture``...) and extension
    slots (``clearcoatTexture``, ``sheenColorTexture``...) all follow the
    ``*Texture`` naming convention and carry an ``index``.
    """
    if isinstance(obj, dict):
        for key, value in obj.items():
            if isinstance(value, dict):
                if key.endswith("Texture") and "index" in value:
                    yield value
                yield from texture_infos(value)
            elif isinstance(value, list):
                for item in value:
                    yield from texture_infos(item)


def visit_refs(gltf: Dict[str, Any], fn: RefFn) -> None:
    """Replace every index reference in *gltf* with ``fn(kind, index)``."""
    _swap(gltf, "scene", "scenes", fn)

    for scene in gltf.get("scenes", []):
        _swap_list(scene, "nodes", "nodes", fn)

    for node in gltf.get("nodes", []):
        _swap_list(node, "children", "nodes", fn)
        _swap(node, "mesh", "meshes", fn)
        _swap(node, "camera", "cameras", fn)
        _swap(node, "skin", "skins", fn)
        light = node.get("extensions", {}).get(_LIGHTS_EXT)
        if light is not None:
            _swap(light, "light", "lights", fn)
        instancing = node.get("extensions", {}).get(_INSTANCING_EXT)
        if instancing is not None:
            attributes = instancing.get("attributes", {})
            for semantic in attributes:
                attributes[semantic] = fn("accessors", attributes[semantic])

    for mesh in gltf.get("meshes", []):
        for prim in mesh.get("primitives", []):
            attributes = prim.get("attributes", {})
            for semantic in attributes:
                attributes[semantic] = fn("accessors", attributes[semantic])
            _swap(prim, "indices", "accessors", fn)
            _swap(prim, "material", "materials", fn)
            for target in prim.get("targets", []):
                for semantic in target:
                    target[semantic] = fn("accessors", target[semantic])
            draco = prim.get("extensions", {}).get(_DRACO_EXT)
            if draco is not None:
                _swap(draco, "bufferView", "bufferViews", fn)
            variants = prim.get("extensions", {}).get(_VARIANTS_EXT)
            if variants is not None:
                for mapping in variants.get("mappings", []):
                    _swap(mapping, "material", "materials", fn)
                    _swap_list(mapping, "variants", "variants", fn)

    for skin in gltf.get("skins", []):
        _swap(skin, "inverseBindMatrices", "accessors", fn)
        _swap_list(skin, "joints", "nodes", fn)
        _swap(skin, "skeleton", "nodes", fn)

    for anim in gltf.get("animations", []):
        for sampler in anim.get("samplers", []):
            _swap(sampler, "input", "accessors", fn)
            _swap(sampler, "output", "accessors", fn)
        for channel in anim.get("channels", []):
            _swap(channel.get("target", {}), "node", "nodes", fn)

    for accessor in gltf.get("accessors", []):
        _swap(accessor, "bufferView", "bufferViews", fn)
        sparse = accessor.get("sparse")
        if sparse is not None:
            _swap(sparse.get("indices", {}), "bufferView", "bufferViews", fn)
            _swap(sparse.get("values", {}), "bufferView", "bufferViews", fn)

    for view in gltf.get("bufferViews", []):
        _swap(view, "buffer", "buffers", fn)

    for image in gltf.get("images", []):
        _swap(image, "bufferView", "bufferViews", fn)

    for texture in gltf.get("textures", []):
        _swap(texture, "source", "images", fn)
        _swap(texture, "sampler", "samplers", fn)
        for name in _IMAGE_SOURCE_EXTS:
            ext = texture.get("extensions", {}).get(name)
            if ext is not None:
                _swap(ext, "source", "images", fn)

    for material in gltf.get("materials", []):
        for info in texture_infos(material):
            info["index"] = fn("textures", info["index"])


def collect_refs(gltf: Dict[str, Any]) -> Dict[str, Set[int]]:
    """Return the set of referenced indices for every kind."""
    seen: Dict[str, Set[int]] = {kind: set() for kind in KINDS}

    def record(kind: str, index: int) -> int:
        seen[kind].add(index)
        return index

    visit_refs(gltf, record)
    return seen


def remap(gltf: Dict[str, Any], kind: str, mapping: Dict[int, int]) -> None:
    """Point references to *kind* through *mapping*; unmapped indices stay put."""
    if not mapping:
        return

    def swap(k: str, index: int) -> int:
        if k == kind:
            return mapping.get(index, index)
        return index

    visit_refs(gltf, swap)


def drop(gltf: Dict[str, Any], kind: str, keep: List[int]) -> None:
    """Keep only the entries of *kind* at indices *keep*, renumbering references.

    The caller guarantees nothing still references a dropped entry.
    """
    items = get_array(gltf, kind)
    mapping = {old: new for new, old in enumerate(keep)}
    remap(gltf, kind, {old: new for old, new in mapping.items() if old != new})
    set_array(gltf, kind, [items[i] for i in keep])


def _filter_extensions(value: Any, dropped: Set[str]) -> None:
    if isinstance(value, list):
        for item in value:
            _filter_extensions(item, dropped)
        return
    if not isinstance(value, dict):
        return
    for key, item in value.items():
        if key == "extras":
            continue
        if key == "extensions" and isinstance(item, dict):
            for name in [n for n in item if n not in SUPPORTED_EXTENSIONS]:
                del item[name]
                dropped.add(name)
        _filter_extensions(item, dropped)
    if value.get("extensions") == {}:
        del value["extensions"]


def strip_unsupported_extensions(gltf: Dict[str, Any]) -> List[str]:
    """Remove extensions outside SUPPORTED_EXTENSIONS; return their names.

    Their payloads may hold index references visit_refs cannot see, and a
    stale index would make the written document invalid.

    Raises:
        ValueError: If an unsupported extension is listed as required.
    """
    required = [
        name for name in gltf.get("extensionsRequired", [])
        if name not in SUPPORTED_EXTENSIONS
    ]
    if required:
        raise ValueError(f"unsupported required extension(s): {required}")

    dropped: Set[str] = set()
    _filter_extensions(gltf, dropped)
    used = gltf.pop("extensionsUsed", [])
    dropped.update(name for name in used if name not in SUPPORTED_EXTENSIONS)
    used = [name for name in used if name in SUPPORTED_EXTENSIONS]
    if used:
        gltf["extensionsUsed"] = used
    return sorted(dropped)
