"""Tests for the glTF codec, document model and optimization passes.

The fixture builders at the top are reused by the transform and build
tests to produce small but valid GLB models.
"""

from __future__ import annotations

import json
import struct
import unittest
from typing import Any, Dict, Optional

import numpy as np

from build_assets.gltf import refs
from build_assets.gltf.accessors import (
    ARRAY_BUFFER,
    ELEMENT_ARRAY_BUFFER,
    FLOAT,
    UNSIGNED_BYTE,
    UNSIGNED_INT,
    UNSIGNED_SHORT,
    append_buffer_view,
    read_accessor,
    write_accessor,
)
from build_assets.gltf.document import Document, align4
from build_assets.gltf.errors import (
    DecodeError,
    EncodeError,
    GltfError,
    MergeError,
    TransformError,
)
from build_assets.gltf.functions import compress, dedup, prune, resample
from build_assets.gltf.io import (
    BIN_CHUNK_TYPE,
    GLB_MAGIC,
    JSON_CHUNK_TYPE,
    read_binary,
    write_binary,
)


# ---------------------------------------------------------------------------
# Fixture builders
# ---------------------------------------------------------------------------

TRIANGLE = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float32)


def triangle_document(
    material: Optional[Dict[str, Any]] = None,
    camera: bool = False,
    offset: float = 0.0,
) -> Document:
    """One node, one mesh, one triangle with 32-bit indices."""
    doc = Document()
    positions = TRIANGLE + np.float32(offset)
    indices = np.array([0, 1, 2], dtype=np.uint32)
    doc.gltf["accessors"] = [
        {
            "bufferView": append_buffer_view(doc, positions.tobytes(), ARRAY_BUFFER),
            "componentType": FLOAT,
            "count": 3,
            "type": "VEC3",
            "min": positions.min(axis=0).tolist(),
            "max": positions.max(axis=0).tolist(),
        },
        {
            "bufferView": append_buffer_view(doc, indices.tobytes(), ELEMENT_ARRAY_BUFFER),
            "componentType": UNSIGNED_INT,
            "count": 3,
            "type": "SCALAR",
        },
    ]
    prim: Dict[str, Any] = {"attributes": {"POSITION": 0}, "indices": 1}
    if material is not None:
        doc.gltf["materials"] = [material]
        prim["material"] = 0
    doc.gltf["meshes"] = [{"primitives": [prim]}]
    doc.gltf["nodes"] = [{"mesh": 0}]
    if camera:
        doc.gltf["cameras"] = [{"type": "perspective", "perspective": {"yfov": 0.8, "znear": 0.1}}]
        doc.gltf["nodes"].append({"camera": 0})
    doc.gltf["scenes"] = [{"nodes": list(range(len(doc.gltf["nodes"])))}]
    doc.gltf["scene"] = 0
    return doc


def triangle_glb(**kwargs: Any) -> bytes:
    return write_binary(triangle_document(**kwargs))


def add_animation(doc: Document, times, values, interpolation: str = "LINEAR") -> Dict[str, Any]:
    """Append a one-sampler translation animation on node 0; return the sampler."""
    times = np.asarray(times, dtype=np.float32).reshape(-1, 1)
    values = np.asarray(values, dtype=np.float32).reshape(-1, 3)
    accessors = doc.gltf.setdefault("accessors", [])
    accessors.append({
        "bufferView": append_buffer_view(doc, times.tobytes()),
        "componentType": FLOAT,
        "count": len(times),
        "type": "SCALAR",
        "min": [float(times.min())],
        "max": [float(times.max())],
    })
    accessors.append({
        "bufferView": append_buffer_view(doc, values.tobytes()),
        "componentType": FLOAT,
        "count": len(values),
        "type": "VEC3",
    })
    sampler = {
        "input": len(accessors) - 2,
        "output": len(accessors) - 1,
        "interpolation": interpolation,
    }
    doc.gltf.setdefault("animations", []).append({
        "samplers": [sampler],
        "channels": [{"sampler": 0, "target": {"node": 0, "path": "translation"}}],
    })
    return sampler


def glb_bytes(
    gltf: Any,
    bin_chunk: Optional[bytes] = None,
    *,
    version: int = 2,
    magic: int = GLB_MAGIC,
    first_chunk_type: int = JSON_CHUNK_TYPE,
) -> bytes:
    """Hand-assemble a GLB container around arbitrary JSON."""
    json_bytes = json.dumps(gltf).encode("utf-8") if not isinstance(gltf, bytes) else gltf
    json_bytes += b" " * (align4(len(json_bytes)) - len(json_bytes))
    body = struct.pack("<II", len(json_bytes), first_chunk_type) + json_bytes
    if bin_chunk is not None:
        padded = bin_chunk + b"\x00" * (align4(len(bin_chunk)) - len(bin_chunk))
        body += struct.pack("<II", len(padded), BIN_CHUNK_TYPE) + padded
    return struct.pack("<III", magic, version, 12 + len(body)) + body


ASSET = {"version": "2.0"}


# ---------------------------------------------------------------------------
# Binary I/O
# ---------------------------------------------------------------------------

class TestReadBinary(unittest.TestCase):
    def test_roundtrip_preserves_geometry(self):
        doc = read_binary(triangle_glb())
        self.assertEqual(len(doc.buffers), 1)
        np.testing.assert_array_equal(read_accessor(doc, 0), TRIANGLE)
        np.testing.assert_array_equal(read_accessor(doc, 1).ravel(), [0, 1, 2])

    def test_bad_magic(self):
        with self.assertRaises(DecodeError):
            read_binary(glb_bytes({"asset": ASSET}, magic=0x12345678))

    def test_wrong_version(self):
        with self.assertRaisesRegex(DecodeError, "version"):
            read_binary(glb_bytes({"asset": ASSET}, version=1))

    def test_too_small(self):
        with self.assertRaises(DecodeError):
            read_binary(b"glTF")

    def test_truncated(self):
        data = triangle_glb()
        with self.assertRaisesRegex(DecodeError, "truncated"):
            read_binary(data[:-8])

    def test_first_chunk_must_be_json(self):
        with self.assertRaises(DecodeError):
            read_binary(glb_bytes({"asset": ASSET}, first_chunk_type=BIN_CHUNK_TYPE))

    def test_invalid_json(self):
        with self.assertRaises(DecodeError):
            read_binary(glb_bytes(b"{not json"))

    def test_json_root_must_be_object(self):
        with self.assertRaises(DecodeError):
            read_binary(glb_bytes([1, 2, 3]))

    def test_buffers_must_be_objects(self):
        with self.assertRaises(DecodeError):
            read_binary(glb_bytes({"asset": ASSET, "buffers": [7]}))

    def test_accessor_without_component_type(self):
        gltf = {
            "asset": ASSET,
            "buffers": [{"byteLength": 12}],
            "bufferViews": [{"buffer": 0, "byteLength": 12}],
            "accessors": [{"bufferView": 0, "count": 1, "type": "VEC3"}],
        }
        with self.assertRaisesRegex(DecodeError, "componentType"):
            read_binary(glb_bytes(gltf, b"\x00" * 12))

    def test_reference_out_of_range(self):
        gltf = {"asset": ASSET, "nodes": [{"mesh": 3}]}
        with self.assertRaisesRegex(DecodeError, "out of range"):
            read_binary(glb_bytes(gltf))

    def test_buffer_view_overrun(self):
        gltf = {
            "asset": ASSET,
            "buffers": [{"byteLength": 4}],
            "bufferViews": [{"buffer": 0, "byteOffset": 2, "byteLength": 4}],
        }
        with self.assertRaisesRegex(DecodeError, "overruns"):
            read_binary(glb_bytes(gltf, b"\x00" * 4))

    def test_unsupported_extension_dropped(self):
        gltf = {
            "asset": ASSET,
            "extensionsUsed": ["VENDOR_scatter", "KHR_materials_unlit"],
            "materials": [{"extensions": {"VENDOR_scatter": {"accessor": 9}, "KHR_materials_unlit": {}}}],
        }
        with self.assertLogs("pipeline.gltf.io", "WARNING"):
            doc = read_binary(glb_bytes(gltf))
        self.assertEqual(doc.gltf["extensionsUsed"], ["KHR_materials_unlit"])
        self.assertEqual(doc.materials[0]["extensions"], {"KHR_materials_unlit": {}})

    def test_unsupported_required_extension(self):
        gltf = {
            "asset": ASSET,
            "extensionsUsed": ["VENDOR_scatter"],
            "extensionsRequired": ["VENDOR_scatter"],
        }
        with self.assertRaisesRegex(DecodeError, "VENDOR_scatter"):
            read_binary(glb_bytes(gltf))

    def test_decode_error_is_value_error(self):
        with self.assertRaises(ValueError):
            read_binary(b"\x00" * 20)

    def test_data_uri_buffer(self):
        gltf = {
            "asset": ASSET,
            "buffers": [{"uri": "data:application/octet-stream;base64,AAEC", "byteLength": 3}],
        }
        doc = read_binary(glb_bytes(gltf))
        self.assertEqual(bytes(doc.buffers[0]), b"\x00\x01\x02")
        self.assertNotIn("uri", doc.gltf["buffers"][0])

    def test_external_uri_rejected(self):
        gltf = {"asset": ASSET, "buffers": [{"uri": "model.bin", "byteLength": 4}]}
        with self.assertRaises(DecodeError):
            read_binary(glb_bytes(gltf))

    def test_buffer_shorter_than_byte_length(self):
        gltf = {"asset": ASSET, "buffers": [{"byteLength": 64}]}
        with self.assertRaises(DecodeError):
            read_binary(glb_bytes(gltf, b"\x00" * 8))

    def test_bin_chunk_trimmed_to_byte_length(self):
        gltf = {"asset": ASSET, "buffers": [{"byteLength": 3}]}
        doc = read_binary(glb_bytes(gltf, b"abc"))
        self.assertEqual(bytes(doc.buffers[0]), b"abc")


class TestWriteBinary(unittest.TestCase):
    def test_aligned_and_length_in_header(self):
        out = triangle_glb()
        self.assertEqual(len(out) % 4, 0)
        magic, version, total = struct.unpack_from("<III", out, 0)
        self.assertEqual((magic, version, total), (GLB_MAGIC, 2, len(out)))

    def test_empty_document_has_no_buffers(self):
        out = write_binary(Document())
        self.assertEqual(struct.unpack_from("<I", out, 16)[0], JSON_CHUNK_TYPE)
        self.assertEqual(read_binary(out).buffers, [])

    def test_empty_arrays_omitted(self):
        doc = Document()
        doc.gltf["meshes"] = []
        doc.gltf["extensionsUsed"] = []
        gltf = read_binary(write_binary(doc)).gltf
        self.assertNotIn("meshes", gltf)
        self.assertNotIn("extensionsUsed", gltf)
        self.assertEqual(gltf["asset"]["version"], "2.0")

    def test_two_buffers_rejected(self):
        merged = triangle_document().merge(triangle_document())
        with self.assertRaises(EncodeError):
            write_binary(merged)

    def test_empty_spare_buffer_dropped(self):
        doc = triangle_document()
        doc.add_buffer()
        back = read_binary(write_binary(doc))
        self.assertEqual(len(back.buffers), 1)
        np.testing.assert_array_equal(read_accessor(back, 0), TRIANGLE)

    def test_empty_leading_buffer_dropped(self):
        lead = Document()
        lead.add_buffer()
        merged = lead.merge(triangle_document())
        self.assertEqual(merged.buffer_views[0]["buffer"], 1)
        back = read_binary(write_binary(merged))
        self.assertEqual(back.buffer_views[0]["buffer"], 0)
        np.testing.assert_array_equal(read_accessor(back, 1).ravel(), [0, 1, 2])

    def test_writes_current_byte_length(self):
        doc = triangle_document()
        doc.gltf["buffers"][0]["byteLength"] = 1
        back = read_binary(write_binary(doc))
        self.assertEqual(back.gltf["buffers"][0]["byteLength"], len(doc.buffers[0]))


# ---------------------------------------------------------------------------
# References
# ---------------------------------------------------------------------------

class TestRefs(unittest.TestCase):
    def test_texture_infos_include_extensions(self):
        material = {
            "pbrMetallicRoughness": {"baseColorTexture": {"index": 0}},
            "normalTexture": {"index": 1, "scale": 1.0},
            "extensions": {"KHR_materials_clearcoat": {"clearcoatTexture": {"index": 2}}},
        }
        self.assertEqual(sorted(i["index"] for i in refs.texture_infos(material)), [0, 1, 2])

    def test_collect_refs(self):
        seen = refs.collect_refs(triangle_document(material={}, camera=True).gltf)
        self.assertEqual(seen["accessors"], {0, 1})
        self.assertEqual(seen["bufferViews"], {0, 1})
        self.assertEqual(seen["cameras"], {0})
        self.assertEqual(seen["materials"], {0})
        self.assertEqual(seen["nodes"], {0, 1})

    def test_drop_renumbers(self):
        gltf = {
            "textures": [{"source": 0}, {"source": 1}, {"source": 2}],
            "materials": [{"pbrMetallicRoughness": {"baseColorTexture": {"index": 2}}}],
        }
        refs.drop(gltf, "textures", [0, 2])
        self.assertEqual(gltf["textures"], [{"source": 0}, {"source": 2}])
        self.assertEqual(gltf["materials"][0]["pbrMetallicRoughness"]["baseColorTexture"]["index"], 1)

    def test_lights_extension(self):
        gltf = {
            "extensions": {"KHR_lights_punctual": {"lights": [{"type": "point"}]}},
            "nodes": [{"extensions": {"KHR_lights_punctual": {"light": 0}}}],
        }
        self.assertEqual(refs.collect_refs(gltf)["lights"], {0})

    def test_instancing_attributes(self):
        gltf = {
            "accessors": [{}, {}, {}],
            "nodes": [{"mesh": 0, "extensions": {
                "EXT_mesh_gpu_instancing": {"attributes": {"TRANSLATION": 2}},
            }}],
        }
        self.assertEqual(refs.collect_refs(gltf)["accessors"], {2})
        refs.drop(gltf, "accessors", [2])
        ext = gltf["nodes"][0]["extensions"]["EXT_mesh_gpu_instancing"]
        self.assertEqual(ext["attributes"]["TRANSLATION"], 0)

    def test_variant_mappings(self):
        gltf = {
            "extensions": {"KHR_materials_variants": {"variants": [{"name": "a"}, {"name": "b"}]}},
            "materials": [{}, {}, {}],
            "meshes": [{"primitives": [{"attributes": {}, "extensions": {
                "KHR_materials_variants": {"mappings": [{"material": 2, "variants": [1]}]},
            }}]}],
        }
        seen = refs.collect_refs(gltf)
        self.assertEqual(seen["materials"], {2})
        self.assertEqual(seen["variants"], {1})
        refs.drop(gltf, "materials", [2])
        refs.drop(gltf, "variants", [1])
        prim = gltf["meshes"][0]["primitives"][0]
        self.assertEqual(prim["extensions"]["KHR_materials_variants"]["mappings"],
                         [{"material": 0, "variants": [0]}])

    def test_strip_unsupported_extensions(self):
        gltf = {
            "extensionsUsed": ["VENDOR_scatter", "KHR_texture_transform"],
            "nodes": [{"extensions": {"VENDOR_scatter": {"node": 4}}, "extras": {
                "extensions": {"VENDOR_kept": 1},
            }}],
        }
        self.assertEqual(refs.strip_unsupported_extensions(gltf), ["VENDOR_scatter"])
        self.assertEqual(gltf["extensionsUsed"], ["KHR_texture_transform"])
        self.assertEqual(gltf["nodes"][0], {"extras": {"extensions": {"VENDOR_kept": 1}}})

    def test_unsupported_required_extension_rejected(self):
        with self.assertRaises(ValueError):
            refs.strip_unsupported_extensions({"extensionsRequired": ["VENDOR_scatter"]})


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

class TestDocument(unittest.TestCase):
    def test_empty_document(self):
        doc = Document()
        self.assertEqual(doc.gltf["asset"]["version"], "2.0")
        self.assertEqual(doc.buffers, [])

    def test_blob_count_must_match(self):
        with self.assertRaises(ValueError):
            Document({"asset": ASSET, "buffers": [{"byteLength": 0}]}, [])

    def test_copy_is_independent(self):
        doc = triangle_document()
        dup = doc.copy()
        dup.gltf["meshes"].append({"primitives": []})
        dup.buffers[0][0:1] = b"\xff"
        self.assertEqual(len(doc.meshes), 1)
        self.assertNotEqual(doc.buffers[0][0], 0xFF)

    def test_prune_unreferenced(self):
        doc = triangle_document()
        doc.gltf["materials"] = [{"name": "unused"}]
        doc.gltf["accessors"].append(dict(doc.accessors[0]))
        removed = doc.prune()
        self.assertEqual(removed, {"materials": 1, "accessors": 1})
        self.assertEqual(len(doc.accessors), 2)


class TestMerge(unittest.TestCase):
    def setUp(self):
        self.a = triangle_document(material={"name": "A"})
        self.b = triangle_document(material={"name": "B"}, camera=True)

    def test_everything_appended_with_offsets(self):
        merged = self.a.merge(self.b)
        self.assertEqual(len(merged.meshes), 2)
        self.assertEqual(len(merged.materials), 2)
        self.assertEqual(len(merged.accessors), 4)
        self.assertEqual(len(merged.buffers), 2)
        self.assertEqual(len(merged.cameras), 1)
        self.assertEqual(len(merged.list("scenes")), 2)
        self.assertEqual(merged.nodes[1]["mesh"], 1)
        self.assertEqual(merged.nodes[2]["camera"], 0)
        self.assertEqual(merged.meshes[1]["primitives"][0]["material"], 1)
        self.assertEqual(merged.accessors[2]["bufferView"], 2)
        self.assertEqual(merged.buffer_views[2]["buffer"], 1)
        self.assertEqual(merged.list("scenes")[1]["nodes"], [1, 2])
        self.assertEqual(merged.gltf["scene"], 0)
        np.testing.assert_array_equal(read_accessor(merged, 2), TRIANGLE)

    def test_inputs_untouched(self):
        self.a.merge(self.b)
        self.assertEqual(len(self.a.meshes), 1)
        self.assertEqual(self.b.nodes[1]["camera"], 0)
        self.assertEqual(len(self.a.buffers), 1)

    def test_into_empty_document(self):
        merged = Document().merge(self.a)
        self.assertEqual(merged.gltf["scene"], 0)
        self.assertEqual(merged.materials, [{"name": "A"}])

    def test_extensions_unioned(self):
        self.a.gltf["extensionsUsed"] = ["KHR_materials_unlit"]
        self.b.gltf["extensionsUsed"] = ["KHR_texture_transform", "KHR_materials_unlit"]
        merged = self.a.merge(self.b)
        self.assertEqual(merged.gltf["extensionsUsed"], ["KHR_materials_unlit", "KHR_texture_transform"])

    def test_merge_into_self_rejected(self):
        with self.assertRaises(MergeError):
            self.a.merge(self.a)

    def test_foreign_version_rejected(self):
        self.b.gltf["asset"]["version"] = "1.0"
        with self.assertRaises(MergeError):
            self.a.merge(self.b)


class TestBuffersAndCameras(unittest.TestCase):
    def setUp(self):
        self.merged = triangle_document().merge(triangle_document(offset=2.0, camera=True))

    def test_set_accessor_buffer_moves_data(self):
        self.merged.set_accessor_buffer(2, 0)
        view = self.merged.buffer_views[self.merged.accessors[2]["bufferView"]]
        self.assertEqual(view["buffer"], 0)
        self.assertEqual(view["byteOffset"] % 4, 0)
        np.testing.assert_array_equal(read_accessor(self.merged, 2), TRIANGLE + 2)
        self.assertEqual(self.merged.gltf["buffers"][0]["byteLength"], len(self.merged.buffers[0]))

    def test_dispose_buffer_in_use_rejected(self):
        with self.assertRaises(ValueError):
            self.merged.dispose_buffer(1)

    def test_dispose_buffer_after_rebinding(self):
        for index in range(len(self.merged.accessors)):
            self.merged.set_accessor_buffer(index, 0)
        self.merged.dispose_buffer(1)
        self.assertEqual(len(self.merged.buffers), 1)
        self.assertEqual({v["buffer"] for v in self.merged.buffer_views}, {0})
        np.testing.assert_array_equal(read_accessor(self.merged, 2), TRIANGLE + 2)

    def test_detach_camera(self):
        self.merged.detach_camera(0)
        self.assertEqual(self.merged.cameras, [])
        self.assertFalse(any("camera" in node for node in self.merged.nodes))


class TestTransform(unittest.TestCase):
    def test_applies_to_copy(self):
        doc = triangle_document()

        def rename(d):
            d.gltf["meshes"][0]["name"] = "renamed"

        out = doc.transform(rename)
        self.assertEqual(out.meshes[0]["name"], "renamed")
        self.assertNotIn("name", doc.meshes[0])

    def test_internal_failure_wrapped(self):
        def _explode(d):
            raise KeyError("bufferView")

        with self.assertRaises(TransformError) as cm:
            triangle_document().transform(_explode)
        self.assertEqual(cm.exception.pass_name, "explode")
        self.assertIsInstance(cm.exception.__cause__, KeyError)

    def test_gltf_errors_pass_through(self):
        def bad(d):
            raise DecodeError("corrupt accessor")

        with self.assertRaises(DecodeError):
            triangle_document().transform(bad)


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------

class TestAccessors(unittest.TestCase):
    def test_strided_read(self):
        doc = Document()
        interleaved = b"".join(
            np.array(v, dtype=np.float32).tobytes() + b"\x00" * 4
            for v in ([1, 2, 3], [4, 5, 6])
        )
        view = append_buffer_view(doc, interleaved, ARRAY_BUFFER)
        doc.buffer_views[view]["byteStride"] = 16
        doc.gltf["accessors"] = [{"bufferView": view, "componentType": FLOAT, "count": 2, "type": "VEC3"}]
        np.testing.assert_array_equal(read_accessor(doc, 0), [[1, 2, 3], [4, 5, 6]])

    def test_sparse_substitution(self):
        doc = Document()
        base = append_buffer_view(doc, np.zeros(4, dtype=np.float32).tobytes())
        idx = append_buffer_view(doc, np.array([2], dtype=np.uint8).tobytes())
        vals = append_buffer_view(doc, np.array([5.0], dtype=np.float32).tobytes())
        doc.gltf["accessors"] = [{
            "bufferView": base, "componentType": FLOAT, "count": 4, "type": "SCALAR",
            "sparse": {
                "count": 1,
                "indices": {"bufferView": idx, "componentType": UNSIGNED_BYTE},
                "values": {"bufferView": vals},
            },
        }]
        np.testing.assert_array_equal(read_accessor(doc, 0).ravel(), [0, 0, 5, 0])

    def test_overrun_is_decode_error(self):
        doc = triangle_document()
        doc.accessors[0]["count"] = 10
        with self.assertRaises(DecodeError):
            read_accessor(doc, 0)

    def test_write_updates_count_and_bounds(self):
        doc = triangle_document()
        write_accessor(doc, 0, [[-1, 0, 0], [2, 3, 4]])
        accessor = doc.accessors[0]
        self.assertEqual(accessor["count"], 2)
        self.assertEqual(accessor["min"], [-1, 0, 0])
        self.assertEqual(accessor["max"], [2, 3, 4])
        self.assertEqual(doc.buffer_views[accessor["bufferView"]]["target"], ARRAY_BUFFER)


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------

def _sampler_times(doc: Document) -> list:
    sampler = doc.list("animations")[0]["samplers"][0]
    return read_accessor(doc, sampler["input"]).ravel().tolist()


class TestResample(unittest.TestCase):
    def test_constant_channel_keeps_endpoints(self):
        doc = triangle_document()
        add_animation(doc, [0, 1, 2, 3, 4], [[1, 1, 1]] * 5)
        out = doc.transform(resample())
        self.assertEqual(_sampler_times(out), [0, 4])
        sampler = out.list("animations")[0]["samplers"][0]
        self.assertEqual(out.accessors[sampler["input"]]["max"], [4.0])

    def test_linear_keeps_changes(self):
        doc = triangle_document()
        add_animation(doc, [0, 1, 2, 3, 4], [[0, 0, 0], [0, 0, 0], [1, 0, 0], [1, 0, 0], [1, 0, 0]])
        self.assertEqual(_sampler_times(doc.transform(resample())), [0, 1, 2, 4])

    def test_step_drops_repeats(self):
        doc = triangle_document()
        add_animation(
            doc, [0, 1, 2, 3, 4],
            [[0, 0, 0], [0, 0, 0], [1, 0, 0], [1, 0, 0], [2, 0, 0]],
            interpolation="STEP",
        )
        self.assertEqual(_sampler_times(doc.transform(resample())), [0, 2, 4])

    def test_cubicspline_untouched(self):
        doc = triangle_document()
        sampler = add_animation(doc, [0, 1, 2], [[1, 1, 1]] * 9, interpolation="CUBICSPLINE")
        out = doc.transform(resample())
        self.assertEqual(out.list("animations")[0]["samplers"][0], sampler)

    def test_within_tolerance_is_equal(self):
        doc = triangle_document()
        add_animation(doc, [0, 1, 2], [[0, 0, 0], [1e-6, 0, 0], [0, 0, 0]])
        self.assertEqual(_sampler_times(doc.transform(resample())), [0, 2])


class TestDedup(unittest.TestCase):
    def test_identical_accessors_and_meshes_merged(self):
        doc = triangle_document()
        view = append_buffer_view(doc, TRIANGLE.tobytes(), ARRAY_BUFFER)
        doc.accessors.append(dict(doc.accessors[0], bufferView=view))
        doc.meshes.append({"primitives": [{"attributes": {"POSITION": 2}, "indices": 1}]})
        doc.nodes.append({"mesh": 1})
        doc.gltf["scenes"][0]["nodes"].append(1)

        out = doc.transform(dedup())
        self.assertEqual(len(out.accessors), 2)
        self.assertEqual(len(out.meshes), 1)
        self.assertEqual(len(out.buffer_views), 2)
        self.assertEqual([n["mesh"] for n in out.nodes], [0, 0])

    def test_materials_compared_without_name(self):
        doc = triangle_document(material={"name": "bark", "doubleSided": True})
        doc.materials.append({"name": "bark.001", "doubleSided": True})
        doc.materials.append({"name": "leaf", "alphaMode": "MASK"})
        for material in (1, 2):
            doc.meshes.append({"primitives": [{"attributes": {"POSITION": 0}, "indices": 1, "material": material}]})
            doc.nodes.append({"mesh": material})

        out = doc.transform(dedup())
        self.assertEqual(len(out.materials), 2)
        self.assertEqual(out.materials[0]["name"], "bark")
        self.assertEqual(len(out.meshes), 2)

    def test_different_data_kept(self):
        doc = triangle_document()
        view = append_buffer_view(doc, (TRIANGLE + 1).tobytes(), ARRAY_BUFFER)
        doc.accessors.append(dict(doc.accessors[0], bufferView=view))
        doc.meshes[0]["primitives"].append({"attributes": {"POSITION": 2}})
        self.assertEqual(len(doc.transform(dedup()).accessors), 3)


class TestCompress(unittest.TestCase):
    def test_narrows_indices_and_repacks(self):
        out = triangle_document().transform(compress())
        indices = out.accessors[1]
        self.assertEqual(indices["componentType"], UNSIGNED_SHORT)
        np.testing.assert_array_equal(read_accessor(out, 1).ravel(), [0, 1, 2])
        # 36 bytes of positions + 6 bytes of 16-bit indices, no gaps.
        self.assertEqual(len(out.buffers[0]), 42)
        self.assertEqual(out.gltf["buffers"][0]["byteLength"], 42)
        self.assertEqual(len(out.buffer_views), 2)
        np.testing.assert_array_equal(read_accessor(out, 0), TRIANGLE)

    def test_large_indices_stay_32bit(self):
        doc = triangle_document()
        write_accessor(doc, 1, np.array([0, 1, 70000], dtype=np.uint32))
        out = doc.transform(compress())
        self.assertEqual(out.accessors[1]["componentType"], UNSIGNED_INT)

    def test_output_survives_roundtrip(self):
        out = read_binary(write_binary(triangle_document().transform(compress())))
        np.testing.assert_array_equal(read_accessor(out, 1).ravel(), [0, 1, 2])


class TestPrunePass(unittest.TestCase):
    def test_removes_orphans(self):
        doc = triangle_document()
        doc.gltf["samplers"] = [{"magFilter": 9729}]
        out = doc.transform(prune())
        self.assertEqual(out.list("samplers"), [])
        self.assertNotIn("samplers", read_binary(write_binary(out)).gltf)

    def test_errors_share_base(self):
        for cls in (DecodeError, EncodeError, MergeError, TransformError):
            self.assertTrue(issubclass(cls, GltfError))


if __name__ == "__main__":
    unittest.main()
