"""Tests for glTF, OBJ and PNG export."""

import base64
import json

import numpy as np
import pytest

import scenekit
from forge3d import config
from forge3d.services import export_service
from forge3d.services.export_service import (
    EMPTY_SCENE_MESSAGE,
    ExportError,
    export,
    export_gltf,
    export_obj,
    export_png,
    gltf_document,
    user_content,
)
from forge3d.services.scene_service import SceneHost

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def box(colour=0xFF0000, **material):
    return scenekit.Mesh(
        scenekit.BoxGeometry(1, 1, 1),
        scenekit.MeshStandardMaterial(color=colour, **material),
    )


@pytest.fixture
def host():
    return SceneHost()


@pytest.fixture
def two_objects(host):
    first = box()
    second = scenekit.Group()
    second.add(box(0x00FF00), box(0x0000FF))
    second.position.set(3, 0, 0)
    host.adopt(first)
    host.adopt(second)
    return host


class TestUserContent:
    def test_excludes_infrastructure(self, two_objects):
        nodes = user_content(two_objects.scene)
        assert len(nodes) == 2
        assert not any(n.is_infrastructure for n in nodes)

    def test_empty_scene(self, host):
        assert user_content(host.scene) == []


class TestGltf:
    def test_two_top_level_entries(self, two_objects):
        doc = gltf_document(two_objects.scene)
        assert doc["asset"]["version"] == "2.0"
        roots = doc["scenes"][doc["scene"]]["nodes"]
        assert len(roots) == 2
        assert len(doc["nodes"][roots[1]]["children"]) == 2

    def test_translation_preserved(self, two_objects):
        doc = gltf_document(two_objects.scene)
        group = doc["nodes"][doc["scenes"][0]["nodes"][1]]
        assert group["translation"] == [3.0, 0.0, 0.0]

    def test_embedded_buffer(self, two_objects):
        doc = gltf_document(two_objects.scene)
        buffer = doc["buffers"][0]
        prefix = "data:application/octet-stream;base64,"
        assert buffer["uri"].startswith(prefix)
        raw = base64.b64decode(buffer["uri"][len(prefix):])
        assert len(raw) == buffer["byteLength"]
        for view in doc["bufferViews"]:
            assert view["byteOffset"] % 4 == 0
            assert view["byteOffset"] + view["byteLength"] <= len(raw)

    def test_position_bounds(self, host):
        host.adopt(box())
        doc = gltf_document(host.scene)
        position = doc["accessors"][doc["meshes"][0]["primitives"][0]["attributes"]["POSITION"]]
        assert position["min"] == pytest.approx([-0.5, -0.5, -0.5])
        assert position["max"] == pytest.approx([0.5, 0.5, 0.5])

    def test_material_colour_is_linear(self, host):
        host.adopt(box(0xFF0000))
        doc = gltf_document(host.scene)
        factor = doc["materials"][0]["pbrMetallicRoughness"]["baseColorFactor"]
        assert factor == pytest.approx([1.0, 0.0, 0.0, 1.0])

    def test_shared_material_written_once(self, host):
        material = scenekit.MeshStandardMaterial(color=0x888888)
        group = scenekit.Group()
        group.add(
            scenekit.Mesh(scenekit.BoxGeometry(), material),
            scenekit.Mesh(scenekit.SphereGeometry(), material),
        )
        host.adopt(group)
        doc = gltf_document(host.scene)
        assert len(doc["materials"]) == 1
        assert len(doc["meshes"]) == 2

    def test_basic_material_unlit(self, host):
        host.adopt(scenekit.Mesh(scenekit.BoxGeometry(), scenekit.MeshBasicMaterial(color=0xFFFFFF)))
        doc = gltf_document(host.scene)
        assert "KHR_materials_unlit" in doc["extensionsUsed"]

    def test_transparent_blend(self, host):
        host.adopt(box(transparent=True, opacity=0.5))
        doc = gltf_document(host.scene)
        assert doc["materials"][0]["alphaMode"] == "BLEND"

    def test_export_bytes_are_json(self, two_objects):
        doc = json.loads(export_gltf(two_objects.scene))
        assert len(doc["scenes"][0]["nodes"]) == 2

    def test_empty_scene_rejected(self, host):
        with pytest.raises(ExportError, match="No objects to export"):
            export_gltf(host.scene)


class TestObj:
    def test_contains_vertices_and_faces(self, two_objects):
        text = export_obj(two_objects.scene).decode("utf-8")
        lines = text.splitlines()
        assert any(line.startswith("v ") for line in lines)
        assert any(line.startswith("f ") for line in lines)

    def test_world_space(self, host):
        node = box()
        node.position.set(10, 0, 0)
        host.adopt(node)
        text = export_obj(host.scene).decode("utf-8")
        xs = [float(line.split()[1]) for line in text.splitlines() if line.startswith("v ")]
        assert min(xs) == pytest.approx(9.5)
        assert max(xs) == pytest.approx(10.5)

    def test_group_without_meshes(self, host):
        host.adopt(scenekit.Group())
        with pytest.raises(ExportError):
            export_obj(host.scene)

    def test_empty_scene_rejected(self, host):
        with pytest.raises(ExportError, match="No objects to export"):
            export_obj(host.scene)


class TestPng:
    def test_magic_bytes(self, two_objects):
        data = export_png(two_objects, 160, 120)
        assert data[:8] == PNG_MAGIC

    def test_empty_scene_still_renders(self, host):
        data = export_png(host, 64, 48)
        assert data[:8] == PNG_MAGIC

    def test_size(self, host):
        image = export_service.render_snapshot(host, 80, 60)
        assert image.size == (80, 60)

    def test_object_is_drawn(self, host):
        empty = np.asarray(export_service.render_snapshot(host, 80, 60))
        host.adopt(box(0xFF0000))
        drawn = np.asarray(export_service.render_snapshot(host, 80, 60))
        assert not np.array_equal(empty, drawn)


class TestExportDispatch:
    @pytest.mark.parametrize(
        "fmt, media_type",
        [("gltf", "model/gltf+json"), ("obj", "text/plain"), ("png", "image/png")],
    )
    def test_formats(self, two_objects, fmt, media_type):
        data, got_type, filename = export(two_objects, fmt)
        assert got_type == media_type
        assert filename == f"{config.EXPORT_FILENAME}.{fmt}"
        assert len(data) > 0

    def test_unknown_format(self, two_objects):
        with pytest.raises(ExportError, match="Unknown export format"):
            export(two_objects, "fbx")

    def test_empty_message(self, host):
        with pytest.raises(ExportError) as exc:
            export(host, "gltf")
        assert str(exc.value) == EMPTY_SCENE_MESSAGE


class TestSerializerFailures:
    def test_gltf_failure_wrapped(self, host):
        node = box()
        host.adopt(node)
        node.position = 5
        with pytest.raises(ExportError, match="Failed to export GLTF"):
            export_gltf(host.scene)

    def test_gltf_rejects_non_finite(self, host):
        node = box()
        host.adopt(node)
        node.position.x = float("nan")
        with pytest.raises(ExportError, match="Failed to export GLTF"):
            export_gltf(host.scene)

    def test_obj_transform_failure_wrapped(self, host):
        node = box()
        host.adopt(node)
        node.scale = None
        with pytest.raises(ExportError, match="Failed to export OBJ"):
            export_obj(host.scene)


class TestFormatsAgree:
    def test_nested_child_world_position(self, host):
        group = scenekit.Group()
        group.position.x = 10
        group.add(box())
        host.adopt(group)

        text = export_obj(host.scene).decode("utf-8")
        xs = [float(line.split()[1]) for line in text.splitlines() if line.startswith("v ")]
        assert min(xs) == pytest.approx(9.5)
        assert max(xs) == pytest.approx(10.5)

        doc = gltf_document(host.scene)
        root = doc["nodes"][doc["scenes"][0]["nodes"][0]]
        assert root["translation"] == [10.0, 0.0, 0.0]
        assert "translation" not in doc["nodes"][root["children"][0]]
