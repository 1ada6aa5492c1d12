"""Export Service - serialize a scene to glTF, OBJ or a PNG snapshot."""

import base64
import io
import json
import logging
import math

import numpy as np
import trimesh
from PIL import Image, ImageDraw

import scenekit
from forge3d import config
from forge3d.services.scene_service import SceneHost

logger = logging.getLogger(__name__)

EMPTY_SCENE_MESSAGE = "No objects to export. Create something first!"

# glTF constants
_FLOAT = 5126
_UNSIGNED_INT = 5125
_ARRAY_BUFFER = 34962
_ELEMENT_ARRAY_BUFFER = 34963


class ExportError(Exception):
    """Nothing to export, or a serializer failed."""


def user_content(scene: scenekit.Scene) -> list[scenekit.Object3D]:
    """Top-level user nodes; lights, grid and ground are never included."""
    return [
        child for child in scene.children
        if not child.is_infrastructure and child.kind in scenekit.USER_NODE_KINDS
    ]


def _require_content(scene: scenekit.Scene) -> list[scenekit.Object3D]:
    nodes = user_content(scene)
    if not nodes:
        raise ExportError(EMPTY_SCENE_MESSAGE)
    return nodes


# ── glTF ────────────────────────────────────────────────────────


class _GltfBuilder:
    """Accumulates glTF 2.0 JSON with a single embedded binary buffer."""

    def __init__(self):
        self.doc = {
            "asset": {"version": "2.0", "generator": "forge3d"},
            "scene": 0,
            "scenes": [{"nodes": []}],
            "nodes": [],
            "meshes": [],
            "materials": [],
            "accessors": [],
            "bufferViews": [],
            "buffers": [],
        }
        self._blob = bytearray()
        self._meshes: dict[tuple[int, int], int] = {}
        self._materials: dict[int, int] = {}
        self._unlit = False

    def _view(self, data: bytes, target: int) -> int:
        while len(self._blob) % 4:
            self._blob.append(0)
        self.doc["bufferViews"].append({
            "buffer": 0,
            "byteOffset": len(self._blob),
            "byteLength": len(data),
            "target": target,
        })
        self._blob.extend(data)
        return len(self.doc["bufferViews"]) - 1

    def _accessor(self, array: np.ndarray, component: int, type_: str, target: int, bounds=False) -> int:
        accessor = {
            "bufferView": self._view(array.tobytes(), target),
            "componentType": component,
            "count": int(array.shape[0]),
            "type": type_,
        }
        if bounds:
            accessor["min"] = array.min(axis=0).tolist()
            accessor["max"] = array.max(axis=0).tolist()
        self.doc["accessors"].append(accessor)
        return len(self.doc["accessors"]) - 1

    def material(self, material: scenekit.Material) -> int:
        if id(material) in self._materials:
            return self._materials[id(material)]
        base = material.color.to_linear() + [float(material.opacity)]
        entry = {
            "pbrMetallicRoughness": {
                "baseColorFactor": base,
                "metallicFactor": float(getattr(material, "metalness", 0.0)),
                "roughnessFactor": float(getattr(material, "roughness", 1.0)),
            },
        }
        emissive = getattr(material, "emissive", None)
        if emissive is not None and emissive.get_hex():
            entry["emissiveFactor"] = emissive.to_linear()
        if material.transparent or material.opacity < 1.0:
            entry["alphaMode"] = "BLEND"
        if material.side == scenekit.DoubleSide:
            entry["doubleSided"] = True
        if material.kind == "basic":
            entry["extensions"] = {"KHR_materials_unlit": {}}
            self._unlit = True
        self.doc["materials"].append(entry)
        self._materials[id(material)] = len(self.doc["materials"]) - 1
        return self._materials[id(material)]

    def mesh(self, node: scenekit.Mesh) -> int:
        key = (id(node.geometry), id(node.material))
        if key in self._meshes:
            return self._meshes[key]
        tm = node.geometry.to_trimesh()
        positions = np.asarray(tm.vertices, dtype=np.float32)
        normals = np.asarray(tm.vertex_normals, dtype=np.float32)
        indices = np.asarray(tm.faces, dtype=np.uint32).reshape(-1)
        primitive = {
            "attributes": {
                "POSITION": self._accessor(positions, _FLOAT, "VEC3", _ARRAY_BUFFER, bounds=True),
                "NORMAL": self._accessor(normals, _FLOAT, "VEC3", _ARRAY_BUFFER),
            },
            "indices": self._accessor(indices, _UNSIGNED_INT, "SCALAR", _ELEMENT_ARRAY_BUFFER),
            "material": self.material(node.material),
        }
        self.doc["meshes"].append({"name": node.geometry.kind, "primitives": [primitive]})
        self._meshes[key] = len(self.doc["meshes"]) - 1
        return self._meshes[key]

    def node(self, obj: scenekit.Object3D) -> int:
        entry = {}
        if obj.name:
            entry["name"] = obj.name
        if obj.position.to_list() != [0.0, 0.0, 0.0]:
            entry["translation"] = obj.position.to_list()
        if obj.rotation.to_list() != [0.0, 0.0, 0.0]:
            entry["rotation"] = obj.rotation.quaternion()
        if obj.scale.to_list() != [1.0, 1.0, 1.0]:
            entry["scale"] = obj.scale.to_list()
        if obj.kind is scenekit.NodeKind.MESH:
            entry["mesh"] = self.mesh(obj)
        self.doc["nodes"].append(entry)
        index = len(self.doc["nodes"]) - 1
        children = [self.node(child) for child in obj.children if child.visible]
        if children:
            entry["children"] = children
        return index

    def build(self, roots: list[scenekit.Object3D]) -> dict:
        self.doc["scenes"][0]["nodes"] = [self.node(root) for root in roots]
        if self._blob:
            self.doc["buffers"].append({
                "byteLength": len(self._blob),
                "uri": "data:application/octet-stream;base64,"
                + base64.b64encode(bytes(self._blob)).decode("ascii"),
            })
        for key in ("meshes", "materials", "accessors", "bufferViews", "buffers"):
            if not self.doc[key]:
                del self.doc[key]
        if self._unlit:
            self.doc["extensionsUsed"] = ["KHR_materials_unlit"]
        return self.doc


def gltf_document(scene: scenekit.Scene) -> dict:
    """Build the glTF JSON document for the scene's user content."""
    return _GltfBuilder().build(_require_content(scene))


def export_gltf(scene: scenekit.Scene) -> bytes:
    """Export user content as a .gltf (JSON, embedded buffer)."""
    _require_content(scene)
    try:
        document = gltf_document(scene)
        return json.dumps(document, allow_nan=False).encode("utf-8")
    except Exception as e:
        logger.error(f"GLTF export failed: {e}")
        raise ExportError(f"Failed to export GLTF: {e}") from e


# ── OBJ ─────────────────────────────────────────────────────────


def _world_meshes(roots: list[scenekit.Object3D]) -> list[tuple[scenekit.Mesh, trimesh.Trimesh]]:
    out = []

    def visit(node):
        if not node.visible:
            return
        if node.kind is scenekit.NodeKind.MESH:
            tm = node.geometry.to_trimesh()
            tm.apply_transform(node.matrix_world())
            out.append((node, tm))
        for child in node.children:
            visit(child)

    for root in roots:
        visit(root)
    return out


def export_obj(scene: scenekit.Scene) -> bytes:
    """Export user content as Wavefront OBJ, baked into world space."""
    roots = _require_content(scene)
    try:
        meshes = _world_meshes(roots)
    except Exception as e:
        logger.error(f"OBJ export failed: {e}")
        raise ExportError(f"Failed to export OBJ: {e}") from e
    if not meshes:
        raise ExportError(EMPTY_SCENE_MESSAGE)
    try:
        combined = trimesh.util.concatenate([tm for _, tm in meshes])
        text = combined.export(file_type="obj")
    except Exception as e:
        logger.error(f"OBJ export failed: {e}")
        raise ExportError(f"Failed to export OBJ: {e}") from e
    if isinstance(text, bytes):
        return text
    return text.encode("utf-8")


# ── PNG snapshot ────────────────────────────────────────────────


def _look_at(eye: np.ndarray, target: np.ndarray) -> np.ndarray:
    forward = target - eye
    norm = np.linalg.norm(forward)
    forward = forward / norm if norm else np.array([0.0, 0.0, -1.0])
    up = np.array([0.0, 1.0, 0.0])
    if abs(float(np.dot(forward, up))) > 0.999:
        up = np.array([0.0, 0.0, 1.0])
    right = np.cross(forward, up)
    right /= np.linalg.norm(right)
    true_up = np.cross(right, forward)
    view = np.identity(4)
    view[0, :3], view[1, :3], view[2, :3] = right, true_up, -forward
    view[:3, 3] = -view[:3, :3] @ eye
    return view


class _Projector:
    def __init__(self, camera, width: int, height: int):
        self.view = _look_at(np.asarray(camera.position, float), np.asarray(camera.target, float))
        self.focal = (height / 2) / math.tan(math.radians(camera.fov) / 2)
        self.near = camera.near
        self.width, self.height = width, height

    def camera_space(self, points: np.ndarray) -> np.ndarray:
        homogeneous = np.hstack([points, np.ones((len(points), 1))])
        return (self.view @ homogeneous.T).T[:, :3]

    def to_pixels(self, cam: np.ndarray) -> np.ndarray:
        depth = -cam[:, 2]
        x = self.width / 2 + self.focal * cam[:, 0] / depth
        y = self.height / 2 - self.focal * cam[:, 1] / depth
        return np.stack([x, y], axis=1)


def _shade(colour, material, normal, lights) -> tuple[int, int, int]:
    base = np.array(colour, dtype=float) / 255.0
    if material.kind == "basic":
        lit = base
    else:
        light = np.zeros(3)
        for kind, light_colour, direction in lights:
            if kind == "ambient":
                light += light_colour
            else:
                light += light_colour * max(0.0, float(np.dot(normal, -direction)))
        lit = base * light
        emissive = getattr(material, "emissive", None)
        if emissive is not None:
            lit = lit + np.array([emissive.r, emissive.g, emissive.b])
    return tuple(int(c) for c in np.clip(lit * 255.0, 0, 255))


def _scene_lights(scene: scenekit.Scene):
    lights = []
    for node in scene.iter_nodes():
        if not isinstance(node, scenekit.Light) or not node.visible:
            continue
        colour = np.array([node.color.r, node.color.g, node.color.b]) * node.intensity
        if isinstance(node, scenekit.DirectionalLight):
            lights.append(("directional", colour, node.direction()))
        else:
            lights.append(("ambient", colour, None))
    return lights


def render_snapshot(host: SceneHost, width: int, height: int) -> Image.Image:
    """Flat-shaded painter's-algorithm render of the scene from the host camera."""
    scene = host.scene
    image = Image.new("RGB", (width, height), scene.background.to_rgb8())
    draw = ImageDraw.Draw(image)
    projector = _Projector(host.camera, width, height)
    lights = _scene_lights(scene)

    for node in scene.iter_nodes():
        if isinstance(node, scenekit.GridHelper) and node.visible:
            world = node.matrix_world()
            for start, end, colour in node.segments():
                points = np.array([start, end], dtype=float)
                points = (world @ np.hstack([points, np.ones((2, 1))]).T).T[:, :3]
                cam = projector.camera_space(points)
                if np.any(-cam[:, 2] < projector.near):
                    continue
                (x0, y0), (x1, y1) = projector.to_pixels(cam)
                draw.line([(x0, y0), (x1, y1)], fill=colour.to_rgb8())

    triangles = []
    for node in scene.iter_nodes():
        if node.kind is not scenekit.NodeKind.MESH or not node.visible:
            continue
        material = node.material
        if material.kind == "shadow" or not material.visible:
            continue
        tm = node.geometry.to_trimesh()
        tm.apply_transform(node.matrix_world())
        cam = projector.camera_space(np.asarray(tm.vertices))
        colour = material.color.to_rgb8()
        for face, normal in zip(tm.faces, tm.face_normals):
            tri = cam[face]
            depth = -tri[:, 2]
            if np.any(depth < projector.near):
                continue
            triangles.append((float(depth.mean()), tri, colour, material, normal))

    triangles.sort(key=lambda t: t[0], reverse=True)
    for _, tri, colour, material, normal in triangles:
        pixels = projector.to_pixels(tri)
        shade = _shade(colour, material, normal, lights)
        polygon = [tuple(p) for p in pixels]
        if material.wireframe:
            draw.polygon(polygon, outline=shade)
        else:
            draw.polygon(polygon, fill=shade, outline=shade)
    return image


def export_png(host: SceneHost, width: int = config.SNAPSHOT_WIDTH, height: int = config.SNAPSHOT_HEIGHT) -> bytes:
    """PNG snapshot of the current scene, infrastructure included."""
    try:
        image = render_snapshot(host, width, height)
        buf = io.BytesIO()
        image.save(buf, format="PNG")
    except Exception as e:
        logger.error(f"Snapshot failed: {e}")
        raise ExportError(f"Failed to take screenshot: {e}") from e
    return buf.getvalue()


EXPORTERS = {
    "gltf": ("model/gltf+json", "gltf"),
    "obj": ("text/plain", "obj"),
    "png": ("image/png", "png"),
}


def export(host: SceneHost, fmt: str) -> tuple[bytes, str, str]:
    """Dispatch on format. Returns (data, media_type, filename)."""
    if fmt not in EXPORTERS:
        raise ExportError(f"Unknown export format: {fmt}")
    media_type, extension = EXPORTERS[fmt]
    if fmt == "gltf":
        data = export_gltf(host.scene)
    elif fmt == "obj":
        data = export_obj(host.scene)
    else:
        data = export_png(host)
    return data, media_type, f"{config.EXPORT_FILENAME}.{extension}"
