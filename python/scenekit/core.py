"""Core scene-graph types: vectors, colours and the Object3D node tree."""

import enum
import itertools
import math
from typing import Callable, Iterator, Optional

import numpy as np
from trimesh import transformations


class NodeKind(str, enum.Enum):
    OBJECT = "object"
    GROUP = "group"
    MESH = "mesh"
    SCENE = "scene"
    LIGHT = "light"
    HELPER = "helper"


# Kinds that generated code may construct and hand back to a scene.
USER_NODE_KINDS = frozenset({NodeKind.OBJECT, NodeKind.GROUP, NodeKind.MESH})

_ids = itertools.count(1)


def _finite(value, name: str) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {value}")
    return value


# ── Math primitives ─────────────────────────────────────────────


class Vector3:
    """Mutable 3-component vector (three.js Vector3 subset)."""

    def __init__(self, x=0.0, y=0.0, z=0.0):
        self.set(x, y, z)

    def set(self, x, y, z) -> "Vector3":
        self.x = _finite(x, "x")
        self.y = _finite(y, "y")
        self.z = _finite(z, "z")
        return self

    def set_scalar(self, value) -> "Vector3":
        return self.set(value, value, value)

    setScalar = set_scalar

    def copy(self, other: "Vector3") -> "Vector3":
        return self.set(other.x, other.y, other.z)

    def clone(self) -> "Vector3":
        return type(self)(self.x, self.y, self.z)

    def to_list(self) -> list[float]:
        return [self.x, self.y, self.z]

    def __iter__(self):
        return iter((self.x, self.y, self.z))

    def __eq__(self, other):
        if not isinstance(other, Vector3):
            return NotImplemented
        return self.to_list() == other.to_list()

    def __repr__(self):
        return f"{type(self).__name__}({self.x}, {self.y}, {self.z})"


class Euler(Vector3):
    """Rotation in radians, applied in XYZ order like three.js."""

    order = "XYZ"

    def matrix(self) -> np.ndarray:
        # rotating frame x, then y, then z == Rx @ Ry @ Rz
        return transformations.euler_matrix(self.x, self.y, self.z, axes="rxyz")

    def quaternion(self) -> list[float]:
        """Return the rotation as a glTF-ordered [x, y, z, w] quaternion."""
        w, x, y, z = transformations.quaternion_from_euler(
            self.x, self.y, self.z, axes="rxyz"
        )
        return [float(x), float(y), float(z), float(w)]


class Color:
    """RGB colour stored as sRGB floats in [0, 1]."""

    def __init__(self, value=0xFFFFFF):
        self.set(value)

    def set(self, value) -> "Color":
        if isinstance(value, Color):
            return self.set_hex(value.get_hex())
        if isinstance(value, str):
            text = value.strip().lstrip("#")
            if text.lower().startswith("0x"):
                text = text[2:]
            if len(text) != 6:
                raise ValueError(f"Invalid colour string: {value!r}")
            return self.set_hex(int(text, 16))
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"Colour must be a hex integer, got {type(value).__name__}")
        return self.set_hex(value)

    def set_hex(self, value: int) -> "Color":
        if not 0 <= value <= 0xFFFFFF:
            raise ValueError(f"Colour out of range: {value:#x}")
        self.r = ((value >> 16) & 0xFF) / 255.0
        self.g = ((value >> 8) & 0xFF) / 255.0
        self.b = (value & 0xFF) / 255.0
        return self

    setHex = set_hex

    def get_hex(self) -> int:
        r, g, b = (int(round(max(0.0, min(1.0, c)) * 255)) for c in (self.r, self.g, self.b))
        return (r << 16) | (g << 8) | b

    getHex = get_hex

    def get_hex_string(self) -> str:
        return f"{self.get_hex():06x}"

    def to_linear(self) -> list[float]:
        """sRGB -> linear, as expected by glTF baseColorFactor."""

        def channel(c):
            return c / 12.92 if c <= 0.04045 else ((c + 0.055) / 1.055) ** 2.4

        return [channel(self.r), channel(self.g), channel(self.b)]

    def to_rgb8(self) -> tuple[int, int, int]:
        h = self.get_hex()
        return (h >> 16) & 0xFF, (h >> 8) & 0xFF, h & 0xFF

    def clone(self) -> "Color":
        return Color(self.get_hex())

    def __eq__(self, other):
        if isinstance(other, Color):
            return self.get_hex() == other.get_hex()
        if isinstance(other, int) and not isinstance(other, bool):
            return self.get_hex() == other
        return NotImplemented

    def __repr__(self):
        return f"Color(0x{self.get_hex_string()})"


class MathUtils:
    """Scalar helpers mirroring THREE.MathUtils."""

    pi = math.pi

    @staticmethod
    def deg_to_rad(degrees) -> float:
        return math.radians(degrees)

    @staticmethod
    def rad_to_deg(radians) -> float:
        return math.degrees(radians)

    @staticmethod
    def clamp(value, low, high):
        return max(low, min(high, value))

    @staticmethod
    def lerp(a, b, t) -> float:
        return a + (b - a) * t

    degToRad = deg_to_rad
    radToDeg = rad_to_deg
    sin = staticmethod(math.sin)
    cos = staticmethod(math.cos)
    tan = staticmethod(math.tan)
    atan2 = staticmethod(math.atan2)
    sqrt = staticmethod(math.sqrt)


# ── Node tree ───────────────────────────────────────────────────


class Object3D:
    """Base scene-graph node with a TRS transform and ordered children."""

    kind = NodeKind.OBJECT

    def __init__(self):
        self.id = next(_ids)
        self.name = ""
        self.position = Vector3()
        self.rotation = Euler()
        self.scale = Vector3(1.0, 1.0, 1.0)
        self.children: list["Object3D"] = []
        self.parent: Optional["Object3D"] = None
        self.visible = True
        self.cast_shadow = False
        self.receive_shadow = False
        self.user_data: dict = {}
        self._infrastructure = False

    @property
    def is_infrastructure(self) -> bool:
        return self._infrastructure

    def add(self, *objects: "Object3D") -> "Object3D":
        for obj in objects:
            if obj is self:
                raise ValueError("An object cannot be added as a child of itself")
            if not isinstance(obj, Object3D) or obj.kind is NodeKind.SCENE:
                raise TypeError(f"Cannot add {type(obj).__name__} to a scene node")
            if obj.parent is not None:
                obj.parent.remove(obj)
            obj.parent = self
            self.children.append(obj)
        return self

    def remove(self, *objects: "Object3D") -> "Object3D":
        for obj in objects:
            if obj in self.children:
                self.children.remove(obj)
                obj.parent = None
        return self

    def iter_nodes(self) -> Iterator["Object3D"]:
        """Depth-first iteration over this node and all descendants."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def traverse(self, callback: Callable[["Object3D"], object]) -> None:
        for node in list(self.iter_nodes()):
            callback(node)

    def node_count(self) -> int:
        return sum(1 for _ in self.iter_nodes())

    def get_object_by_name(self, name: str) -> Optional["Object3D"]:
        for node in self.iter_nodes():
            if node.name == name:
                return node
        return None

    getObjectByName = get_object_by_name

    def matrix(self) -> np.ndarray:
        """Local 4x4 transform, T @ R @ S."""
        translate = transformations.translation_matrix(self.position.to_list())
        scale = np.diag([self.scale.x, self.scale.y, self.scale.z, 1.0])
        return translate @ self.rotation.matrix() @ scale

    def matrix_world(self) -> np.ndarray:
        m = self.matrix()
        node = self.parent
        while node is not None:
            m = node.matrix() @ m
            node = node.parent
        return m

    def _copy_into(self, other: "Object3D") -> "Object3D":
        other.name = self.name
        other.position.copy(self.position)
        other.rotation.copy(self.rotation)
        other.scale.copy(self.scale)
        other.visible = self.visible
        other.cast_shadow = self.cast_shadow
        other.receive_shadow = self.receive_shadow
        other.user_data = dict(self.user_data)
        for child in self.children:
            other.add(child.clone())
        return other

    def clone(self) -> "Object3D":
        return self._copy_into(type(self)())

    def __repr__(self):
        label = f" {self.name!r}" if self.name else ""
        return f"<{type(self).__name__}{label} id={self.id} children={len(self.children)}>"


class Group(Object3D):
    kind = NodeKind.GROUP


class Mesh(Object3D):
    """A geometry paired with a material."""

    kind = NodeKind.MESH

    def __init__(self, geometry=None, material=None):
        super().__init__()
        if geometry is None:
            from scenekit.geometries import BoxGeometry

            geometry = BoxGeometry()
        if material is None:
            from scenekit.materials import MeshStandardMaterial

            material = MeshStandardMaterial()
        if not hasattr(geometry, "to_trimesh"):
            raise TypeError(f"Mesh geometry must be a geometry, got {type(geometry).__name__}")
        if not hasattr(material, "color"):
            raise TypeError(f"Mesh material must be a material, got {type(material).__name__}")
        self.geometry = geometry
        self.material = material

    def clone(self) -> "Mesh":
        return self._copy_into(Mesh(self.geometry, self.material))


class Scene(Object3D):
    """Root node; holds a background colour and never nests in another node."""

    kind = NodeKind.SCENE

    def __init__(self, background=0x000000):
        super().__init__()
        self.background = Color(background)


def is_scene_node(value) -> bool:
    """Capability check for a user-constructible, renderable node."""
    kind = getattr(value, "kind", None)
    return (
        isinstance(kind, NodeKind)
        and kind in USER_NODE_KINDS
        and isinstance(getattr(value, "children", None), list)
        and callable(getattr(value, "matrix_world", None))
    )


def _check_transform(node, path: str) -> None:
    for attr, expected in (("position", Vector3), ("rotation", Euler), ("scale", Vector3)):
        value = getattr(node, attr, None)
        if not isinstance(value, expected):
            raise TypeError(f"{path}.{attr} is {type(value).__name__}, not {expected.__name__}")
        for axis in ("x", "y", "z"):
            c = getattr(value, axis, None)
            if isinstance(c, bool) or not isinstance(c, (int, float)) or not math.isfinite(c):
                raise TypeError(f"{path}.{attr}.{axis} must be a finite number, got {c!r}")
    if not isinstance(node.name, str):
        raise TypeError(f"{path}.name must be a string")


def check_tree(root) -> int:
    """Verify every node under ``root`` is a well-formed user node.

    Checks kinds, transforms, parent links, geometry parameters and material
    options. Returns the node count. Raises TypeError naming the first
    offending node, or ValueError for a cycle or out-of-range values.
    """
    from scenekit.geometries import Geometry
    from scenekit.materials import Material

    seen = set()
    stack = [(root, "root")]
    while stack:
        node, path = stack.pop()
        if not is_scene_node(node):
            raise TypeError(f"{path} is {type(node).__name__}, not a scene node")
        if id(node) in seen:
            raise ValueError(f"{path} appears more than once in the tree")
        seen.add(id(node))
        _check_transform(node, path)
        if node.kind is NodeKind.MESH:
            geometry = getattr(node, "geometry", None)
            if not isinstance(geometry, Geometry):
                raise TypeError(f"{path}.geometry is not a geometry")
            material = getattr(node, "material", None)
            if not isinstance(material, Material):
                raise TypeError(f"{path}.material is not a material")
            try:
                geometry.check()
                material.check()
            except (TypeError, ValueError) as e:
                raise type(e)(f"{path}: {e}") from e
        for i, child in enumerate(node.children):
            child_path = f"{path}.children[{i}]"
            if getattr(child, "parent", None) is not node:
                raise ValueError(f"{child_path} is listed as a child but its parent link differs")
            stack.append((child, child_path))
    return len(seen)


def mark_infrastructure(node: Object3D) -> Object3D:
    """Flag a node (and its subtree) as fixed scene infrastructure."""
    for n in node.iter_nodes():
        n._infrastructure = True
    return node
