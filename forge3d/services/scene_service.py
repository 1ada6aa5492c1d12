"""Scene Service - the scene host and the per-session scene registry."""

import logging
import math
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

import scenekit
from forge3d import config

logger = logging.getLogger(__name__)

BACKGROUND = 0x1A1A2E
DEFAULT_CAMERA_POSITION = (5.0, 4.0, 8.0)
DEFAULT_CAMERA_TARGET = (0.0, 0.0, 0.0)


class SceneError(Exception):
    """Invalid mutation request against a scene host."""


@dataclass
class Camera:
    position: tuple[float, float, float] = DEFAULT_CAMERA_POSITION
    target: tuple[float, float, float] = DEFAULT_CAMERA_TARGET
    fov: float = 50.0
    near: float = 0.1
    far: float = 1000.0


def node_bounds(node: scenekit.Object3D) -> Optional[tuple[np.ndarray, np.ndarray]]:
    """World-space axis-aligned bounds of every mesh under ``node``."""
    corners = []
    for n in node.iter_nodes():
        if n.kind is not scenekit.NodeKind.MESH:
            continue
        mesh = n.geometry.to_trimesh()
        if len(mesh.vertices) == 0:
            continue
        mesh.apply_transform(n.matrix_world())
        corners.append(mesh.bounds)
    if not corners:
        return None
    stacked = np.vstack(corners)
    return stacked.min(axis=0), stacked.max(axis=0)


class SceneHost:
    """Owns one scene: infrastructure, user objects and the camera.

    The sandbox never touches the scene; it hands finished nodes to ``adopt``.
    """

    def __init__(self):
        self.scene = scenekit.Scene(background=BACKGROUND)
        self.camera = Camera()
        self._objects: OrderedDict[str, scenekit.Object3D] = OrderedDict()
        # adopt runs on worker threads, dispose and clear on the event loop
        self._lock = threading.RLock()
        self._install_infrastructure()

    def _install_infrastructure(self) -> None:
        ambient = scenekit.AmbientLight(0xFFFFFF, 0.4)

        key = scenekit.DirectionalLight(0xFFFFFF, 0.8)
        key.position.set(5, 10, 7)
        key.cast_shadow = True

        fill = scenekit.DirectionalLight(0x8888FF, 0.3)
        fill.position.set(-5, 3, -5)

        rim = scenekit.DirectionalLight(0x00F0FF, 0.2)
        rim.position.set(0, 5, -10)

        grid = scenekit.GridHelper(20, 20, 0x444466, 0x333344)
        grid.position.y = -0.01

        ground = scenekit.Mesh(scenekit.PlaneGeometry(20, 20), scenekit.ShadowMaterial({"opacity": 0.3}))
        ground.rotation.x = -math.pi / 2
        ground.receive_shadow = True
        ground.name = "ground"

        for node in (ambient, key, fill, rim, grid, ground):
            self.scene.add(scenekit.mark_infrastructure(node))

    # ── Mutations ───────────────────────────────────────────────

    def adopt(self, node: scenekit.Object3D) -> str:
        """Insert a finished node at the top level. Returns its object id."""
        if not scenekit.is_scene_node(node):
            raise SceneError(f"Cannot adopt {type(node).__name__}: not a scene node")
        if node.is_infrastructure:
            raise SceneError("Infrastructure nodes cannot be adopted as user content")
        if node.parent is not None:
            raise SceneError("Node already belongs to another parent")
        try:
            scenekit.check_tree(node)
            camera = self._framing(node)
        except (TypeError, ValueError) as e:
            raise SceneError(f"Cannot adopt malformed node: {e}") from e

        # the scene is only touched once the node is known good
        for n in node.iter_nodes():
            if n.kind is scenekit.NodeKind.MESH:
                n.cast_shadow = True
                n.receive_shadow = True

        object_id = uuid.uuid4().hex[:12]
        with self._lock:
            self.scene.add(node)
            self._objects[object_id] = node
            self.camera = camera
            count = len(self._objects)
        logger.info(f"Adopted {node.kind.value} {object_id} ({count} user objects)")
        return object_id

    def dispose(self, object_id: str) -> scenekit.Object3D:
        with self._lock:
            node = self._objects.pop(object_id, None)
            if node is None:
                raise SceneError(f"Unknown object: {object_id}")
            self.scene.remove(node)
        return node

    def clear(self) -> int:
        """Remove every user object. Returns how many were removed."""
        with self._lock:
            count = len(self._objects)
            for node in self._objects.values():
                self.scene.remove(node)
            self._objects.clear()
        return count

    # ── Camera ──────────────────────────────────────────────────

    def reset_camera(self) -> Camera:
        self.camera = Camera()
        return self.camera

    def _framing(self, node: scenekit.Object3D) -> Camera:
        bounds = node_bounds(node)
        if bounds is None:
            return self.camera
        low, high = bounds
        if not (np.all(np.isfinite(low)) and np.all(np.isfinite(high))):
            raise ValueError("node bounds are not finite")
        center = (low + high) / 2
        distance = max(float(np.max(high - low)) * 2.5, 2.0)
        position = center + np.array([0.6, 0.4, 0.6]) * distance
        return Camera(
            position=tuple(float(v) for v in position),
            target=tuple(float(v) for v in center),
            fov=self.camera.fov,
        )

    def focus_on(self, node: scenekit.Object3D) -> Camera:
        self.camera = self._framing(node)
        return self.camera

    # ── Queries ─────────────────────────────────────────────────

    def get(self, object_id: str) -> scenekit.Object3D:
        try:
            return self._objects[object_id]
        except KeyError:
            raise SceneError(f"Unknown object: {object_id}")

    def user_objects(self) -> list[scenekit.Object3D]:
        with self._lock:
            return list(self._objects.values())

    def object_ids(self) -> list[str]:
        with self._lock:
            return list(self._objects)

    def describe(self, object_id: str) -> dict:
        node = self.get(object_id)
        return {
            "id": object_id,
            "kind": node.kind.value,
            "name": node.name,
            "children": len(node.children),
            "node_count": node.node_count(),
            "meshes": sum(1 for n in node.iter_nodes() if n.kind is scenekit.NodeKind.MESH),
        }

    def summary(self) -> dict:
        return {
            "objects": [self.describe(oid) for oid in self._objects],
            "infrastructure": sum(1 for c in self.scene.children if c.is_infrastructure),
            "camera": {
                "position": list(self.camera.position),
                "target": list(self.camera.target),
                "fov": self.camera.fov,
            },
        }


# ── Sessions ────────────────────────────────────────────────────


@dataclass
class SceneSession:
    id: str
    host: SceneHost = field(default_factory=SceneHost)
    messages: list = field(default_factory=list)
    last_used: float = field(default_factory=time.time)


class SceneRegistry:
    """Scene sessions by id, bounded by count (LRU) and idle time (TTL)."""

    def __init__(self, max_size: int = config.MAX_SCENES, ttl: float = config.SCENE_TTL_SECONDS):
        self.max_size = max_size
        self.ttl = ttl
        self._sessions: OrderedDict[str, SceneSession] = OrderedDict()

    def _evict_expired(self) -> int:
        now = time.time()
        expired = [k for k, s in self._sessions.items() if now - s.last_used > self.ttl]
        for k in expired:
            del self._sessions[k]
        if expired:
            logger.info(f"Evicted {len(expired)} idle scene(s)")
        return len(expired)

    def create(self) -> SceneSession:
        self._evict_expired()
        session = SceneSession(id=uuid.uuid4().hex)
        self._sessions[session.id] = session
        while len(self._sessions) > self.max_size:
            evicted, _ = self._sessions.popitem(last=False)
            logger.info(f"Evicted least recently used scene {evicted}")
        return session

    def get(self, session_id: str) -> Optional[SceneSession]:
        """Return a live session and mark it most recently used."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if time.time() - session.last_used > self.ttl:
            del self._sessions[session_id]
            return None
        session.last_used = time.time()
        self._sessions.move_to_end(session_id)
        return session

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def clear(self) -> int:
        count = len(self._sessions)
        self._sessions.clear()
        return count

    def __len__(self):
        return len(self._sessions)
