"""Parametric geometries, tessellated with trimesh in three.js axis conventions."""

import math
from types import MappingProxyType

import numpy as np
import trimesh

# Z-up (trimesh) -> Y-up (three.js): rotate -90 degrees about X.
_Z_TO_Y = trimesh.transformations.rotation_matrix(-math.pi / 2, [1, 0, 0])

GEOMETRY_KINDS = (
    "box", "sphere", "cylinder", "cone", "torus", "torus-knot", "plane",
    "ring", "dodecahedron", "icosahedron", "octahedron", "tetrahedron",
)


def _positive(value, name: str) -> float:
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"{name} must be a positive number, got {value}")
    return value


def _segments(value, name: str, minimum: int) -> int:
    value = int(value)
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {value}")
    return min(value, 256)


def _grid_faces(rows: int, cols: int, wrap_cols: bool, wrap_rows: bool = False) -> np.ndarray:
    """Quad-split faces for a rows x cols vertex grid laid out row-major."""
    faces = []
    row_count = rows if wrap_rows else rows - 1
    col_count = cols if wrap_cols else cols - 1
    for i in range(row_count):
        for j in range(col_count):
            a = i * cols + j
            b = i * cols + (j + 1) % cols
            c = ((i + 1) % rows) * cols + (j + 1) % cols
            d = ((i + 1) % rows) * cols + j
            faces.append((a, b, c))
            faces.append((a, c, d))
    return np.asarray(faces, dtype=np.int64)


class Geometry:
    """Base class; subclasses fill ``parameters`` and implement ``_build``."""

    kind = "geometry"

    def __init__(self, **parameters):
        self._parameters = parameters
        self._mesh = None

    @property
    def parameters(self):
        """Read-only view; sizes are fixed once the geometry is built."""
        return MappingProxyType(self._parameters)

    def check(self) -> None:
        """Re-run constructor validation. Raises ValueError or TypeError."""
        rebuilt = type(self)(**self._parameters)
        if rebuilt._parameters != self._parameters:
            raise ValueError(f"{type(self).__name__} parameters out of range: {self._parameters}")

    def _build(self) -> trimesh.Trimesh:
        raise NotImplementedError

    def to_trimesh(self) -> trimesh.Trimesh:
        """Return a copy of the tessellated mesh in local coordinates."""
        if self._mesh is None:
            self._mesh = self._build()
        return self._mesh.copy()

    def triangle_count(self) -> int:
        return len(self.to_trimesh().faces)

    def __repr__(self):
        args = ", ".join(f"{k}={v}" for k, v in self.parameters.items())
        return f"{type(self).__name__}({args})"


class BoxGeometry(Geometry):
    kind = "box"

    def __init__(self, width=1.0, height=1.0, depth=1.0, *segments):
        super().__init__(
            width=_positive(width, "width"),
            height=_positive(height, "height"),
            depth=_positive(depth, "depth"),
        )

    def _build(self):
        p = self.parameters
        return trimesh.creation.box(extents=[p["width"], p["height"], p["depth"]])


class SphereGeometry(Geometry):
    kind = "sphere"

    def __init__(self, radius=1.0, width_segments=32, height_segments=16, *partial):
        super().__init__(
            radius=_positive(radius, "radius"),
            width_segments=_segments(width_segments, "width_segments", 3),
            height_segments=_segments(height_segments, "height_segments", 2),
        )

    def _build(self):
        p = self.parameters
        mesh = trimesh.creation.uv_sphere(
            radius=p["radius"], count=[p["height_segments"], p["width_segments"]]
        )
        return mesh.apply_transform(_Z_TO_Y)


def _revolved(profile, sections: int) -> trimesh.Trimesh:
    """Revolve a (radius, height) profile about Y."""
    mesh = trimesh.creation.revolve(np.asarray(profile, dtype=np.float64), sections=sections)
    return mesh.apply_transform(_Z_TO_Y)


class CylinderGeometry(Geometry):
    kind = "cylinder"

    def __init__(self, radius_top=1.0, radius_bottom=1.0, height=1.0, radial_segments=32, *extra):
        radius_top = float(radius_top)
        radius_bottom = float(radius_bottom)
        if radius_top < 0 or radius_bottom < 0 or radius_top + radius_bottom <= 0:
            raise ValueError("Cylinder radii must be non-negative and not both zero")
        super().__init__(
            radius_top=radius_top,
            radius_bottom=radius_bottom,
            height=_positive(height, "height"),
            radial_segments=_segments(radial_segments, "radial_segments", 3),
        )

    def _build(self):
        p = self.parameters
        half = p["height"] / 2
        profile = [(0.0, -half), (p["radius_bottom"], -half), (p["radius_top"], half), (0.0, half)]
        return _revolved(profile, p["radial_segments"])


class ConeGeometry(Geometry):
    kind = "cone"

    def __init__(self, radius=1.0, height=1.0, radial_segments=32, *extra):
        super().__init__(
            radius=_positive(radius, "radius"),
            height=_positive(height, "height"),
            radial_segments=_segments(radial_segments, "radial_segments", 3),
        )

    def _build(self):
        p = self.parameters
        half = p["height"] / 2
        return _revolved([(0.0, -half), (p["radius"], -half), (0.0, half)], p["radial_segments"])


class TorusGeometry(Geometry):
    kind = "torus"

    def __init__(self, radius=1.0, tube=0.4, radial_segments=12, tubular_segments=48, *arc):
        super().__init__(
            radius=_positive(radius, "radius"),
            tube=_positive(tube, "tube"),
            radial_segments=_segments(radial_segments, "radial_segments", 3),
            tubular_segments=_segments(tubular_segments, "tubular_segments", 3),
        )

    def _build(self):
        p = self.parameters
        u = np.linspace(0, 2 * np.pi, p["tubular_segments"], endpoint=False)
        v = np.linspace(0, 2 * np.pi, p["radial_segments"], endpoint=False)
        uu, vv = np.meshgrid(u, v, indexing="ij")
        ring = p["radius"] + p["tube"] * np.cos(vv)
        vertices = np.stack(
            [ring * np.cos(uu), ring * np.sin(uu), p["tube"] * np.sin(vv)], axis=-1
        ).reshape(-1, 3)
        faces = _grid_faces(len(u), len(v), wrap_cols=True, wrap_rows=True)
        return trimesh.Trimesh(vertices=vertices, faces=faces)


class TorusKnotGeometry(Geometry):
    kind = "torus-knot"

    def __init__(self, radius=1.0, tube=0.4, tubular_segments=64, radial_segments=8, p=2, q=3):
        if int(p) < 1 or int(q) < 1:
            raise ValueError("p and q must be positive integers")
        super().__init__(
            radius=_positive(radius, "radius"),
            tube=_positive(tube, "tube"),
            tubular_segments=_segments(tubular_segments, "tubular_segments", 3),
            radial_segments=_segments(radial_segments, "radial_segments", 3),
            p=int(p),
            q=int(q),
        )

    def _curve(self, u):
        p, q, radius = self.parameters["p"], self.parameters["q"], self.parameters["radius"]
        qr_p = q / p * u
        cs = np.cos(qr_p)
        return np.stack(
            [
                radius * (2 + cs) * 0.5 * np.cos(u),
                radius * (2 + cs) * 0.5 * np.sin(u),
                radius * np.sin(qr_p) * 0.5,
            ],
            axis=-1,
        )

    def _build(self):
        params = self.parameters
        u = np.linspace(0, params["p"] * 2 * np.pi, params["tubular_segments"], endpoint=False)
        p1 = self._curve(u)
        p2 = self._curve(u + 0.01)
        tangent = p2 - p1
        normal = p2 + p1
        binormal = np.cross(tangent, normal)
        normal = np.cross(binormal, tangent)
        binormal /= np.linalg.norm(binormal, axis=1, keepdims=True)
        normal /= np.linalg.norm(normal, axis=1, keepdims=True)

        v = np.linspace(0, 2 * np.pi, params["radial_segments"], endpoint=False)
        cx = -params["tube"] * np.cos(v)
        cy = params["tube"] * np.sin(v)
        vertices = (
            p1[:, None, :]
            + cx[None, :, None] * normal[:, None, :]
            + cy[None, :, None] * binormal[:, None, :]
        ).reshape(-1, 3)
        faces = _grid_faces(len(u), len(v), wrap_cols=True, wrap_rows=True)
        return trimesh.Trimesh(vertices=vertices, faces=faces)


class PlaneGeometry(Geometry):
    kind = "plane"

    def __init__(self, width=1.0, height=1.0, *segments):
        super().__init__(width=_positive(width, "width"), height=_positive(height, "height"))

    def _build(self):
        w, h = self.parameters["width"] / 2, self.parameters["height"] / 2
        vertices = [(-w, -h, 0.0), (w, -h, 0.0), (w, h, 0.0), (-w, h, 0.0)]
        return trimesh.Trimesh(vertices=vertices, faces=[(0, 1, 2), (0, 2, 3)], process=False)


class RingGeometry(Geometry):
    kind = "ring"

    def __init__(self, inner_radius=0.5, outer_radius=1.0, theta_segments=32, *extra):
        inner = float(inner_radius)
        outer = _positive(outer_radius, "outer_radius")
        if not 0 <= inner < outer:
            raise ValueError("inner_radius must be non-negative and smaller than outer_radius")
        super().__init__(
            inner_radius=inner,
            outer_radius=outer,
            theta_segments=_segments(theta_segments, "theta_segments", 3),
        )

    def _build(self):
        p = self.parameters
        theta = np.linspace(0, 2 * np.pi, p["theta_segments"], endpoint=False)
        rings = [
            np.stack([r * np.cos(theta), r * np.sin(theta), np.zeros_like(theta)], axis=-1)
            for r in (p["inner_radius"], p["outer_radius"])
        ]
        vertices = np.concatenate(rings)
        faces = _grid_faces(2, len(theta), wrap_cols=True)
        return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)


# ── Platonic solids ─────────────────────────────────────────────

_PHI = (1 + math.sqrt(5)) / 2

_POLYHEDRA = {
    "tetrahedron": [(1, 1, 1), (-1, -1, 1), (-1, 1, -1), (1, -1, -1)],
    "octahedron": [(1, 0, 0), (-1, 0, 0), (0, 1, 0), (0, -1, 0), (0, 0, 1), (0, 0, -1)],
    "icosahedron": [
        (-1, _PHI, 0), (1, _PHI, 0), (-1, -_PHI, 0), (1, -_PHI, 0),
        (0, -1, _PHI), (0, 1, _PHI), (0, -1, -_PHI), (0, 1, -_PHI),
        (_PHI, 0, -1), (_PHI, 0, 1), (-_PHI, 0, -1), (-_PHI, 0, 1),
    ],
    "dodecahedron": [
        (x, y, z) for x in (-1, 1) for y in (-1, 1) for z in (-1, 1)
    ] + [
        p
        for a in (-1 / _PHI, 1 / _PHI)
        for b in (-_PHI, _PHI)
        for p in ((0, a, b), (a, b, 0), (b, 0, a))
    ],
}


class PolyhedronGeometry(Geometry):
    """Convex hull of a platonic solid, optionally subdivided towards a sphere."""

    def __init__(self, radius=1.0, detail=0):
        detail = int(detail)
        if not 0 <= detail <= 5:
            raise ValueError(f"detail must be between 0 and 5, got {detail}")
        super().__init__(radius=_positive(radius, "radius"), detail=detail)

    def _build(self):
        points = np.asarray(_POLYHEDRA[self.kind], dtype=np.float64)
        points /= np.linalg.norm(points, axis=1, keepdims=True)
        mesh = trimesh.convex.convex_hull(points)
        for _ in range(self.parameters["detail"]):
            mesh = mesh.subdivide()
            vertices = mesh.vertices / np.linalg.norm(mesh.vertices, axis=1, keepdims=True)
            mesh = trimesh.Trimesh(vertices=vertices, faces=mesh.faces)
        mesh.apply_scale(self.parameters["radius"])
        return mesh


class DodecahedronGeometry(PolyhedronGeometry):
    kind = "dodecahedron"


class IcosahedronGeometry(PolyhedronGeometry):
    kind = "icosahedron"


class OctahedronGeometry(PolyhedronGeometry):
    kind = "octahedron"


class TetrahedronGeometry(PolyhedronGeometry):
    kind = "tetrahedron"
