"""Lights and helpers. These make up scene infrastructure, not user content."""

import numpy as np

from scenekit.core import Color, NodeKind, Object3D


class Light(Object3D):
    kind = NodeKind.LIGHT

    def __init__(self, color=0xFFFFFF, intensity=1.0):
        super().__init__()
        self.color = Color(color)
        self.intensity = float(intensity)

    def clone(self):
        return self._copy_into(type(self)(self.color.get_hex(), self.intensity))


class AmbientLight(Light):
    pass


class DirectionalLight(Light):
    """Parallel light shining from ``position`` towards the origin."""

    def direction(self) -> np.ndarray:
        """Unit vector pointing from the light towards its target."""
        origin = self.matrix_world()[:3, 3]
        length = np.linalg.norm(origin)
        if length == 0:
            return np.array([0.0, -1.0, 0.0])
        return -origin / length


class GridHelper(Object3D):
    """Square grid on the XZ plane."""

    kind = NodeKind.HELPER

    def __init__(self, size=10.0, divisions=10, color_center=0x444444, color_grid=0x888888):
        super().__init__()
        self.size = float(size)
        self.divisions = int(divisions)
        self.color_center = Color(color_center)
        self.color_grid = Color(color_grid)

    def segments(self):
        """Yield (start, end, colour) line segments in local coordinates."""
        half = self.size / 2
        step = self.size / self.divisions
        centre = self.divisions // 2
        for i in range(self.divisions + 1):
            k = -half + i * step
            colour = self.color_center if i == centre else self.color_grid
            yield (-half, 0.0, k), (half, 0.0, k), colour
            yield (k, 0.0, -half), (k, 0.0, half), colour

    def clone(self):
        return self._copy_into(
            GridHelper(self.size, self.divisions, self.color_center.get_hex(), self.color_grid.get_hex())
        )
