"""Surface materials (three.js Mesh*Material subset)."""

import logging
import re

from scenekit.core import Color

logger = logging.getLogger(__name__)

FrontSide = 0
BackSide = 1
DoubleSide = 2

MATERIAL_KINDS = ("standard", "phong", "lambert", "basic")

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL.sub("_", key).lower()


def _unit(value, name: str) -> float:
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be between 0 and 1, got {value}")
    return value


class Material:
    """Base material. Options may be passed as one dict or as keywords."""

    kind = "material"
    # option name -> default; colour-valued options are converted to Color
    _defaults = {
        "color": 0xFFFFFF,
        "opacity": 1.0,
        "transparent": False,
        "wireframe": False,
        "side": FrontSide,
        "flat_shading": False,
        "visible": True,
    }
    _colour_options = ("color",)

    def __init__(self, parameters=None, **options):
        if parameters is not None and not isinstance(parameters, dict):
            raise TypeError(
                f"{type(self).__name__} expects a dict of options, got {type(parameters).__name__}"
            )
        merged = {**(parameters or {}), **options}
        for name, default in self._defaults.items():
            setattr(self, name, Color(default) if name in self._colour_options else default)
        self.set_values(merged)

    def set_values(self, values: dict) -> "Material":
        for key, value in values.items():
            name = _snake(key)
            if name not in self._defaults:
                logger.debug(f"{type(self).__name__}: ignoring unknown option {key!r}")
                continue
            if name in self._colour_options:
                value = Color(value)
            elif name == "opacity":
                value = _unit(value, name)
            elif name == "side" and value not in (FrontSide, BackSide, DoubleSide):
                raise ValueError(f"Invalid side: {value!r}")
            setattr(self, name, value)
        return self

    setValues = set_values

    def options(self) -> dict:
        out = {}
        for name in self._defaults:
            value = getattr(self, name)
            out[name] = value.get_hex() if isinstance(value, Color) else value
        return out

    def check(self) -> None:
        """Re-validate options after in-place edits. Raises TypeError or ValueError."""
        for name in self._colour_options:
            if not isinstance(getattr(self, name, None), Color):
                raise TypeError(f"{name} is not a Color")
        type(self)(self.options())

    def clone(self) -> "Material":
        return type(self)(self.options())

    def __repr__(self):
        return f"{type(self).__name__}(color=0x{self.color.get_hex_string()})"


class MeshStandardMaterial(Material):
    kind = "standard"
    _defaults = {**Material._defaults, "roughness": 1.0, "metalness": 0.0, "emissive": 0x000000}
    _colour_options = ("color", "emissive")

    def set_values(self, values: dict) -> "Material":
        super().set_values(values)
        self.roughness = _unit(self.roughness, "roughness")
        self.metalness = _unit(self.metalness, "metalness")
        return self


class MeshPhongMaterial(Material):
    kind = "phong"
    _defaults = {**Material._defaults, "shininess": 30.0, "specular": 0x111111, "emissive": 0x000000}
    _colour_options = ("color", "specular", "emissive")


class MeshLambertMaterial(Material):
    kind = "lambert"
    _defaults = {**Material._defaults, "emissive": 0x000000}
    _colour_options = ("color", "emissive")


class MeshBasicMaterial(Material):
    """Unlit material."""

    kind = "basic"


class ShadowMaterial(Material):
    """Only receives shadows; used for the infrastructure ground plane."""

    kind = "shadow"
    _defaults = {**Material._defaults, "color": 0x000000, "opacity": 0.3, "transparent": True}
