from scenekit.core import (
    USER_NODE_KINDS,
    Color,
    Euler,
    Group,
    MathUtils,
    Mesh,
    NodeKind,
    Object3D,
    Scene,
    Vector3,
    check_tree,
    is_scene_node,
    mark_infrastructure,
)
from scenekit.geometries import (
    GEOMETRY_KINDS,
    BoxGeometry,
    ConeGeometry,
    CylinderGeometry,
    DodecahedronGeometry,
    Geometry,
    IcosahedronGeometry,
    OctahedronGeometry,
    PlaneGeometry,
    RingGeometry,
    SphereGeometry,
    TetrahedronGeometry,
    TorusGeometry,
    TorusKnotGeometry,
)
from scenekit.helpers import AmbientLight, DirectionalLight, GridHelper, Light
from scenekit.materials import (
    MATERIAL_KINDS,
    BackSide,
    DoubleSide,
    FrontSide,
    Material,
    MeshBasicMaterial,
    MeshLambertMaterial,
    MeshPhongMaterial,
    MeshStandardMaterial,
    ShadowMaterial,
)

__version__ = "0.1.0"


def version() -> str:
    return __version__


__all__ = [
    # Nodes
    "NodeKind",
    "USER_NODE_KINDS",
    "Object3D",
    "Group",
    "Mesh",
    "Scene",
    "is_scene_node",
    "check_tree",
    "mark_infrastructure",
    # Math
    "Vector3",
    "Euler",
    "Color",
    "MathUtils",
    # Geometries
    "GEOMETRY_KINDS",
    "Geometry",
    "BoxGeometry",
    "SphereGeometry",
    "CylinderGeometry",
    "ConeGeometry",
    "TorusGeometry",
    "TorusKnotGeometry",
    "PlaneGeometry",
    "RingGeometry",
    "DodecahedronGeometry",
    "IcosahedronGeometry",
    "OctahedronGeometry",
    "TetrahedronGeometry",
    # Materials
    "MATERIAL_KINDS",
    "Material",
    "MeshStandardMaterial",
    "MeshPhongMaterial",
    "MeshLambertMaterial",
    "MeshBasicMaterial",
    "ShadowMaterial",
    "FrontSide",
    "BackSide",
    "DoubleSide",
    # Infrastructure
    "Light",
    "AmbientLight",
    "DirectionalLight",
    "GridHelper",
    "version",
]
