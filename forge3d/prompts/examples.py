"""Few-shot examples for scene code generation."""

EXAMPLES = [
    {
        "prompt": "A red cube",
        "code": """\
def create_object():
    geometry = THREE.BoxGeometry(1, 1, 1)
    material = THREE.MeshStandardMaterial(color=0xff0000, roughness=0.4)
    cube = THREE.Mesh(geometry, material)
    cube.position.y = 0.5
    return cube
""",
    },
    {
        "prompt": "A snowman",
        "code": """\
def create_object():
    snowman = THREE.Group()
    snow = THREE.MeshStandardMaterial(color=0xffffff, roughness=0.9)

    sizes = [(0.8, 0.8), (0.55, 2.0), (0.4, 2.85)]
    for radius, height in sizes:
        ball = THREE.Mesh(THREE.SphereGeometry(radius, 32, 16), snow)
        ball.position.y = height
        snowman.add(ball)

    nose = THREE.Mesh(
        THREE.ConeGeometry(0.08, 0.4, 16),
        THREE.MeshStandardMaterial(color=0xff8800),
    )
    nose.position.set(0, 2.85, 0.5)
    nose.rotation.x = THREE.PI / 2
    snowman.add(nose)

    coal = THREE.MeshBasicMaterial(color=0x111111)
    for side in (-1, 1):
        eye = THREE.Mesh(THREE.SphereGeometry(0.05, 12, 8), coal)
        eye.position.set(0.15 * side, 3.0, 0.36)
        snowman.add(eye)

    return snowman
""",
    },
    {
        "prompt": "A wooden table",
        "code": """\
def create_object():
    table = THREE.Group()
    wood = THREE.MeshLambertMaterial(color=0x8b5a2b)

    top = THREE.Mesh(THREE.BoxGeometry(2.0, 0.1, 1.0), wood)
    top.position.y = 1.0
    table.add(top)

    for x, z in [(-0.9, -0.4), (0.9, -0.4), (-0.9, 0.4), (0.9, 0.4)]:
        leg = THREE.Mesh(THREE.CylinderGeometry(0.05, 0.05, 1.0, 12), wood)
        leg.position.set(x, 0.5, z)
        table.add(leg)

    return table
""",
    },
    {
        "prompt": "A pine tree",
        "code": """\
def create_object():
    tree = THREE.Group()

    trunk = THREE.Mesh(
        THREE.CylinderGeometry(0.15, 0.2, 1.0, 12),
        THREE.MeshStandardMaterial(color=0x6b4226),
    )
    trunk.position.y = 0.5
    tree.add(trunk)

    leaves = THREE.MeshStandardMaterial(color=0x1e7b34, flat_shading=True)
    for i in range(3):
        cone = THREE.Mesh(THREE.ConeGeometry(1.0 - i * 0.25, 1.2, 16), leaves)
        cone.position.y = 1.3 + i * 0.6
        tree.add(cone)

    return tree
""",
    },
    {
        "prompt": "A ringed planet",
        "code": """\
def create_object():
    planet = THREE.Group()

    body = THREE.Mesh(
        THREE.SphereGeometry(1.0, 48, 24),
        THREE.MeshPhongMaterial(color=0xd9a066, shininess=10),
    )
    planet.add(body)

    ring = THREE.Mesh(
        THREE.RingGeometry(1.4, 2.2, 64),
        THREE.MeshPhongMaterial(color=0xc2b280, side=THREE.DoubleSide, transparent=True, opacity=0.8),
    )
    ring.rotation.x = THREE.MathUtils.deg_to_rad(-75)
    planet.add(ring)

    planet.position.y = 2.5
    return planet
""",
    },
]


def format_few_shot() -> str:
    """Render examples as prompt/answer pairs with fenced code."""
    parts = []
    for ex in EXAMPLES:
        parts.append(f'User: "{ex["prompt"]}"\nAssistant:\n```python\n{ex["code"]}```')
    return "\n\n".join(parts)
