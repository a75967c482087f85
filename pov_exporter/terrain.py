"""
Terrain mesh and texture generation.

The region heightfield (256x256 samples) becomes one ``mesh2`` with a vertex
per sample and two triangles per grid cell.  A colour texture for the ground
is blended from the region's four detail textures according to elevation
bands that vary between the four region corners, and written next to the
scene file as a PNG.

Vertex ``v = y * 256 + x`` sits at ``(x, y, elevation(x, y))``; cell
``(x, y)`` is split into triangles ``(v, v+1, v+256)`` and
``(v+257, v+256, v+1)``.
"""

import logging

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for pov_exporter. "
        "Install it with: pip install numpy"
    )

try:
    from PIL import Image
except ImportError:
    raise ImportError(
        "Pillow is required for pov_exporter. "
        "Install with: pip install Pillow"
    )

from .scene_model import HeightField

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Mesh
# ---------------------------------------------------------------------------

class TerrainMesh(object):
    """Triangulated heightfield with per-vertex UVs."""

    __slots__ = ('width', 'height', 'vertices', 'uvs', 'triangles')

    def __init__(self, width, height, vertices, uvs, triangles):
        self.width = width
        self.height = height
        self.vertices = vertices
        self.uvs = uvs
        self.triangles = triangles

    @property
    def vertex_count(self):
        return len(self.vertices)

    @property
    def triangle_count(self):
        return len(self.triangles)


def build_terrain_mesh(heightfield):
    """
    Triangulate *heightfield*.

    Returns:
        TerrainMesh with ``width * height`` vertices and
        ``(width - 1) * (height - 1) * 2`` triangles.
    """
    width = heightfield.width
    height = heightfield.height

    ys, xs = np.mgrid[0:height, 0:width]
    vertices = np.stack([
        xs.ravel().astype(np.float64),
        ys.ravel().astype(np.float64),
        heightfield.heights.ravel(),
    ], axis=1)

    uvs = np.stack([
        xs.ravel() / float(width - 1),
        ys.ravel() / float(height - 1),
    ], axis=1)

    cy, cx = np.mgrid[0:height - 1, 0:width - 1]
    v = (cy * width + cx).ravel()
    first = np.stack([v, v + 1, v + width], axis=1)
    second = np.stack([v + width + 1, v + width, v + 1], axis=1)
    triangles = np.stack([first, second], axis=1).reshape(-1, 3)

    return TerrainMesh(width, height, vertices, uvs, triangles)


# ---------------------------------------------------------------------------
# Splatting
# ---------------------------------------------------------------------------

def _corner_lerp(values, px, py):
    """Bilinear blend of corner values ordered 00 (SW), 01 (NW), 10 (SE), 11 (NE)."""
    v00, v01, v10, v11 = values
    south = v00 * (1.0 - px) + v10 * px
    north = v01 * (1.0 - px) + v11 * px
    return south * (1.0 - py) + north * py


def splat_terrain(heights, textures, start_heights, height_ranges):
    """
    Blend four detail textures over the heightfield.

    At each sample the start height and height range are interpolated from
    the four corners; ``(h - start) / range * 3`` (clamped to [0, 3]) selects
    the pair of neighbouring layers to mix and the mix factor.  Non-finite
    elevations are treated as 0.

    Args:
        heights: HeightField or 256x256 array indexed ``[y, x]``.
        textures: Four PIL images, lowest elevation band first.
        start_heights: Four corner start heights.
        height_ranges: Four corner height ranges.

    Returns:
        PIL.Image.Image: 256x256 RGB texture, north (y = 255) at the top.
    """
    if isinstance(heights, HeightField):
        heights = heights.heights
    heights = np.nan_to_num(np.asarray(heights, dtype=np.float64),
                            nan=0.0, posinf=0.0, neginf=0.0)
    size_y, size_x = heights.shape

    ys, xs = np.mgrid[0:size_y, 0:size_x]
    px = xs / float(size_x - 1)
    py = ys / float(size_y - 1)

    start = _corner_lerp([float(h) for h in start_heights], px, py)
    spread = _corner_lerp([float(h) for h in height_ranges], px, py)
    spread = np.maximum(spread, 1e-6)

    layer = np.clip((heights - start) / spread * 3.0, 0.0, 3.0)
    lower = np.minimum(np.floor(layer).astype(np.int64), 2)
    frac = (layer - lower)[..., np.newaxis]

    # Detail textures are sampled in image orientation, so flip them into
    # heightfield row order before indexing.
    layers = np.stack([
        np.flipud(np.asarray(t.convert('RGB').resize((size_x, size_y)),
                             dtype=np.float64))
        for t in textures
    ])

    low_color = layers[lower, ys, xs]
    high_color = layers[lower + 1, ys, xs]
    blended = low_color * (1.0 - frac) + high_color * frac

    pixels = np.clip(np.rint(np.flipud(blended)), 0, 255).astype(np.uint8)
    return Image.fromarray(pixels, 'RGB')


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class TerrainMeshBuilder(object):
    """Produces the terrain mesh and its splatted colour texture."""

    def __init__(self, texture_cache, splatter=splat_terrain):
        """
        Args:
            texture_cache: TextureColorCache used to fetch detail textures.
            splatter: Callable (heights, textures, start_heights,
                      height_ranges) -> PIL image.
        """
        self.texture_cache = texture_cache
        self.splatter = splatter

    def build(self, heightfield, terrain_info):
        """
        Build the terrain mesh and texture.

        Returns:
            tuple (TerrainMesh, PIL.Image.Image), or None when the heightfield
            or any detail texture is unavailable.
        """
        if heightfield is None:
            log.warning("No heightfield available, skipping terrain")
            return None

        textures = []
        for i, texture_id in enumerate(terrain_info.detail_textures):
            img = None
            if texture_id is not None:
                img = self.texture_cache.fetch_image(texture_id)
            if img is None:
                log.warning("Terrain detail texture %d (%s) unavailable, "
                            "skipping terrain", i, texture_id)
                return None
            textures.append(img)

        texture = self.splatter(heightfield, textures,
                                terrain_info.start_heights,
                                terrain_info.height_ranges)
        if texture is None:
            log.warning("Terrain splatting produced no texture, skipping terrain")
            return None

        mesh = build_terrain_mesh(heightfield)
        log.info("Built terrain mesh: %d vertices, %d triangles",
                 mesh.vertex_count, mesh.triangle_count)
        return mesh, texture
