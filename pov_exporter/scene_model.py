"""
Scene data model for the POV-Ray exporter.

Describes the live scene handed to the exporter by its host: a list of
primitives (guarded by a lock, since the host keeps updating it from its
network thread), the 16x16 grid of terrain patches, and the terrain
texturing parameters of the region.

Primitives form a forest at most two levels deep: roots have
``parent_id == 0`` and children reference a root's ``local_id``.

Rotations are unit quaternions stored as ``(x, y, z, w)``.  Colours on
texture entries are floats in ``[0, 1]``.
"""

import threading
from enum import Enum

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for pov_exporter. "
        "Install it with: pip install numpy"
    )


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TERRAIN_SIZE = 256          # Samples per side of a region heightfield
PATCH_SIZE = 16             # Samples per side of one terrain patch
PATCHES_PER_SIDE = TERRAIN_SIZE // PATCH_SIZE
PATCH_COUNT = PATCHES_PER_SIDE * PATCHES_PER_SIDE

ZERO_ID = "00000000-0000-0000-0000-000000000000"

IDENTITY_ROTATION = (0.0, 0.0, 0.0, 1.0)


class PCode(Enum):
    """Object type code.  Only ``PRIM`` objects are exported as meshes."""
    NONE = 0
    PRIM = 9
    AVATAR = 47
    GRASS = 95
    NEW_TREE = 111
    PARTICLE_SYSTEM = 143
    TREE = 255


class SculptType(Enum):
    """Sculpt kind.  Everything except ``MESH`` is an image displacement map."""
    NONE = 0
    SPHERE = 1
    TORUS = 2
    PLANE = 3
    CYLINDER = 4
    MESH = 5


def _is_null_id(texture_id):
    return not texture_id or texture_id == ZERO_ID


# ---------------------------------------------------------------------------
# Texture entries
# ---------------------------------------------------------------------------

class TextureEntry(object):
    """Texture and tint applied to one face of a primitive."""

    __slots__ = ('texture_id', 'rgba')

    def __init__(self, texture_id=None, rgba=(1.0, 1.0, 1.0, 1.0)):
        self.texture_id = None if _is_null_id(texture_id) else texture_id
        self.rgba = tuple(float(c) for c in rgba)
        if len(self.rgba) != 4:
            raise ValueError("rgba must have 4 components, got {}".format(
                len(self.rgba)))

    def __repr__(self):
        return "TextureEntry({!r}, {!r})".format(self.texture_id, self.rgba)


class TextureEntries(object):
    """
    Per-face texture entries of a primitive.

    Faces without an explicit entry fall back to the default entry.
    """

    def __init__(self, default=None, faces=None):
        self.default = default
        self.faces = dict(faces or {})

    def get_face(self, index):
        """Return the entry for face *index*, or None if none applies."""
        entry = self.faces.get(index)
        if entry is not None:
            return entry
        return self.default

    def texture_ids(self):
        """Yield every texture id referenced by a face or the default."""
        for index in sorted(self.faces):
            entry = self.faces[index]
            if entry is not None and entry.texture_id is not None:
                yield entry.texture_id
        if self.default is not None and self.default.texture_id is not None:
            yield self.default.texture_id

    def __bool__(self):
        return self.default is not None or bool(self.faces)


class SculptInfo(object):
    """Reference to the texture (or mesh asset) a sculpted prim is built from."""

    __slots__ = ('texture_id', 'sculpt_type')

    def __init__(self, texture_id, sculpt_type=SculptType.SPHERE):
        self.texture_id = texture_id
        self.sculpt_type = SculptType(sculpt_type)

    @property
    def is_mesh(self):
        return self.sculpt_type == SculptType.MESH

    @property
    def is_set(self):
        return not _is_null_id(self.texture_id)


# ---------------------------------------------------------------------------
# Primitive
# ---------------------------------------------------------------------------

class Primitive(object):
    """One object of the scene."""

    def __init__(self, local_id, parent_id=0, position=(0.0, 0.0, 0.0),
                 rotation=IDENTITY_ROTATION, scale=(1.0, 1.0, 1.0),
                 sculpt=None, textures=None, pcode=PCode.PRIM, shape=None):
        """
        Args:
            local_id: Scene-local object id (non-zero).
            parent_id: local_id of the root this prim is linked to, 0 for roots.
            position: (x, y, z); relative to the root for children.
            rotation: Unit quaternion (x, y, z, w); relative for children.
            scale: (x, y, z) size of the prim.
            sculpt: Optional SculptInfo.
            textures: TextureEntries (default: none).
            pcode: PCode of the object.
            shape: Dict of procedural shape parameters for the mesh engine
                   (e.g. ``{'type': 'box'}``).
        """
        self.local_id = int(local_id)
        self.parent_id = int(parent_id)
        self.position = tuple(float(c) for c in position)
        self.rotation = tuple(float(c) for c in rotation)
        self.scale = tuple(float(c) for c in scale)
        self.sculpt = sculpt
        self.textures = textures if textures is not None else TextureEntries()
        self.pcode = PCode(pcode)
        self.shape = dict(shape or {'type': 'box'})

    @property
    def is_root(self):
        return self.parent_id == 0

    @property
    def is_renderable(self):
        return self.pcode == PCode.PRIM

    @property
    def has_sculpt(self):
        return self.sculpt is not None and self.sculpt.is_set

    def __repr__(self):
        return "Primitive(local_id={}, parent_id={}, pcode={})".format(
            self.local_id, self.parent_id, self.pcode.name)


# ---------------------------------------------------------------------------
# Terrain
# ---------------------------------------------------------------------------

class TerrainInfo(object):
    """
    Texturing parameters of a region's terrain.

    Corner order for start heights and height ranges is 00 (south-west),
    01 (north-west), 10 (south-east), 11 (north-east).
    """

    def __init__(self, detail_textures=None, start_heights=None,
                 height_ranges=None):
        self.detail_textures = list(detail_textures or [None] * 4)
        self.start_heights = [float(h) for h in (start_heights or [10.0] * 4)]
        self.height_ranges = [float(h) for h in (height_ranges or [60.0] * 4)]
        for name in ('detail_textures', 'start_heights', 'height_ranges'):
            if len(getattr(self, name)) != 4:
                raise ValueError("{} must have 4 entries".format(name))


class HeightField(object):
    """Fixed 256x256 grid of elevations, stored row-major as ``heights[y, x]``."""

    def __init__(self, heights):
        heights = np.asarray(heights, dtype=np.float64)
        if heights.shape != (TERRAIN_SIZE, TERRAIN_SIZE):
            raise ValueError("Heightfield must be {0}x{0}, got {1}".format(
                TERRAIN_SIZE, heights.shape))
        self.heights = heights

    @classmethod
    def from_patches(cls, patches):
        """
        Assemble a heightfield from a 16x16 grid of terrain patches.

        Args:
            patches: Sequence (or dict keyed by patch index) of 256 entries.
                     Patch ``(y // 16) * 16 + x // 16`` holds 256 samples,
                     sample ``(y % 16) * 16 + x % 16``.  Missing patches
                     (None or absent) are flat at elevation 0.
        """
        heights = np.zeros((TERRAIN_SIZE, TERRAIN_SIZE), dtype=np.float64)
        if isinstance(patches, dict):
            lookup = patches.get
        else:
            patches = list(patches)

            def lookup(i):
                return patches[i] if i < len(patches) else None

        for patch_nr in range(PATCH_COUNT):
            data = lookup(patch_nr)
            if data is None:
                continue
            block = np.asarray(data, dtype=np.float64)
            if block.size != PATCH_SIZE * PATCH_SIZE:
                raise ValueError("Patch {} has {} samples, expected {}".format(
                    patch_nr, block.size, PATCH_SIZE * PATCH_SIZE))
            py, px = divmod(patch_nr, PATCHES_PER_SIDE)
            heights[py * PATCH_SIZE:(py + 1) * PATCH_SIZE,
                    px * PATCH_SIZE:(px + 1) * PATCH_SIZE] = \
                block.reshape(PATCH_SIZE, PATCH_SIZE)
        return cls(heights)

    @classmethod
    def flat(cls, elevation=0.0):
        return cls(np.full((TERRAIN_SIZE, TERRAIN_SIZE), float(elevation)))

    def elevation(self, x, y):
        return float(self.heights[y, x])

    @property
    def width(self):
        return self.heights.shape[1]

    @property
    def height(self):
        return self.heights.shape[0]


# ---------------------------------------------------------------------------
# Scene
# ---------------------------------------------------------------------------

class Scene(object):
    """
    Live scene as exposed by the host.

    The host may keep appending to ``primitives`` from another thread while
    holding ``primitives_lock``; the exporter only reads a snapshot.
    """

    def __init__(self, name="region", primitives=None, terrain_patches=None,
                 terrain_info=None):
        self.name = name
        self.primitives = list(primitives or [])
        self.primitives_lock = threading.RLock()
        self.terrain_patches = terrain_patches
        self.terrain_info = terrain_info if terrain_info is not None \
            else TerrainInfo()

    def add_primitive(self, prim):
        with self.primitives_lock:
            self.primitives.append(prim)

    def snapshot_primitives(self):
        """Copy the primitive list under the scene lock."""
        with self.primitives_lock:
            return list(self.primitives)

    def heightfield(self):
        """Return the assembled HeightField, or None without terrain data."""
        if self.terrain_patches is None:
            return None
        return HeightField.from_patches(self.terrain_patches)
