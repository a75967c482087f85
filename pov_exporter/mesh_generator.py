"""
Faceted mesh generation for scene primitives.

A primitive is meshed one of three ways:

    mesh-asset sculpt -- the binary mesh asset is fetched and decoded
    image sculpt      -- the sculpt map is fetched and turned into a grid
    plain prim        -- generated from the prim's procedural shape

Meshes are organised into faces; each face keeps its own vertices and
triangle indices plus the face number used to look up the prim's texture
entry.

The mesh engine is pluggable.  Anything exposing::

    generate_faceted_mesh(prim, detail) -> Mesh
    generate_faceted_sculpt_mesh(prim, image, detail) -> Mesh

can replace :class:`BasicPrimMesher`.  Mesh assets are read as glTF binary
(.glb) payloads; each primitive of the first glTF mesh becomes one face.
"""

import logging
import math
from enum import Enum

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for pov_exporter. "
        "Install it with: pip install numpy"
    )

try:
    import pygltflib
except ImportError:
    raise ImportError(
        "pygltflib is required for mesh assets. "
        "Install it with: pip install pygltflib"
    )

from .errors import MeshDecodeError

log = logging.getLogger(__name__)


class DetailLevel(Enum):
    """Tessellation detail requested from the mesh engine."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2
    HIGHEST = 3


# Segments around a curved profile at each detail level
_CURVE_SEGMENTS = {
    DetailLevel.LOW: 6,
    DetailLevel.MEDIUM: 12,
    DetailLevel.HIGH: 18,
    DetailLevel.HIGHEST: 24,
}

# Sculpt map sampling grid (vertices per side)
_SCULPT_RESOLUTION = {
    DetailLevel.LOW: 16,
    DetailLevel.MEDIUM: 32,
    DetailLevel.HIGH: 64,
    DetailLevel.HIGHEST: 64,
}


# ---------------------------------------------------------------------------
# Mesh containers
# ---------------------------------------------------------------------------

class Face(object):
    """One face of a faceted mesh."""

    __slots__ = ('index', 'vertices', 'indices', 'uvs')

    def __init__(self, index, vertices, indices, uvs=None):
        """
        Args:
            index: Face number on the source primitive.
            vertices: ``(n, 3)`` array of positions in prim-local space.
            indices: Flat sequence of vertex indices, three per triangle.
            uvs: Optional ``(n, 2)`` array of texture coordinates.
        """
        self.index = int(index)
        self.vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        self.indices = [int(i) for i in indices]
        self.uvs = None if uvs is None else \
            np.asarray(uvs, dtype=np.float64).reshape(-1, 2)

    @property
    def triangles(self):
        """Triangles as a list of index triples."""
        idx = self.indices
        return [tuple(idx[i:i + 3]) for i in range(0, len(idx) - 2, 3)]

    def __repr__(self):
        return "Face({}, {} verts, {} tris)".format(
            self.index, len(self.vertices), len(self.indices) // 3)


class Mesh(object):
    """Ordered sequence of faces."""

    def __init__(self, faces=None):
        self.faces = list(faces or [])

    def __len__(self):
        return len(self.faces)

    def __iter__(self):
        return iter(self.faces)


def _grid_indices(width, height):
    """Two triangles per cell of a width x height vertex grid."""
    indices = []
    for y in range(height - 1):
        for x in range(width - 1):
            v = y * width + x
            indices.extend((v, v + 1, v + width))
            indices.extend((v + width + 1, v + width, v + 1))
    return indices


# ---------------------------------------------------------------------------
# Default mesh engine
# ---------------------------------------------------------------------------

class BasicPrimMesher(object):
    """
    Minimal procedural mesh engine.

    Supports ``shape['type']`` of ``box`` (faces 0-5: +Z, -Y, +X, +Y, -X,
    -Z), ``cylinder`` (0 top, 1 side, 2 bottom) and ``sphere`` (face 0).
    Geometry is unit sized and centred on the origin; the prim's scale is
    applied by its world transform.
    """

    def generate_faceted_mesh(self, prim, detail=DetailLevel.HIGHEST):
        shape_type = prim.shape.get('type', 'box')
        if shape_type == 'box':
            return self._box()
        if shape_type == 'cylinder':
            return self._cylinder(_CURVE_SEGMENTS[detail])
        if shape_type == 'sphere':
            segments = _CURVE_SEGMENTS[detail]
            return self._sphere(segments, max(segments // 2, 3))
        log.warning("Prim %d: unsupported shape %r, meshing as box",
                    prim.local_id, shape_type)
        return self._box()

    def generate_faceted_sculpt_mesh(self, prim, image,
                                     detail=DetailLevel.MEDIUM):
        """
        Build a sculpted surface from an RGB sculpt map.

        The map is resampled to a square grid; each pixel's red, green and
        blue values give the x, y and z of one vertex in [-0.5, 0.5].
        """
        res = _SCULPT_RESOLUTION[detail]
        rgb = image.convert('RGB').resize((res, res))
        pixels = np.asarray(rgb, dtype=np.float64).reshape(-1, 3)
        vertices = pixels / 255.0 - 0.5

        grid = np.arange(res, dtype=np.float64) / (res - 1)
        us, vs = np.meshgrid(grid, grid)
        uvs = np.stack([us.ravel(), vs.ravel()], axis=1)

        return Mesh([Face(0, vertices, _grid_indices(res, res), uvs)])

    @staticmethod
    def _box():
        h = 0.5
        quads = [
            [(-h, -h, h), (h, -h, h), (h, h, h), (-h, h, h)],        # +Z
            [(-h, -h, -h), (h, -h, -h), (h, -h, h), (-h, -h, h)],    # -Y
            [(h, -h, -h), (h, h, -h), (h, h, h), (h, -h, h)],        # +X
            [(h, h, -h), (-h, h, -h), (-h, h, h), (h, h, h)],        # +Y
            [(-h, h, -h), (-h, -h, -h), (-h, -h, h), (-h, h, h)],    # -X
            [(-h, h, -h), (h, h, -h), (h, -h, -h), (-h, -h, -h)],    # -Z
        ]
        uvs = [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]
        return Mesh([Face(i, quad, [0, 1, 2, 0, 2, 3], uvs)
                     for i, quad in enumerate(quads)])

    @staticmethod
    def _cylinder(segments):
        angles = [2.0 * math.pi * i / segments for i in range(segments)]
        ring = [(0.5 * math.cos(a), 0.5 * math.sin(a)) for a in angles]

        top = [(0.0, 0.0, 0.5)] + [(x, y, 0.5) for x, y in ring]
        bottom = [(0.0, 0.0, -0.5)] + [(x, y, -0.5) for x, y in ring]
        top_idx = []
        bottom_idx = []
        for i in range(segments):
            j = (i + 1) % segments
            top_idx.extend((0, i + 1, j + 1))
            bottom_idx.extend((0, j + 1, i + 1))

        side = []
        side_idx = []
        for x, y in ring:
            side.append((x, y, -0.5))
            side.append((x, y, 0.5))
        for i in range(segments):
            j = (i + 1) % segments
            a, b, c, d = 2 * i, 2 * j, 2 * j + 1, 2 * i + 1
            side_idx.extend((a, b, c))
            side_idx.extend((a, c, d))

        return Mesh([Face(0, top, top_idx),
                     Face(1, side, side_idx),
                     Face(2, bottom, bottom_idx)])

    @staticmethod
    def _sphere(segments, rings):
        vertices = []
        for r in range(rings + 1):
            theta = math.pi * r / rings
            z = 0.5 * math.cos(theta)
            radius = 0.5 * math.sin(theta)
            for s in range(segments + 1):
                phi = 2.0 * math.pi * s / segments
                vertices.append((radius * math.cos(phi),
                                 radius * math.sin(phi), z))
        return Mesh([Face(0, vertices, _grid_indices(segments + 1, rings + 1))])


# ---------------------------------------------------------------------------
# Mesh asset decoding (glTF binary)
# ---------------------------------------------------------------------------

_COMPONENT_DTYPES = {
    pygltflib.UNSIGNED_BYTE: np.uint8,
    pygltflib.UNSIGNED_SHORT: np.uint16,
    pygltflib.UNSIGNED_INT: np.uint32,
    pygltflib.FLOAT: np.float32,
}

_TYPE_COMPONENTS = {
    pygltflib.SCALAR: 1,
    pygltflib.VEC2: 2,
    pygltflib.VEC3: 3,
}


def _read_accessor(gltf, blob, acc_idx):
    """Read an accessor into an ``(count, components)`` numpy array."""
    acc = gltf.accessors[acc_idx]
    bv = gltf.bufferViews[acc.bufferView]
    dtype = np.dtype(_COMPONENT_DTYPES[acc.componentType])
    components = _TYPE_COMPONENTS[acc.type]
    offset = (bv.byteOffset or 0) + (acc.byteOffset or 0)
    element_size = dtype.itemsize * components
    stride = bv.byteStride or element_size

    if stride == element_size:
        data = np.frombuffer(blob, dtype=dtype, count=acc.count * components,
                             offset=offset)
        return data.reshape(acc.count, components)

    rows = [np.frombuffer(blob, dtype=dtype, count=components,
                          offset=offset + i * stride)
            for i in range(acc.count)]
    return np.array(rows).reshape(acc.count, components)


def decode_mesh_asset(data, detail=DetailLevel.HIGHEST):
    """
    Decode a glTF binary mesh asset into a faceted Mesh.

    glTF carries a single level of detail, so *detail* only documents the
    request.

    Raises:
        MeshDecodeError: If the payload is not a readable glTF binary.
    """
    try:
        gltf = pygltflib.GLTF2.load_from_bytes(bytes(data))
        blob = gltf.binary_blob()
    except Exception as e:
        raise MeshDecodeError("Cannot read glTF binary: {}".format(e))

    if gltf is None or not gltf.meshes or blob is None:
        raise MeshDecodeError("glTF payload contains no mesh data")

    faces = []
    try:
        for face_index, prim in enumerate(gltf.meshes[0].primitives):
            if prim.attributes.POSITION is None:
                continue
            vertices = _read_accessor(gltf, blob, prim.attributes.POSITION)
            if prim.indices is not None:
                indices = _read_accessor(gltf, blob, prim.indices).ravel()
            else:
                indices = np.arange(len(vertices))
            uvs = None
            if prim.attributes.TEXCOORD_0 is not None:
                uvs = _read_accessor(gltf, blob, prim.attributes.TEXCOORD_0)
            if len(indices) and (indices.min() < 0
                                 or indices.max() >= len(vertices)):
                raise MeshDecodeError(
                    "Face {} indexes past its {} vertices".format(
                        face_index, len(vertices)))
            faces.append(Face(face_index, vertices, indices.tolist(), uvs))
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise MeshDecodeError("Malformed glTF accessor: {}".format(e))

    log.debug("Decoded mesh asset (%s detail): %d faces", detail.name,
              len(faces))
    return Mesh(faces)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class MeshGenerator(object):
    """Selects the meshing strategy for each primitive."""

    def __init__(self, texture_cache, fetcher, mesher=None,
                 mesh_decoder=decode_mesh_asset):
        """
        Args:
            texture_cache: TextureColorCache used to fetch sculpt maps.
            fetcher: AssetFetcher used for mesh assets.
            mesher: Mesh engine (default: BasicPrimMesher).
            mesh_decoder: Callable (bytes, DetailLevel) -> Mesh.
        """
        self.texture_cache = texture_cache
        self.fetcher = fetcher
        self.mesher = mesher if mesher is not None else BasicPrimMesher()
        self.mesh_decoder = mesh_decoder

    def generate(self, prim):
        """
        Mesh *prim*.

        Returns:
            Mesh, or None when the required asset is unavailable.
        """
        if prim.has_sculpt:
            if prim.sculpt.is_mesh:
                return self._from_mesh_asset(prim)
            return self._from_sculpt_map(prim)
        return self.mesher.generate_faceted_mesh(prim, DetailLevel.HIGHEST)

    def _from_mesh_asset(self, prim):
        asset_id = prim.sculpt.texture_id
        if self.fetcher is None:
            log.warning("Prim %d: no fetcher for mesh asset %s",
                        prim.local_id, asset_id)
            return None
        result = self.fetcher.fetch_mesh(asset_id)
        if not result.ok:
            return None
        try:
            return self.mesh_decoder(result.data, DetailLevel.HIGHEST)
        except MeshDecodeError as e:
            log.warning("Prim %d: mesh asset %s: %s", prim.local_id,
                        asset_id, e)
            return None

    def _from_sculpt_map(self, prim):
        image = self.texture_cache.fetch_image(prim.sculpt.texture_id)
        if image is None:
            log.warning("Prim %d: sculpt map %s unavailable", prim.local_id,
                        prim.sculpt.texture_id)
            return None
        return self.mesher.generate_faceted_sculpt_mesh(
            prim, image, DetailLevel.MEDIUM)


def iter_valid_faces(mesh, prim):
    """
    Yield ``(face, texture_entry)`` for every face worth writing.

    Faces with no vertices, no indices, or no applicable texture entry are
    skipped.
    """
    for face in mesh:
        if len(face.vertices) == 0 or len(face.indices) == 0:
            continue
        entry = prim.textures.get_face(face.index)
        if entry is None:
            continue
        yield face, entry
