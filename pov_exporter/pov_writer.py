"""
POV-Ray scene writer and export orchestration.

Output layout::

    #include "colors.inc"
    camera { ... }                   orthographic top-down or perspective
    light_source { ... }
    mesh2 // terrain { ... }         vertices, uvs, face indices, pigment
    mesh2 { ... }                    one per valid face of each prim

Scene coordinates are scaled by 0.1 and written as ``<x, z, y>`` since
POV-Ray is y-up while the scene is z-up.  Non-finite components are written
as 0.

Next to ``{name}.pov`` the blended terrain texture is saved as
``{name}Terrain.png``.

Usage:
    from pov_exporter import PovExporter, DirectoryAssetSource

    with DirectoryAssetSource('./assets') as source:
        exporter = PovExporter(source, cache_path='knownTextures.json')
        result = exporter.export(scene, 'sim.pov')
    print(result.message)
"""

import math
import logging

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for pov_exporter. "
        "Install it with: pip install numpy"
    )

from .asset_fetcher import AssetFetcher, FETCH_TIMEOUT
from .mesh_generator import MeshGenerator, iter_valid_faces
from .scene_collector import collect
from .terrain import TerrainMeshBuilder, splat_terrain
from .texture_cache import TextureColorCache, TextureRecord, DEFAULT_CACHE_FILE
from .transform import world_transform

log = logging.getLogger(__name__)

# Scene units to POV-Ray units
VERTEX_SCALE = 0.1

TERRAIN_TEXTURE_SUFFIX = "Terrain.png"

# Flat ground colour (r, g, b, a) used for the terrain pigment
TERRAIN_COLOR = (0.15, 0.5, 0.1, 1.0)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_number(value):
    """Format a float compactly: up to 7 significant digits, no trailing .0."""
    value = float(value)
    if math.isnan(value) or math.isinf(value):
        value = 0.0
    return "{:.7g}".format(value + 0.0)


def format_vector(x, y, z):
    """Format a scene-space point as a POV-Ray vector, swapping y and z."""
    return "<{},{},{}>".format(format_number(x), format_number(z),
                               format_number(y))


def format_pigment(rgba):
    """Pigment block for an (r, g, b, a) colour; alpha becomes rgbf filter."""
    r, g, b, a = rgba
    return "pigment {{rgbf \n<{},{},{},{}>\n}}".format(
        format_number(r), format_number(g), format_number(b),
        format_number(1.0 - a))


def face_color(entry, texture_cache):
    """
    Colour of a face: its tint, times the texture's mean colour when known.

    Only cached records are consulted; this never fetches.
    """
    color = entry.rgba
    if entry.texture_id is not None and texture_cache is not None:
        record = texture_cache.get(entry.texture_id)
        if isinstance(record, TextureRecord):
            color = tuple(c * m for c, m in zip(color, record.color_factors()))
    return color


# ---------------------------------------------------------------------------
# Scene writer
# ---------------------------------------------------------------------------

class PovSceneWriter(object):
    """Writes the blocks of a POV-Ray scene to a text stream."""

    def __init__(self, stream, orthographic=True, vertex_scale=VERTEX_SCALE):
        self.stream = stream
        self.orthographic = orthographic
        self.vertex_scale = vertex_scale

    def _lines(self, lines):
        self.stream.write("\n".join(lines))
        self.stream.write("\n")

    def _scaled_vectors(self, points):
        scaled = np.asarray(points, dtype=np.float64) * self.vertex_scale
        return [format_vector(x, y, z) for x, y, z in scaled]

    def write_header(self):
        self._lines(['#include "colors.inc"'])

    def write_camera(self):
        lines = ["camera", "{"]
        if self.orthographic:
            lines += [
                "orthographic angle 40",
                "location <12.8, 35, 12.8>",
                "look_at <12.8, 0, 12.8>",
                "right x * image_width / image_height",
            ]
        else:
            lines += [
                "location <12.5, 12, -15>",
                "look_at  <12.5, 5,  5>",
            ]
        lines.append("}")
        self._lines(lines)

    def write_light(self):
        self._lines(["light_source { <-9, 284, -8> color White}"])

    def write_terrain(self, terrain_mesh, color=TERRAIN_COLOR):
        """Write the terrain mesh2 block."""
        lines = ["mesh2 // terrain", "{", "vertex_vectors", "{",
                 str(terrain_mesh.vertex_count)]
        lines += self._scaled_vectors(terrain_mesh.vertices)
        lines += ["}", "uv_vectors", "{", str(len(terrain_mesh.uvs))]
        lines += ["<{},{}>".format(format_number(u), format_number(v))
                  for u, v in terrain_mesh.uvs]
        lines += ["}", "face_indices", "{", str(terrain_mesh.triangle_count)]
        lines += ["<{},{},{}>".format(a, b, c)
                  for a, b, c in terrain_mesh.triangles.tolist()]
        lines += ["}", format_pigment(color), "} // terrain"]
        self._lines(lines)

    def write_primitive(self, prim, mesh, transform, texture_cache=None):
        """
        Write one mesh2 block per valid face of *mesh*.

        Returns:
            int: Number of face blocks written.
        """
        written = 0
        for face, entry in iter_valid_faces(mesh, prim):
            triangles = face.triangles
            lines = ["mesh2", "{", "vertex_vectors", "{",
                     str(len(face.vertices))]
            lines += self._scaled_vectors(transform.apply(face.vertices))
            lines += ["}", "face_indices", "{", str(len(triangles))]
            lines += ["<{},{},{}>".format(a, b, c) for a, b, c in triangles]
            lines += ["}", format_pigment(face_color(entry, texture_cache)),
                      "}"]
            self._lines(lines)
            written += 1
        return written


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

class ExportResult(object):
    """Outcome of an export run.  Truthy on success."""

    def __init__(self, success, message, output_path=None,
                 terrain_written=False, primitive_count=0, face_count=0):
        self.success = success
        self.message = message
        self.output_path = output_path
        self.terrain_written = terrain_written
        self.primitive_count = primitive_count
        self.face_count = face_count

    def __bool__(self):
        return self.success

    def __repr__(self):
        return "ExportResult({}, {!r})".format(
            "OK" if self.success else "FAILED", self.message)


def normalize_output_path(path):
    """Append ``.pov`` unless the path already ends with it."""
    if not path.endswith(".pov"):
        path += ".pov"
    return path


class PovExporter(object):
    """
    Exports a scene to a POV-Ray file.

    The pipeline is single threaded; the only waiting happens inside asset
    fetches, one at a time, each bounded by *timeout*.
    """

    def __init__(self, asset_source=None, mesher=None,
                 cache_path=DEFAULT_CACHE_FILE, orthographic=True,
                 timeout=FETCH_TIMEOUT, splatter=splat_terrain,
                 vertex_scale=VERTEX_SCALE):
        """
        Args:
            asset_source: Object with request_image() / request_mesh().  None
                          disables fetching (all uncached assets unknown).
            mesher: Mesh engine, default BasicPrimMesher.
            cache_path: Texture mean-colour cache file, or None to disable
                        persistence.
            orthographic: Top-down orthographic camera (map tile view) if
                          True, perspective otherwise.
            timeout: Seconds to wait for each asset.
            splatter: Terrain texture blending function.
            vertex_scale: Scene units to output units.
        """
        self.fetcher = None
        if asset_source is not None:
            self.fetcher = AssetFetcher(asset_source, timeout)
        self.texture_cache = TextureColorCache(self.fetcher)
        self.mesh_generator = MeshGenerator(self.texture_cache, self.fetcher,
                                            mesher)
        self.terrain_builder = TerrainMeshBuilder(self.texture_cache, splatter)
        self.cache_path = cache_path
        self.orthographic = orthographic
        self.vertex_scale = vertex_scale

    def export(self, scene, output_path):
        """
        Export *scene* to *output_path*.

        Returns:
            ExportResult
        """
        output_path = normalize_output_path(output_path)
        if scene is None:
            log.error("No scene to export")
            return ExportResult(
                False, "error exporting sim to file: {}".format(output_path),
                output_path)

        log.debug("Exporting scene '%s' to %s", scene.name, output_path)
        if self.cache_path:
            try:
                self.texture_cache.load(self.cache_path)
            except OSError as e:
                log.warning("Cannot read texture cache %s: %s",
                            self.cache_path, e)

        result = ExportResult(
            True, "exported sim to file: {}".format(output_path), output_path)
        try:
            with open(output_path, 'w', encoding='utf-8') as f:
                writer = PovSceneWriter(f, self.orthographic,
                                        self.vertex_scale)
                writer.write_header()
                writer.write_camera()
                writer.write_light()
                result.terrain_written = self._export_terrain(
                    scene, writer, output_path[:-len(".pov")])
                self._export_primitives(scene, writer, result)
        except OSError as e:
            log.error("Failed to write %s: %s", output_path, e)
            result.success = False
            result.message = "error exporting sim to file: {}".format(
                output_path)
        finally:
            self._save_cache()

        log.info("Export of '%s' finished: %d prims, %d faces, terrain=%s",
                 scene.name, result.primitive_count, result.face_count,
                 result.terrain_written)
        return result

    def _save_cache(self):
        if not self.cache_path:
            return
        try:
            self.texture_cache.merge_and_save(self.cache_path)
        except OSError as e:
            log.warning("Cannot save texture cache %s: %s", self.cache_path, e)

    def _export_terrain(self, scene, writer, base_name):
        try:
            built = self.terrain_builder.build(scene.heightfield(),
                                               scene.terrain_info)
        except Exception as e:
            log.warning("Terrain generation failed, skipping terrain: %s", e)
            return False
        if built is None:
            return False
        terrain_mesh, texture = built

        texture_path = base_name + TERRAIN_TEXTURE_SUFFIX
        try:
            texture.save(texture_path, 'PNG')
        except OSError as e:
            log.warning("Cannot save terrain texture %s: %s", texture_path, e)
            return False

        writer.write_terrain(terrain_mesh)
        return True

    def _export_primitives(self, scene, writer, result):
        roots, exportable = collect(scene, self.texture_cache)
        for prim in exportable:
            if not prim.is_renderable:
                continue
            try:
                mesh = self.mesh_generator.generate(prim)
            except Exception as e:
                log.warning("Failed to mesh prim %d: %s", prim.local_id, e)
                continue
            if mesh is None:
                continue

            transform = world_transform(prim, roots)
            faces = writer.write_primitive(prim, mesh, transform,
                                           self.texture_cache)
            if faces:
                result.primitive_count += 1
                result.face_count += faces


def export_scene(scene, output_path, asset_source=None,
                 cache_path=DEFAULT_CACHE_FILE, orthographic=True,
                 timeout=FETCH_TIMEOUT):
    """
    Export *scene* to a POV-Ray file.

    Convenience wrapper around PovExporter.export().

    Returns:
        ExportResult
    """
    exporter = PovExporter(asset_source, cache_path=cache_path,
                           orthographic=orthographic, timeout=timeout)
    return exporter.export(scene, output_path)
