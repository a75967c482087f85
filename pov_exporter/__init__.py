"""
POV Exporter - Region scene to POV-Ray exporter.

Converts a region scene (terrain heightfield plus linked primitives) into a
static POV-Ray scene description: one terrain mesh with a blended ground
texture, and one flat-coloured mesh per primitive face.  Face colours are
approximated by each texture's mean colour, kept in a persistent cache so
textures are downloaded at most once across runs.

The exporter is host independent: the scene, the asset source and the mesh
engine are passed in, and :func:`export_scene` returns an
:class:`ExportResult` rather than raising.
"""

import os

from .asset_fetcher import (AssetFetcher, DirectoryAssetSource, FetchResult,
                            FetchStatus, decode_image, FETCH_TIMEOUT)
from .errors import (PovExportError, AssetNotFoundError, ImageDecodeError,
                     MeshDecodeError, HierarchyError, SceneFormatError)
from .mesh_generator import (BasicPrimMesher, DetailLevel, Face, Mesh,
                             MeshGenerator, decode_mesh_asset)
from .pov_writer import (PovExporter, PovSceneWriter, ExportResult,
                         export_scene, format_vector, VERTEX_SCALE)
from .scene_collector import PrimitiveForest, collect
from .scene_format import load_scene, save_scene, validate_scene_dict
from .scene_model import (Scene, Primitive, PCode, SculptInfo, SculptType,
                          TextureEntry, TextureEntries, TerrainInfo,
                          HeightField)
from .terrain import TerrainMeshBuilder, build_terrain_mesh, splat_terrain
from .texture_cache import (TextureColorCache, TextureRecord, UNKNOWN,
                            DEFAULT_CACHE_FILE)
from .transform import WorldTransform, world_transform


def export_snapshot(snapshot_path, output_path, asset_dir=None,
                    cache_path=DEFAULT_CACHE_FILE, orthographic=True,
                    timeout=FETCH_TIMEOUT):
    """
    Export a JSON scene snapshot to a POV-Ray file.

    Args:
        snapshot_path: Scene snapshot JSON (see scene_format).
        output_path: Destination .pov file (suffix added when missing).
        asset_dir: Optional directory with textures/ and meshes/ subfolders.
                   Without it every uncached asset is treated as unavailable.
        cache_path: Texture mean-colour cache file, or None.
        orthographic: Top-down orthographic camera when True.
        timeout: Seconds to wait for each asset.

    Returns:
        ExportResult
    """
    scene = load_scene(snapshot_path)

    if asset_dir is None:
        return export_scene(scene, output_path, cache_path=cache_path,
                            orthographic=orthographic, timeout=timeout)

    if not os.path.isdir(asset_dir):
        raise FileNotFoundError(
            "Asset directory not found: {}".format(asset_dir))

    with DirectoryAssetSource(asset_dir) as source:
        return export_scene(scene, output_path, asset_source=source,
                            cache_path=cache_path, orthographic=orthographic,
                            timeout=timeout)
