"""
JSON scene snapshot format.

Lets a scene captured by a live host be exported offline.  Layout::

    {
      "name": "region",
      "primitives": [
        {
          "local_id": 1, "parent_id": 0,
          "position": [128, 128, 25], "rotation": [0, 0, 0, 1],
          "scale": [1, 1, 1],
          "pcode": "PRIM",
          "shape": {"type": "box"},
          "sculpt": {"texture_id": "...", "type": "MESH"},
          "textures": {
            "default": {"texture_id": "...", "rgba": [1, 1, 1, 1]},
            "faces": {"0": {"texture_id": "...", "rgba": [1, 0, 0, 1]}}
          }
        }
      ],
      "terrain": {
        "patches": {"0": [256 floats], ...},
        "detail_textures": ["...", "...", "...", "..."],
        "start_heights": [10, 10, 10, 10],
        "height_ranges": [60, 60, 60, 60]
      }
    }

``sculpt``, ``textures``, ``shape`` and ``terrain`` are optional; patches
absent from ``patches`` are flat.
"""

import json
import os
import logging

from .errors import SceneFormatError
from .scene_model import (Scene, Primitive, PCode, SculptInfo, SculptType,
                          TextureEntry, TextureEntries, TerrainInfo,
                          PATCH_COUNT)

log = logging.getLogger(__name__)

FORMAT_VERSION = 1


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def load_json(filepath):
    """
    Load and parse a JSON file.

    Args:
        filepath: Path to the JSON file.

    Returns:
        dict: Parsed JSON data.
    """
    with open(filepath, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(filepath, data, indent=2):
    """
    Write a dict to a JSON file, creating parent directories as needed.

    Args:
        filepath: Destination file path.
        data: Dict (or list) to serialize.
        indent: JSON indentation level (default 2).
    """
    parent = os.path.dirname(filepath)
    if parent and not os.path.exists(parent):
        os.makedirs(parent)
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _check_vector(errors, where, value, size):
    if not isinstance(value, (list, tuple)) or len(value) != size:
        errors.append("{}: expected {} numbers".format(where, size))


def validate_scene_dict(data):
    """
    Validate a scene snapshot dict.

    Returns a list of error strings.  An empty list means the snapshot is valid.
    """
    errors = []
    if not isinstance(data, dict):
        return ["Scene snapshot must be a JSON object"]

    prims = data.get('primitives', [])
    if not isinstance(prims, list):
        errors.append("primitives must be a list")
        prims = []

    seen = set()
    for i, prim in enumerate(prims):
        where = "primitives[{}]".format(i)
        if not isinstance(prim, dict):
            errors.append("{}: must be an object".format(where))
            continue
        if 'local_id' not in prim:
            errors.append("{}: missing local_id".format(where))
        elif prim['local_id'] in seen:
            errors.append("{}: duplicate local_id {}".format(
                where, prim['local_id']))
        else:
            seen.add(prim['local_id'])
        for key, size in (('position', 3), ('rotation', 4), ('scale', 3)):
            if key in prim:
                _check_vector(errors, "{}.{}".format(where, key), prim[key],
                              size)

    terrain = data.get('terrain')
    if terrain is not None and not isinstance(terrain, dict):
        errors.append("terrain must be an object")
        terrain = None
    if terrain is not None:
        for key in ('detail_textures', 'start_heights', 'height_ranges'):
            if key in terrain:
                _check_vector(errors, "terrain.{}".format(key), terrain[key], 4)
        patches = terrain.get('patches', {})
        if not isinstance(patches, dict):
            errors.append("terrain.patches must be an object")
        else:
            for key, samples in patches.items():
                try:
                    index = int(key)
                except ValueError:
                    errors.append("terrain.patches: bad index {!r}".format(key))
                    continue
                if not 0 <= index < PATCH_COUNT:
                    errors.append("terrain.patches: index {} out of range".format(
                        index))
                if samples is not None and (
                        not isinstance(samples, (list, tuple))
                        or len(samples) != 256):
                    errors.append("terrain.patches[{}]: expected 256 samples".format(
                        key))

    return errors


# ---------------------------------------------------------------------------
# Dict <-> model
# ---------------------------------------------------------------------------

def _entry_from_dict(data):
    if data is None:
        return None
    return TextureEntry(data.get('texture_id'),
                        data.get('rgba', (1.0, 1.0, 1.0, 1.0)))


def _entry_to_dict(entry):
    return {'texture_id': entry.texture_id, 'rgba': list(entry.rgba)}


def _enum_value(enum_cls, value):
    if isinstance(value, str):
        return enum_cls[value.upper()]
    return enum_cls(value)


def primitive_from_dict(data):
    sculpt = None
    if data.get('sculpt'):
        sculpt = SculptInfo(
            data['sculpt'].get('texture_id'),
            _enum_value(SculptType, data['sculpt'].get('type', 'SPHERE')))

    textures_data = data.get('textures') or {}
    textures = TextureEntries(
        default=_entry_from_dict(textures_data.get('default')),
        faces=dict((int(k), _entry_from_dict(v))
                   for k, v in (textures_data.get('faces') or {}).items()),
    )

    return Primitive(
        local_id=data['local_id'],
        parent_id=data.get('parent_id', 0),
        position=data.get('position', (0.0, 0.0, 0.0)),
        rotation=data.get('rotation', (0.0, 0.0, 0.0, 1.0)),
        scale=data.get('scale', (1.0, 1.0, 1.0)),
        sculpt=sculpt,
        textures=textures,
        pcode=_enum_value(PCode, data.get('pcode', 'PRIM')),
        shape=data.get('shape'),
    )


def primitive_to_dict(prim):
    data = {
        'local_id': prim.local_id,
        'parent_id': prim.parent_id,
        'position': list(prim.position),
        'rotation': list(prim.rotation),
        'scale': list(prim.scale),
        'pcode': prim.pcode.name,
        'shape': dict(prim.shape),
    }
    if prim.sculpt is not None:
        data['sculpt'] = {'texture_id': prim.sculpt.texture_id,
                          'type': prim.sculpt.sculpt_type.name}
    textures = {}
    if prim.textures.default is not None:
        textures['default'] = _entry_to_dict(prim.textures.default)
    if prim.textures.faces:
        textures['faces'] = dict((str(k), _entry_to_dict(v))
                                 for k, v in sorted(prim.textures.faces.items())
                                 if v is not None)
    if textures:
        data['textures'] = textures
    return data


def scene_from_dict(data):
    """
    Build a Scene from a snapshot dict.

    Raises:
        SceneFormatError: If the snapshot fails validation.
    """
    errors = validate_scene_dict(data)
    if errors:
        raise SceneFormatError("Invalid scene snapshot: {}".format(
            "; ".join(errors)))

    try:
        prims = [primitive_from_dict(p) for p in data.get('primitives', [])]

        patches = None
        terrain_info = TerrainInfo()
        terrain = data.get('terrain')
        if terrain is not None:
            patches = dict((int(k), v)
                           for k, v in (terrain.get('patches') or {}).items())
            terrain_info = TerrainInfo(
                detail_textures=terrain.get('detail_textures'),
                start_heights=terrain.get('start_heights'),
                height_ranges=terrain.get('height_ranges'),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise SceneFormatError("Invalid scene snapshot: {}".format(e))

    return Scene(name=data.get('name', 'region'), primitives=prims,
                 terrain_patches=patches, terrain_info=terrain_info)


def scene_to_dict(scene):
    """Serialise a Scene (primitive snapshot plus terrain) to a dict."""
    data = {
        'format_version': FORMAT_VERSION,
        'name': scene.name,
        'primitives': [primitive_to_dict(p)
                       for p in scene.snapshot_primitives()],
    }
    if scene.terrain_patches is not None:
        if isinstance(scene.terrain_patches, dict):
            items = scene.terrain_patches.items()
        else:
            items = enumerate(scene.terrain_patches)
        data['terrain'] = {
            'patches': dict((str(i), [float(h) for h in p])
                            for i, p in items if p is not None),
            'detail_textures': list(scene.terrain_info.detail_textures),
            'start_heights': list(scene.terrain_info.start_heights),
            'height_ranges': list(scene.terrain_info.height_ranges),
        }
    return data


def load_scene(filepath):
    """Load a scene snapshot JSON file."""
    log.debug("Loading scene snapshot: %s", filepath)
    try:
        data = load_json(filepath)
    except ValueError as e:
        raise SceneFormatError("Cannot parse {}: {}".format(filepath, e))
    scene = scene_from_dict(data)
    log.info("Loaded scene '%s': %d prims", scene.name, len(scene.primitives))
    return scene


def save_scene(filepath, scene):
    """Write *scene* as a snapshot JSON file."""
    save_json(filepath, scene_to_dict(scene))
