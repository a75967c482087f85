#!/usr/bin/env python
"""
Export a scene snapshot to a POV-Ray scene file.

Usage:
  python pov_export.py <scene.json> [-o sim.pov] [--assets DIR]
                       [--cache knownTextures.json] [--no-cache]
                       [--perspective] [--timeout 30] [-v]

Writes <output>.pov and <output>Terrain.png, and updates the texture
mean-colour cache.
"""

import os
import sys
import argparse
import logging

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from pov_exporter import export_snapshot, DEFAULT_CACHE_FILE, FETCH_TIMEOUT
from pov_exporter.errors import SceneFormatError


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Export a region scene snapshot to POV-Ray')
    parser.add_argument('input', help='Scene snapshot .json file')
    parser.add_argument('-o', '--output', default='sim.pov',
                        help='Output .pov file (default: sim.pov)')
    parser.add_argument('--assets',
                        help='Asset directory with textures/ and meshes/')
    parser.add_argument('--cache', default=DEFAULT_CACHE_FILE,
                        help='Texture mean-colour cache file')
    parser.add_argument('--no-cache', action='store_true',
                        help='Do not read or write the texture cache')
    parser.add_argument('--perspective', action='store_true',
                        help='Perspective camera instead of top-down view')
    parser.add_argument('--timeout', type=float, default=FETCH_TIMEOUT,
                        help='Seconds to wait for each asset (default: 30)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    try:
        result = export_snapshot(
            args.input, args.output, asset_dir=args.assets,
            cache_path=None if args.no_cache else args.cache,
            orthographic=not args.perspective, timeout=args.timeout)
    except (OSError, SceneFormatError) as e:
        print("error: {}".format(e), file=sys.stderr)
        return 1

    print(result.message)
    if result:
        print("{} prims, {} faces, terrain {}".format(
            result.primitive_count, result.face_count,
            "written" if result.terrain_written else "skipped"))
    return 0 if result else 1


if __name__ == '__main__':
    sys.exit(main())
