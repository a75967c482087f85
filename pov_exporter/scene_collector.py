"""
Snapshot and filter the primitives of a scene for export.

The scene's primitive list is copied under its lock; everything afterwards
works on that copy.  Only two-level hierarchies are exported: roots and
children linked directly to a root.  Anything deeper is dropped.

While scanning, every texture referenced by any primitive is resolved
through the texture cache, so face colouring later on never has to wait for
a download in the middle of writing a mesh.
"""

import logging

from .errors import HierarchyError

log = logging.getLogger(__name__)


class PrimitiveForest(object):
    """
    Root primitives and their direct children.

    Depth is limited to two at insertion time: a child can only be attached
    to a primitive already registered as a root.  When two roots share a
    local id both are kept as members, and children attach to the one added
    last.
    """

    def __init__(self):
        self.roots = {}
        self.children = {}
        self._members = {}

    def add_root(self, prim):
        if prim.parent_id != 0:
            raise HierarchyError(
                "Prim {} has parent {}, cannot be a root".format(
                    prim.local_id, prim.parent_id))
        if prim.local_id in self.roots:
            log.warning("Duplicate root prim id %d, children attach to the "
                        "later one", prim.local_id)
        self.roots[prim.local_id] = prim
        self.children.setdefault(prim.local_id, [])
        self._members[id(prim)] = prim

    def add_child(self, prim):
        parent = self.roots.get(prim.parent_id)
        if parent is None:
            raise HierarchyError(
                "Parent {} of prim {} is not a root".format(
                    prim.parent_id, prim.local_id))
        self.children[parent.local_id].append(prim)
        self._members[id(prim)] = prim

    def add(self, prim):
        if prim.parent_id == 0:
            self.add_root(prim)
        else:
            self.add_child(prim)

    def __contains__(self, prim):
        return self._members.get(id(prim)) is prim

    def __len__(self):
        return len(self._members)


def collect(scene, texture_cache=None):
    """
    Build the root map and the ordered list of exportable primitives.

    Args:
        scene: Scene to snapshot.
        texture_cache: Optional TextureColorCache to pre-warm with every
                       texture id referenced by the snapshot.

    Returns:
        tuple: (roots dict local_id -> Primitive, exportable list of
               Primitive in snapshot order).
    """
    snapshot = scene.snapshot_primitives()

    forest = PrimitiveForest()
    for prim in snapshot:
        if prim.parent_id == 0:
            forest.add_root(prim)

    dropped = 0
    for prim in snapshot:
        if prim.parent_id == 0:
            continue
        try:
            forest.add_child(prim)
        except HierarchyError as e:
            log.debug("Dropping prim %d: %s", prim.local_id, e)
            dropped += 1

    if texture_cache is not None:
        for prim in snapshot:
            if not prim.textures:
                continue
            for texture_id in prim.textures.texture_ids():
                texture_cache.get_or_fetch(texture_id)

    exportable = [prim for prim in snapshot if prim in forest]
    log.info("Collected %d of %d prims (%d roots, %d dropped)",
             len(exportable), len(snapshot), len(forest.roots), dropped)
    return dict(forest.roots), exportable
