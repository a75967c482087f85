"""
World transforms for scene primitives.

Quaternions are ``(x, y, z, w)`` tuples.  Matrices are 4x4 numpy arrays acting
on column vectors, so a point is transformed as ``M @ (x, y, z, 1)``; the
composed matrix applies scale first, then rotation, then translation.
"""

import logging

try:
    import numpy as np
except ImportError:
    raise ImportError(
        "numpy is required for pov_exporter. "
        "Install it with: pip install numpy"
    )

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Quaternion helpers
# ---------------------------------------------------------------------------

def normalize_quaternion(q):
    x, y, z, w = (float(c) for c in q)
    length = (x * x + y * y + z * z + w * w) ** 0.5
    if length == 0.0:
        return (0.0, 0.0, 0.0, 1.0)
    return (x / length, y / length, z / length, w / length)


def quaternion_multiply(a, b):
    """Hamilton product ``a * b``: rotating by the result applies *b*, then *a*."""
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return (
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
        aw * bw - ax * bx - ay * by - az * bz,
    )


def quaternion_matrix(q):
    """3x3 rotation matrix of a (normalised) quaternion."""
    x, y, z, w = normalize_quaternion(q)
    xx, yy, zz = x * x, y * y, z * z
    xy, xz, yz = x * y, x * z, y * z
    wx, wy, wz = w * x, w * y, w * z
    return np.array([
        [1.0 - 2.0 * (yy + zz), 2.0 * (xy - wz), 2.0 * (xz + wy)],
        [2.0 * (xy + wz), 1.0 - 2.0 * (xx + zz), 2.0 * (yz - wx)],
        [2.0 * (xz - wy), 2.0 * (yz + wx), 1.0 - 2.0 * (xx + yy)],
    ], dtype=np.float64)


def rotate_vector(q, v):
    """Rotate the 3-vector *v* by quaternion *q*."""
    return tuple(float(c) for c in quaternion_matrix(q) @ np.asarray(v, dtype=np.float64))


def compose(scale, rotation, position):
    """Build the affine matrix scale -> rotation -> translation."""
    mat = np.identity(4, dtype=np.float64)
    mat[:3, :3] = quaternion_matrix(rotation) @ np.diag(
        np.asarray(scale, dtype=np.float64))
    mat[:3, 3] = np.asarray(position, dtype=np.float64)
    return mat


# ---------------------------------------------------------------------------
# World transform
# ---------------------------------------------------------------------------

class WorldTransform(object):
    """Resolved world pose of a primitive and its affine matrix."""

    __slots__ = ('scale', 'rotation', 'position', 'matrix')

    def __init__(self, scale, rotation, position):
        self.scale = tuple(scale)
        self.rotation = tuple(rotation)
        self.position = tuple(position)
        self.matrix = compose(self.scale, self.rotation, self.position)

    def apply(self, points):
        """Transform an ``(n, 3)`` array of points, returning a new array."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return pts @ self.matrix[:3, :3].T + self.matrix[:3, 3]

    def __repr__(self):
        return "WorldTransform(scale={}, rotation={}, position={})".format(
            self.scale, self.rotation, self.position)


def world_transform(primitive, roots):
    """
    Compute the world transform of *primitive*.

    Children are composed with their root: the world rotation is
    ``root.rotation * child.rotation`` and the world position is the root
    position plus the child's local position rotated by the root.  A child
    whose root is missing from *roots* keeps its local pose.

    Args:
        primitive: Primitive to place.
        roots: Mapping of local_id -> root Primitive.

    Returns:
        WorldTransform
    """
    position = primitive.position
    rotation = primitive.rotation

    if primitive.parent_id != 0:
        parent = roots.get(primitive.parent_id)
        if parent is None:
            log.warning("Root prim %d of prim %d not found, using local pose",
                        primitive.parent_id, primitive.local_id)
        else:
            rotation = quaternion_multiply(parent.rotation, rotation)
            offset = rotate_vector(parent.rotation, position)
            position = tuple(p + o for p, o in zip(parent.position, offset))

    return WorldTransform(primitive.scale, rotation, position)
