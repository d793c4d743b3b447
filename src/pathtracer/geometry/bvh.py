"""Bounding volume hierarchy: host-side construction and device storage.

The BVH is built once on the host with numpy and uploaded into flat Taichi
fields. Nodes live in an arena addressed by index:

    internal node: bvh_count == 0, children at bvh_left / bvh_right
    leaf node:     bvh_count > 0, primitives [bvh_first, bvh_first + bvh_count)
                   of the reordered primitive array

Construction picks each split with a binned surface-area heuristic over
primitive centroids and falls back to a median split along the axis of
greatest centroid extent when every centroid lands in the same bin. The build
is deterministic for a fixed input ordering.

An empty primitive set produces a BVH with zero nodes; traversal treats that
as "nothing to hit".

Traversal lives in ``src.pathtracer.scene.intersection`` next to the
primitive storage it reads.
"""

import logging
from dataclasses import dataclass, field

import numpy as np
import numpy.typing as npt
import taichi as ti
import taichi.math as tm

from src.pathtracer.geometry.aabb import pad_degenerate, surface_area

logger = logging.getLogger(__name__)

vec3 = tm.vec3

# =============================================================================
# Capacity and build parameters
# =============================================================================

# Maximum number of primitives (spheres + triangles) in one scene
MAX_PRIMITIVES = 1 << 17

# A binary tree over N leaves-worth of primitives has at most 2N - 1 nodes
MAX_BVH_NODES = 2 * MAX_PRIMITIVES

# Largest number of primitives stored in one leaf
MAX_LEAF_SIZE = 4

# Number of centroid bins evaluated per axis by the SAH
SAH_BINS = 12

# Traversal stack depth; deeper than any tree the builder produces in practice
BVH_STACK_SIZE = 64

# =============================================================================
# Device storage
# =============================================================================

bvh_node_min = ti.Vector.field(3, dtype=ti.f32, shape=MAX_BVH_NODES)
bvh_node_max = ti.Vector.field(3, dtype=ti.f32, shape=MAX_BVH_NODES)
bvh_left = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
bvh_right = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
bvh_first = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
bvh_count = ti.field(dtype=ti.i32, shape=MAX_BVH_NODES)
num_bvh_nodes = ti.field(dtype=ti.i32, shape=())


@dataclass
class BVHArrays:
    """Flat node arena produced by build_bvh.

    Attributes:
        node_min: Minimum corner of each node box, shape (K, 3).
        node_max: Maximum corner of each node box, shape (K, 3).
        left: Left child index (internal nodes), shape (K,).
        right: Right child index (internal nodes), shape (K,).
        first: First primitive of the leaf range, shape (K,).
        count: Number of primitives in the leaf (0 for internal nodes).
        order: order[k] is the input index of the k-th reordered primitive.
        depth: Depth of the deepest leaf (root has depth 0).
    """

    node_min: npt.NDArray[np.float32]
    node_max: npt.NDArray[np.float32]
    left: npt.NDArray[np.int32]
    right: npt.NDArray[np.int32]
    first: npt.NDArray[np.int32]
    count: npt.NDArray[np.int32]
    order: npt.NDArray[np.int64]
    depth: int = 0
    leaf_count: int = field(default=0)

    @property
    def num_nodes(self) -> int:
        return int(self.node_min.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.num_nodes == 0


def _empty_bvh() -> BVHArrays:
    return BVHArrays(
        node_min=np.zeros((0, 3), dtype=np.float32),
        node_max=np.zeros((0, 3), dtype=np.float32),
        left=np.zeros(0, dtype=np.int32),
        right=np.zeros(0, dtype=np.int32),
        first=np.zeros(0, dtype=np.int32),
        count=np.zeros(0, dtype=np.int32),
        order=np.zeros(0, dtype=np.int64),
    )


def _sah_partition(
    idx: npt.NDArray[np.int64],
    centroids: npt.NDArray[np.float64],
    box_min: npt.NDArray[np.float64],
    box_max: npt.NDArray[np.float64],
) -> tuple[npt.NDArray[np.int64], int] | None:
    """Find the cheapest binned SAH split of ``idx``.

    Returns:
        (reordered idx, split position) or None when no bin boundary
        separates the centroids.
    """
    c = centroids[idx]
    c_min = c.min(axis=0)
    extent = c.max(axis=0) - c_min
    p_min = box_min[idx]
    p_max = box_max[idx]

    best_cost = np.inf
    best_axis = -1
    best_bin = -1
    best_bins = None

    for axis in range(3):
        if extent[axis] <= 0.0:
            continue
        bins = ((c[:, axis] - c_min[axis]) * (SAH_BINS / extent[axis])).astype(np.int64)
        np.clip(bins, 0, SAH_BINS - 1, out=bins)

        counts = np.bincount(bins, minlength=SAH_BINS)
        bin_min = np.full((SAH_BINS, 3), np.inf)
        bin_max = np.full((SAH_BINS, 3), -np.inf)
        np.minimum.at(bin_min, bins, p_min)
        np.maximum.at(bin_max, bins, p_max)

        left_min = np.minimum.accumulate(bin_min, axis=0)
        left_max = np.maximum.accumulate(bin_max, axis=0)
        right_min = np.minimum.accumulate(bin_min[::-1], axis=0)[::-1]
        right_max = np.maximum.accumulate(bin_max[::-1], axis=0)[::-1]
        left_n = np.cumsum(counts)
        right_n = left_n[-1] - left_n

        # Split after bin b for b in [0, SAH_BINS - 2]
        cost = (
            surface_area(left_min[:-1], left_max[:-1]) * left_n[:-1]
            + surface_area(right_min[1:], right_max[1:]) * right_n[:-1]
        )
        valid = (left_n[:-1] > 0) & (right_n[:-1] > 0)
        if not np.any(valid):
            continue
        cost = np.where(valid, cost, np.inf)
        b = int(np.argmin(cost))
        if cost[b] < best_cost:
            best_cost = float(cost[b])
            best_axis = axis
            best_bin = b
            best_bins = bins

    if best_axis < 0:
        return None

    mask = best_bins <= best_bin
    reordered = np.concatenate([idx[mask], idx[~mask]])
    return reordered, int(np.count_nonzero(mask))


def _median_partition(
    idx: npt.NDArray[np.int64], centroids: npt.NDArray[np.float64]
) -> tuple[npt.NDArray[np.int64], int]:
    """Split ``idx`` in half along the axis of greatest centroid extent."""
    c = centroids[idx]
    axis = int(np.argmax(c.max(axis=0) - c.min(axis=0)))
    reordered = idx[np.argsort(c[:, axis], kind="stable")]
    return reordered, len(idx) // 2


def build_bvh(
    box_min: npt.ArrayLike,
    box_max: npt.ArrayLike,
    max_leaf_size: int = MAX_LEAF_SIZE,
) -> BVHArrays:
    """Build a BVH over primitive bounding boxes.

    Args:
        box_min: Minimum corner of each primitive box, shape (N, 3).
        box_max: Maximum corner of each primitive box, shape (N, 3).
        max_leaf_size: Largest number of primitives stored in one leaf.

    Returns:
        The node arena. Primitive arrays must be reordered with ``order``
        before upload so that leaf ranges are contiguous.

    Raises:
        ValueError: If the box arrays have mismatched shapes or the leaf size
            is not positive.
    """
    box_min = np.asarray(box_min, dtype=np.float64).reshape(-1, 3)
    box_max = np.asarray(box_max, dtype=np.float64).reshape(-1, 3)
    if box_min.shape != box_max.shape:
        raise ValueError(f"Box arrays differ in shape: {box_min.shape} vs {box_max.shape}")
    if max_leaf_size < 1:
        raise ValueError(f"max_leaf_size must be positive, got {max_leaf_size}")

    n = box_min.shape[0]
    if n == 0:
        return _empty_bvh()

    box_min, box_max = pad_degenerate(box_min, box_max)
    centroids = 0.5 * (box_min + box_max)
    order = np.arange(n, dtype=np.int64)

    node_min: list[npt.NDArray[np.float64]] = []
    node_max: list[npt.NDArray[np.float64]] = []
    left: list[int] = []
    right: list[int] = []
    first: list[int] = []
    count: list[int] = []

    def alloc() -> int:
        node_min.append(np.zeros(3))
        node_max.append(np.zeros(3))
        left.append(-1)
        right.append(-1)
        first.append(0)
        count.append(0)
        return len(left) - 1

    max_depth = 0
    leaves = 0
    stack = [(alloc(), 0, n, 0)]
    while stack:
        node, start, end, depth = stack.pop()
        idx = order[start:end]
        node_min[node] = box_min[idx].min(axis=0)
        node_max[node] = box_max[idx].max(axis=0)

        if end - start <= max_leaf_size:
            first[node] = start
            count[node] = end - start
            max_depth = max(max_depth, depth)
            leaves += 1
            continue

        split = _sah_partition(idx, centroids, box_min, box_max)
        if split is None:
            split = _median_partition(idx, centroids)
        reordered, mid = split
        order[start:end] = reordered

        left_node = alloc()
        right_node = alloc()
        left[node] = left_node
        right[node] = right_node
        stack.append((right_node, start + mid, end, depth + 1))
        stack.append((left_node, start, start + mid, depth + 1))

    result = BVHArrays(
        node_min=np.asarray(node_min, dtype=np.float32),
        node_max=np.asarray(node_max, dtype=np.float32),
        left=np.asarray(left, dtype=np.int32),
        right=np.asarray(right, dtype=np.int32),
        first=np.asarray(first, dtype=np.int32),
        count=np.asarray(count, dtype=np.int32),
        order=order,
        depth=max_depth,
        leaf_count=leaves,
    )
    logger.debug(
        "Built BVH over %d primitives: %d nodes, %d leaves, depth %d",
        n, result.num_nodes, leaves, max_depth,
    )
    return result


# =============================================================================
# Upload
# =============================================================================


@ti.kernel
def _upload_nodes(
    node_min: ti.types.ndarray(dtype=ti.f32, ndim=2),
    node_max: ti.types.ndarray(dtype=ti.f32, ndim=2),
    left: ti.types.ndarray(dtype=ti.i32, ndim=1),
    right: ti.types.ndarray(dtype=ti.i32, ndim=1),
    first: ti.types.ndarray(dtype=ti.i32, ndim=1),
    count: ti.types.ndarray(dtype=ti.i32, ndim=1),
    n: ti.i32,
):
    for i in range(n):
        bvh_node_min[i] = vec3(node_min[i, 0], node_min[i, 1], node_min[i, 2])
        bvh_node_max[i] = vec3(node_max[i, 0], node_max[i, 1], node_max[i, 2])
        bvh_left[i] = left[i]
        bvh_right[i] = right[i]
        bvh_first[i] = first[i]
        bvh_count[i] = count[i]


def upload_bvh(bvh: BVHArrays) -> None:
    """Copy a node arena into the device fields.

    Raises:
        RuntimeError: If the arena exceeds MAX_BVH_NODES.
    """
    if bvh.num_nodes > MAX_BVH_NODES:
        raise RuntimeError(f"BVH has {bvh.num_nodes} nodes, capacity is {MAX_BVH_NODES}")
    if bvh.num_nodes > 0:
        _upload_nodes(
            np.ascontiguousarray(bvh.node_min),
            np.ascontiguousarray(bvh.node_max),
            np.ascontiguousarray(bvh.left),
            np.ascontiguousarray(bvh.right),
            np.ascontiguousarray(bvh.first),
            np.ascontiguousarray(bvh.count),
            bvh.num_nodes,
        )
    num_bvh_nodes[None] = bvh.num_nodes


def clear_bvh() -> None:
    """Reset the device BVH to the empty structure."""
    num_bvh_nodes[None] = 0
