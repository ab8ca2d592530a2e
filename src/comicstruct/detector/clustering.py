"""Spatial grouping of boxes by their centers.

Both algorithms work on the full pairwise center-distance matrix, built once
with numpy and handed to scikit-learn / scipy as a precomputed metric.
Clusters hold the input box objects themselves.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import squareform
from sklearn.cluster import DBSCAN

from .boxes import BoundingBox, union_all

log = logging.getLogger(__name__)

DEFAULT_EPS = 50.0
DEFAULT_MIN_PTS = 2
DEFAULT_MAX_DISTANCE = 50.0

NOISE = -1


def distance_matrix(boxes: Sequence[BoundingBox]) -> NDArray:
    """Euclidean distances between box centers, shape (n, n)."""
    if not boxes:
        return np.zeros((0, 0), dtype=float)
    centers = np.array([(b.center_x, b.center_y) for b in boxes], dtype=float)
    diff = centers[:, None, :] - centers[None, :, :]
    return np.sqrt((diff ** 2).sum(axis=-1))


def _group_by_label(boxes: Sequence[BoundingBox], labels: Sequence[int]) -> List[List[BoundingBox]]:
    clusters: List[List[BoundingBox]] = []
    for box, label in zip(boxes, labels):
        if label == NOISE:
            continue
        while len(clusters) <= label:
            clusters.append([])
        clusters[label].append(box)
    return clusters


def dbscan_labels(
    boxes: Sequence[BoundingBox],
    eps: float = DEFAULT_EPS,
    min_pts: int = DEFAULT_MIN_PTS,
) -> List[int]:
    """DBSCAN cluster label per box, ``-1`` for noise.

    The neighbourhood of a box includes the box itself, so ``min_pts=2``
    means "at least one other box within ``eps``".
    """
    if not boxes:
        return []
    model = DBSCAN(eps=eps, min_samples=min_pts, metric="precomputed")
    model.fit(distance_matrix(boxes))
    return [int(label) for label in model.labels_]


def dbscan(
    boxes: Sequence[BoundingBox],
    eps: float = DEFAULT_EPS,
    min_pts: int = DEFAULT_MIN_PTS,
) -> List[List[BoundingBox]]:
    """Density clusters of ``boxes``; noise boxes are left out."""
    clusters = _group_by_label(boxes, dbscan_labels(boxes, eps, min_pts))
    log.debug(f"[Cluster] DBSCAN: {len(boxes)} boxes -> {len(clusters)} clusters")
    return clusters


def agglomerative_labels(
    boxes: Sequence[BoundingBox],
    max_distance: float = DEFAULT_MAX_DISTANCE,
) -> List[int]:
    """Single-linkage cluster label per box.

    Clusters keep merging while the closest pair of members across two
    clusters is at most ``max_distance`` apart. Labels count from 0 in order
    of each cluster's first box.
    """
    n = len(boxes)
    if n == 0:
        return []
    if n == 1:
        return [0]
    tree = linkage(squareform(distance_matrix(boxes), checks=False), method="single")
    flat = fcluster(tree, t=max_distance, criterion="distance")
    relabel: Dict[int, int] = {}
    return [relabel.setdefault(int(f), len(relabel)) for f in flat]


def agglomerative(
    boxes: Sequence[BoundingBox],
    max_distance: float = DEFAULT_MAX_DISTANCE,
) -> List[List[BoundingBox]]:
    """Single-linkage agglomerative clustering of ``boxes``."""
    clusters = _group_by_label(boxes, agglomerative_labels(boxes, max_distance))
    log.debug(f"[Cluster] Single linkage: {len(boxes)} boxes -> {len(clusters)} clusters")
    return clusters


def cluster_bounds(cluster: Sequence[BoundingBox]) -> Optional[BoundingBox]:
    """Enclosing box of one cluster."""
    return union_all(cluster)
