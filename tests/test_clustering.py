"""Box clustering by center distance."""

from comicstruct.detector.boxes import BoundingBox
from comicstruct.detector.clustering import (
    NOISE,
    agglomerative,
    agglomerative_labels,
    cluster_bounds,
    dbscan,
    dbscan_labels,
    distance_matrix,
)

GROUP = [
    BoundingBox(0, 0, 10, 10),
    BoundingBox(20, 0, 10, 10),
    BoundingBox(0, 20, 10, 10),
    BoundingBox(20, 20, 10, 10),
]
LONER = BoundingBox(500, 500, 10, 10)


def test_distance_matrix():
    dist = distance_matrix(GROUP[:2])
    assert dist.shape == (2, 2)
    assert dist[0, 1] == dist[1, 0] == 20
    assert distance_matrix([]).shape == (0, 0)


def test_dbscan_groups_close_boxes():
    clusters = dbscan(GROUP + [LONER], eps=50, min_pts=2)
    assert len(clusters) == 1
    assert clusters[0] == GROUP


def test_dbscan_labels_mark_noise():
    labels = dbscan_labels(GROUP + [LONER], eps=50, min_pts=2)
    assert labels == [0, 0, 0, 0, NOISE]
    assert dbscan_labels([]) == []


def test_dbscan_min_pts_counts_the_box_itself():
    pair = [BoundingBox(0, 0, 10, 10), BoundingBox(30, 0, 10, 10)]
    assert len(dbscan(pair, eps=50, min_pts=2)) == 1
    assert dbscan(pair, eps=50, min_pts=3) == []


def test_dbscan_chains_through_core_points():
    chain = [BoundingBox(x, 0, 10, 10) for x in (0, 40, 80, 120)]
    assert len(dbscan(chain, eps=45, min_pts=2)) == 1


def test_agglomerative_single_linkage():
    clusters = agglomerative(GROUP + [LONER], max_distance=50)
    assert len(clusters) == 2
    assert sorted(len(c) for c in clusters) == [1, 4]
    assert len(agglomerative(GROUP, max_distance=5)) == 4
    assert agglomerative([]) == []


def test_agglomerative_merges_at_max_distance():
    pair = [BoundingBox(0, 0, 10, 10), BoundingBox(50, 0, 10, 10)]
    assert len(agglomerative(pair, max_distance=50)) == 1
    assert len(agglomerative(pair, max_distance=49.9)) == 2


def test_agglomerative_labels_follow_first_box():
    boxes = [LONER] + GROUP
    assert agglomerative_labels(boxes, max_distance=50) == [0, 1, 1, 1, 1]
    assert agglomerative_labels([LONER]) == [0]
    assert agglomerative_labels([]) == []


def test_agglomerative_chains_through_neighbours():
    chain = [BoundingBox(x, 0, 10, 10) for x in (0, 40, 80, 120)]
    # ends are 120 apart, each link is 40
    assert len(agglomerative(chain, max_distance=45)) == 1


def test_cluster_bounds():
    assert cluster_bounds(GROUP) == BoundingBox(0, 0, 30, 30)
    assert cluster_bounds([]) is None
