"""Boundary tracing, hulls, corners and convexity defects."""

import numpy as np
import pytest

from comicstruct.detector.components import PixelGrid
from comicstruct.detector.contours import (
    convex_hull,
    convexity_defects,
    detect_tail,
    extract_shape,
    point_in_convex,
    polygon_perimeter,
    refine_corners,
    shoelace_area,
    trace_boundary,
)


def square_grid(size=10, lo=2, hi=8):
    mask = np.zeros((size, size), dtype=bool)
    mask[lo:hi, lo:hi] = True
    return PixelGrid(mask)


def notched_mask():
    """60x60 block with a 20px wide, 40px deep notch cut from the top."""
    mask = np.ones((60, 60), dtype=bool)
    mask[0:40, 20:40] = False
    return mask


# ------------------------------------------------------------
# Tracing
# ------------------------------------------------------------
def test_trace_square():
    contour = trace_boundary(square_grid())
    assert contour.closed
    assert len(contour) == 20
    assert contour.points[0] == (2, 2)
    assert len(set(contour.points)) == 20
    assert all(x in (2, 7) or y in (2, 7) for x, y in contour.points)
    assert contour.area == pytest.approx(25)


def test_trace_is_clockwise_in_image_coordinates():
    contour = trace_boundary(square_grid())
    assert contour.points[1] == (3, 2)
    assert contour.signed_area > 0


def test_trace_empty_and_single_pixel():
    assert trace_boundary(PixelGrid.zeros(5, 5)).points == ()
    grid = PixelGrid.zeros(5, 5)
    grid.set(2, 3, 1)
    contour = trace_boundary(grid)
    assert contour.points == ((2, 3),)
    assert contour.closed


def test_trace_step_cap_leaves_contour_open():
    contour = trace_boundary(square_grid(), max_steps=5)
    assert not contour.closed
    assert len(contour) == 6


def test_trace_follows_only_the_first_region():
    mask = np.zeros((20, 20), dtype=bool)
    mask[1:4, 1:4] = True
    mask[10:18, 10:18] = True
    contour = trace_boundary(PixelGrid(mask))
    assert max(x for x, _ in contour.points) == 3


# ------------------------------------------------------------
# Polygons and hulls
# ------------------------------------------------------------
def test_shoelace_and_perimeter():
    square = [(0, 0), (4, 0), (4, 4), (0, 4)]
    assert shoelace_area(square) == 16
    assert shoelace_area(square[::-1], signed=True) == -16
    assert shoelace_area(square[:2]) == 0.0
    assert polygon_perimeter(square) == 16


def test_convex_hull_drops_interior_and_collinear_points():
    points = [(0, 0), (4, 0), (4, 4), (0, 4), (2, 2), (1, 1), (2, 0), (4, 4)]
    hull = convex_hull(points)
    assert sorted(hull) == [(0, 0), (0, 4), (4, 0), (4, 4)]
    assert hull[0] == (0, 0)


def test_convex_hull_small_inputs():
    assert convex_hull([]) == []
    assert convex_hull([(1, 1), (1, 1), (3, 2)]) == [(1, 1), (3, 2)]


def test_point_in_convex():
    hull = convex_hull([(0, 0), (10, 0), (10, 10), (0, 10)])
    assert point_in_convex(hull, (5, 5))
    assert point_in_convex(hull, (10, 5))
    assert not point_in_convex(hull, (11, 5))
    assert not point_in_convex(hull[:2], (0, 0))


# ------------------------------------------------------------
# Corners
# ------------------------------------------------------------
def test_refine_corners_rectangle():
    hull = convex_hull([(0, 0), (40, 0), (40, 20), (0, 20)])
    assert refine_corners(hull) == [(0, 0), (40, 0), (40, 20), (0, 20)]


def test_refine_corners_degenerate_hull():
    assert refine_corners([(0, 0), (1, 1)]) == []


def test_extract_shape_offsets_everything():
    mask = np.zeros((10, 10), dtype=bool)
    mask[2:8, 2:8] = True
    shape = extract_shape(mask, offset=(100, 50))
    assert shape.points[0] == (102, 52)
    assert shape.corners == ((102.0, 52.0), (107.0, 52.0), (107.0, 57.0), (102.0, 57.0))
    assert len(shape.hull) == 4


def test_extract_shape_falls_back_to_bbox_corners():
    line = np.ones((1, 5), dtype=bool)
    shape = extract_shape(line, offset=(10, 20))
    assert shape.corners == ((10, 20), (15, 20), (15, 21), (10, 21))


def test_extract_shape_open_trace_falls_back():
    mask = np.ones((30, 30), dtype=bool)
    shape = extract_shape(mask, max_steps=10)
    assert not shape.closed
    assert shape.corners == ((0, 0), (30, 0), (30, 30), (0, 30))


# ------------------------------------------------------------
# Defects and tails
# ------------------------------------------------------------
def test_notch_is_a_deep_defect():
    contour = trace_boundary(PixelGrid(notched_mask()))
    hull = convex_hull(contour.points)
    defects = convexity_defects(contour.points, hull)
    assert len(defects) == 1
    assert defects[0].depth >= 39
    assert detect_tail(contour.points, hull)


def test_convex_shape_has_no_tail():
    contour = trace_boundary(square_grid(40, 5, 35))
    hull = convex_hull(contour.points)
    assert convexity_defects(contour.points, hull) == []
    assert not detect_tail(contour.points, hull)


def test_tail_depth_threshold():
    contour = trace_boundary(PixelGrid(notched_mask()))
    hull = convex_hull(contour.points)
    assert not detect_tail(contour.points, hull, tail_depth=50)
