"""Boundary tracing, convex hulls and quadrilateral corner fitting.

Pipeline for one region mask:
1. Moore-neighbour boundary trace (8 directions, capped step count)
2. Graham-scan convex hull of the boundary
3. Farthest hull point per quadrant around the hull centroid
4. Local search moving each corner inside the hull to maximise the
   quadrilateral's area
5. Fallback to the bounding-box corners when any step degenerates
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .boxes import BoundingBox, bbox_corners
from .components import PixelGrid

log = logging.getLogger(__name__)

Point = Tuple[int, int]

DEFAULT_MAX_STEPS = 10000
CORNER_SEARCH_RADIUS = 10
DEFECT_MIN_DEPTH = 5.0
TAIL_DEFECT_DEPTH = 10.0

# clockwise in image coordinates (y down), starting east
NEIGHBOURS_8: Tuple[Point, ...] = ((1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1), (0, -1), (1, -1))
_DIRECTION_INDEX: Dict[Point, int] = {d: i for i, d in enumerate(NEIGHBOURS_8)}
_WEST = 4


@dataclass(frozen=True)
class Contour:
    """Ordered boundary pixels of a region, with optional hull and corners."""

    points: Tuple[Point, ...]
    closed: bool = True
    hull: Tuple[Point, ...] = ()
    corners: Tuple[Tuple[float, float], ...] = ()

    @property
    def signed_area(self) -> float:
        return shoelace_area(self.points, signed=True)

    @property
    def area(self) -> float:
        return abs(self.signed_area)

    @property
    def perimeter(self) -> float:
        return polygon_perimeter(self.points)

    @property
    def hull_area(self) -> float:
        return shoelace_area(self.hull)

    def __len__(self) -> int:
        return len(self.points)


@dataclass(frozen=True)
class Defect:
    """Concavity between two consecutive hull vertices."""

    start: Point
    end: Point
    farthest: Point
    depth: float


def trace_boundary(grid: PixelGrid, max_steps: int = DEFAULT_MAX_STEPS) -> Contour:
    """Trace the outer boundary of the first foreground region of ``grid``.

    Tracing starts at the first foreground pixel in raster order and stops
    when it re-enters that pixel with its first move, or after
    ``max_steps`` moves (the contour is then marked open).
    """
    start = grid.first_foreground()
    if start is None:
        return Contour(points=())

    points: List[Point] = [start]
    cx, cy = start
    back = _WEST
    first_move: Optional[Point] = None
    closed = False

    for _ in range(max_steps):
        found = None
        for k in range(1, 9):
            d = (back + k) % 8
            dx, dy = NEIGHBOURS_8[d]
            if grid.is_foreground(cx + dx, cy + dy):
                found = d
                break
        if found is None:
            # isolated pixel
            closed = True
            break

        dx, dy = NEIGHBOURS_8[found]
        nxt = (cx + dx, cy + dy)
        if first_move is None:
            first_move = nxt
        elif (cx, cy) == start and nxt == first_move:
            closed = True
            break

        # the last background neighbour checked, seen from the new pixel
        pdx, pdy = NEIGHBOURS_8[(found - 1) % 8]
        back = _DIRECTION_INDEX[(pdx - dx, pdy - dy)]
        points.append(nxt)
        cx, cy = nxt

    if closed and len(points) > 1 and points[-1] == points[0]:
        points.pop()
    if not closed:
        log.debug(f"[Contour] Step cap {max_steps} reached at {len(points)} points")
    return Contour(points=tuple(points), closed=closed)


def shoelace_area(points: Sequence[Tuple[float, float]], signed: bool = False) -> float:
    """Polygon area by the shoelace formula."""
    n = len(points)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        x1, y1 = points[i]
        x2, y2 = points[(i + 1) % n]
        total += x1 * y2 - x2 * y1
    value = total / 2.0
    return value if signed else abs(value)


def polygon_perimeter(points: Sequence[Tuple[float, float]]) -> float:
    n = len(points)
    if n < 2:
        return 0.0
    return sum(
        math.hypot(points[(i + 1) % n][0] - points[i][0], points[(i + 1) % n][1] - points[i][1])
        for i in range(n)
    )


def _cross(o, a, b) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull(points: Sequence[Point]) -> List[Point]:
    """Graham scan starting from the lowest point (smallest y, then x).

    Duplicate and collinear points are dropped. Fewer than three distinct
    points are returned as they are.
    """
    unique = sorted(set((int(p[0]), int(p[1])) for p in points))
    if len(unique) < 3:
        return unique

    pivot = min(unique, key=lambda p: (p[1], p[0]))
    others = [p for p in unique if p != pivot]
    others.sort(key=lambda p: (math.atan2(p[1] - pivot[1], p[0] - pivot[0]),
                               (p[0] - pivot[0]) ** 2 + (p[1] - pivot[1]) ** 2))

    hull: List[Point] = [pivot]
    for p in others:
        while len(hull) >= 2 and _cross(hull[-2], hull[-1], p) <= 0:
            hull.pop()
        hull.append(p)
    return hull


def point_in_convex(hull: Sequence[Tuple[float, float]], p: Tuple[float, float]) -> bool:
    """Inside-or-on test for a hull produced by :func:`convex_hull`."""
    n = len(hull)
    if n < 3:
        return False
    for i in range(n):
        if _cross(hull[i], hull[(i + 1) % n], p) < 0:
            return False
    return True


def refine_corners(hull: Sequence[Point], search_radius: int = CORNER_SEARCH_RADIUS) -> List[Point]:
    """Fit up to four corners (TL, TR, BR, BL) to a convex hull.

    The farthest hull point from the centroid in each quadrant seeds a
    corner; each corner is then moved within ``search_radius`` (staying
    inside the hull) to maximise the quadrilateral area. Empty quadrants
    are skipped, so fewer than four corners can come back.
    """
    if len(hull) < 3:
        return []
    cx = sum(p[0] for p in hull) / len(hull)
    cy = sum(p[1] for p in hull) / len(hull)

    quadrants: List[Optional[Point]] = [None, None, None, None]
    best_dist = [-1.0] * 4
    for p in hull:
        right = p[0] >= cx
        bottom = p[1] >= cy
        q = (1 if right else 0) if not bottom else (2 if right else 3)
        d = (p[0] - cx) ** 2 + (p[1] - cy) ** 2
        if d > best_dist[q]:
            best_dist[q] = d
            quadrants[q] = p

    corners = [p for p in quadrants if p is not None]
    if len(corners) != 4:
        return corners

    for i in range(4):
        best = corners[i]
        best_area = shoelace_area(corners)
        ox, oy = corners[i]
        for dx in range(-search_radius, search_radius + 1):
            for dy in range(-search_radius, search_radius + 1):
                candidate = (ox + dx, oy + dy)
                if not point_in_convex(hull, candidate):
                    continue
                trial = corners[:i] + [candidate] + corners[i + 1:]
                a = shoelace_area(trial)
                if a > best_area:
                    best_area = a
                    best = candidate
        corners[i] = best
    return corners


def _point_line_distance(p, a, b) -> float:
    length = math.hypot(b[0] - a[0], b[1] - a[1])
    if length == 0:
        return math.hypot(p[0] - a[0], p[1] - a[1])
    return abs(_cross(a, b, p)) / length


def convexity_defects(
    points: Sequence[Point],
    hull: Sequence[Point],
    min_depth: float = DEFECT_MIN_DEPTH,
) -> List[Defect]:
    """Concavities of the contour deeper than ``min_depth`` pixels.

    For each pair of hull vertices adjacent along the contour, the contour
    point farthest from their chord gives the defect depth.
    """
    if len(points) < 4 or len(hull) < 3:
        return []
    index: Dict[Point, int] = {}
    for i, p in enumerate(points):
        index.setdefault((int(p[0]), int(p[1])), i)
    hull_idx = sorted(index[h] for h in hull if h in index)
    if len(hull_idx) < 2:
        return []

    n = len(points)
    defects: List[Defect] = []
    for k in range(len(hull_idx)):
        i0 = hull_idx[k]
        i1 = hull_idx[(k + 1) % len(hull_idx)]
        span = (i1 - i0) % n
        if span < 2:
            continue
        a, b = points[i0], points[i1]
        best_depth, best_point = 0.0, None
        for step in range(1, span):
            p = points[(i0 + step) % n]
            d = _point_line_distance(p, a, b)
            if d > best_depth:
                best_depth, best_point = d, p
        if best_point is not None and best_depth > min_depth:
            defects.append(Defect(start=a, end=b, farthest=best_point, depth=best_depth))
    return defects


def detect_tail(
    points: Sequence[Point],
    hull: Sequence[Point],
    tail_depth: float = TAIL_DEFECT_DEPTH,
    min_depth: float = DEFECT_MIN_DEPTH,
) -> bool:
    """A speech-bubble tail shows up as a convexity defect deeper than ``tail_depth``."""
    return any(d.depth > tail_depth for d in convexity_defects(points, hull, min_depth))


def extract_shape(
    mask,
    offset: Tuple[float, float] = (0, 0),
    max_steps: int = DEFAULT_MAX_STEPS,
    search_radius: int = CORNER_SEARCH_RADIUS,
) -> Contour:
    """Contour, hull and four corners of the region in ``mask``.

    Args:
        mask: boolean region mask (or PixelGrid), cropped to the region
        offset: added to every returned coordinate
        max_steps: trace step cap
        search_radius: corner refinement radius

    Returns:
        Contour in offset coordinates; its corners fall back to the mask's
        bounding box whenever the trace is open or the hull degenerates.
    """
    grid = mask if isinstance(mask, PixelGrid) else PixelGrid(np.asarray(mask).astype(bool))
    ox, oy = offset
    contour = trace_boundary(grid, max_steps=max_steps)
    hull = convex_hull(contour.points) if contour.closed else []
    corners = refine_corners(hull, search_radius) if len(hull) >= 3 else []

    if len(corners) == 4:
        fitted = tuple((float(x + ox), float(y + oy)) for x, y in corners)
    else:
        fitted = bbox_corners(BoundingBox(ox, oy, grid.width, grid.height))

    return Contour(
        points=tuple((x + ox, y + oy) for x, y in contour.points),
        closed=contour.closed,
        hull=tuple((x + ox, y + oy) for x, y in hull),
        corners=fitted,
    )
