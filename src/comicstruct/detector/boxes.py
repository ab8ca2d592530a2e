"""Axis-aligned box geometry shared by every detection stage.

Contains:
- BoundingBox / ScoredBox value types
- Overlap metrics (IoU, IoM, GIoU, DIoU, CIoU)
- Box transforms (expand, clip, scale, translate, merge)
- Small utilities (validation, coverage area, serialization)

Boxes are frozen; every transform returns a new box built with
``dataclasses.replace`` so subclasses keep their extra fields.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

log = logging.getLogger(__name__)

EPSILON = 1e-6
DEFAULT_CONTAINMENT = 0.9


@dataclass(frozen=True)
class BoundingBox:
    """Rectangle with a top-left origin, in pixels."""

    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    @property
    def area(self) -> float:
        return area(self)

    @property
    def aspect_ratio(self) -> float:
        return aspect_ratio(self)

    @property
    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float, **kwargs: Any) -> "BoundingBox":
        return cls(x1, y1, x2 - x1, y2 - y1, **kwargs)

    def to_xyxy(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x2, self.y2)

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class ScoredBox(BoundingBox):
    """Bounding box carrying a detector confidence and optional class id."""

    confidence: Optional[float] = None
    class_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["confidence"] = self.confidence
        if self.class_id is not None:
            data["class_id"] = self.class_id
        return data


class MergeStrategy(str, Enum):
    UNION = "union"
    INTERSECTION = "intersection"
    WEIGHTED = "weighted"


def score_of(box: BoundingBox) -> float:
    """Confidence of a box, 0 when it has none."""
    value = getattr(box, "confidence", None)
    return float(value) if value is not None else 0.0


# ------------------------------------------------------------
# Metrics
# ------------------------------------------------------------
def area(box: BoundingBox) -> float:
    if box.width <= 0 or box.height <= 0:
        return 0.0
    return float(box.width * box.height)


def aspect_ratio(box: BoundingBox) -> float:
    """Width over height; 0 for a degenerate box."""
    if box.is_degenerate:
        return 0.0
    return box.width / box.height


def intersection_area(a: BoundingBox, b: BoundingBox) -> float:
    iw = min(a.x2, b.x2) - max(a.x, b.x)
    ih = min(a.y2, b.y2) - max(a.y, b.y)
    if iw <= 0 or ih <= 0:
        return 0.0
    return float(iw * ih)


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection over union, in [0, 1]."""
    if a.is_degenerate or b.is_degenerate:
        return 0.0
    inter = intersection_area(a, b)
    union = area(a) + area(b) - inter
    return inter / max(union, EPSILON)


def iom(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection over the smaller of the two areas."""
    if a.is_degenerate or b.is_degenerate:
        return 0.0
    inter = intersection_area(a, b)
    return inter / max(min(area(a), area(b)), EPSILON)


def enclosing_box(a: BoundingBox, b: BoundingBox) -> BoundingBox:
    """Smallest box holding both inputs."""
    x1 = min(a.x, b.x)
    y1 = min(a.y, b.y)
    return BoundingBox(x1, y1, max(a.x2, b.x2) - x1, max(a.y2, b.y2) - y1)


def center_distance(a: BoundingBox, b: BoundingBox) -> float:
    return math.hypot(a.center_x - b.center_x, a.center_y - b.center_y)


def manhattan_distance(a: BoundingBox, b: BoundingBox) -> float:
    return abs(a.center_x - b.center_x) + abs(a.center_y - b.center_y)


def giou(a: BoundingBox, b: BoundingBox) -> float:
    """Generalized IoU, in [-1, 1]."""
    if a.is_degenerate or b.is_degenerate:
        return 0.0
    inter = intersection_area(a, b)
    union = area(a) + area(b) - inter
    hull = area(enclosing_box(a, b))
    return inter / max(union, EPSILON) - (hull - union) / max(hull, EPSILON)


def _diagonal_sq(a: BoundingBox, b: BoundingBox) -> float:
    hull = enclosing_box(a, b)
    return hull.width ** 2 + hull.height ** 2


def diou(a: BoundingBox, b: BoundingBox) -> float:
    """Distance IoU: IoU minus normalised squared center distance."""
    if a.is_degenerate or b.is_degenerate:
        return 0.0
    return iou(a, b) - center_distance(a, b) ** 2 / max(_diagonal_sq(a, b), EPSILON)


def ciou(a: BoundingBox, b: BoundingBox) -> float:
    """Complete IoU: DIoU with an aspect-ratio consistency penalty."""
    if a.is_degenerate or b.is_degenerate:
        return 0.0
    overlap = iou(a, b)
    rho = center_distance(a, b) ** 2 / max(_diagonal_sq(a, b), EPSILON)
    v = (4 / math.pi ** 2) * (math.atan(b.width / b.height) - math.atan(a.width / a.height)) ** 2
    alpha = v / ((1 - overlap) + v + EPSILON)
    return overlap - rho - alpha * v


def contains(container: BoundingBox, contained: BoundingBox, threshold: float = DEFAULT_CONTAINMENT) -> bool:
    """True when at least ``threshold`` of ``contained`` lies inside ``container``.

    The ratio is intersection over the contained box's own area, which equals
    IoM whenever ``contained`` is the smaller box.
    """
    if contained.is_degenerate or container.is_degenerate:
        return False
    ratio = intersection_area(container, contained) / max(area(contained), EPSILON)
    return ratio >= threshold - 1e-9


# ------------------------------------------------------------
# Transforms
# ------------------------------------------------------------
def expand(box: BoundingBox, padding: float) -> BoundingBox:
    """Grow (or shrink, for negative padding) every side by ``padding``."""
    return replace(
        box,
        x=box.x - padding,
        y=box.y - padding,
        width=max(0.0, box.width + 2 * padding),
        height=max(0.0, box.height + 2 * padding),
    )


def expand_by_ratio(box: BoundingBox, ratio: float) -> BoundingBox:
    """Grow each dimension by ``ratio`` of itself, keeping the center."""
    dw = box.width * ratio / 2
    dh = box.height * ratio / 2
    return replace(box, x=box.x - dw, y=box.y - dh, width=box.width + 2 * dw, height=box.height + 2 * dh)


def clip_to_bounds(box: BoundingBox, width: float, height: float) -> BoundingBox:
    x1 = min(max(box.x, 0), width)
    y1 = min(max(box.y, 0), height)
    x2 = min(max(box.x2, 0), width)
    y2 = min(max(box.y2, 0), height)
    return replace(box, x=x1, y=y1, width=x2 - x1, height=y2 - y1)


def scale(box: BoundingBox, sx: float, sy: Optional[float] = None) -> BoundingBox:
    if sy is None:
        sy = sx
    return replace(box, x=box.x * sx, y=box.y * sy, width=box.width * sx, height=box.height * sy)


def translate(box: BoundingBox, dx: float, dy: float) -> BoundingBox:
    return replace(box, x=box.x + dx, y=box.y + dy)


def merge(a: BoundingBox, b: BoundingBox, strategy: MergeStrategy = MergeStrategy.UNION) -> BoundingBox:
    """Combine two boxes.

    Args:
        a, b: boxes to combine
        strategy: ``union`` (enclosing box), ``intersection`` (overlap, empty
            box at the origin when disjoint) or ``weighted`` (confidence
            weighted blend of position and size)

    Returns:
        New box; ``weighted`` returns a ScoredBox with the higher confidence.
    """
    strategy = MergeStrategy(strategy)
    if strategy is MergeStrategy.UNION:
        return enclosing_box(a, b)
    if strategy is MergeStrategy.INTERSECTION:
        x1, y1 = max(a.x, b.x), max(a.y, b.y)
        x2, y2 = min(a.x2, b.x2), min(a.y2, b.y2)
        if x2 <= x1 or y2 <= y1:
            return BoundingBox(0, 0, 0, 0)
        return BoundingBox(x1, y1, x2 - x1, y2 - y1)

    wa = getattr(a, "confidence", None)
    wb = getattr(b, "confidence", None)
    wa = 1.0 if wa is None else float(wa)
    wb = 1.0 if wb is None else float(wb)
    total = wa + wb
    if total < EPSILON:
        wa = wb = total = 1.0

    def blend(va: float, vb: float) -> float:
        return (va * wa + vb * wb) / total

    return ScoredBox(
        blend(a.x, b.x),
        blend(a.y, b.y),
        blend(a.width, b.width),
        blend(a.height, b.height),
        confidence=max(score_of(a), score_of(b)),
        class_id=getattr(a, "class_id", None),
    )


def union_all(boxes: Iterable[BoundingBox]) -> Optional[BoundingBox]:
    """Enclosing box of all boxes, or None when there are none."""
    result: Optional[BoundingBox] = None
    for box in boxes:
        result = box if result is None else enclosing_box(result, box)
    if result is None:
        return None
    return BoundingBox(result.x, result.y, result.width, result.height)


def bbox_corners(box: BoundingBox) -> Tuple[Tuple[float, float], ...]:
    """Corners clockwise from top-left."""
    return ((box.x, box.y), (box.x2, box.y), (box.x2, box.y2), (box.x, box.y2))


# ------------------------------------------------------------
# Validation and utilities
# ------------------------------------------------------------
def is_valid(box: Any) -> bool:
    """Finite coordinates and non-negative size."""
    try:
        values = (float(box.x), float(box.y), float(box.width), float(box.height))
    except (AttributeError, TypeError, ValueError):
        return False
    if not all(math.isfinite(v) for v in values):
        return False
    return values[2] >= 0 and values[3] >= 0


def validate(box: Any) -> bool:
    """Same as :func:`is_valid` but also rejects degenerate boxes."""
    return is_valid(box) and not box.is_degenerate


def sanitize(boxes: Optional[Iterable[Any]]) -> List[BoundingBox]:
    """Drop malformed or degenerate boxes instead of failing on them."""
    if not boxes:
        return []
    boxes = list(boxes)
    kept = [b for b in boxes if validate(b)]
    dropped = len(boxes) - len(kept)
    if dropped:
        log.debug(f"[Boxes] Dropped {dropped} malformed boxes")
    return kept


def coverage_area(boxes: Sequence[BoundingBox]) -> float:
    """Area covered by the union of ``boxes`` (scanline over x-intervals)."""
    boxes = [b for b in boxes if not b.is_degenerate]
    if not boxes:
        return 0.0
    xs = sorted({b.x for b in boxes} | {b.x2 for b in boxes})
    total = 0.0
    for left, right in zip(xs, xs[1:]):
        if right <= left:
            continue
        spans = sorted((b.y, b.y2) for b in boxes if b.x < right and b.x2 > left)
        covered = 0.0
        cur_start = cur_end = None
        for y1, y2 in spans:
            if cur_end is None or y1 > cur_end:
                if cur_end is not None:
                    covered += cur_end - cur_start
                cur_start, cur_end = y1, y2
            else:
                cur_end = max(cur_end, y2)
        if cur_end is not None:
            covered += cur_end - cur_start
        total += covered * (right - left)
    return total


def format_box(box: BoundingBox, precision: int = 0) -> Dict[str, Any]:
    """Rounded dict view of a box, for logs and JSON output."""
    data = box.to_dict()
    for key in ("x", "y", "width", "height"):
        value = round(float(data[key]), precision)
        data[key] = int(value) if precision == 0 else value
    if data.get("confidence") is not None:
        data["confidence"] = round(float(data["confidence"]), 3)
    return data


def serialize(box: BoundingBox) -> str:
    return f"{box.x:g},{box.y:g},{box.width:g},{box.height:g}"


def deserialize(text: str) -> BoundingBox:
    """Parse ``"x,y,w,h"``; raises ValueError on anything else."""
    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 4:
        raise ValueError(f"expected 'x,y,w,h', got {text!r}")
    x, y, w, h = (float(p) for p in parts)
    return BoundingBox(x, y, w, h)
