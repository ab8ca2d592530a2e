"""Speech / thought / narration region detection inside a panel.

Candidates come either from an upstream detector (scored boxes) or from
bright enclosed blobs found here. Each candidate is then refined:

1. Padded ROI around the candidate
2. Bright component with the largest share inside the candidate, holes filled
3. Boundary trace, convex hull and convexity defects
4. Shape features (circularity, solidity, convexity, edge roughness, tail)
5. Type from the shape, falling back to the candidate's class id

Regions come back in reading order, each tagged with the bubble group it
belongs to (single-linkage clusters of nearby bubbles).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from ..config import RegionConfig
from ..image_utils import to_grayscale
from .boxes import (
    BoundingBox,
    ScoredBox,
    clip_to_bounds,
    expand,
    format_box,
    sanitize,
    score_of,
    translate,
)
from .clustering import agglomerative_labels, cluster_bounds
from .components import PixelGrid, extract_components, fill_holes
from .contours import Point, convex_hull, detect_tail, shoelace_area, trace_boundary
from .reading_order import assign_reading_order, row_order
from .suppression import suppress

log = logging.getLogger(__name__)

FALLBACK_QUALITY = 0.8


class RegionType(str, Enum):
    SPEECH = "speech"
    THOUGHT = "thought"
    NARRATION = "narration"
    SFX = "sfx"
    WHISPER = "whisper"
    SHOUT = "shout"
    UNKNOWN = "unknown"


# Detector class ids, in training order
CLASS_TYPES = (
    RegionType.SPEECH,
    RegionType.THOUGHT,
    RegionType.NARRATION,
    RegionType.SFX,
    RegionType.WHISPER,
    RegionType.SHOUT,
)


@dataclass(frozen=True)
class ShapeFeatures:
    circularity: float = 0.0
    solidity: float = 0.0       # area / bbox area
    convexity: float = 0.0      # area / hull area
    edge_roughness: float = 0.0
    has_tail: bool = False
    is_vertical: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "circularity": round(self.circularity, 3),
            "solidity": round(self.solidity, 3),
            "convexity": round(self.convexity, 3),
            "edge_roughness": round(self.edge_roughness, 3),
            "has_tail": self.has_tail,
            "is_vertical": self.is_vertical,
        }


@dataclass(frozen=True)
class Region:
    """A bubble or caption box in page coordinates."""

    bbox: BoundingBox
    type: RegionType = RegionType.UNKNOWN
    confidence: float = 0.0
    features: ShapeFeatures = field(default_factory=ShapeFeatures)
    contour: Tuple[Point, ...] = ()
    class_id: Optional[int] = None
    reading_order: int = 0
    group: int = 0
    lines: Tuple[Any, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bbox": format_box(self.bbox),
            "type": self.type.value,
            "confidence": round(self.confidence, 3),
            "features": self.features.to_dict(),
            "reading_order": self.reading_order,
            "group": self.group,
            "lines": [line.to_dict() for line in self.lines],
        }


def edge_roughness(points: Sequence[Point], diagonal: float, samples: int = 20) -> float:
    """Mean deviation of sampled contour points from their neighbours' midpoint,
    relative to a tenth of ``diagonal``, capped at 1."""
    n = len(points)
    if n < 10 or diagonal <= 0:
        return 0.0
    step = max(1, n // samples)
    total = 0.0
    count = 0
    for i in range(0, n, step):
        px, py = points[(i - step) % n]
        nx, ny = points[(i + step) % n]
        cx, cy = points[i]
        total += math.hypot(cx - (px + nx) / 2, cy - (py + ny) / 2)
        count += 1
    return min(1.0, (total / count) / (diagonal * 0.1))


def classify_region(features: ShapeFeatures, config: RegionConfig) -> RegionType:
    if features.solidity > config.narration_solidity and features.convexity > config.speech_convexity:
        return RegionType.NARRATION
    if features.circularity > config.speech_circularity and features.convexity > config.speech_convexity:
        return RegionType.SPEECH
    if features.edge_roughness > config.sfx_roughness or features.convexity < config.sfx_convexity:
        return RegionType.SFX
    if features.edge_roughness > config.thought_roughness:
        return RegionType.THOUGHT
    return RegionType.UNKNOWN


def region_mask(region: Region, shape: Tuple[int, int], offset: Tuple[float, float] = (0, 0)) -> NDArray:
    """Interior of ``region`` rebuilt from its contour, in a ``shape`` raster
    whose origin sits at ``offset`` in page coordinates."""
    mask = np.zeros(shape[:2], dtype=np.uint8)
    ox, oy = offset
    if len(region.contour) >= 3:
        pts = np.array([[int(x - ox), int(y - oy)] for x, y in region.contour], dtype=np.int32)
        cv2.fillPoly(mask, [pts], 255)
        cv2.polylines(mask, [pts], True, 255)
    else:
        b = region.bbox
        x1, y1 = int(b.x - ox), int(b.y - oy)
        mask[max(0, y1):max(0, int(y1 + b.height)), max(0, x1):max(0, int(x1 + b.width))] = 255
    return mask > 0


@dataclass(frozen=True)
class RegionGroup:
    """Bubbles close enough to be read together."""

    group: int
    regions: Tuple[Region, ...]
    bbox: BoundingBox


def group_regions(regions: Sequence[Region], max_distance: float) -> List[Region]:
    """Tag ``regions`` with single-linkage bubble groups, keeping their order.

    Groups are numbered from 1 in order of their first region.
    """
    labels = agglomerative_labels([r.bbox for r in regions], max_distance)
    return [replace(r, group=label + 1) for r, label in zip(regions, labels)]


def region_groups(regions: Sequence[Region]) -> List[RegionGroup]:
    """Collect tagged regions into groups with their enclosing boxes."""
    members: Dict[int, List[Region]] = {}
    for region in regions:
        members.setdefault(region.group, []).append(region)
    return [
        RegionGroup(group=g, regions=tuple(rs), bbox=cluster_bounds([r.bbox for r in rs]))
        for g, rs in members.items()
    ]


class RegionDetector:
    """Finds and classifies text regions in one panel crop."""

    def __init__(self, config: Optional[RegionConfig] = None):
        self.config = config or RegionConfig()

    def detect(
        self,
        image: NDArray,
        candidates: Optional[Sequence[BoundingBox]] = None,
        offset: Tuple[float, float] = (0, 0),
    ) -> List[Region]:
        """Regions in reading order.

        Args:
            image: panel crop (grayscale or BGR)
            candidates: boxes in crop coordinates; searched for when None
            offset: page position of the crop's origin, added to results

        Returns:
            Regions in page coordinates
        """
        cfg = self.config
        gray = to_grayscale(image)
        if gray.size == 0:
            return []
        if candidates is None:
            candidates = self.find_candidates(gray)
        else:
            candidates = self.filter_candidates(candidates)

        ox, oy = offset
        regions = []
        for cand in candidates:
            region = self.refine(gray, cand)
            if region is None:
                continue
            regions.append(replace(
                region,
                bbox=translate(region.bbox, ox, oy),
                contour=tuple((x + ox, y + oy) for x, y in region.contour),
            ))

        order = row_order([r.bbox for r in regions], cfg.row_tolerance, cfg.reading_direction)
        regions = group_regions(assign_reading_order(regions, order), cfg.group_distance)
        log.debug(f"[Regions] {len(regions)} regions at offset ({ox:.0f}, {oy:.0f})")
        return regions

    def filter_candidates(self, candidates: Sequence[BoundingBox]) -> List[BoundingBox]:
        """Suppress duplicates, then drop boxes outside the size / aspect limits."""
        cfg = self.config
        boxes = [b for b in sanitize(candidates) if score_of(b) >= cfg.min_confidence]
        boxes = suppress(boxes, cfg.nms_method, cfg.nms_iou_threshold)
        kept = []
        for b in boxes:
            if not (cfg.min_area <= b.area <= cfg.max_area):
                continue
            aspect = max(b.width / b.height, b.height / b.width)
            if aspect > cfg.aspect_ratio_limit:
                continue
            kept.append(b)
        log.debug(f"[Regions] Candidates: {len(candidates)} -> {len(kept)}")
        return kept

    def find_candidates(self, gray: NDArray) -> List[ScoredBox]:
        """Bright enclosed blobs holding some ink, scored by fill ratio."""
        cfg = self.config
        h, w = gray.shape
        bright = (gray > cfg.bright_threshold).astype(np.uint8) * 255
        kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (3, 3))
        bright = cv2.morphologyEx(bright, cv2.MORPH_OPEN, kernel)
        components = extract_components(bright, connectivity=4)

        found: List[ScoredBox] = []
        for blob in components.blobs:
            b = blob.bbox
            if b.x <= 0 or b.y <= 0 or b.x2 >= w or b.y2 >= h:
                continue
            if not (cfg.min_area <= b.area <= cfg.max_area):
                continue
            if b.area > cfg.max_panel_ratio * w * h:
                continue
            if max(b.width / b.height, b.height / b.width) > cfg.aspect_ratio_limit:
                continue
            own = components.mask_for(blob)
            filled = fill_holes(own)
            filled_px = int(filled.sum())
            ink = (filled_px - blob.pixel_count) / max(filled_px, 1)
            if ink < cfg.min_ink_ratio:
                continue
            found.append(ScoredBox(b.x, b.y, b.width, b.height, confidence=filled_px / b.area))
        log.debug(f"[Regions] Found {len(found)} bright candidates")
        return found

    def _component_for(self, gray: NDArray, cand: BoundingBox) -> Optional[Tuple[NDArray, int, int]]:
        """Filled mask of the bright component best covering ``cand``,
        with its crop origin."""
        cfg = self.config
        h, w = gray.shape
        roi = clip_to_bounds(expand(cand, cfg.roi_padding), w, h)
        x1, y1 = int(roi.x), int(roi.y)
        x2, y2 = int(math.ceil(roi.x2)), int(math.ceil(roi.y2))
        if x2 <= x1 or y2 <= y1:
            return None
        patch = gray[y1:y2, x1:x2]
        components = extract_components(patch > cfg.bright_threshold, connectivity=4)
        if not components.blobs:
            return None

        cx1, cy1 = max(0, int(cand.x) - x1), max(0, int(cand.y) - y1)
        cx2, cy2 = int(math.ceil(cand.x2)) - x1, int(math.ceil(cand.y2)) - y1
        inside = components.labels[cy1:cy2, cx1:cx2]
        counts = np.bincount(inside.ravel(), minlength=int(components.labels.max()) + 1)
        counts[0] = 0
        label = int(np.argmax(counts))
        if counts[label] == 0:
            return None
        return fill_holes(components.labels == label), x1, y1

    def refine(self, gray: NDArray, cand: BoundingBox) -> Optional[Region]:
        """Fit the candidate's outline and classify it."""
        cfg = self.config
        base_conf = score_of(cand) if getattr(cand, "confidence", None) is not None else 1.0
        class_id = getattr(cand, "class_id", None)
        hint = CLASS_TYPES[class_id] if class_id is not None and 0 <= class_id < len(CLASS_TYPES) else RegionType.UNKNOWN

        found = self._component_for(gray, cand)
        if found is None:
            return Region(
                bbox=BoundingBox(cand.x, cand.y, cand.width, cand.height),
                type=hint,
                confidence=base_conf * FALLBACK_QUALITY,
                class_id=class_id,
            )

        mask, x1, y1 = found
        contour = trace_boundary(PixelGrid(mask), cfg.contour_max_steps)
        points = [(x + x1, y + y1) for x, y in contour.points]
        if len(points) < 3:
            return None
        xs = [p[0] for p in points]
        ys = [p[1] for p in points]
        bbox = BoundingBox(min(xs), min(ys), max(xs) - min(xs) + 1, max(ys) - min(ys) + 1)

        area = float(mask.sum())
        perimeter = contour.perimeter
        hull = convex_hull(points)
        hull_area = shoelace_area(hull)
        circularity = min(1.0, 4 * math.pi * area / (perimeter ** 2)) if perimeter > 0 else 0.0
        features = ShapeFeatures(
            circularity=circularity,
            solidity=area / bbox.area,
            convexity=min(1.0, area / hull_area) if hull_area > 0 else 0.0,
            edge_roughness=edge_roughness(points, math.hypot(*mask.shape), cfg.roughness_samples),
            has_tail=detect_tail(points, hull, cfg.tail_defect_depth, cfg.defect_min_depth),
            is_vertical=bbox.height > bbox.width * 1.5,
        )
        rtype = classify_region(features, cfg)
        if rtype is RegionType.UNKNOWN:
            rtype = hint
        quality = min(1.0, circularity * 1.5)
        return Region(
            bbox=bbox,
            type=rtype,
            confidence=base_conf * quality,
            features=features,
            contour=tuple(points),
            class_id=class_id,
        )
