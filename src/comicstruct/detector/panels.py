"""Panel segmentation for scanned comic pages.

Pipeline:
1. Grayscale + optional downsampling
2. Background = bright pixels flood-filled from the page edges
3. Panel block = non-background, dilated then eroded, holes filled
4. Each connected block is split recursively at projection valleys
5. Contour / hull / corner extraction per piece
6. Validation (area, aspect) and classification (standard, irregular,
   borderless, full_bleed, inset)
7. Reading order, then coordinates scaled back to the input page
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from ..config import PanelConfig
from ..image_utils import InkPolarity, downsample, resize, to_grayscale
from .boxes import BoundingBox, clip_to_bounds, contains, format_box, scale as scale_box, union_all
from .components import extract_components, fill_holes, flood_fill_from_edges
from .contours import extract_shape
from .reading_order import assign_reading_order, row_order

log = logging.getLogger(__name__)


class PanelType(str, Enum):
    STANDARD = "standard"
    BORDERLESS = "borderless"
    IRREGULAR = "irregular"
    FULL_BLEED = "full_bleed"
    INSET = "inset"


@dataclass(frozen=True)
class Panel:
    """One panel in page coordinates."""

    bbox: BoundingBox
    corners: Tuple[Tuple[float, float], ...]
    area: float
    solidity: float
    type: PanelType = PanelType.STANDARD
    touches_edge: bool = False
    confidence: float = 0.0
    reading_order: int = 0
    parent: Optional[int] = None
    regions: Tuple[Any, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bbox": format_box(self.bbox),
            "corners": [[round(x, 1), round(y, 1)] for x, y in self.corners],
            "area": round(self.area, 1),
            "solidity": round(self.solidity, 3),
            "type": self.type.value,
            "touches_edge": self.touches_edge,
            "confidence": round(self.confidence, 3),
            "reading_order": self.reading_order,
            "parent": self.parent,
            "regions": [r.to_dict() for r in self.regions],
        }


@dataclass(frozen=True)
class PanelGroup:
    """Panels sharing a border, treated as one reading unit."""

    panels: Tuple[Panel, ...]
    bbox: BoundingBox
    reading_order: int


@dataclass(frozen=True)
class Split:
    axis: int          # 0 cuts between rows, 1 cuts between columns
    position: int
    score: float
    confidence: float


# ------------------------------------------------------------
# Background and panel block
# ------------------------------------------------------------
def background_mask(gray: NDArray, threshold: int = 240) -> NDArray:
    """Bright pixels 4-connected to the page edge."""
    return flood_fill_from_edges(gray > threshold, connectivity=4)


def panel_block(gray: NDArray, config: PanelConfig) -> NDArray:
    """Boolean mask of everything that is not page background, closed and hole-filled."""
    fg = (~background_mask(gray, config.background_threshold)).astype(np.uint8) * 255
    kernel = np.ones((config.morph_kernel, config.morph_kernel), np.uint8)
    if config.dilation_iterations > 0:
        fg = cv2.dilate(fg, kernel, iterations=config.dilation_iterations)
    if config.dilation_iterations > 1:
        fg = cv2.erode(fg, kernel, iterations=config.dilation_iterations - 1)
    return fill_holes(fg > 0)


# ------------------------------------------------------------
# Recursive splitting
# ------------------------------------------------------------
def _best_gap(proj: NDArray, min_gap: int) -> Optional[Tuple[int, float, float]]:
    """Lowest valley of a projection: (position, score, confidence)."""
    proj = proj.astype(float)
    n = len(proj)
    lo, hi = max(1, min_gap), n - max(1, min_gap)
    if hi <= lo:
        return None
    idx = np.arange(lo, hi)
    csum = np.cumsum(proj)
    total = csum[-1]
    left = csum[idx - 1]
    right = total - left
    center = proj[idx]
    valid = (left > 0) & (right - center > 0)
    if not valid.any():
        return None

    score = np.where(valid, total / (center + 1.0), -np.inf)
    k = int(np.argmax(score))
    left_peak = float(np.max(proj[:idx[k]]))
    right_peak = float(np.max(proj[idx[k] + 1:]))
    peak = min(left_peak, right_peak)
    confidence = 1.0 - center[k] / peak if peak > 0 else 0.0
    return int(idx[k]), float(score[k]), max(0.0, float(confidence))


def find_split(
    mask: NDArray,
    min_gap: int = 10,
    min_score: float = 2.0,
    min_confidence: float = 0.3,
) -> Optional[Split]:
    """Best horizontal or vertical cut of ``mask``, or None.

    Each axis proposes the position maximising ``(left+right)/(center+1)``.
    A proposal counts only when its score exceeds ``min_score`` and its
    valley is at least ``min_confidence`` deep relative to the smaller peak
    on either side; the higher-scoring surviving axis wins.
    """
    best: Optional[Split] = None
    for axis, proj in ((0, mask.sum(axis=1)), (1, mask.sum(axis=0))):
        gap = _best_gap(proj, min_gap)
        if gap is None:
            continue
        pos, score, confidence = gap
        if score <= min_score or confidence < min_confidence:
            continue
        if best is None or score > best.score:
            best = Split(axis, pos, score, confidence)
    return best


def _trim(mask: NDArray, offset: Tuple[int, int]) -> Tuple[NDArray, Tuple[int, int]]:
    rows = np.flatnonzero(mask.any(axis=1))
    cols = np.flatnonzero(mask.any(axis=0))
    if len(rows) == 0:
        return mask[:0, :0], offset
    y0, y1, x0, x1 = rows[0], rows[-1], cols[0], cols[-1]
    return mask[y0:y1 + 1, x0:x1 + 1], (offset[0] + int(x0), offset[1] + int(y0))


# ------------------------------------------------------------
# Classification
# ------------------------------------------------------------
def classify_panel(
    solidity: float,
    aspect: float,
    touches_edge: bool,
    area_ratio: float,
    config: PanelConfig,
) -> PanelType:
    ptype = PanelType.STANDARD if solidity > config.min_solidity else PanelType.IRREGULAR
    if solidity < config.borderless_solidity and aspect < config.borderless_max_aspect:
        ptype = PanelType.BORDERLESS
    if touches_edge and area_ratio > config.full_bleed_area_ratio:
        ptype = PanelType.FULL_BLEED
    return ptype


def mark_insets(panels: Sequence[Panel], threshold: float = 0.95) -> List[Panel]:
    """Mark panels lying inside a larger panel as insets.

    ``parent`` is the index (in ``panels``) of the smallest larger panel
    that contains at least ``threshold`` of the inset.
    """
    result = list(panels)
    for i, panel in enumerate(panels):
        parent = None
        for j, other in enumerate(panels):
            if i == j or other.bbox.area <= panel.bbox.area:
                continue
            if not contains(other.bbox, panel.bbox, threshold):
                continue
            if parent is None or other.bbox.area < panels[parent].bbox.area:
                parent = j
        if parent is not None:
            result[i] = replace(panel, type=PanelType.INSET, parent=parent)
    return result


def is_joined(a: Panel, b: Panel, min_overlap: float = 0.8, max_gap: float = 5.0) -> bool:
    """Panels sharing most of a border with (almost) no gutter between them."""
    A, B = a.bbox, b.bbox
    v_overlap = min(A.y2, B.y2) - max(A.y, B.y)
    if v_overlap > min_overlap * min(A.height, B.height):
        gap = max(B.x - A.x2, A.x - B.x2)
        if -max_gap < gap < max_gap:
            return True
    h_overlap = min(A.x2, B.x2) - max(A.x, B.x)
    if h_overlap > min_overlap * min(A.width, B.width):
        gap = max(B.y - A.y2, A.y - B.y2)
        if -max_gap < gap < max_gap:
            return True
    return False


def group_joined_panels(panels: Sequence[Panel], min_overlap: float = 0.8, max_gap: float = 5.0) -> List[PanelGroup]:
    """Connected groups of joined panels, ordered by their first panel."""
    seen = set()
    groups: List[PanelGroup] = []
    for start in range(len(panels)):
        if start in seen:
            continue
        seen.add(start)
        members = []
        queue = deque([start])
        while queue:
            i = queue.popleft()
            members.append(i)
            for j in range(len(panels)):
                if j not in seen and is_joined(panels[i], panels[j], min_overlap, max_gap):
                    seen.add(j)
                    queue.append(j)
        chosen = tuple(panels[i] for i in sorted(members))
        groups.append(PanelGroup(
            panels=chosen,
            bbox=union_all(p.bbox for p in chosen),
            reading_order=min(p.reading_order for p in chosen),
        ))
    groups.sort(key=lambda g: g.reading_order)
    return groups


def crop_panel(page: NDArray, panel: Panel, background: int = 255) -> NDArray:
    """Pixels of ``panel``; non-rectangular panels are masked to their corner quadrilateral."""
    h, w = page.shape[:2]
    box = clip_to_bounds(panel.bbox, w, h)
    x1, y1 = int(box.x), int(box.y)
    x2, y2 = int(np.ceil(box.x2)), int(np.ceil(box.y2))
    crop = page[y1:y2, x1:x2].copy()
    if panel.type in (PanelType.STANDARD, PanelType.FULL_BLEED, PanelType.INSET) or crop.size == 0:
        return crop
    poly = np.array([[int(round(x - x1)), int(round(y - y1))] for x, y in panel.corners], dtype=np.int32)
    mask = np.zeros(crop.shape[:2], dtype=np.uint8)
    cv2.fillPoly(mask, [poly], 255)
    crop[mask == 0] = background
    return crop


# ------------------------------------------------------------
# Segmenter
# ------------------------------------------------------------
class PanelSegmenter:
    """Finds panels on a page raster.

    Pages are read as paper bright and ink dark, after the ink polarity
    conversion done by ``to_grayscale``.
    """

    def __init__(self, config: Optional[PanelConfig] = None):
        self.config = config or PanelConfig()

    def segment(
        self,
        page: NDArray,
        scale: Optional[float] = None,
        ink: Optional[InkPolarity] = None,
    ) -> List[Panel]:
        """Detect panels.

        Args:
            page: grayscale / BGR page, binary raster or boolean ink mask
            scale: working scale; derived from ``downsample_max_dim`` when None
            ink: how ``page`` encodes ink; ``config.ink_polarity`` when None

        Returns:
            Panels in reading order, in the input page's coordinates
        """
        cfg = self.config
        gray = to_grayscale(page, ink if ink is not None else cfg.ink_polarity)
        if gray.size == 0:
            log.warning("[Panels] Empty page")
            return []
        if scale is None:
            work, scale = downsample(gray, cfg.downsample_max_dim)
        else:
            if scale <= 0:
                raise ValueError(f"scale must be positive, got {scale}")
            work = resize(gray, scale)
        H, W = work.shape

        block = panel_block(work, cfg)
        components = extract_components(block, connectivity=8, min_pixels=cfg.min_component_pixels)
        log.debug(f"[Panels] {len(components.blobs)} blocks at {W}x{H} (scale={scale:.3f})")

        pieces: List[Tuple[NDArray, Tuple[int, int]]] = []
        for blob in components.blobs:
            mask = components.mask_for(blob)
            pieces.extend(self.split_region(mask, (int(blob.bbox.x), int(blob.bbox.y))))

        panels = []
        for mask, offset in pieces:
            panel = self._build_panel(mask, offset, W, H, scale)
            if panel is not None:
                panels.append(panel)

        order = row_order([p.bbox for p in panels], cfg.row_tolerance, cfg.reading_direction)
        panels = mark_insets(assign_reading_order(panels, order), cfg.inset_containment)
        log.info(f"[Panels] Final: {len(panels)} panels, direction={cfg.reading_direction}")
        return panels

    def split_region(
        self,
        mask: NDArray,
        offset: Tuple[int, int] = (0, 0),
        depth: int = 0,
    ) -> List[Tuple[NDArray, Tuple[int, int]]]:
        """Recursively cut ``mask`` at projection valleys into panel pieces."""
        cfg = self.config
        mask, offset = _trim(mask, offset)
        if mask.size == 0:
            return []
        if depth >= cfg.max_split_depth:
            return [(mask, offset)]

        split = find_split(mask, cfg.split_min_gap // 2, cfg.min_split_score, cfg.min_split_confidence)
        if split is None:
            return [(mask, offset)]

        ox, oy = offset
        if split.axis == 0:
            first, second = mask[:split.position], mask[split.position:]
            second_offset = (ox, oy + split.position)
        else:
            first, second = mask[:, :split.position], mask[:, split.position:]
            second_offset = (ox + split.position, oy)
        if first.sum() <= cfg.min_split_pixels or second.sum() <= cfg.min_split_pixels:
            return [(mask, offset)]

        log.debug(
            f"[Panels] Split axis={split.axis} at {split.position} "
            f"(score={split.score:.1f}, conf={split.confidence:.2f}, depth={depth})"
        )
        return self.split_region(first, offset, depth + 1) + self.split_region(second, second_offset, depth + 1)

    def _build_panel(
        self,
        mask: NDArray,
        offset: Tuple[int, int],
        page_w: int,
        page_h: int,
        scale: float,
    ) -> Optional[Panel]:
        cfg = self.config
        ox, oy = offset
        h, w = mask.shape
        pixels = int(mask.sum())
        area_ratio = pixels / float(page_w * page_h)
        if not (cfg.min_area_ratio <= area_ratio <= cfg.max_area_ratio):
            log.debug(f"[Panels] Reject area_ratio={area_ratio:.3f} at ({ox}, {oy})")
            return None
        aspect = w / float(h)
        if aspect > cfg.aspect_ratio_limit or aspect < 1.0 / cfg.aspect_ratio_limit:
            log.debug(f"[Panels] Reject aspect={aspect:.2f} at ({ox}, {oy})")
            return None

        solidity = pixels / float(w * h)
        shape = extract_shape(mask, (ox, oy), cfg.contour_max_steps, cfg.corner_search_radius)
        m = cfg.edge_margin
        touches = ox <= m or oy <= m or ox + w >= page_w - m or oy + h >= page_h - m
        ptype = classify_panel(solidity, aspect, touches, area_ratio, cfg)
        confidence = min(1.0, max(0.0, solidity * (1 - abs(1 - aspect) / 10)))

        inv = 1.0 / scale
        return Panel(
            bbox=scale_box(BoundingBox(ox, oy, w, h), inv),
            corners=tuple((x * inv, y * inv) for x, y in shape.corners),
            area=pixels * inv * inv,
            solidity=solidity,
            type=ptype,
            touches_edge=touches,
            confidence=confidence,
        )
