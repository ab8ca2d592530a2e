"""Text line extraction inside a speech region.

Pipeline:
1. Downsample large crops
2. Dominant orientation from dark-pixel projection variance
3. Adaptive threshold + closing along the writing direction
4. Connected components, filtered by size / aspect / density
5. Furigana separated from main text by relative height and proximity
6. Blobs grouped into lines (rows or columns), lines put in reading order
7. Furigana attached to the line of their nearest main blob
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from ..config import TextConfig
from ..image_utils import downsample, to_grayscale
from .boxes import BoundingBox, center_distance, clip_to_bounds, format_box, union_all
from .components import PixelBlob, extract_components
from .reading_order import (
    assign_reading_order,
    auto_order,
    column_order,
    group_columns,
    group_rows,
    row_order,
)

log = logging.getLogger(__name__)

FURIGANA_CONFIDENCE = 0.8


class TextOrientation(str, Enum):
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    MIXED = "mixed"


@dataclass(frozen=True)
class Furigana:
    """Small reading-aid glyph attached to a main text line."""

    bbox: BoundingBox
    centroid: Tuple[float, float]
    confidence: float = FURIGANA_CONFIDENCE

    def to_dict(self) -> Dict[str, Any]:
        return {"bbox": format_box(self.bbox), "confidence": self.confidence}


@dataclass(frozen=True)
class TextLine:
    bbox: BoundingBox
    orientation: TextOrientation
    blobs: Tuple[PixelBlob, ...]
    char_count: int
    avg_char_size: Tuple[float, float]
    confidence: float
    reading_order: int = 0
    furigana: Tuple[Furigana, ...] = ()
    text: Optional[str] = None

    def with_text(self, text: str) -> "TextLine":
        """Copy carrying recognised text."""
        return replace(self, text=text)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bbox": format_box(self.bbox),
            "orientation": self.orientation.value,
            "char_count": self.char_count,
            "avg_char_size": [round(v, 1) for v in self.avg_char_size],
            "confidence": round(self.confidence, 3),
            "reading_order": self.reading_order,
            "furigana": [f.to_dict() for f in self.furigana],
            "text": self.text,
        }


def detect_text_orientation(gray: NDArray, dark_threshold: int = 128, ratio: float = 1.5) -> TextOrientation:
    """Compare row and column projection variance of dark pixels.

    Horizontal text makes row sums swing between lines and gaps; vertical
    text does the same for column sums.
    """
    dark = gray < dark_threshold
    h, w = dark.shape
    if h == 0 or w == 0:
        return TextOrientation.MIXED
    h_score = float(np.var(dark.sum(axis=1))) / (h * h)
    v_score = float(np.var(dark.sum(axis=0))) / (w * w)
    if v_score > h_score * ratio:
        return TextOrientation.VERTICAL
    if h_score > v_score * ratio:
        return TextOrientation.HORIZONTAL
    return TextOrientation.MIXED


def binarize_text(gray: NDArray, orientation: TextOrientation, config: TextConfig) -> NDArray:
    """Ink mask (255 = ink) closed along the writing direction."""
    block = max(3, config.adaptive_block | 1)
    binary = cv2.adaptiveThreshold(
        gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY_INV, block, config.adaptive_C
    )
    kw, kh = config.morph_kernel_width, config.morph_kernel_height
    if orientation is TextOrientation.HORIZONTAL:
        kw, kh = kh, kw
    kernel = np.ones((kh, kw), np.uint8)
    return cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)


def filter_blobs(blobs: Sequence[PixelBlob], orientation: TextOrientation, config: TextConfig) -> List[PixelBlob]:
    kept = []
    for blob in blobs:
        if not (config.min_blob_area <= blob.pixel_count <= config.max_blob_area):
            continue
        aspect = blob.width / blob.height
        if not (config.min_aspect <= aspect <= config.max_aspect):
            continue
        if blob.density < config.min_density:
            continue
        if orientation is TextOrientation.VERTICAL and aspect > config.vertical_max_aspect:
            continue
        if orientation is TextOrientation.HORIZONTAL and aspect < config.horizontal_min_aspect:
            continue
        kept.append(blob)
    return kept


def separate_furigana(blobs: Sequence[PixelBlob], config: TextConfig) -> Tuple[List[PixelBlob], List[PixelBlob]]:
    """Split blobs into (main text, furigana).

    A blob is furigana when it is much shorter than the base text height and
    sits near a main blob. Small blobs far from any main text (punctuation,
    isolated marks) stay main text.
    """
    if len(blobs) < 2:
        return list(blobs), []
    heights = sorted((b.height for b in blobs), reverse=True)
    base = heights[min(len(heights) - 1, int(len(heights) * config.furigana_base_rank))]

    def is_small(b: PixelBlob) -> bool:
        return b.height < base * config.furigana_size_ratio and b.height < config.furigana_max_height

    main = [b for b in blobs if not is_small(b)]
    furigana = []
    for blob in blobs:
        if not is_small(blob):
            continue
        near = any(center_distance(blob.bbox, m.bbox) <= config.furigana_proximity * base for m in main)
        if near:
            furigana.append(blob)
        else:
            main.append(blob)
    return main, furigana


def make_line(blobs: Sequence[PixelBlob], orientation: TextOrientation) -> TextLine:
    """Line geometry and confidence from its blobs."""
    bbox = union_all(b.bbox for b in blobs)
    widths = [b.width for b in blobs]
    heights = [b.height for b in blobs]
    # glyph size across the writing direction should be steady
    sizes = widths if orientation is TextOrientation.VERTICAL else heights
    mean_size = float(np.mean(sizes))
    consistency = max(0.0, 1.0 - float(np.std(sizes)) / mean_size) if mean_size > 0 else 0.0
    density = min(1.0, float(np.mean([b.density for b in blobs])))
    confidence = (consistency * 0.6 + density * 0.4) * 0.8 + 0.2

    if orientation is TextOrientation.VERTICAL:
        long_side, short_side = bbox.height, bbox.width
    else:
        long_side, short_side = bbox.width, bbox.height
    estimate = int(round(long_side / short_side)) if short_side > 0 else 0

    return TextLine(
        bbox=bbox,
        orientation=orientation,
        blobs=tuple(blobs),
        char_count=max(len(blobs), estimate),
        avg_char_size=(float(np.mean(widths)), float(np.mean(heights))),
        confidence=confidence,
    )


def group_lines(blobs: Sequence[PixelBlob], orientation: TextOrientation, config: TextConfig) -> List[List[int]]:
    """Blob indices per line: columns for vertical text, rows otherwise.

    Within a line, indices follow the writing direction.
    """
    boxes = [b.bbox for b in blobs]
    if orientation is TextOrientation.VERTICAL:
        groups = group_columns(boxes, config.line_tolerance, config.vertical_direction)
        return [sorted(g, key=lambda i: boxes[i].center_y) for g in groups]
    groups = group_rows(boxes, config.line_tolerance)
    sign = -1 if config.horizontal_direction == "rtl" else 1
    return [sorted(g, key=lambda i: sign * boxes[i].center_x) for g in groups]


def attach_furigana(
    lines: List[TextLine],
    groups: List[List[int]],
    main: Sequence[PixelBlob],
    furigana: Sequence[PixelBlob],
) -> List[TextLine]:
    """Give each furigana blob to the line holding its nearest main blob."""
    if not furigana or not main:
        return lines
    line_of = {}
    for li, group in enumerate(groups):
        for i in group:
            line_of[i] = li
    attached: Dict[int, List[Furigana]] = {}
    for blob in furigana:
        nearest = min(range(len(main)), key=lambda i: center_distance(blob.bbox, main[i].bbox))
        attached.setdefault(line_of[nearest], []).append(
            Furigana(bbox=blob.bbox, centroid=blob.centroid)
        )
    return [
        replace(line, furigana=tuple(attached.get(li, ()))) for li, line in enumerate(lines)
    ]


class TextLineExtractor:
    """Turns a region crop into ordered text lines."""

    def __init__(self, config: Optional[TextConfig] = None):
        self.config = config or TextConfig()

    def extract(self, image: NDArray, offset: Tuple[float, float] = (0, 0)) -> List[TextLine]:
        """Text lines of ``image``, in reading order.

        Args:
            image: region crop, ink dark on bright paper
            offset: page position of the crop's origin

        Returns:
            Lines in page coordinates; empty when no text is found
        """
        cfg = self.config
        gray = to_grayscale(image)
        if gray.shape[0] < 2 or gray.shape[1] < 2:
            return []
        work, scale = downsample(gray, cfg.downsample_max_dim)
        orientation = detect_text_orientation(work, cfg.dark_threshold, cfg.orientation_ratio)
        binary = binarize_text(work, orientation, cfg)
        components = extract_components(binary, connectivity=8)
        blobs = filter_blobs(components.blobs, orientation, cfg)

        ox, oy = offset
        inv = 1.0 / scale
        blobs = [(b.scaled(inv) if scale != 1.0 else b).translated(ox, oy) for b in blobs]
        lines = self.build_lines(blobs, orientation)
        log.debug(
            f"[Text] {orientation.value}: {len(components.blobs)} blobs -> "
            f"{len(blobs)} kept -> {len(lines)} lines"
        )
        return lines

    def build_lines(self, blobs: Sequence[PixelBlob], orientation: TextOrientation) -> List[TextLine]:
        """Group filtered blobs into ordered lines, with furigana attached."""
        cfg = self.config
        main, furigana = separate_furigana(blobs, cfg)
        if not main:
            return []

        groups = group_lines(main, orientation, cfg)
        lines = [make_line([main[i] for i in g], orientation) for g in groups]
        lines = attach_furigana(lines, groups, main, furigana)

        line_boxes = [line.bbox for line in lines]
        if orientation is TextOrientation.VERTICAL:
            order = column_order(line_boxes, cfg.line_tolerance, cfg.vertical_direction)
        elif orientation is TextOrientation.HORIZONTAL:
            order = row_order(line_boxes, cfg.line_tolerance, cfg.horizontal_direction)
        else:
            order = auto_order(line_boxes, cfg.line_tolerance, cfg.horizontal_direction)
        return assign_reading_order(lines, order)

    def extract_with_mask(self, gray: NDArray, line: TextLine, padding: int = 0) -> Tuple[NDArray, NDArray]:
        """Crop of ``line`` from ``gray`` plus its ink mask (pixels below the dark threshold)."""
        gray = to_grayscale(gray)
        h, w = gray.shape
        box = clip_to_bounds(line.bbox, w, h)
        x1 = max(0, int(box.x) - padding)
        y1 = max(0, int(box.y) - padding)
        x2 = min(w, int(math.ceil(box.x2)) + padding)
        y2 = min(h, int(math.ceil(box.y2)) + padding)
        crop = gray[y1:y2, x1:x2].copy()
        return crop, crop < self.config.dark_threshold

    def extract_batch(self, crops: Dict[Hashable, NDArray]) -> Dict[Hashable, List[TextLine]]:
        """Lines for several crops keyed by caller ids; a failing crop yields no lines."""
        results: Dict[Hashable, List[TextLine]] = {}
        for key, crop in crops.items():
            try:
                results[key] = self.extract(crop)
            except (ValueError, cv2.error) as e:
                log.warning(f"[Text] Crop {key!r} failed: {e}")
                results[key] = []
        return results
