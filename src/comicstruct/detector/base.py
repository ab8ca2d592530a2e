"""PageAnalyzer: page -> panels -> regions -> text lines.

This is the main entry point, coordinating:
- Panel segmentation (panels.py)
- Region detection and classification per panel (regions.py)
- Text line extraction per region (text_lines.py)
- Assignment of upstream candidate boxes to panels
- Batch analysis on a shared thread pool
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from numpy.typing import NDArray

from ..config import AnalyzerConfig
from ..image_utils import InkPolarity, to_grayscale
from .boxes import (
    BoundingBox,
    bbox_corners,
    clip_to_bounds,
    contains,
    intersection_area,
    sanitize,
    translate,
)
from .panels import Panel, PanelSegmenter, PanelType
from .regions import Region, RegionDetector, region_mask
from .text_lines import TextLine, TextLineExtractor

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageStructure:
    """Everything found on one page, in page coordinates."""

    width: int
    height: int
    scale: float = 1.0
    panels: Tuple[Panel, ...] = ()

    @classmethod
    def empty(cls) -> "PageStructure":
        return cls(width=0, height=0)

    def regions(self) -> Iterator[Region]:
        for panel in self.panels:
            yield from panel.regions

    def lines(self) -> Iterator[TextLine]:
        for region in self.regions():
            yield from region.lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "scale": round(self.scale, 4),
            "panels": [p.to_dict() for p in self.panels],
        }


def _int_bounds(box: BoundingBox, width: int, height: int) -> Tuple[int, int, int, int]:
    box = clip_to_bounds(box, width, height)
    return int(box.x), int(box.y), int(math.ceil(box.x2)), int(math.ceil(box.y2))


class PageAnalyzer:
    """Stateless page structure analyzer.

    Every call works on its own arrays, so one instance can serve several
    threads.
    """

    # Shared thread pools, one per worker count
    _executors: Dict[int, ThreadPoolExecutor] = {}
    _executor_lock = threading.Lock()

    def __init__(self, config: Optional[AnalyzerConfig] = None):
        """Initialize analyzer with configuration.

        Args:
            config: Analysis parameters. Uses defaults if None.
        """
        self.config = config or AnalyzerConfig()
        self.segmenter = PanelSegmenter(self.config.panels)
        self.region_detector = RegionDetector(self.config.regions)
        self.text_extractor = TextLineExtractor(self.config.text)

    @classmethod
    def get_executor(cls, max_workers: int = 2) -> ThreadPoolExecutor:
        """Get or create the shared thread pool with ``max_workers`` threads.

        Analyzers asking for the same size share one pool.
        """
        with cls._executor_lock:
            executor = cls._executors.get(max_workers)
            if executor is None:
                executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="page_analyze")
                cls._executors[max_workers] = executor
            return executor

    def analyze(
        self,
        page: NDArray,
        candidates: Optional[Sequence[BoundingBox]] = None,
        scale: Optional[float] = None,
    ) -> PageStructure:
        """Analyze one page.

        Args:
            page: grayscale / BGR page, binary raster or boolean ink mask;
                ink polarity follows ``config.panels.ink_polarity``
            candidates: optional region boxes from an upstream detector, in
                page coordinates
            scale: panel segmentation working scale; derived from the page
                size when None

        Returns:
            PageStructure with panels, regions and lines in reading order
        """
        ink = InkPolarity(self.config.panels.ink_polarity)
        try:
            gray = to_grayscale(page, ink)
        except ValueError as e:
            log.warning(f"[Analyzer] Unusable page: {e}")
            return PageStructure.empty()
        if gray.size == 0:
            log.warning("[Analyzer] Empty page")
            return PageStructure.empty()

        h, w = gray.shape
        if scale is None:
            scale = min(1.0, self.config.panels.downsample_max_dim / float(max(h, w)))
        # gray is already paper bright, ink dark
        panels = self.segmenter.segment(gray, scale, ink=InkPolarity.DARK)

        if not panels and self.config.fallback_full_page and (gray < self.config.panels.background_threshold).any():
            log.info("[Analyzer] No panels found -> full-page panel")
            panels = [self._full_page_panel(w, h)]

        assigned: Optional[Dict[int, List[BoundingBox]]] = None
        if candidates is not None:
            assigned = self._assign_candidates(panels, sanitize(candidates))

        result = []
        for i, panel in enumerate(panels):
            panel_candidates = assigned.get(i, []) if assigned is not None else None
            result.append(self._analyze_panel(gray, panel, panel_candidates))

        structure = PageStructure(width=w, height=h, scale=scale, panels=tuple(result))
        log.info(
            f"[Analyzer] {w}x{h}: {len(result)} panels, "
            f"{sum(1 for _ in structure.regions())} regions, {sum(1 for _ in structure.lines())} lines"
        )
        return structure

    def analyze_batch(
        self,
        pages: Sequence[NDArray],
        candidates: Optional[Sequence[Optional[Sequence[BoundingBox]]]] = None,
    ) -> List[PageStructure]:
        """Analyze several pages on the shared thread pool, keeping input order."""
        if candidates is None:
            candidates = [None] * len(pages)
        if len(candidates) != len(pages):
            raise ValueError("candidates must match pages one to one")
        executor = self.get_executor(self.config.max_workers)
        futures = [executor.submit(self.analyze, page, cands) for page, cands in zip(pages, candidates)]
        return [f.result() for f in futures]

    def _full_page_panel(self, w: int, h: int) -> Panel:
        box = BoundingBox(0, 0, w, h)
        return Panel(
            bbox=box,
            corners=bbox_corners(box),
            area=float(w * h),
            solidity=1.0,
            type=PanelType.FULL_BLEED,
            touches_edge=True,
            confidence=0.5,
            reading_order=1,
        )

    def _assign_candidates(self, panels: Sequence[Panel], candidates: Sequence[BoundingBox]) -> Dict[int, List[BoundingBox]]:
        """Give each candidate to the panel holding most of it."""
        threshold = self.config.candidate_containment
        assigned: Dict[int, List[BoundingBox]] = {}
        dropped = 0
        for cand in candidates:
            best, best_overlap = None, 0.0
            for i, panel in enumerate(panels):
                if not contains(panel.bbox, cand, threshold):
                    continue
                overlap = intersection_area(panel.bbox, cand)
                if overlap > best_overlap:
                    best, best_overlap = i, overlap
            if best is None:
                dropped += 1
                continue
            assigned.setdefault(best, []).append(cand)
        if dropped:
            log.debug(f"[Analyzer] {dropped} candidates outside every panel")
        return assigned

    def _analyze_panel(
        self,
        gray: NDArray,
        panel: Panel,
        candidates: Optional[List[BoundingBox]],
    ) -> Panel:
        h, w = gray.shape
        x1, y1, x2, y2 = _int_bounds(panel.bbox, w, h)
        if x2 <= x1 or y2 <= y1:
            return panel
        crop = gray[y1:y2, x1:x2]
        local = [translate(c, -x1, -y1) for c in candidates] if candidates is not None else None
        regions = self.region_detector.detect(crop, local, offset=(x1, y1))
        regions = [replace(r, lines=tuple(self._extract_lines(gray, r))) for r in regions]
        return replace(panel, regions=tuple(regions))

    def _extract_lines(self, gray: NDArray, region: Region) -> List[TextLine]:
        h, w = gray.shape
        x1, y1, x2, y2 = _int_bounds(region.bbox, w, h)
        if x2 <= x1 or y2 <= y1:
            return []
        crop = gray[y1:y2, x1:x2].copy()
        inside = region_mask(region, crop.shape, (x1, y1))
        crop[~inside] = 255
        return self.text_extractor.extract(crop, offset=(x1, y1))
