"""Page structure engine for comicstruct.

This package provides a modular architecture for page analysis:
- base.py: PageAnalyzer, the page -> panels -> regions -> lines flow
- boxes.py: box geometry and overlap metrics
- suppression.py: NMS variants and box fusion
- clustering.py: DBSCAN and agglomerative grouping of boxes
- components.py: pixel grids, labeling, flood fills
- contours.py: boundary tracing, hulls, corners, convexity defects
- panels.py: panel segmentation
- regions.py: speech / narration region detection
- text_lines.py: text line and furigana extraction
- reading_order.py: row / column reading order
"""

from __future__ import annotations

from .base import PageAnalyzer, PageStructure
from .boxes import BoundingBox, MergeStrategy, ScoredBox
from .panels import Panel, PanelSegmenter, PanelType
from .reading_order import ReadingDirection, ReadingLayout
from .regions import Region, RegionDetector, RegionType
from .suppression import SuppressionMethod
from .text_lines import Furigana, TextLine, TextLineExtractor, TextOrientation

__all__ = [
    "PageAnalyzer",
    "PageStructure",
    "BoundingBox",
    "ScoredBox",
    "MergeStrategy",
    "Panel",
    "PanelSegmenter",
    "PanelType",
    "ReadingDirection",
    "ReadingLayout",
    "Region",
    "RegionDetector",
    "RegionType",
    "SuppressionMethod",
    "Furigana",
    "TextLine",
    "TextLineExtractor",
    "TextOrientation",
]
