"""comicstruct - structure analysis for scanned comic and manga pages.

Finds panels, the speech / narration regions inside them and the text
lines inside those, each level in reading order.
"""

__version__ = "0.3.0"

from .config import AnalyzerConfig, PanelConfig, RegionConfig, TextConfig
from .detector import PageAnalyzer, PageStructure

__all__ = [
    "AnalyzerConfig",
    "PanelConfig",
    "RegionConfig",
    "TextConfig",
    "PageAnalyzer",
    "PageStructure",
]
