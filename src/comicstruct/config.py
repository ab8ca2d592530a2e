"""Configuration dataclasses for comicstruct.

One dataclass per stage (panels, regions, text lines) nested in
AnalyzerConfig. Each serialises to a plain dict so a YAML file or a preset
can override any subset of fields.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

log = logging.getLogger(__name__)

PRESET_ENV_VAR = "COMICSTRUCT_PRESET"


class _ConfigMixin:
    def copy(self):
        """Return a deep copy of this configuration."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            log.debug(f"[Config] Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class PanelConfig(_ConfigMixin):
    """Panel segmentation. Area ratios are relative to the page area."""

    # Background / panel block
    ink_polarity: str = "auto"        # "dark", "bright" (0 = background, 255 = ink) or "auto"
    background_threshold: int = 240   # Brighter edge-connected pixels are paper
    morph_kernel: int = 3             # Square kernel for dilate / erode
    dilation_iterations: int = 2      # Erosion runs one iteration fewer

    # Recursive splitting
    min_split_score: float = 2.0      # (left+right)/(center+1) must exceed this
    min_split_confidence: float = 0.3 # Valley depth relative to the smaller side peak
    split_min_gap: int = 20           # Split positions stay split_min_gap/2 from the ends
    min_split_pixels: int = 100       # Both halves need more pixels than this
    max_split_depth: int = 10

    # Validation
    min_component_pixels: int = 100
    min_area_ratio: float = 0.01
    max_area_ratio: float = 0.9
    aspect_ratio_limit: float = 10.0

    # Classification
    min_solidity: float = 0.85        # Above: standard, below: irregular
    borderless_solidity: float = 0.7
    borderless_max_aspect: float = 3.0
    full_bleed_area_ratio: float = 0.3
    edge_margin: int = 5              # Pixels from the page edge that count as touching
    inset_containment: float = 0.95

    # Shapes
    corner_search_radius: int = 10
    contour_max_steps: int = 20000
    downsample_max_dim: int = 1200

    # Ordering
    reading_direction: str = "rtl"
    row_tolerance: float = 0.4


@dataclass
class RegionConfig(_ConfigMixin):
    """Speech / narration region detection inside a panel."""

    bright_threshold: int = 200       # Bubble interiors are brighter than this
    min_area: float = 400.0
    max_area: float = 500000.0
    max_panel_ratio: float = 0.6      # Larger bright areas are panel background
    aspect_ratio_limit: float = 5.0
    min_ink_ratio: float = 0.005      # Dark pixels needed inside a candidate
    roi_padding: int = 10
    contour_max_steps: int = 10000

    # Upstream candidates
    nms_method: str = "greedy"
    nms_iou_threshold: float = 0.45
    min_confidence: float = 0.0

    # Tail detection
    defect_min_depth: float = 5.0
    tail_defect_depth: float = 10.0

    # Shape classification
    narration_solidity: float = 0.9
    speech_circularity: float = 0.6
    speech_convexity: float = 0.9
    thought_roughness: float = 0.3
    sfx_roughness: float = 0.5
    sfx_convexity: float = 0.75
    roughness_samples: int = 20

    # Ordering
    reading_direction: str = "rtl"
    row_tolerance: float = 0.5
    group_distance: float = 150.0     # Bubble centers this close (single linkage) share a group


@dataclass
class TextConfig(_ConfigMixin):
    """Text line extraction inside a region."""

    adaptive_block: int = 15          # Window size for adaptive threshold (must be odd)
    adaptive_C: int = 10              # Pixel counts as ink below local mean - C
    morph_kernel_width: int = 3       # Closing kernel for vertical text, transposed for horizontal
    morph_kernel_height: int = 7
    dark_threshold: int = 128         # Orientation projections count pixels below this

    min_blob_area: int = 20
    max_blob_area: int = 50000
    min_aspect: float = 0.1
    max_aspect: float = 15.0
    min_density: float = 0.05
    vertical_max_aspect: float = 1.5
    horizontal_min_aspect: float = 0.5
    orientation_ratio: float = 1.5

    furigana_max_height: float = 15.0
    furigana_size_ratio: float = 0.5
    furigana_base_rank: float = 0.3   # Base height taken at this rank of heights, tallest first
    furigana_proximity: float = 2.0   # In multiples of the base height

    line_tolerance: float = 0.6
    horizontal_direction: str = "ltr"
    vertical_direction: str = "rtl"
    downsample_max_dim: int = 1000


@dataclass
class AnalyzerConfig(_ConfigMixin):
    """Whole-page analysis."""

    panels: PanelConfig = field(default_factory=PanelConfig)
    regions: RegionConfig = field(default_factory=RegionConfig)
    text: TextConfig = field(default_factory=TextConfig)
    max_workers: int = 2
    candidate_containment: float = 0.5  # Share of a candidate that must lie in its panel
    fallback_full_page: bool = True     # Inked page without panels becomes one panel

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyzerConfig":
        data = dict(data or {})
        return cls(
            panels=PanelConfig.from_dict(data.pop("panels", None) or {}),
            regions=RegionConfig.from_dict(data.pop("regions", None) or {}),
            text=TextConfig.from_dict(data.pop("text", None) or {}),
            **{k: v for k, v in data.items() if k in ("max_workers", "candidate_containment", "fallback_full_page")},
        )

    def with_direction(self, direction: str) -> "AnalyzerConfig":
        """Copy with every stage reading in ``direction`` ("rtl" or "ltr")."""
        cfg = self.copy()
        cfg.panels.reading_direction = direction
        cfg.regions.reading_direction = direction
        cfg.text.vertical_direction = direction
        return cfg


def _manga() -> AnalyzerConfig:
    return AnalyzerConfig()


def _comics() -> AnalyzerConfig:
    cfg = AnalyzerConfig().with_direction("ltr")
    cfg.regions.narration_solidity = 0.88
    return cfg


def _webtoon() -> AnalyzerConfig:
    cfg = AnalyzerConfig().with_direction("ltr")
    cfg.panels.aspect_ratio_limit = 20.0
    cfg.panels.min_area_ratio = 0.002
    cfg.panels.downsample_max_dim = 2400
    return cfg


PRESETS = {
    "manga": _manga,
    "comics": _comics,
    "webtoon": _webtoon,
}


def get_preset(name: str) -> AnalyzerConfig:
    """Preset by case-insensitive name; raises KeyError for unknown names."""
    key = name.strip().lower()
    if key not in PRESETS:
        raise KeyError(f"unknown preset {name!r}, choose from {sorted(PRESETS)}")
    return PRESETS[key]()


def load_config(path: Union[str, Path], base: Optional[AnalyzerConfig] = None) -> AnalyzerConfig:
    """Load a YAML file on top of ``base`` (defaults when omitted).

    The file may name a ``preset`` and override any stage field::

        preset: comics
        panels:
          min_area_ratio: 0.02
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    preset = data.pop("preset", None)
    cfg = get_preset(preset) if preset else (base.copy() if base else AnalyzerConfig())
    merged = cfg.to_dict()
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    log.info(f"[Config] Loaded {path}")
    return AnalyzerConfig.from_dict(merged)
