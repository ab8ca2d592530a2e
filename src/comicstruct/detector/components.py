"""Pixel grids and connected-component labeling.

Contains:
- PixelGrid: bounds-checked access over a 2-D numpy array
- PixelBlob: bbox / pixel count / centroid of one labeled component
- extract_components: 4- or 8-connected labeling (OpenCV)
- flood_fill_from_edges / fill_holes: edge-seeded flood fills
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from .boxes import BoundingBox, EPSILON


class PixelGrid:
    """Read/write view over a 2-D raster with explicit bounds checks.

    Foreground is any non-zero value. Reads outside the grid return the
    default (background); writes outside the grid raise IndexError.
    """

    def __init__(self, data: NDArray):
        data = np.asarray(data)
        if data.ndim != 2:
            raise ValueError(f"PixelGrid needs a 2-D array, got shape {data.shape}")
        if data.dtype == bool:
            data = data.astype(np.uint8) * 255
        self._data = data

    @classmethod
    def zeros(cls, width: int, height: int) -> "PixelGrid":
        return cls(np.zeros((height, width), dtype=np.uint8))

    @classmethod
    def from_array(cls, data: NDArray, threshold: Optional[int] = None) -> "PixelGrid":
        """Wrap ``data``; with ``threshold``, pixels above it become foreground."""
        data = np.asarray(data)
        if threshold is not None:
            data = (data > threshold).astype(np.uint8) * 255
        return cls(data)

    @property
    def array(self) -> NDArray:
        return self._data

    @property
    def width(self) -> int:
        return int(self._data.shape[1])

    @property
    def height(self) -> int:
        return int(self._data.shape[0])

    @property
    def mask(self) -> NDArray:
        return self._data > 0

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def get(self, x: int, y: int, default: int = 0) -> int:
        if not self.in_bounds(x, y):
            return default
        return int(self._data[y, x])

    def set(self, x: int, y: int, value: int) -> None:
        if not self.in_bounds(x, y):
            raise IndexError(f"pixel ({x}, {y}) outside {self.width}x{self.height} grid")
        self._data[y, x] = value

    def is_foreground(self, x: int, y: int) -> bool:
        return self.in_bounds(x, y) and self._data[y, x] > 0

    def count_foreground(self) -> int:
        return int(np.count_nonzero(self._data))

    def first_foreground(self) -> Optional[Tuple[int, int]]:
        """First foreground pixel in raster order (top row first, then left)."""
        ys, xs = np.nonzero(self._data)
        if len(ys) == 0:
            return None
        # np.nonzero walks C-order, which is raster order
        return int(xs[0]), int(ys[0])

    def crop(self, box: BoundingBox) -> "PixelGrid":
        x1 = max(0, int(box.x))
        y1 = max(0, int(box.y))
        x2 = min(self.width, int(np.ceil(box.x2)))
        y2 = min(self.height, int(np.ceil(box.y2)))
        return PixelGrid(self._data[y1:max(y1, y2), x1:max(x1, x2)].copy())


@dataclass(frozen=True)
class PixelBlob:
    """One connected component."""

    label: int
    bbox: BoundingBox
    pixel_count: int
    centroid: Tuple[float, float]

    @property
    def density(self) -> float:
        return self.pixel_count / max(self.bbox.area, EPSILON)

    @property
    def width(self) -> float:
        return self.bbox.width

    @property
    def height(self) -> float:
        return self.bbox.height

    def translated(self, dx: float, dy: float) -> "PixelBlob":
        cx, cy = self.centroid
        return replace(
            self,
            bbox=replace(self.bbox, x=self.bbox.x + dx, y=self.bbox.y + dy),
            centroid=(cx + dx, cy + dy),
        )

    def scaled(self, factor: float) -> "PixelBlob":
        cx, cy = self.centroid
        b = self.bbox
        return replace(
            self,
            bbox=BoundingBox(b.x * factor, b.y * factor, b.width * factor, b.height * factor),
            centroid=(cx * factor, cy * factor),
        )


@dataclass
class ComponentMap:
    """Label image plus the blobs found in it (label 0 is background)."""

    labels: NDArray
    blobs: List[PixelBlob]

    def mask_for(self, blob: PixelBlob) -> NDArray:
        """Boolean mask of ``blob`` cropped to its bounding box."""
        b = blob.bbox
        x, y, w, h = int(b.x), int(b.y), int(b.width), int(b.height)
        return self.labels[y:y + h, x:x + w] == blob.label


def _as_mask(mask) -> NDArray:
    if isinstance(mask, PixelGrid):
        return mask.mask
    return np.asarray(mask) > 0


def extract_components(mask, connectivity: int = 8, min_pixels: int = 1) -> ComponentMap:
    """Label connected foreground components.

    Args:
        mask: boolean array, uint8 array (non-zero is foreground) or PixelGrid
        connectivity: 4 or 8
        min_pixels: smaller components are labeled but not reported

    Returns:
        ComponentMap whose blobs are in raster order of their first pixel
    """
    binary = _as_mask(mask).astype(np.uint8)
    if binary.size == 0:
        return ComponentMap(labels=np.zeros(binary.shape, dtype=np.int32), blobs=[])
    n, labels, stats, centroids = cv2.connectedComponentsWithStats(binary, connectivity=connectivity)
    blobs: List[PixelBlob] = []
    for label in range(1, n):
        x, y, w, h, count = (int(v) for v in stats[label])
        if count < min_pixels:
            continue
        cx, cy = centroids[label]
        blobs.append(PixelBlob(
            label=label,
            bbox=BoundingBox(x, y, w, h),
            pixel_count=count,
            centroid=(float(cx), float(cy)),
        ))
    return ComponentMap(labels=labels, blobs=blobs)


def flood_fill_from_edges(mask, connectivity: int = 4) -> NDArray:
    """Pixels of ``mask`` reachable from any edge pixel that is itself in ``mask``.

    Equivalent to a multi-source flood fill seeded from every qualifying
    edge pixel.
    """
    binary = _as_mask(mask)
    if binary.size == 0:
        return binary.copy()
    _, labels = cv2.connectedComponents(binary.astype(np.uint8), connectivity=connectivity)
    edge = np.concatenate([labels[0, :], labels[-1, :], labels[:, 0], labels[:, -1]])
    seeds = np.unique(edge[edge > 0])
    if len(seeds) == 0:
        return np.zeros_like(binary, dtype=bool)
    return np.isin(labels, seeds)


def fill_holes(mask) -> NDArray:
    """Foreground plus every background pocket not connected to the border."""
    binary = _as_mask(mask)
    outside = flood_fill_from_edges(~binary, connectivity=4)
    return ~outside
