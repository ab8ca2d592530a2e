"""Image conversion utilities for comicstruct.

Every stage works on single-channel uint8 pages where paper is bright and
ink is dark. Binary rasters drawn the other way round (0 = background,
255 = ink) are inverted on the way in.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Tuple, Union

import cv2
import numpy as np
from numpy.typing import NDArray

log = logging.getLogger(__name__)


class InkPolarity(str, Enum):
    """How ink is encoded in an incoming raster."""

    AUTO = "auto"      # mostly-zero {0, 255} rasters read as bright ink
    DARK = "dark"      # paper bright, ink dark
    BRIGHT = "bright"  # 0 = background, 255 = ink


def is_bright_ink_raster(gray: NDArray) -> bool:
    """True for a binary {0, 255} raster whose background is 0.

    The background is the value covering most of the page and most of its
    border.
    """
    if gray.ndim != 2 or gray.size == 0:
        return False
    if np.count_nonzero((gray != 0) & (gray != 255)):
        return False
    border = np.concatenate([gray[0], gray[-1], gray[:, 0], gray[:, -1]])
    return bool(np.mean(gray == 0) > 0.5 and np.mean(border == 0) > 0.5)


def to_grayscale(image, ink: Union[InkPolarity, str] = InkPolarity.DARK) -> NDArray:
    """Convert a page to HxW uint8 grayscale, paper bright and ink dark.

    Accepts grayscale arrays, BGR / BGRA arrays (OpenCV channel order) and
    boolean ink masks (True = ink, rendered dark on white). ``ink`` says how
    non-boolean rasters encode ink; BRIGHT and detected AUTO rasters are
    inverted.

    Raises:
        ValueError: if the array cannot be read as an image or ``ink`` is
            not a known polarity
    """
    ink = InkPolarity(ink)
    arr = np.asarray(image)
    if arr.dtype == bool:
        return np.where(arr, 0, 255).astype(np.uint8)
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[:, :, 0]
    if arr.ndim == 3 and arr.shape[2] == 3:
        arr = cv2.cvtColor(arr.astype(np.uint8), cv2.COLOR_BGR2GRAY)
    elif arr.ndim == 3 and arr.shape[2] == 4:
        arr = cv2.cvtColor(arr.astype(np.uint8), cv2.COLOR_BGRA2GRAY)
    elif arr.ndim != 2:
        raise ValueError(f"unsupported image shape {arr.shape}")
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if ink is InkPolarity.BRIGHT or (ink is InkPolarity.AUTO and is_bright_ink_raster(arr)):
        log.debug("[Image] Bright ink on dark background -> inverting")
        arr = cv2.bitwise_not(arr)
    return np.ascontiguousarray(arr)


def downsample(gray: NDArray, max_dim: int) -> Tuple[NDArray, float]:
    """Shrink so the longer side is at most ``max_dim``.

    Returns:
        (image, scale) where scale <= 1 maps original coordinates to the
        returned image's coordinates
    """
    h, w = gray.shape[:2]
    longest = max(h, w)
    if max_dim <= 0 or longest <= max_dim:
        return gray, 1.0
    scale = max_dim / float(longest)
    return resize(gray, scale), scale


def resize(gray: NDArray, scale: float) -> NDArray:
    if scale == 1.0:
        return gray
    h, w = gray.shape[:2]
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    interp = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    log.debug(f"[Image] Scaling: {w}x{h} -> {new_w}x{new_h}")
    return cv2.resize(gray, (new_w, new_h), interpolation=interp)


def load_grayscale(path: Union[str, Path]) -> NDArray:
    """Read an image file as grayscale; raises ValueError when unreadable."""
    img = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if img is None:
        raise ValueError(f"cannot read image: {path}")
    return img
