"""Page conversion and ink polarity."""

import cv2
import numpy as np
import pytest

from comicstruct.image_utils import InkPolarity, downsample, is_bright_ink_raster, to_grayscale


def test_bool_mask_is_dark_ink():
    mask = np.zeros((10, 10), dtype=bool)
    mask[2, 3] = True
    gray = to_grayscale(mask, InkPolarity.BRIGHT)
    assert gray[2, 3] == 0
    assert gray[0, 0] == 255


def test_bright_ink_raster_detected(two_panel_page):
    assert is_bright_ink_raster(cv2.bitwise_not(two_panel_page))
    assert not is_bright_ink_raster(two_panel_page)
    # grey levels are never read as a binary raster
    assert not is_bright_ink_raster(np.full((20, 20), 40, np.uint8))
    assert not is_bright_ink_raster(np.zeros((0, 0), np.uint8))


def test_auto_inverts_bright_ink_only(two_panel_page):
    inverted = cv2.bitwise_not(two_panel_page)
    assert np.array_equal(to_grayscale(inverted, "auto"), two_panel_page)
    assert np.array_equal(to_grayscale(two_panel_page, "auto"), two_panel_page)
    # dark is the default
    assert np.array_equal(to_grayscale(inverted), inverted)


def test_bright_always_inverts():
    scan = np.full((5, 5), 200, np.uint8)
    assert (to_grayscale(scan, InkPolarity.BRIGHT) == 55).all()


def test_unknown_polarity_rejected(two_panel_page):
    with pytest.raises(ValueError):
        to_grayscale(two_panel_page, "sepia")


def test_colour_and_bad_shapes():
    bgr = np.zeros((4, 6, 3), np.uint8)
    assert to_grayscale(bgr).shape == (4, 6)
    with pytest.raises(ValueError):
        to_grayscale(np.zeros((4, 4, 2), np.uint8))


def test_downsample():
    img = np.zeros((100, 400), np.uint8)
    small, scale = downsample(img, 200)
    assert scale == 0.5
    assert small.shape == (50, 200)
    same, one = downsample(img, 0)
    assert one == 1.0 and same is img
