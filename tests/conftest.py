"""Synthetic pages shared by the test modules."""

import os
import sys

import cv2
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

LEFT_PANEL = ((20, 20), (189, 279))
RIGHT_PANEL = ((220, 20), (379, 279))


def draw_glyph_rows(page, x0, rows, count=6, size=(8, 10), step=12):
    """Dark rectangles standing in for glyphs, one row per y in ``rows``."""
    w, h = size
    for y in rows:
        for i in range(count):
            x = x0 + i * step
            cv2.rectangle(page, (x, y), (x + w - 1, y + h - 1), 0, -1)


def draw_bubble(page, center, axes=(60, 35), text_x=None):
    """White ellipse with a dark outline and two rows of glyphs inside."""
    cv2.ellipse(page, center, axes, 0, 0, 360, 255, -1)
    cv2.ellipse(page, center, axes, 0, 0, 360, 0, 2)
    cx, cy = center
    draw_glyph_rows(page, text_x if text_x is not None else cx - 30, [cy - 14, cy + 4])


@pytest.fixture
def blank_page():
    return np.full((300, 400), 255, dtype=np.uint8)


@pytest.fixture
def two_panel_page():
    """400x300 page, two bordered panels with a 30px vertical gutter."""
    page = np.full((300, 400), 255, dtype=np.uint8)
    for top_left, bottom_right in (LEFT_PANEL, RIGHT_PANEL):
        cv2.rectangle(page, top_left, bottom_right, 0, 3)
    return page


@pytest.fixture
def bridged_page(two_panel_page):
    """The two panels joined across the gutter by a thin bar."""
    page = two_panel_page.copy()
    cv2.rectangle(page, (189, 148), (220, 151), 0, -1)
    return page


@pytest.fixture
def bubble_page(two_panel_page):
    """Two panels, each holding one speech bubble with two text rows."""
    page = two_panel_page.copy()
    draw_bubble(page, (105, 110))
    draw_bubble(page, (300, 110))
    return page


@pytest.fixture
def text_crop():
    """Two horizontal rows of glyphs on white."""
    img = np.full((100, 160), 255, dtype=np.uint8)
    draw_glyph_rows(img, 20, [30, 60], count=8)
    return img
