"""Panel segmentation on synthetic pages."""

import cv2
import numpy as np
import pytest

from comicstruct.config import PanelConfig
from comicstruct.detector.boxes import BoundingBox, bbox_corners, coverage_area, intersection_area
from comicstruct.detector.panels import (
    Panel,
    PanelSegmenter,
    PanelType,
    background_mask,
    classify_panel,
    crop_panel,
    find_split,
    group_joined_panels,
    is_joined,
    mark_insets,
    panel_block,
)


def make_panel(x, y, w, h, reading_order=0, ptype=PanelType.STANDARD, corners=None):
    box = BoundingBox(x, y, w, h)
    return Panel(
        bbox=box,
        corners=corners or bbox_corners(box),
        area=float(w * h),
        solidity=1.0,
        type=ptype,
        reading_order=reading_order,
    )


# ------------------------------------------------------------
# Segmenter
# ------------------------------------------------------------
def test_two_panels_separated_by_gutter(two_panel_page):
    panels = PanelSegmenter().segment(two_panel_page)
    assert len(panels) == 2
    a, b = panels
    assert intersection_area(a.bbox, b.bbox) == 0
    assert coverage_area([a.bbox, b.bbox]) == pytest.approx(a.bbox.area + b.bbox.area)
    assert all(p.type is PanelType.STANDARD for p in panels)
    assert all(not p.touches_edge for p in panels)
    assert all(len(p.corners) == 4 for p in panels)


def test_panels_in_manga_order(two_panel_page):
    panels = PanelSegmenter().segment(two_panel_page)
    assert [p.reading_order for p in panels] == [1, 2]
    assert panels[0].bbox.x > panels[1].bbox.x


def test_panels_in_western_order(two_panel_page):
    panels = PanelSegmenter(PanelConfig(reading_direction="ltr")).segment(two_panel_page)
    assert panels[0].bbox.x < panels[1].bbox.x


def test_panel_bounds_follow_the_borders(two_panel_page):
    right, left = PanelSegmenter().segment(two_panel_page)
    assert left.bbox.x == pytest.approx(19, abs=2)
    assert left.bbox.x2 == pytest.approx(191, abs=2)
    assert right.bbox.y == pytest.approx(19, abs=2)
    assert right.bbox.y2 == pytest.approx(281, abs=2)
    assert left.confidence > 0.8


def test_bridged_panels_are_split(bridged_page):
    panels = PanelSegmenter().segment(bridged_page)
    assert len(panels) == 2


def test_bright_ink_raster_segments_like_dark_ink(two_panel_page):
    # 255 borders on a 0 background
    page = cv2.bitwise_not(two_panel_page)
    expected = [p.bbox for p in PanelSegmenter().segment(two_panel_page)]
    panels = PanelSegmenter().segment(page)
    assert len(panels) == 2
    assert [p.bbox for p in panels] == expected
    assert all(p.type is PanelType.STANDARD for p in panels)
    assert [p.bbox for p in PanelSegmenter(PanelConfig(ink_polarity="bright")).segment(page)] == expected
    assert [p.bbox for p in PanelSegmenter().segment(page, ink="bright")] == expected


def test_split_depth_cap_keeps_bridged_block_whole(bridged_page):
    assert len(PanelSegmenter(PanelConfig(max_split_depth=0)).segment(bridged_page)) == 1
    assert len(PanelSegmenter().segment(bridged_page)) == 2


def test_blank_page_has_no_panels(blank_page):
    assert PanelSegmenter().segment(blank_page) == []
    assert PanelSegmenter().segment(np.zeros((0, 0), dtype=np.uint8)) == []


def test_working_scale_maps_back_to_page(two_panel_page):
    full = PanelSegmenter().segment(two_panel_page)
    half = PanelSegmenter().segment(two_panel_page, scale=0.5)
    assert len(half) == len(full)
    for a, b in zip(full, half):
        assert abs(a.bbox.x - b.bbox.x) <= 6
        assert abs(a.bbox.y - b.bbox.y) <= 6
        assert abs(a.bbox.width - b.bbox.width) <= 6
        assert abs(a.bbox.height - b.bbox.height) <= 6


def test_invalid_scale_rejected(two_panel_page):
    with pytest.raises(ValueError):
        PanelSegmenter().segment(two_panel_page, scale=0)


def test_colour_page_accepted(two_panel_page):
    bgr = np.dstack([two_panel_page] * 3)
    assert len(PanelSegmenter().segment(bgr)) == 2


def test_full_page_frame_is_full_bleed():
    page = np.full((300, 400), 255, dtype=np.uint8)
    page[:, :3] = 0
    page[:, -3:] = 0
    page[:3, :] = 0
    page[-3:, :] = 0
    cfg = PanelConfig(max_area_ratio=1.0)
    panels = PanelSegmenter(cfg).segment(page)
    assert len(panels) == 1
    assert panels[0].type is PanelType.FULL_BLEED
    assert panels[0].touches_edge


# ------------------------------------------------------------
# Pipeline pieces
# ------------------------------------------------------------
def test_background_mask_keeps_enclosed_paper(two_panel_page):
    bg = background_mask(two_panel_page)
    assert bg[5, 5]
    assert bg[150, 205]  # gutter
    assert not bg[150, 100]  # inside the left panel


def test_panel_block_is_solid(two_panel_page):
    block = panel_block(two_panel_page, PanelConfig())
    assert block[150, 100]
    assert block[150, 300]
    assert not block[150, 205]


def test_find_split_on_two_blocks():
    mask = np.zeros((100, 200), dtype=bool)
    mask[:, :90] = True
    mask[:, 110:] = True
    split = find_split(mask, min_gap=10)
    assert split is not None
    assert split.axis == 1
    assert 90 <= split.position < 110
    assert split.confidence == pytest.approx(1.0)


def test_find_split_rejects_uniform_block():
    assert find_split(np.ones((100, 100), dtype=bool), min_gap=10) is None


def test_classify_panel():
    cfg = PanelConfig()
    assert classify_panel(0.95, 1.0, False, 0.2, cfg) is PanelType.STANDARD
    assert classify_panel(0.8, 1.0, False, 0.2, cfg) is PanelType.IRREGULAR
    assert classify_panel(0.6, 1.0, False, 0.2, cfg) is PanelType.BORDERLESS
    assert classify_panel(0.6, 4.0, False, 0.2, cfg) is PanelType.IRREGULAR
    assert classify_panel(0.95, 1.0, True, 0.5, cfg) is PanelType.FULL_BLEED
    assert classify_panel(0.95, 1.0, True, 0.1, cfg) is PanelType.STANDARD


# ------------------------------------------------------------
# Insets and groups
# ------------------------------------------------------------
def test_mark_insets_picks_smallest_container():
    outer = make_panel(0, 0, 400, 400, 1)
    middle = make_panel(50, 50, 200, 200, 2)
    inner = make_panel(100, 100, 50, 50, 3)
    marked = mark_insets([outer, middle, inner])
    assert marked[0].type is PanelType.STANDARD
    assert marked[0].parent is None
    assert marked[1].type is PanelType.INSET
    assert marked[1].parent == 0
    assert marked[2].parent == 1


def test_mark_insets_ignores_partial_overlap():
    a = make_panel(0, 0, 100, 100)
    b = make_panel(80, 0, 100, 100)
    assert [p.type for p in mark_insets([a, b])] == [PanelType.STANDARD, PanelType.STANDARD]


def test_joined_panels_grouped():
    a = make_panel(0, 0, 100, 200, 2)
    b = make_panel(102, 0, 100, 200, 1)
    c = make_panel(400, 0, 100, 200, 3)
    assert is_joined(a, b)
    assert not is_joined(a, c)
    groups = group_joined_panels([a, b, c])
    assert len(groups) == 2
    assert groups[0].reading_order == 1
    assert groups[0].bbox == BoundingBox(0, 0, 202, 200)
    assert len(groups[0].panels) == 2


def test_stacked_panels_joined_vertically():
    top = make_panel(0, 0, 200, 100)
    bottom = make_panel(0, 103, 200, 100)
    assert is_joined(top, bottom)
    assert not is_joined(top, bottom, max_gap=2)


def test_crop_panel_masks_irregular_shape():
    page = np.zeros((100, 100), dtype=np.uint8)
    triangle = ((10.0, 10.0), (90.0, 10.0), (90.0, 90.0), (90.0, 90.0))
    panel = make_panel(10, 10, 80, 80, ptype=PanelType.IRREGULAR, corners=triangle)
    crop = crop_panel(page, panel)
    assert crop.shape == (80, 80)
    assert crop[5, 70] == 0      # above the diagonal, inside
    assert crop[70, 5] == 255    # below the diagonal, masked


def test_crop_panel_standard_is_plain_crop(two_panel_page):
    panel = make_panel(20, 20, 50, 30)
    crop = crop_panel(two_panel_page, panel)
    assert crop.shape == (30, 50)
    assert np.array_equal(crop, two_panel_page[20:50, 20:70])
