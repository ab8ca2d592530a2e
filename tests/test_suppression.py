"""Duplicate suppression strategies."""

import math

import pytest

from comicstruct.detector.boxes import BoundingBox, ScoredBox, iou
from comicstruct.detector.suppression import (
    SoftNmsDecay,
    SuppressionMethod,
    class_aware_nms,
    diou_nms,
    multi_class_nms,
    nms,
    soft_nms,
    suppress,
    weighted_box_fusion,
)

HIGH = ScoredBox(0, 0, 100, 100, confidence=0.9, class_id=0)
OVERLAP = ScoredBox(10, 10, 100, 100, confidence=0.8, class_id=0)
AWAY = ScoredBox(300, 300, 50, 50, confidence=0.7, class_id=0)


def test_empty_and_single():
    assert nms([]) == []
    assert soft_nms([]) == []
    assert suppress([], "soft") == []
    assert nms([HIGH]) == [HIGH]
    assert soft_nms([OVERLAP]) == [OVERLAP]


def test_greedy_drops_overlap():
    assert nms([OVERLAP, AWAY, HIGH], 0.5) == [HIGH, AWAY]


def test_greedy_is_idempotent():
    boxes = [OVERLAP, AWAY, HIGH, ScoredBox(305, 300, 50, 50, confidence=0.6)]
    once = nms(boxes, 0.5)
    assert nms(once, 0.5) == once


def test_greedy_ties_keep_input_order():
    first = ScoredBox(0, 0, 50, 50, confidence=0.5)
    second = ScoredBox(2, 2, 50, 50, confidence=0.5)
    assert nms([first, second], 0.5) == [first]
    assert nms([second, first], 0.5) == [second]


def test_missing_confidence_counts_as_zero():
    plain = BoundingBox(0, 0, 50, 50)
    scored = ScoredBox(1, 1, 50, 50, confidence=0.1)
    assert nms([plain, scored], 0.5) == [scored]


def test_soft_nms_gaussian_decay():
    result = soft_nms([OVERLAP, AWAY, HIGH], 0.5, sigma=0.5)
    assert [r.x for r in result] == [HIGH.x, AWAY.x, OVERLAP.x]
    overlap = iou(HIGH, OVERLAP)
    assert result[2].confidence == pytest.approx(0.8 * math.exp(-(overlap ** 2) / 0.5))
    assert result[2].class_id == 0


def test_soft_nms_linear_decay():
    result = soft_nms([HIGH, OVERLAP], 0.5, decay=SoftNmsDecay.LINEAR)
    assert result[1].confidence == pytest.approx(0.8 * (1 - iou(HIGH, OVERLAP)))
    # below the threshold the score is untouched
    result = soft_nms([HIGH, OVERLAP], 0.9, decay="linear")
    assert result[1].confidence == pytest.approx(0.8)


def test_soft_nms_drops_low_scores():
    duplicate = ScoredBox(0, 0, 100, 100, confidence=0.02)
    result = soft_nms([HIGH, duplicate], 0.5, score_threshold=0.01)
    assert len(result) == 1


def test_class_aware_keeps_other_classes():
    other = ScoredBox(10, 10, 100, 100, confidence=0.8, class_id=1)
    assert nms([HIGH, other], 0.5) == [HIGH]
    assert class_aware_nms([HIGH, other], 0.5) == [HIGH, other]
    assert class_aware_nms([HIGH, OVERLAP, other], 0.5) == [HIGH, other]


def test_multi_class_suppresses_near_duplicates_only():
    other = ScoredBox(10, 10, 100, 100, confidence=0.8, class_id=1)
    twin = ScoredBox(1, 1, 100, 100, confidence=0.8, class_id=1)
    assert multi_class_nms([HIGH, other], 0.5) == [HIGH, other]
    assert multi_class_nms([HIGH, twin], 0.5) == [HIGH]
    assert multi_class_nms([HIGH, OVERLAP], 0.5) == [HIGH]


def test_diou_nms_is_stricter_than_greedy():
    shifted = ScoredBox(43, 0, 100, 100, confidence=0.8)
    assert nms([HIGH, shifted], 0.5) == [HIGH, shifted]
    assert diou_nms([HIGH, shifted], 0.5) == [HIGH]


def test_weighted_box_fusion_averages():
    a = ScoredBox(0, 0, 100, 100, confidence=0.6, class_id=0)
    b = ScoredBox(10, 0, 100, 100, confidence=0.2, class_id=0)
    fused = weighted_box_fusion([a, b, AWAY], iou_threshold=0.55)
    assert len(fused) == 2
    box = next(f for f in fused if f.x < 100)
    assert box.x == pytest.approx(2.5)
    assert box.confidence == pytest.approx(0.8)
    assert box.class_id == 0


def test_weighted_box_fusion_skip_threshold():
    weak = ScoredBox(400, 0, 10, 10, confidence=0.05)
    assert len(weighted_box_fusion([HIGH, weak], skip_threshold=0.1)) == 1


def test_suppress_dispatch():
    boxes = [HIGH, OVERLAP, AWAY]
    assert suppress(boxes, "greedy", 0.5) == nms(boxes, 0.5)
    assert suppress(boxes, SuppressionMethod.CLASS_AWARE, 0.5) == class_aware_nms(boxes, 0.5)
    assert len(suppress(boxes, "soft", 0.5)) == 3
    assert len(suppress(boxes, "fusion", 0.5)) == 2
    with pytest.raises(ValueError):
        suppress(boxes, "unknown")
