"""Duplicate suppression for scored boxes.

Five strategies share one sort order: confidence descending, stable, so
equal scores keep their input order.

- greedy NMS
- soft-NMS (gaussian or linear decay)
- class-aware NMS (per class, concatenated)
- multi-class NMS (cross-class suppression only for near-identical boxes)
- DIoU-NMS
- weighted box fusion (averaging instead of dropping)
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from enum import Enum
from typing import Dict, List, Sequence

import numpy as np

from .boxes import BoundingBox, ScoredBox, diou, iou, score_of

log = logging.getLogger(__name__)

DEFAULT_IOU_THRESHOLD = 0.5
DEFAULT_SIGMA = 0.5
SOFT_NMS_STOP = 0.01
CROSS_CLASS_IOU = 0.8
DIOU_OFFSET = 0.2


class SuppressionMethod(str, Enum):
    GREEDY = "greedy"
    SOFT = "soft"
    CLASS_AWARE = "class_aware"
    MULTI_CLASS = "multi_class"
    DIOU = "diou"
    FUSION = "fusion"


class SoftNmsDecay(str, Enum):
    GAUSSIAN = "gaussian"
    LINEAR = "linear"


def _by_confidence(boxes: Sequence[BoundingBox]) -> List[BoundingBox]:
    # sorted() is stable: ties keep input order
    return sorted(boxes, key=lambda b: -score_of(b))


def _class_of(box: BoundingBox) -> int:
    class_id = getattr(box, "class_id", None)
    return 0 if class_id is None else int(class_id)


def nms(boxes: Sequence[BoundingBox], iou_threshold: float = DEFAULT_IOU_THRESHOLD) -> List[BoundingBox]:
    """Greedy non-maximum suppression."""
    if len(boxes) <= 1:
        return list(boxes)
    keep: List[BoundingBox] = []
    for box in _by_confidence(boxes):
        if all(iou(box, kept) <= iou_threshold for kept in keep):
            keep.append(box)
    return keep


def soft_nms(
    boxes: Sequence[BoundingBox],
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
    sigma: float = DEFAULT_SIGMA,
    score_threshold: float = SOFT_NMS_STOP,
    decay: SoftNmsDecay = SoftNmsDecay.GAUSSIAN,
) -> List[ScoredBox]:
    """Soft-NMS: decay overlapping scores instead of discarding boxes.

    Args:
        boxes: candidate boxes
        iou_threshold: overlap above which the linear decay applies
        sigma: gaussian spread, weight is ``exp(-iou**2 / sigma)``
        score_threshold: boxes whose decayed score falls below this are dropped
        decay: gaussian or linear

    Returns:
        Copies of the surviving boxes carrying their decayed scores, in
        selection order.
    """
    decay = SoftNmsDecay(decay)
    if len(boxes) <= 1:
        return list(boxes)
    remaining = [[box, score_of(box)] for box in boxes]
    result: List[ScoredBox] = []

    while remaining:
        best = 0
        for i in range(1, len(remaining)):
            if remaining[i][1] > remaining[best][1]:
                best = i
        box, score = remaining.pop(best)
        if score < score_threshold:
            break
        result.append(_with_confidence(box, score))

        for item in remaining:
            overlap = iou(box, item[0])
            if decay is SoftNmsDecay.GAUSSIAN:
                weight = math.exp(-(overlap ** 2) / sigma)
            else:
                weight = 1 - overlap if overlap > iou_threshold else 1.0
            item[1] *= weight
        remaining = [item for item in remaining if item[1] >= score_threshold]

    return result


def _with_confidence(box: BoundingBox, score: float) -> ScoredBox:
    if isinstance(box, ScoredBox):
        return replace(box, confidence=score)
    return ScoredBox(box.x, box.y, box.width, box.height, confidence=score)


def class_aware_nms(boxes: Sequence[BoundingBox], iou_threshold: float = DEFAULT_IOU_THRESHOLD) -> List[BoundingBox]:
    """Greedy NMS run separately for each class, classes in first-seen order."""
    groups: Dict[int, List[BoundingBox]] = {}
    for box in boxes:
        groups.setdefault(_class_of(box), []).append(box)
    result: List[BoundingBox] = []
    for members in groups.values():
        result.extend(nms(members, iou_threshold))
    return result


def multi_class_nms(
    boxes: Sequence[BoundingBox],
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
    cross_class_iou: float = CROSS_CLASS_IOU,
) -> List[BoundingBox]:
    """Greedy NMS where boxes of another class only suppress near-duplicates."""
    if len(boxes) <= 1:
        return list(boxes)
    keep: List[BoundingBox] = []
    for box in _by_confidence(boxes):
        suppressed = False
        for kept in keep:
            overlap = iou(box, kept)
            if overlap <= iou_threshold:
                continue
            if _class_of(box) == _class_of(kept) or overlap > cross_class_iou:
                suppressed = True
                break
        if not suppressed:
            keep.append(box)
    return keep


def diou_nms(
    boxes: Sequence[BoundingBox],
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
    offset: float = DIOU_OFFSET,
) -> List[BoundingBox]:
    """Greedy NMS on DIoU, which keeps overlapping boxes with distant centers."""
    if len(boxes) <= 1:
        return list(boxes)
    keep: List[BoundingBox] = []
    for box in _by_confidence(boxes):
        if all(diou(box, kept) <= iou_threshold - offset for kept in keep):
            keep.append(box)
    return keep


def weighted_box_fusion(
    boxes: Sequence[BoundingBox],
    iou_threshold: float = 0.55,
    skip_threshold: float = 0.0,
) -> List[ScoredBox]:
    """Fuse same-class overlapping boxes into confidence-weighted averages.

    Clusters are seeded in confidence order; a box joins the first cluster
    whose running average it overlaps by at least ``iou_threshold``.
    """
    out: List[ScoredBox] = []
    groups: Dict[int, List[BoundingBox]] = {}
    for box in boxes:
        if score_of(box) >= skip_threshold:
            groups.setdefault(_class_of(box), []).append(box)

    for cls, members in groups.items():
        clusters: List[np.ndarray] = []
        cluster_scores: List[float] = []
        for box in _by_confidence(members):
            coords = np.array(box.to_xyxy(), dtype=float)
            sc = score_of(box)
            placed = False
            for ci, cb in enumerate(clusters):
                if iou(BoundingBox.from_xyxy(*cb), box) >= iou_threshold:
                    w = cluster_scores[ci] + sc + 1e-9
                    clusters[ci] = (cb * cluster_scores[ci] + coords * sc) / w
                    cluster_scores[ci] += sc
                    placed = True
                    break
            if not placed:
                clusters.append(coords)
                cluster_scores.append(sc)
        for cb, cs in zip(clusters, cluster_scores):
            x1, y1, x2, y2 = (float(v) for v in cb)
            out.append(ScoredBox(x1, y1, x2 - x1, y2 - y1, confidence=min(1.0, cs), class_id=cls))
    return out


def suppress(
    boxes: Sequence[BoundingBox],
    method: SuppressionMethod = SuppressionMethod.GREEDY,
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
    **options,
) -> List[BoundingBox]:
    """Run the suppression strategy named by ``method``."""
    method = SuppressionMethod(method)
    if not boxes:
        return []
    if method is SuppressionMethod.GREEDY:
        result = nms(boxes, iou_threshold)
    elif method is SuppressionMethod.SOFT:
        result = soft_nms(boxes, iou_threshold, **options)
    elif method is SuppressionMethod.CLASS_AWARE:
        result = class_aware_nms(boxes, iou_threshold)
    elif method is SuppressionMethod.MULTI_CLASS:
        result = multi_class_nms(boxes, iou_threshold, **options)
    elif method is SuppressionMethod.DIOU:
        result = diou_nms(boxes, iou_threshold, **options)
    else:
        result = weighted_box_fusion(boxes, iou_threshold, **options)
    log.debug(f"[NMS] {method.value}: {len(boxes)} -> {len(result)}")
    return result
