"""Reading order for panels, regions and text lines.

Row order clusters boxes into rows by center-y and reads each row right to
left (manga) or left to right; column order is the transposed version used
for vertical text. Both return indices into the input list.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
from typing import List, Sequence, TypeVar

import numpy as np

from .boxes import BoundingBox

T = TypeVar("T")

DEFAULT_TOLERANCE = 0.3


class ReadingDirection(str, Enum):
    RTL = "rtl"
    LTR = "ltr"


class ReadingLayout(str, Enum):
    ROWS = "rows"
    COLUMNS = "columns"
    AUTO = "auto"


def _group(order: List[int], centers: Sequence[float], sizes: Sequence[float], tolerance: float) -> List[List[int]]:
    """Walk ``order`` and start a new group whenever a center drifts too far
    from the running mean of the current group."""
    groups: List[List[int]] = []
    for idx in order:
        if groups:
            current = groups[-1]
            mean_center = sum(centers[i] for i in current) / len(current)
            mean_size = sum(sizes[i] for i in current) / len(current)
            if abs(centers[idx] - mean_center) < mean_size * tolerance:
                current.append(idx)
                continue
        groups.append([idx])
    return groups


def group_rows(boxes: Sequence[BoundingBox], tolerance: float = DEFAULT_TOLERANCE) -> List[List[int]]:
    """Index groups of boxes sharing a row, top row first, in center-y order."""
    cy = [b.center_y for b in boxes]
    order = sorted(range(len(boxes)), key=lambda i: cy[i])
    return _group(order, cy, [b.height for b in boxes], tolerance)


def group_columns(
    boxes: Sequence[BoundingBox],
    tolerance: float = DEFAULT_TOLERANCE,
    direction: ReadingDirection = ReadingDirection.RTL,
) -> List[List[int]]:
    """Index groups of boxes sharing a column, first column in ``direction``."""
    sign = -1 if ReadingDirection(direction) is ReadingDirection.RTL else 1
    cx = [b.center_x for b in boxes]
    order = sorted(range(len(boxes)), key=lambda i: sign * cx[i])
    return _group(order, cx, [b.width for b in boxes], tolerance)


def row_order(
    boxes: Sequence[BoundingBox],
    tolerance: float = DEFAULT_TOLERANCE,
    direction: ReadingDirection = ReadingDirection.RTL,
) -> List[int]:
    """Indices of ``boxes`` read row by row, top to bottom."""
    sign = -1 if ReadingDirection(direction) is ReadingDirection.RTL else 1
    cx = [b.center_x for b in boxes]
    result: List[int] = []
    for row in group_rows(boxes, tolerance):
        result.extend(sorted(row, key=lambda i: sign * cx[i]))
    return result


def column_order(
    boxes: Sequence[BoundingBox],
    tolerance: float = DEFAULT_TOLERANCE,
    direction: ReadingDirection = ReadingDirection.RTL,
) -> List[int]:
    """Indices of ``boxes`` read column by column, each column top to bottom."""
    cy = [b.center_y for b in boxes]
    result: List[int] = []
    for column in group_columns(boxes, tolerance, direction):
        result.extend(sorted(column, key=lambda i: cy[i]))
    return result


def auto_order(
    boxes: Sequence[BoundingBox],
    tolerance: float = DEFAULT_TOLERANCE,
    direction: ReadingDirection = ReadingDirection.RTL,
) -> List[int]:
    """Column order when centers spread more horizontally, row order otherwise."""
    if len(boxes) < 2:
        return list(range(len(boxes)))
    x_var = float(np.var([b.center_x for b in boxes]))
    y_var = float(np.var([b.center_y for b in boxes]))
    if x_var > y_var:
        return column_order(boxes, tolerance, direction)
    return row_order(boxes, tolerance, direction)


def reading_order(
    boxes: Sequence[BoundingBox],
    layout: ReadingLayout = ReadingLayout.ROWS,
    tolerance: float = DEFAULT_TOLERANCE,
    direction: ReadingDirection = ReadingDirection.RTL,
) -> List[int]:
    layout = ReadingLayout(layout)
    if layout is ReadingLayout.ROWS:
        return row_order(boxes, tolerance, direction)
    if layout is ReadingLayout.COLUMNS:
        return column_order(boxes, tolerance, direction)
    return auto_order(boxes, tolerance, direction)


def assign_reading_order(items: Sequence[T], order: Sequence[int]) -> List[T]:
    """Reorder ``items`` by ``order`` and number them 1..N.

    Items must be dataclasses with a ``reading_order`` field.
    """
    return [replace(items[idx], reading_order=rank) for rank, idx in enumerate(order, start=1)]
