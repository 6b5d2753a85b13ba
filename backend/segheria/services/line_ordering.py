"""Display ordering for order-line lists.

Groups come first, each group's members contiguous and groups ordered by the
delivery date of their reference (first) member; ungrouped lines follow,
sorted by delivery date. The two blocks are concatenated, not merged.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Sequence

from .line_payload import read_payload


def line_delivery_date(line: Any) -> date:
    return read_payload(line.payload).delivery_date or date.max


def is_displayable(line: Any) -> bool:
    return read_payload(line.payload).is_complete


def order_for_display(
    lines: Iterable[Any],
    *,
    ungrouped_status_order: Sequence[str] | None = None,
) -> list[Any]:
    """Order lines for a status view.

    `ungrouped_status_order` lists ungrouped lines status by status (the loads
    page shows `delivery` before `ready_for_delivery`); statuses it does not
    name go last.
    """
    groups: dict[str, list[Any]] = {}
    ungrouped: list[Any] = []
    for line in lines:
        if line.group_code:
            groups.setdefault(line.group_code, []).append(line)
        else:
            ungrouped.append(line)

    sorted_groups = sorted(groups.values(), key=lambda members: line_delivery_date(members[0]))
    flattened = [line for members in sorted_groups for line in members]

    if ungrouped_status_order:
        rank = {status: idx for idx, status in enumerate(ungrouped_status_order)}
        ungrouped.sort(key=lambda line: (rank.get(line.status, len(rank)), line_delivery_date(line)))
    else:
        ungrouped.sort(key=line_delivery_date)

    return flattened + ungrouped


def group_boundaries(ordered: list[Any], index: int) -> tuple[bool, bool]:
    """(is_first_in_group, is_last_in_group) for the line at `index`."""
    line = ordered[index]
    if not line.group_code:
        return False, False
    first = index == 0 or ordered[index - 1].group_code != line.group_code
    last = index == len(ordered) - 1 or ordered[index + 1].group_code != line.group_code
    return first, last
