"""Order-line response serialization for the production, loads and DDT pages."""
from __future__ import annotations

from typing import Any, Sequence

from ..schemas import DeliveryEventResponse, LineActions, LineResponse, StampResponse
from .line_ordering import group_boundaries, is_displayable
from .line_payload import read_payload
from .line_state import STATUS_LABELS_IT, line_actions
from .note_debouncer import NoteDebouncer


def has_references(line: Any) -> bool:
    """Order, client and product joins are all present."""
    order = getattr(line, "order", None)
    return bool(order is not None and getattr(order, "client", None) is not None and getattr(line, "product", None))


def visible_lines(lines: Sequence[Any]) -> list[Any]:
    """Lines that can be listed: complete payload and resolvable joins; the rest are dropped."""
    return [line for line in lines if is_displayable(line) and has_references(line)]


def _stamp(stamp: Any) -> StampResponse | None:
    if stamp is None:
        return None
    return StampResponse(timestamp=stamp.timestamp, user=stamp.user)


def build_line_response(
    line: Any,
    *,
    debouncer: NoteDebouncer | None = None,
    boundaries: tuple[bool, bool] = (False, False),
) -> LineResponse:
    data = read_payload(line.payload)
    order = getattr(line, "order", None)
    client = getattr(order, "client", None) if order is not None else None
    product = getattr(line, "product", None)

    note = data.note
    pending = debouncer.pending_note(line.id) if debouncer is not None else None
    if pending is not None:
        note = pending

    return LineResponse(
        id=line.id,
        order_id=line.order_id,
        order_number=getattr(order, "order_number", None),
        client_id=getattr(order, "client_id", None),
        client_name=getattr(client, "company_name", None),
        product_id=line.product_id,
        product_name=getattr(product, "name", None),
        dimensions=getattr(product, "dimensions", None),
        heat_treated=bool(getattr(product, "heat_treated", False)),
        status=line.status,
        status_label=STATUS_LABELS_IT.get(line.status, line.status),
        group_code=line.group_code,
        is_group_first=boundaries[0],
        is_group_last=boundaries[1],
        quantity=data.quantity,
        delivery_date=data.delivery_date,
        note=note,
        note_pending=pending is not None,
        deliveries=[
            DeliveryEventResponse(index=idx, delivered_on=event.delivered_on, note=event.note)
            for idx, event in enumerate(data.deliveries)
        ],
        production_confirmed_at=_stamp(data.production_confirmed_at),
        completed_at=_stamp(data.completed_at),
        actions=LineActions(**line_actions(line)),
    )


def build_ordered_line_responses(ordered: Sequence[Any], *, debouncer: NoteDebouncer | None = None) -> list[LineResponse]:
    """Serialize an already ordered list, marking where each group starts and ends."""
    rows = list(ordered)
    return [
        build_line_response(line, debouncer=debouncer, boundaries=group_boundaries(rows, idx))
        for idx, line in enumerate(rows)
    ]
