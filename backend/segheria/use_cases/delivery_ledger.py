"""Delivery confirmations and notes recorded against a load."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable

from ..domain_errors import DomainError, not_found
from ..repositories.order_lines import OrderLineRepository
from ..services.line_payload import DeliveryEvent, apply_payload_changes, read_payload
from ..services.line_state import LOADING_STATUSES
from ..services.line_ordering import is_displayable, order_for_display, line_delivery_date
from ..services.note_debouncer import NoteDebouncer

logger = logging.getLogger(__name__)


def _get_line_or_404(lines: OrderLineRepository, line_id: int) -> Any:
    line = lines.get(line_id)
    if not line:
        raise not_found("LINE_NOT_FOUND", "Carico non trovato", line_id=line_id)
    return line


def _ensure_loading(line: Any) -> None:
    if line.status not in LOADING_STATUSES:
        raise DomainError(
            code="LINE_LOCKED",
            http_status=400,
            message="Le consegne si registrano solo per carichi in consegna",
            details={"line_id": line.id, "status": line.status},
        )


def _deliveries_json(events: list[DeliveryEvent]) -> list[dict[str, Any]]:
    return [event.model_dump(mode="json", by_alias=True, exclude_unset=True) for event in events]


def add_delivery_event_use_case(
    *,
    lines: OrderLineRepository,
    line_id: int,
    delivered_on: date | None,
    note: str | None,
    current_user: Any,
) -> Any:
    """Append one delivery at the end of the line's ledger."""
    if not delivered_on:
        raise DomainError(
            code="DELIVERY_DATE_REQUIRED",
            http_status=400,
            message="La data della consegna è obbligatoria",
        )
    line = _get_line_or_404(lines, line_id)
    _ensure_loading(line)
    event = DeliveryEvent(delivered_on=delivered_on, note=note or "")

    def _mutate(row: Any) -> None:
        events = read_payload(row.payload).deliveries + [event]
        row.payload = apply_payload_changes(row.status, row.payload, {"deliveries": _deliveries_json(events)})
        lines.audit(
            action="delivery_recorded",
            entity_id=row.id,
            actor=current_user,
            details={"data": delivered_on.isoformat(), "count": len(events)},
        )

    lines.apply_to_lines(
        [line],
        _mutate,
        failure_code="LINE_UPDATE_FAILED",
        failure_message="Impossibile registrare la consegna",
    )
    return line


def remove_delivery_event_use_case(
    *,
    lines: OrderLineRepository,
    line_id: int,
    index: int,
    current_user: Any,
) -> Any:
    """Remove the delivery at `index` (positional, as listed at call time)."""
    line = _get_line_or_404(lines, line_id)
    _ensure_loading(line)
    events = read_payload(line.payload).deliveries
    if index < 0 or index >= len(events):
        raise DomainError(
            code="DELIVERY_INDEX_OUT_OF_RANGE",
            http_status=400,
            message="Consegna non trovata",
            details={"line_id": line_id, "index": index, "count": len(events)},
        )
    remaining = events[:index] + events[index + 1:]

    def _mutate(row: Any) -> None:
        row.payload = apply_payload_changes(row.status, row.payload, {"deliveries": _deliveries_json(remaining)})
        lines.audit(
            action="delivery_removed",
            entity_id=row.id,
            actor=current_user,
            details={"index": index, "count": len(remaining)},
        )

    lines.apply_to_lines(
        [line],
        _mutate,
        failure_code="LINE_UPDATE_FAILED",
        failure_message="Impossibile eliminare la consegna",
    )
    return line


def write_note(*, lines: OrderLineRepository, line_id: int, text: str) -> None:
    """Persist a note immediately (the debounced path ends here)."""
    line = _get_line_or_404(lines, line_id)

    def _mutate(row: Any) -> None:
        row.payload = apply_payload_changes(row.status, row.payload, {"note": text})

    lines.apply_to_lines(
        [line],
        _mutate,
        failure_code="LINE_UPDATE_FAILED",
        failure_message="Impossibile aggiornare le note",
    )


def make_note_writer(session_factory: Callable[[], Any]) -> Callable[[int, str], None]:
    """Note writer for the debouncer: one short-lived session per deferred write."""

    def _writer(line_id: int, text: str) -> None:
        db = session_factory()
        try:
            write_note(lines=OrderLineRepository(db), line_id=line_id, text=text)
        finally:
            db.close()

    return _writer


def update_note_use_case(
    *,
    lines: OrderLineRepository,
    debouncer: NoteDebouncer,
    line_id: int,
    text: str,
) -> str:
    """Queue a note edit; the returned value is what clients should display now."""
    _get_line_or_404(lines, line_id)
    debouncer.submit(line_id, text)
    return text


def loads_for_day_use_case(*, lines: OrderLineRepository, day: date) -> list[Any]:
    """Loads due on `day`, ordered groups first."""
    due = [
        line
        for line in lines.list_by_status(LOADING_STATUSES)
        if is_displayable(line) and line_delivery_date(line) == day
    ]
    return order_for_display(due)
