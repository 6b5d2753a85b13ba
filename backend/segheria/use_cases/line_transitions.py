"""Order-line status transitions used by the production, loads and DDT routers."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

from ..domain_errors import DomainError, not_found
from ..repositories.order_lines import OrderLineRepository
from ..services.line_payload import apply_payload_changes, make_stamp
from ..services.line_state import (
    DELIVERY,
    DOCUMENTED,
    COMPLETED,
    PRODUCTION,
    READY_FOR_DELIVERY,
    has_deliveries,
    toggled_loading_status,
    validate_status_transition,
)


def _get_line_or_404(lines: OrderLineRepository, line_id: int) -> Any:
    line = lines.get(line_id)
    if not line:
        raise not_found("LINE_NOT_FOUND", "Carico non trovato", line_id=line_id)
    return line


def _transition(line: Any, next_status: str, changes: dict[str, Any]) -> None:
    """Validate and write a status change plus payload changes on one row."""
    try:
        nxt = validate_status_transition(current_status=line.status, next_status=next_status)
    except ValueError as exc:
        raise DomainError(
            code="INVALID_STATUS_TRANSITION",
            http_status=400,
            message=str(exc),
            details={"line_id": line.id, "from": line.status, "to": next_status},
        ) from exc
    line.payload = apply_payload_changes(nxt, line.payload, changes)
    line.status = nxt


def confirm_production_use_case(
    *,
    lines: OrderLineRepository,
    line_id: int,
    current_user: Any,
    at: datetime | None = None,
) -> Any:
    """production -> delivery, stamping productionConfirmedAt."""
    line = _get_line_or_404(lines, line_id)
    if line.status != PRODUCTION:
        raise DomainError(
            code="INVALID_STATUS_TRANSITION",
            http_status=400,
            message="Il carico non è in produzione",
            details={"line_id": line.id, "from": line.status, "to": DELIVERY},
        )
    stamp = make_stamp(current_user, at=at)

    def _mutate(row: Any) -> None:
        _transition(row, DELIVERY, {"productionConfirmedAt": stamp.model_dump(mode="json")})
        lines.audit(
            action="production_confirmed",
            entity_id=row.id,
            actor=current_user,
            details={"oldStatus": PRODUCTION, "newStatus": DELIVERY},
        )

    lines.apply_to_lines(
        [line],
        _mutate,
        failure_code="LINE_UPDATE_FAILED",
        failure_message="Errore nella conferma della produzione",
    )
    return line


def toggle_ready_for_delivery_use_case(
    *,
    lines: OrderLineRepository,
    line_id: int,
    current_user: Any,
) -> list[Any]:
    """delivery <-> ready_for_delivery on the line or its whole group."""
    line = _get_line_or_404(lines, line_id)
    try:
        new_status = toggled_loading_status(line.status)
    except ValueError as exc:
        raise DomainError(
            code="INVALID_STATUS_TRANSITION",
            http_status=400,
            message=str(exc),
            details={"line_id": line.id, "from": line.status},
        ) from exc

    def _mutate(row: Any) -> None:
        if row.status == new_status:
            return
        old_status = row.status
        _transition(row, new_status, {})
        lines.audit(
            action="ready_for_delivery_toggled",
            entity_id=row.id,
            actor=current_user,
            details={"oldStatus": old_status, "newStatus": new_status, "groupCode": row.group_code},
        )

    return lines.apply_to_lines(
        lines.scope_of(line),
        _mutate,
        failure_code="LINE_UPDATE_FAILED",
        failure_message="Impossibile aggiornare lo stato del carico",
    )


def confirm_delivery_use_case(
    *,
    lines: OrderLineRepository,
    line_id: int,
    current_user: Any,
    at: datetime | None = None,
) -> list[Any]:
    """delivery | ready_for_delivery -> documented (evadi).

    The triggering line must have at least one recorded delivery; the effect
    then applies to every member of its group with one shared completion stamp.
    """
    line = _get_line_or_404(lines, line_id)
    if line.status not in (DELIVERY, READY_FOR_DELIVERY):
        raise DomainError(
            code="INVALID_STATUS_TRANSITION",
            http_status=400,
            message="Il carico non è in consegna",
            details={"line_id": line.id, "from": line.status, "to": DOCUMENTED},
        )
    if not has_deliveries(line):
        raise DomainError(
            code="DELIVERIES_REQUIRED",
            http_status=422,
            message="Registrare almeno una consegna prima di evadere il carico",
            details={"line_id": line.id},
        )
    completed_at = make_stamp(current_user, at=at).model_dump(mode="json")

    def _mutate(row: Any) -> None:
        old_status = row.status
        _transition(row, DOCUMENTED, {"completedAt": completed_at})
        lines.audit(
            action="delivery_confirmed",
            entity_id=row.id,
            actor=current_user,
            details={"oldStatus": old_status, "newStatus": DOCUMENTED, "groupCode": row.group_code},
        )

    return lines.apply_to_lines(
        lines.scope_of(line),
        _mutate,
        failure_code="LINE_UPDATE_FAILED",
        failure_message="Impossibile completare il carico",
    )


def confirm_ddt_use_case(
    *,
    lines: OrderLineRepository,
    line_id: int,
    current_user: Any,
    at: datetime | None = None,
) -> list[Any]:
    """documented -> completed, overwriting completedAt on the line or its group."""
    line = _get_line_or_404(lines, line_id)
    if line.status != DOCUMENTED:
        raise DomainError(
            code="INVALID_STATUS_TRANSITION",
            http_status=400,
            message="Il carico non è in attesa di DDT",
            details={"line_id": line.id, "from": line.status, "to": COMPLETED},
        )
    completed_at = make_stamp(current_user, at=at).model_dump(mode="json")

    def _mutate(row: Any) -> None:
        _transition(row, COMPLETED, {"completedAt": completed_at})
        lines.audit(
            action="ddt_confirmed",
            entity_id=row.id,
            actor=current_user,
            details={"oldStatus": DOCUMENTED, "newStatus": COMPLETED, "groupCode": row.group_code},
        )

    return lines.apply_to_lines(
        lines.scope_of(line),
        _mutate,
        failure_code="LINE_UPDATE_FAILED",
        failure_message="Impossibile completare il carico",
    )


def _set_delivery_date(new_date: date):
    def _mutate(row: Any) -> None:
        if row.status in (DOCUMENTED, COMPLETED):
            raise DomainError(
                code="LINE_LOCKED",
                http_status=400,
                message="La data di consegna di un carico evaso non è modificabile",
                details={"line_id": row.id, "status": row.status},
            )
        row.payload = apply_payload_changes(row.status, row.payload, {"deliveryDate": new_date.isoformat()})

    return _mutate


def update_delivery_date_use_case(
    *,
    lines: OrderLineRepository,
    line_id: int,
    new_date: date,
) -> list[Any]:
    """Change the delivery date of a line; a grouped line moves its whole group."""
    line = _get_line_or_404(lines, line_id)
    return lines.apply_to_lines(
        lines.scope_of(line),
        _set_delivery_date(new_date),
        failure_code="LINE_UPDATE_FAILED",
        failure_message="Impossibile aggiornare la data di consegna",
    )


def update_group_delivery_date_use_case(
    *,
    lines: OrderLineRepository,
    group_code: str,
    new_date: date,
) -> list[Any]:
    return lines.apply_to_group(
        group_code,
        _set_delivery_date(new_date),
        failure_message="Impossibile aggiornare la data di consegna",
    )
