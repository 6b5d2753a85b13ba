"""Grouping of loads that must be delivered and documented together."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Sequence

from ..domain_errors import DomainError, not_found
from ..repositories.order_lines import OrderLineRepository
from ..services.line_payload import apply_payload_changes, now_utc, read_payload
from ..services.line_state import LOADING_STATUSES

logger = logging.getLogger(__name__)

MIN_GROUP_SIZE = 2
GROUPABLE_STATUSES = LOADING_STATUSES


def generate_group_code(at: datetime | None = None) -> str:
    """Timestamp-derived group code (uniqueness is not cryptographic)."""
    return (at or now_utc()).isoformat(timespec="microseconds")


def _normalize_line_ids(line_ids: Sequence[int]) -> list[int]:
    seen: set[int] = set()
    normalized: list[int] = []
    for line_id in line_ids:
        if line_id in seen:
            continue
        seen.add(line_id)
        normalized.append(line_id)
    return normalized


def create_group_use_case(
    *,
    lines: OrderLineRepository,
    line_ids: Sequence[int],
    current_user: Any,
    code_factory: Callable[[], str] = generate_group_code,
) -> list[Any]:
    """Group the selected lines under one fresh code.

    The first selected line is the reference: every member takes its status
    and delivery date; all other payload fields stay as they were.
    """
    selected_ids = _normalize_line_ids(line_ids)
    if len(selected_ids) < MIN_GROUP_SIZE:
        raise DomainError(
            code="GROUP_TOO_SMALL",
            http_status=400,
            message="Selezionare almeno due carichi da raggruppare",
            details={"line_ids": selected_ids},
        )

    selected = lines.get_many(selected_ids)
    found_ids = {line.id for line in selected}
    missing = [line_id for line_id in selected_ids if line_id not in found_ids]
    if missing:
        raise not_found("LINE_NOT_FOUND", "Carico non trovato", line_ids=missing)

    already_grouped = [line.id for line in selected if line.group_code]
    if already_grouped:
        raise DomainError(
            code="LINE_ALREADY_GROUPED",
            http_status=409,
            message="Uno o più carichi fanno già parte di un raggruppamento",
            details={"line_ids": already_grouped},
        )

    locked = [line.id for line in selected if line.status not in GROUPABLE_STATUSES]
    if locked:
        raise DomainError(
            code="LINE_LOCKED",
            http_status=400,
            message="Si possono raggruppare solo carichi in consegna",
            details={"line_ids": locked},
        )

    reference = selected[0]
    reference_status = reference.status
    reference_date = read_payload(reference.payload).delivery_date
    if reference_date is None:
        raise DomainError(
            code="INVALID_PAYLOAD",
            http_status=422,
            message="Il carico di riferimento non ha una data di consegna",
            details={"line_id": reference.id},
        )
    group_code = code_factory()

    def _mutate(row: Any) -> None:
        row.payload = apply_payload_changes(
            reference_status,
            row.payload,
            {"deliveryDate": reference_date.isoformat()},
        )
        row.status = reference_status
        row.group_code = group_code
        lines.audit(
            action="line_grouped",
            entity_id=row.id,
            actor=current_user,
            details={"groupCode": group_code, "referenceLineId": reference.id},
        )

    grouped = lines.apply_to_lines(
        selected,
        _mutate,
        failure_code="GROUP_UPDATE_FAILED",
        failure_message="Impossibile raggruppare i carichi",
    )
    logger.info("Created group %s with %d lines", group_code, len(grouped))
    return grouped


def dissolve_group_use_case(
    *,
    lines: OrderLineRepository,
    group_code: str,
    current_user: Any,
) -> list[Any]:
    """Clear the code on every member; there is no partial ungrouping."""

    def _mutate(row: Any) -> None:
        row.group_code = None
        lines.audit(
            action="line_ungrouped",
            entity_id=row.id,
            actor=current_user,
            details={"groupCode": group_code},
        )

    return lines.apply_to_group(
        group_code,
        _mutate,
        failure_message="Impossibile rimuovere il raggruppamento",
    )


def group_consistency(members: Sequence[Any]) -> dict[str, Any]:
    """Report whether members still share status and delivery date."""
    statuses = sorted({member.status for member in members})
    dates = sorted({str(read_payload(member.payload).delivery_date) for member in members})
    return {
        "consistent": len(statuses) <= 1 and len(dates) <= 1,
        "statuses": statuses,
        "delivery_dates": dates,
    }
