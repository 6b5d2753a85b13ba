"""Order-line status machine.

production -> delivery -> (ready_for_delivery <-> delivery) -> documented -> completed
"""

from __future__ import annotations

from typing import Any

from .line_payload import read_payload


PRODUCTION = "production"
DELIVERY = "delivery"
READY_FOR_DELIVERY = "ready_for_delivery"
DOCUMENTED = "documented"
COMPLETED = "completed"

LINE_STATUSES: tuple[str, ...] = (PRODUCTION, DELIVERY, READY_FOR_DELIVERY, DOCUMENTED, COMPLETED)
LOADING_STATUSES: tuple[str, ...] = (DELIVERY, READY_FOR_DELIVERY)
_TERMINAL_STATUSES: set[str] = {COMPLETED}
_ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PRODUCTION: {DELIVERY},
    DELIVERY: {READY_FOR_DELIVERY, DOCUMENTED},
    READY_FOR_DELIVERY: {DELIVERY, DOCUMENTED},
    DOCUMENTED: {COMPLETED},
    COMPLETED: set(),
}

STATUS_LABELS_IT: dict[str, str] = {
    PRODUCTION: "Produzione",
    DELIVERY: "Consegna",
    READY_FOR_DELIVERY: "Pronto per la consegna",
    DOCUMENTED: "DDT",
    COMPLETED: "Completato",
}


def normalize_line_status(status: str | None) -> str:
    if not status:
        return PRODUCTION
    return status.strip().lower()


def validate_status_transition(*, current_status: str | None, next_status: str) -> str:
    current = normalize_line_status(current_status)
    nxt = normalize_line_status(next_status)
    if nxt not in _ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid order line status transition: {current} -> {nxt}")
    return nxt


def can_transition(current_status: str | None, next_status: str) -> bool:
    try:
        validate_status_transition(current_status=current_status, next_status=next_status)
    except ValueError:
        return False
    return True


def toggled_loading_status(status: str | None) -> str:
    """delivery <-> ready_for_delivery."""
    current = normalize_line_status(status)
    if current == DELIVERY:
        return READY_FOR_DELIVERY
    if current == READY_FOR_DELIVERY:
        return DELIVERY
    raise ValueError(f"Cannot toggle readiness from status {current}")


def is_terminal_status(status: str | None) -> bool:
    return normalize_line_status(status) in _TERMINAL_STATUSES


def has_deliveries(line: Any) -> bool:
    return len(read_payload(line.payload).deliveries) > 0


def line_actions(line: Any) -> dict[str, bool]:
    """Actions a client may offer for the line; disabled controls map to False."""
    status = normalize_line_status(line.status)
    return {
        "confirm_production": status == PRODUCTION,
        "toggle_ready": status in LOADING_STATUSES,
        "confirm_delivery": status in LOADING_STATUSES and has_deliveries(line),
        "confirm_ddt": status == DOCUMENTED,
        "edit_delivery_date": status in (PRODUCTION, DELIVERY, READY_FOR_DELIVERY),
    }
