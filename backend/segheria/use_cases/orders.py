"""Orders and their lines, as managed from the orders page."""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..domain_errors import DomainError, not_found, store_failure
from ..models import AuditEvent, Client, Order, OrderLine
from ..repositories.order_lines import OrderLineRepository
from ..services.line_payload import apply_payload_changes, now_utc, read_payload
from ..services.line_state import COMPLETED, DOCUMENTED, PRODUCTION

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
MISSING_CLIENT_NAME = "Cliente non trovato"


def generate_order_number(at: datetime | None = None) -> str:
    """`YYYY/AAA-999`: year, three random letters, three random digits."""
    year = (at or now_utc()).year
    letters = "".join(secrets.choice(string.ascii_uppercase) for _ in range(3))
    digits = "".join(secrets.choice(string.digits) for _ in range(3))
    return f"{year}/{letters}-{digits}"


@dataclass
class OrderSummary:
    order: Order
    client_name: str
    latest_delivery_date: date | None
    is_completed: bool
    line_count: int


def summarize_order(order: Any) -> OrderSummary:
    lines = list(order.lines or [])
    open_dates = [
        read_payload(line.payload).delivery_date
        for line in lines
        if line.status != COMPLETED
    ]
    open_dates = [d for d in open_dates if d is not None]
    client = getattr(order, "client", None)
    return OrderSummary(
        order=order,
        client_name=client.company_name if client else MISSING_CLIENT_NAME,
        latest_delivery_date=max(open_dates) if open_dates else None,
        is_completed=bool(lines) and all(line.status == COMPLETED for line in lines),
        line_count=len(lines),
    )


def sort_order_summaries(summaries: list[OrderSummary]) -> list[OrderSummary]:
    """Ascending latest delivery date; orders without one go last."""
    return sorted(
        summaries,
        key=lambda s: (s.latest_delivery_date is None, s.latest_delivery_date or date.max),
    )


def _audit(db: Session, *, action: str, entity_type: str, entity_id: Any, actor: Any, details: dict | None = None) -> None:
    db.add(
        AuditEvent(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            user_id=getattr(actor, "id", None),
            user_name=getattr(actor, "email", None),
            details=details,
        )
    )


def _commit(db: Session, *, code: str, message: str, **details: Any) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Order write failed code=%s", code)
        raise store_failure(code, message, **details)


def _get_order_or_404(db: Session, order_id: UUID) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise not_found("ORDER_NOT_FOUND", "Ordine non trovato", order_id=str(order_id))
    return order


def _ensure_client(db: Session, client_id: UUID) -> None:
    if not db.query(Client.id).filter(Client.id == client_id).first():
        raise not_found("CLIENT_NOT_FOUND", "Cliente non trovato", client_id=str(client_id))


def _ensure_order_number_free(db: Session, order_number: str, *, exclude_id: UUID | None = None) -> None:
    query = db.query(Order.id).filter(Order.order_number == order_number)
    if exclude_id is not None:
        query = query.filter(Order.id != exclude_id)
    if query.first():
        raise DomainError(
            code="ORDER_NUMBER_TAKEN",
            http_status=409,
            message="Numero d'ordine già utilizzato",
            details={"order_number": order_number},
        )


def _fresh_order_number(db: Session) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        candidate = generate_order_number()
        if not db.query(Order.id).filter(Order.order_number == candidate).first():
            return candidate
    raise store_failure("ORDER_NUMBER_UNAVAILABLE", "Impossibile generare un numero d'ordine")


def list_orders_use_case(*, db: Session, search: str | None = None, page: int = 0) -> tuple[list[OrderSummary], int]:
    """One page of orders matching `search` on the order number, plus the total count."""
    query = db.query(Order).options(joinedload(Order.client), joinedload(Order.lines))
    if search:
        query = query.filter(Order.order_number.ilike(f"%{search.strip()}%"))
    summaries = sort_order_summaries([summarize_order(order) for order in query.all()])
    size = settings.ORDERS_PAGE_SIZE
    start = max(page, 0) * size
    return summaries[start:start + size], len(summaries)


def get_order_use_case(*, db: Session, order_id: UUID) -> OrderSummary:
    return summarize_order(_get_order_or_404(db, order_id))


def create_order_use_case(
    *,
    db: Session,
    client_id: UUID,
    order_number: str | None,
    ordered_at: datetime | None,
    note: str | None,
    current_user: Any,
) -> Order:
    _ensure_client(db, client_id)
    number = (order_number or "").strip()
    if number:
        _ensure_order_number_free(db, number)
    else:
        number = _fresh_order_number(db)
    order = Order(
        id=uuid4(),
        order_number=number,
        client_id=client_id,
        ordered_at=ordered_at or now_utc(),
        note=note,
    )
    db.add(order)
    _audit(db, action="order_created", entity_type="order", entity_id=order.id, actor=current_user,
           details={"orderNumber": number})
    _commit(db, code="ORDER_SAVE_FAILED", message="Errore durante il salvataggio dell'ordine")
    return order


def update_order_use_case(
    *,
    db: Session,
    order_id: UUID,
    changes: dict[str, Any],
    current_user: Any,
) -> Order:
    order = _get_order_or_404(db, order_id)
    if "client_id" in changes and changes["client_id"] is not None:
        _ensure_client(db, changes["client_id"])
        order.client_id = changes["client_id"]
    if changes.get("order_number"):
        number = changes["order_number"].strip()
        _ensure_order_number_free(db, number, exclude_id=order.id)
        order.order_number = number
    if changes.get("ordered_at") is not None:
        order.ordered_at = changes["ordered_at"]
    if "note" in changes:
        order.note = changes["note"]
    _audit(db, action="order_updated", entity_type="order", entity_id=order.id, actor=current_user,
           details={"fields": sorted(changes)})
    _commit(db, code="ORDER_SAVE_FAILED", message="Errore durante il salvataggio dell'ordine")
    return order


def delete_order_use_case(*, db: Session, order_id: UUID, current_user: Any) -> None:
    """Delete the order and, with it, every one of its lines."""
    order = _get_order_or_404(db, order_id)
    _audit(db, action="order_deleted", entity_type="order", entity_id=order.id, actor=current_user,
           details={"orderNumber": order.order_number})
    db.delete(order)
    _commit(db, code="ORDER_DELETE_FAILED", message="Errore durante l'eliminazione dell'ordine")


# Lines


def _get_line_of_order(lines: OrderLineRepository, order_id: UUID, line_id: int) -> OrderLine:
    line = lines.get(line_id)
    if not line or line.order_id != order_id:
        raise not_found("LINE_NOT_FOUND", "Carico non trovato", line_id=line_id)
    return line


def _ensure_product(lines: OrderLineRepository, product_id: int) -> None:
    if not lines.product_exists(product_id):
        raise not_found("PRODUCT_NOT_FOUND", "Prodotto non trovato", product_id=product_id)


def list_order_lines_use_case(*, db: Session, order_id: UUID) -> list[OrderLine]:
    _get_order_or_404(db, order_id)
    return OrderLineRepository(db).list_for_order(order_id)


def add_order_line_use_case(
    *,
    lines: OrderLineRepository,
    order_id: UUID,
    product_id: int,
    quantity: int,
    delivery_date: date,
    current_user: Any,
) -> OrderLine:
    """New lines always enter the flow in production."""
    if not lines.order_exists(order_id):
        raise not_found("ORDER_NOT_FOUND", "Ordine non trovato", order_id=str(order_id))
    _ensure_product(lines, product_id)
    payload = apply_payload_changes(
        PRODUCTION,
        {},
        {"quantity": quantity, "deliveryDate": delivery_date.isoformat()},
    )
    line = OrderLine(order_id=order_id, product_id=product_id, status=PRODUCTION, payload=payload)
    lines.add(line)
    lines.flush()
    lines.audit(action="line_created", entity_id=line.id, actor=current_user,
                details={"orderId": str(order_id), "productId": product_id})
    try:
        lines.commit()
    except SQLAlchemyError:
        lines.rollback()
        logger.exception("Failed to add order line order_id=%s", order_id)
        raise store_failure("LINE_SAVE_FAILED", "Errore durante il salvataggio del prodotto")
    return line


def update_order_line_use_case(
    *,
    lines: OrderLineRepository,
    order_id: UUID,
    line_id: int,
    product_id: int | None,
    quantity: int | None,
    delivery_date: date | None,
    current_user: Any,
) -> list[OrderLine]:
    """Edit product, quantity and date in one transaction.

    A date change applies to the line's whole group; if any member is already
    documented nothing is written.
    """
    line = _get_line_of_order(lines, order_id, line_id)
    if product_id is not None:
        _ensure_product(lines, product_id)

    current = read_payload(line.payload).delivery_date
    moves_date = delivery_date is not None and delivery_date != current
    scope = lines.scope_of(line) if moves_date else [line]
    if moves_date:
        locked = [row.id for row in scope if row.status in (DOCUMENTED, COMPLETED)]
        if locked:
            raise DomainError(
                code="LINE_LOCKED",
                http_status=400,
                message="La data di consegna di un carico evaso non è modificabile",
                details={"line_ids": locked},
            )

    def _mutate(row: Any) -> None:
        changes: dict[str, Any] = {}
        if moves_date:
            changes["deliveryDate"] = delivery_date.isoformat()
        if row is line:
            if product_id is not None:
                row.product_id = product_id
            if quantity is not None:
                changes["quantity"] = quantity
        if changes:
            row.payload = apply_payload_changes(row.status, row.payload, changes)
        lines.audit(
            action="line_updated",
            entity_id=row.id,
            actor=current_user,
            details={"productId": product_id, "changes": sorted(changes)},
        )

    return lines.apply_to_lines(
        scope,
        _mutate,
        failure_code="LINE_SAVE_FAILED",
        failure_message="Errore durante il salvataggio del prodotto",
    )


def duplicate_order_line_use_case(
    *,
    lines: OrderLineRepository,
    order_id: UUID,
    line_id: int,
    current_user: Any,
) -> OrderLine:
    """Copy product, quantity and delivery date into a new line in production."""
    source = _get_line_of_order(lines, order_id, line_id)
    data = read_payload(source.payload)
    if data.quantity is None or data.delivery_date is None:
        raise DomainError(
            code="INVALID_PAYLOAD",
            http_status=422,
            message="Il prodotto da duplicare non ha quantità o data di consegna",
            details={"line_id": line_id},
        )
    return add_order_line_use_case(
        lines=lines,
        order_id=order_id,
        product_id=source.product_id,
        quantity=data.quantity,
        delivery_date=data.delivery_date,
        current_user=current_user,
    )


def delete_order_line_use_case(
    *,
    lines: OrderLineRepository,
    order_id: UUID,
    line_id: int,
    current_user: Any,
) -> None:
    """Delete in any status; remaining members of a group keep their code."""
    line = _get_line_of_order(lines, order_id, line_id)
    lines.audit(action="line_deleted", entity_id=line.id, actor=current_user,
                details={"status": line.status, "groupCode": line.group_code})
    lines.delete(line)
    try:
        lines.commit()
    except SQLAlchemyError:
        lines.rollback()
        logger.exception("Failed to delete order line line_id=%s", line_id)
        raise store_failure("LINE_DELETE_FAILED", "Errore durante l'eliminazione del prodotto", line_id=line_id)
