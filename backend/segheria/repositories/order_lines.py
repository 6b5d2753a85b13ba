"""Order-line repository: single rows and groups of rows sharing a group code.

Group membership is always read fresh from the database. Mutations applied
through `apply_to_group`/`apply_to_lines` are committed as one transaction, so
either every member is written or none is.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..domain_errors import DomainError, not_found, store_failure
from ..models import AuditEvent, ClientProduct, Order, OrderLine

logger = logging.getLogger(__name__)

LineMutation = Callable[[Any], None]


class OrderLineRepository:
    """SQLAlchemy-backed access to `order_lines`."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # Reads

    def get(self, line_id: int) -> OrderLine | None:
        return self.db.query(OrderLine).filter(OrderLine.id == line_id).first()

    def get_many(self, line_ids: Sequence[int]) -> list[OrderLine]:
        """Rows for `line_ids`, in the order the ids were given (missing ids skipped)."""
        if not line_ids:
            return []
        rows = (
            self.db.query(OrderLine)
            .filter(OrderLine.id.in_(tuple(line_ids)))
            .with_for_update()
            .all()
        )
        by_id = {row.id: row for row in rows}
        return [by_id[line_id] for line_id in line_ids if line_id in by_id]

    def members_of(self, group_code: str) -> list[OrderLine]:
        return (
            self.db.query(OrderLine)
            .filter(OrderLine.group_code == group_code)
            .order_by(OrderLine.id.asc())
            .with_for_update()
            .all()
        )

    def list_by_status(self, statuses: Iterable[str]) -> list[OrderLine]:
        return (
            self.db.query(OrderLine)
            .options(
                joinedload(OrderLine.order).joinedload(Order.client),
                joinedload(OrderLine.product),
            )
            .filter(OrderLine.status.in_(tuple(statuses)))
            .order_by(OrderLine.id.asc())
            .all()
        )

    def list_for_order(self, order_id: Any) -> list[OrderLine]:
        return (
            self.db.query(OrderLine)
            .options(joinedload(OrderLine.product))
            .filter(OrderLine.order_id == order_id)
            .order_by(OrderLine.id.asc())
            .all()
        )

    def product_exists(self, product_id: int) -> bool:
        return self.db.query(ClientProduct.id).filter(ClientProduct.id == product_id).first() is not None

    def order_exists(self, order_id: Any) -> bool:
        return self.db.query(Order.id).filter(Order.id == order_id).first() is not None

    # Writes

    def add(self, line: OrderLine) -> None:
        self.db.add(line)

    def delete(self, line: OrderLine) -> None:
        self.db.delete(line)

    def flush(self) -> None:
        """Assign store-generated ids to pending rows."""
        self.db.flush()

    def audit(self, *, action: str, entity_id: Any, actor: Any | None, details: dict[str, Any] | None = None) -> None:
        self.db.add(
            AuditEvent(
                action=action,
                entity_type="order_line",
                entity_id=str(entity_id),
                user_id=getattr(actor, "id", None),
                user_name=getattr(actor, "email", None),
                details=details,
            )
        )

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def refresh(self, line: OrderLine) -> None:
        self.db.refresh(line)

    # Units of work

    def apply_to_lines(
        self,
        lines: Sequence[Any],
        mutation: LineMutation,
        *,
        failure_code: str,
        failure_message: str,
    ) -> list[Any]:
        """Apply `mutation` to every line and commit once; roll everything back on failure."""
        line_ids = [line.id for line in lines]
        try:
            for line in lines:
                mutation(line)
            self.commit()
        except DomainError:
            self.rollback()
            raise
        except SQLAlchemyError:
            self.rollback()
            logger.exception("Order line write failed code=%s line_ids=%s", failure_code, line_ids)
            raise store_failure(failure_code, failure_message, line_ids=line_ids)
        return list(lines)

    def apply_to_group(
        self,
        group_code: str,
        mutation: LineMutation,
        *,
        failure_code: str = "GROUP_UPDATE_FAILED",
        failure_message: str = "Impossibile aggiornare il raggruppamento",
    ) -> list[Any]:
        members = self.members_of(group_code)
        if not members:
            raise not_found("GROUP_NOT_FOUND", "Raggruppamento non trovato", group_code=group_code)
        return self.apply_to_lines(
            members,
            mutation,
            failure_code=failure_code,
            failure_message=failure_message,
        )

    def scope_of(self, line: Any) -> list[Any]:
        """The line itself, or every current member of its group."""
        if line.group_code:
            return self.members_of(line.group_code) or [line]
        return [line]
