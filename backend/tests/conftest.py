from __future__ import annotations

import copy
import itertools
from datetime import date
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from segheria.repositories.order_lines import OrderLineRepository


class FakeLineRepository(OrderLineRepository):
    """In-memory order lines; rollback restores the state of the last commit."""

    def __init__(self, rows, *, products=(), orders=()):
        super().__init__(db=None)
        self.rows = {row.id: row for row in rows}
        self.products = set(products)
        self.orders = set(orders)
        self.audits: list[dict] = []
        self.added: list = []
        self.deleted: list = []
        self.commit_calls = 0
        self.rollback_calls = 0
        self.fail_commit = False
        self._next_id = itertools.count(max(self.rows, default=0) + 1)
        self._snapshot = self._take_snapshot()

    def _take_snapshot(self):
        return {
            line_id: (row.status, row.group_code, row.product_id, copy.deepcopy(row.payload))
            for line_id, row in self.rows.items()
        }

    def get(self, line_id):
        return self.rows.get(line_id)

    def get_many(self, line_ids):
        return [self.rows[line_id] for line_id in line_ids if line_id in self.rows]

    def members_of(self, group_code):
        return [row for _, row in sorted(self.rows.items()) if row.group_code == group_code]

    def list_by_status(self, statuses):
        return [row for _, row in sorted(self.rows.items()) if row.status in tuple(statuses)]

    def list_for_order(self, order_id):
        return [row for _, row in sorted(self.rows.items()) if row.order_id == order_id]

    def product_exists(self, product_id):
        return product_id in self.products

    def order_exists(self, order_id):
        return order_id in self.orders

    def add(self, line):
        self.added.append(line)

    def delete(self, line):
        self.deleted.append(line)
        self.rows.pop(line.id, None)

    def flush(self):
        for line in self.added:
            if getattr(line, "id", None) is None:
                line.id = next(self._next_id)
                self.rows[line.id] = line

    def audit(self, *, action, entity_id, actor, details=None):
        self.audits.append({"action": action, "entity_id": entity_id, "details": details})

    def commit(self):
        if self.fail_commit:
            raise SQLAlchemyError("commit rejected")
        self.commit_calls += 1
        self._snapshot = self._take_snapshot()

    def rollback(self):
        self.rollback_calls += 1
        for line_id, (status, group_code, product_id, payload) in self._snapshot.items():
            row = self.rows.get(line_id)
            if row is None:
                continue
            row.status = status
            row.group_code = group_code
            row.product_id = product_id
            row.payload = copy.deepcopy(payload)

    def refresh(self, line):
        pass


_line_ids = itertools.count(1)


@pytest.fixture
def make_line():
    def _make(
        *,
        line_id=None,
        status="production",
        group_code=None,
        quantity=10,
        delivery_date=date(2026, 11, 2),
        deliveries=None,
        note="",
        client_name="Imballaggi Rossi",
        **extra_payload,
    ):
        payload = {"note": note, **extra_payload}
        if quantity is not None:
            payload["quantity"] = quantity
        if delivery_date is not None:
            payload["deliveryDate"] = delivery_date.isoformat()
        if deliveries is not None:
            payload["deliveries"] = deliveries
        client_id = uuid4()
        return SimpleNamespace(
            id=line_id if line_id is not None else next(_line_ids) + 1000,
            order_id=uuid4(),
            product_id=1,
            status=status,
            group_code=group_code,
            payload=payload,
            order=SimpleNamespace(
                order_number="2026/ABC-123",
                client_id=client_id,
                client=SimpleNamespace(id=client_id, company_name=client_name),
            ),
            product=SimpleNamespace(name="Pallet EPAL", dimensions="1200x800", heat_treated=True),
        )

    return _make


@pytest.fixture
def line_repo():
    def _build(*rows, products=(), orders=()):
        return FakeLineRepository(rows, products=products, orders=orders)

    return _build


@pytest.fixture
def current_user():
    return SimpleNamespace(id=uuid4(), email="capo@segheria.local", role="admin", name="Capo")
