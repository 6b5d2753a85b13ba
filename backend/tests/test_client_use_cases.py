from __future__ import annotations

from types import SimpleNamespace
from uuid import uuid4

import pytest

from segheria.domain_errors import DomainError
from segheria.models import AuditEvent, Client, ClientProduct, Order, OrderLine
from segheria.use_cases.clients import (
    create_client_use_case,
    delete_client_use_case,
    delete_product_use_case,
    update_client_use_case,
)


class _QueryStub:
    def __init__(self, first_result=None):
        self._first_result = first_result

    def filter(self, *_args, **_kwargs):
        return self

    def first(self):
        return self._first_result


class _SessionStub:
    def __init__(self, *results):
        self._results = results
        self.added = []
        self.deleted = []
        self.commit_calls = 0

    def query(self, target):
        for key, result in self._results:
            if key is target:
                return _QueryStub(result)
        raise AssertionError(f"Unexpected query target: {target}")

    def add(self, obj):
        self.added.append(obj)

    def delete(self, obj):
        self.deleted.append(obj)

    def commit(self):
        self.commit_calls += 1


def _admin():
    return SimpleNamespace(id=uuid4(), email="admin@segheria.local")


def test_create_client_trims_name_and_drops_blank_addresses() -> None:
    db = _SessionStub()

    client = create_client_use_case(
        db=db,
        data={"company_name": "  Imballaggi Rossi  ", "addresses": ["Via dei Pini 12", "  ", ""]},
        current_user=_admin(),
    )

    assert client.company_name == "Imballaggi Rossi"
    assert client.addresses == ["Via dei Pini 12"]
    assert [item.action for item in db.added if isinstance(item, AuditEvent)] == ["client_created"]
    assert db.commit_calls == 1


def test_create_client_requires_company_name() -> None:
    with pytest.raises(DomainError) as exc:
        create_client_use_case(db=_SessionStub(), data={"company_name": " "}, current_user=_admin())

    assert exc.value.code == "CLIENT_NAME_REQUIRED"


def test_update_client_touches_only_given_fields() -> None:
    client = SimpleNamespace(id=uuid4(), company_name="Rossi", vat_number="IT1", email="a@b.it", phone=None, addresses=[])
    db = _SessionStub((Client, client))

    update_client_use_case(db=db, client_id=client.id, changes={"phone": "0471 000000"}, current_user=_admin())

    assert client.phone == "0471 000000"
    assert client.vat_number == "IT1"


def test_client_with_orders_cannot_be_deleted() -> None:
    client = SimpleNamespace(id=uuid4(), company_name="Rossi")
    db = _SessionStub((Client, client), (Order.id, (uuid4(),)))

    with pytest.raises(DomainError) as exc:
        delete_client_use_case(db=db, client_id=client.id, current_user=_admin())

    assert exc.value.code == "CLIENT_HAS_ORDERS"
    assert exc.value.http_status == 409
    assert db.deleted == []


def test_product_in_use_cannot_be_deleted() -> None:
    product = SimpleNamespace(id=7, client_id=uuid4(), name="Pallet")
    db = _SessionStub((ClientProduct, product), (OrderLine.id, (1,)))

    with pytest.raises(DomainError) as exc:
        delete_product_use_case(db=db, client_id=product.client_id, product_id=7, current_user=_admin())

    assert exc.value.code == "PRODUCT_IN_USE"


def test_unused_product_is_deleted() -> None:
    product = SimpleNamespace(id=8, client_id=uuid4(), name="Cassa")
    db = _SessionStub((ClientProduct, product), (OrderLine.id, None))

    delete_product_use_case(db=db, client_id=product.client_id, product_id=8, current_user=_admin())

    assert db.deleted == [product]
    assert db.commit_calls == 1
