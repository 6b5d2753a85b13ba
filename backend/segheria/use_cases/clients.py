"""Clients and their product catalog."""
from __future__ import annotations

import logging
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..domain_errors import DomainError, not_found, store_failure
from ..models import AuditEvent, Client, ClientProduct, Order, OrderLine

logger = logging.getLogger(__name__)

CLIENT_FIELDS = ("company_name", "vat_number", "email", "phone", "addresses")
PRODUCT_FIELDS = ("name", "dimensions", "heat_treated")


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


def _commit(db: Session, *, code: str, message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Catalog write failed code=%s", code)
        raise store_failure(code, message)


def _clean_addresses(addresses: list[str] | None) -> list[str]:
    return [a.strip() for a in (addresses or []) if a and a.strip()]


def _get_client_or_404(db: Session, client_id: UUID) -> Client:
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise not_found("CLIENT_NOT_FOUND", "Cliente non trovato", client_id=str(client_id))
    return client


def _get_product_or_404(db: Session, client_id: UUID, product_id: int) -> ClientProduct:
    product = db.query(ClientProduct).filter(
        ClientProduct.id == product_id,
        ClientProduct.client_id == client_id,
    ).first()
    if not product:
        raise not_found("PRODUCT_NOT_FOUND", "Prodotto non trovato", product_id=product_id)
    return product


def list_clients_use_case(*, db: Session, search: str | None = None) -> list[Client]:
    """Clients whose company name, VAT number or email contains `search`."""
    query = db.query(Client)
    term = (search or "").strip()
    if term:
        pattern = f"%{term}%"
        query = query.filter(
            or_(
                Client.company_name.ilike(pattern),
                Client.vat_number.ilike(pattern),
                Client.email.ilike(pattern),
            )
        )
    return query.order_by(func.lower(Client.company_name).asc()).all()


def get_client_use_case(*, db: Session, client_id: UUID) -> Client:
    return _get_client_or_404(db, client_id)


def create_client_use_case(*, db: Session, data: dict[str, Any], current_user: Any) -> Client:
    company_name = (data.get("company_name") or "").strip()
    if not company_name:
        raise DomainError(
            code="CLIENT_NAME_REQUIRED",
            http_status=400,
            message="La ragione sociale è obbligatoria",
        )
    client = Client(
        id=uuid4(),
        company_name=company_name,
        vat_number=data.get("vat_number"),
        email=data.get("email"),
        phone=data.get("phone"),
        addresses=_clean_addresses(data.get("addresses")),
    )
    db.add(client)
    _audit(db, action="client_created", entity_type="client", entity_id=client.id, actor=current_user)
    _commit(db, code="CLIENT_SAVE_FAILED", message="Errore durante il salvataggio del cliente")
    return client


def update_client_use_case(*, db: Session, client_id: UUID, changes: dict[str, Any], current_user: Any) -> Client:
    client = _get_client_or_404(db, client_id)
    for field in CLIENT_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "company_name":
            value = (value or "").strip()
            if not value:
                raise DomainError(
                    code="CLIENT_NAME_REQUIRED",
                    http_status=400,
                    message="La ragione sociale è obbligatoria",
                )
        elif field == "addresses":
            value = _clean_addresses(value)
        setattr(client, field, value)
    _audit(db, action="client_updated", entity_type="client", entity_id=client.id, actor=current_user,
           details={"fields": sorted(k for k in changes if k in CLIENT_FIELDS)})
    _commit(db, code="CLIENT_SAVE_FAILED", message="Errore durante il salvataggio del cliente")
    return client


def delete_client_use_case(*, db: Session, client_id: UUID, current_user: Any) -> None:
    client = _get_client_or_404(db, client_id)
    if db.query(Order.id).filter(Order.client_id == client_id).first():
        raise DomainError(
            code="CLIENT_HAS_ORDERS",
            http_status=409,
            message="Impossibile eliminare un cliente con ordini associati",
            details={"client_id": str(client_id)},
        )
    _audit(db, action="client_deleted", entity_type="client", entity_id=client.id, actor=current_user,
           details={"companyName": client.company_name})
    db.delete(client)
    _commit(db, code="CLIENT_DELETE_FAILED", message="Errore durante l'eliminazione del cliente")


def list_products_use_case(*, db: Session, client_id: UUID) -> list[ClientProduct]:
    _get_client_or_404(db, client_id)
    return (
        db.query(ClientProduct)
        .filter(ClientProduct.client_id == client_id)
        .order_by(ClientProduct.name.asc())
        .all()
    )


def create_product_use_case(*, db: Session, client_id: UUID, data: dict[str, Any], current_user: Any) -> ClientProduct:
    _get_client_or_404(db, client_id)
    name = (data.get("name") or "").strip()
    if not name:
        raise DomainError(code="PRODUCT_NAME_REQUIRED", http_status=400, message="Il nome del prodotto è obbligatorio")
    product = ClientProduct(
        client_id=client_id,
        name=name,
        dimensions=data.get("dimensions"),
        heat_treated=bool(data.get("heat_treated")),
    )
    db.add(product)
    db.flush()
    _audit(db, action="product_created", entity_type="client_product", entity_id=product.id, actor=current_user,
           details={"clientId": str(client_id)})
    _commit(db, code="PRODUCT_SAVE_FAILED", message="Errore durante il salvataggio del prodotto")
    return product


def update_product_use_case(
    *,
    db: Session,
    client_id: UUID,
    product_id: int,
    changes: dict[str, Any],
    current_user: Any,
) -> ClientProduct:
    product = _get_product_or_404(db, client_id, product_id)
    for field in PRODUCT_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if field == "name":
            value = (value or "").strip()
            if not value:
                raise DomainError(
                    code="PRODUCT_NAME_REQUIRED",
                    http_status=400,
                    message="Il nome del prodotto è obbligatorio",
                )
        setattr(product, field, value)
    _audit(db, action="product_updated", entity_type="client_product", entity_id=product.id, actor=current_user)
    _commit(db, code="PRODUCT_SAVE_FAILED", message="Errore durante il salvataggio del prodotto")
    return product


def delete_product_use_case(*, db: Session, client_id: UUID, product_id: int, current_user: Any) -> None:
    product = _get_product_or_404(db, client_id, product_id)
    if db.query(OrderLine.id).filter(OrderLine.product_id == product_id).first():
        raise DomainError(
            code="PRODUCT_IN_USE",
            http_status=409,
            message="Il prodotto è presente in uno o più ordini",
            details={"product_id": product_id},
        )
    _audit(db, action="product_deleted", entity_type="client_product", entity_id=product.id, actor=current_user)
    db.delete(product)
    _commit(db, code="PRODUCT_DELETE_FAILED", message="Errore durante l'eliminazione del prodotto")
