"""Client and client-product endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..schemas import (
    ClientCreate,
    ClientResponse,
    ClientUpdate,
    MessageResponse,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
)
from ..use_cases.clients import (
    create_client_use_case,
    create_product_use_case,
    delete_client_use_case,
    delete_product_use_case,
    get_client_use_case,
    list_clients_use_case,
    list_products_use_case,
    update_client_use_case,
    update_product_use_case,
)

router = APIRouter(prefix="/clients", tags=["clients"])


@router.get("", response_model=list[ClientResponse])
def get_clients(
    search: Optional[str] = Query(None, max_length=255),
    # Orders need the client list to pick one.
    current_user: User = Depends(PermissionChecker("canManageClients", "canManageOrders")),
    db: Session = Depends(get_db),
):
    return [ClientResponse.model_validate(c) for c in list_clients_use_case(db=db, search=search)]


@router.post("", response_model=ClientResponse, status_code=201)
def create_client(
    payload: ClientCreate,
    current_user: User = Depends(PermissionChecker("canManageClients")),
    db: Session = Depends(get_db),
):
    client = create_client_use_case(db=db, data=payload.model_dump(), current_user=current_user)
    return ClientResponse.model_validate(client)


@router.get("/{client_id}", response_model=ClientResponse)
def get_client(
    client_id: UUID,
    current_user: User = Depends(PermissionChecker("canManageClients", "canManageOrders")),
    db: Session = Depends(get_db),
):
    return ClientResponse.model_validate(get_client_use_case(db=db, client_id=client_id))


@router.patch("/{client_id}", response_model=ClientResponse)
def update_client(
    client_id: UUID,
    payload: ClientUpdate,
    current_user: User = Depends(PermissionChecker("canManageClients")),
    db: Session = Depends(get_db),
):
    client = update_client_use_case(
        db=db,
        client_id=client_id,
        changes=payload.model_dump(exclude_unset=True),
        current_user=current_user,
    )
    return ClientResponse.model_validate(client)


@router.delete("/{client_id}", response_model=MessageResponse)
def delete_client(
    client_id: UUID,
    current_user: User = Depends(PermissionChecker("canManageClients")),
    db: Session = Depends(get_db),
):
    delete_client_use_case(db=db, client_id=client_id, current_user=current_user)
    return MessageResponse(message="Cliente eliminato")


@router.get("/{client_id}/products", response_model=list[ProductResponse])
def get_products(
    client_id: UUID,
    current_user: User = Depends(PermissionChecker("canManageClients", "canManageOrders")),
    db: Session = Depends(get_db),
):
    return [ProductResponse.model_validate(p) for p in list_products_use_case(db=db, client_id=client_id)]


@router.post("/{client_id}/products", response_model=ProductResponse, status_code=201)
def create_product(
    client_id: UUID,
    payload: ProductCreate,
    current_user: User = Depends(PermissionChecker("canManageClients")),
    db: Session = Depends(get_db),
):
    product = create_product_use_case(
        db=db,
        client_id=client_id,
        data=payload.model_dump(),
        current_user=current_user,
    )
    return ProductResponse.model_validate(product)


@router.patch("/{client_id}/products/{product_id}", response_model=ProductResponse)
def update_product(
    client_id: UUID,
    product_id: int,
    payload: ProductUpdate,
    current_user: User = Depends(PermissionChecker("canManageClients")),
    db: Session = Depends(get_db),
):
    product = update_product_use_case(
        db=db,
        client_id=client_id,
        product_id=product_id,
        changes=payload.model_dump(exclude_unset=True),
        current_user=current_user,
    )
    return ProductResponse.model_validate(product)


@router.delete("/{client_id}/products/{product_id}", response_model=MessageResponse)
def delete_product(
    client_id: UUID,
    product_id: int,
    current_user: User = Depends(PermissionChecker("canManageClients")),
    db: Session = Depends(get_db),
):
    delete_product_use_case(db=db, client_id=client_id, product_id=product_id, current_user=current_user)
    return MessageResponse(message="Prodotto eliminato")
