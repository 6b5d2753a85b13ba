"""Order endpoints, including the lines of each order."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..config import settings
from ..database import get_db
from ..models import User
from ..repositories.order_lines import OrderLineRepository
from ..schemas import (
    AffectedLinesResponse,
    LineResponse,
    MessageResponse,
    OrderCreate,
    OrderLineCreate,
    OrderLineUpdate,
    OrderPage,
    OrderResponse,
    OrderUpdate,
)
from ..services.line_response_builder import build_line_response
from ..use_cases.orders import (
    OrderSummary,
    add_order_line_use_case,
    create_order_use_case,
    delete_order_line_use_case,
    delete_order_use_case,
    duplicate_order_line_use_case,
    get_order_use_case,
    list_order_lines_use_case,
    list_orders_use_case,
    summarize_order,
    update_order_line_use_case,
    update_order_use_case,
)

router = APIRouter(prefix="/orders", tags=["orders"])


def _order_response(summary: OrderSummary) -> OrderResponse:
    order = summary.order
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        client_id=order.client_id,
        client_name=summary.client_name,
        ordered_at=order.ordered_at,
        note=order.note,
        latest_delivery_date=summary.latest_delivery_date,
        is_completed=summary.is_completed,
        line_count=summary.line_count,
    )


@router.get("", response_model=OrderPage)
def get_orders(
    search: Optional[str] = Query(None, max_length=50),
    page: int = Query(0, ge=0),
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    """Orders sorted by latest open delivery date, 30 per page."""
    summaries, total = list_orders_use_case(db=db, search=search, page=page)
    return OrderPage(
        items=[_order_response(s) for s in summaries],
        total=total,
        page=page,
        page_size=settings.ORDERS_PAGE_SIZE,
    )


@router.post("", response_model=OrderResponse, status_code=201)
def create_order(
    payload: OrderCreate,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    order = create_order_use_case(
        db=db,
        client_id=payload.client_id,
        order_number=payload.order_number,
        ordered_at=payload.ordered_at,
        note=payload.note,
        current_user=current_user,
    )
    return _order_response(summarize_order(order))


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: UUID,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    return _order_response(get_order_use_case(db=db, order_id=order_id))


@router.patch("/{order_id}", response_model=OrderResponse)
def update_order(
    order_id: UUID,
    payload: OrderUpdate,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    order = update_order_use_case(
        db=db,
        order_id=order_id,
        changes=payload.model_dump(exclude_unset=True),
        current_user=current_user,
    )
    return _order_response(summarize_order(order))


@router.delete("/{order_id}", response_model=MessageResponse)
def delete_order(
    order_id: UUID,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    delete_order_use_case(db=db, order_id=order_id, current_user=current_user)
    return MessageResponse(message="Ordine eliminato")


@router.get("/{order_id}/lines", response_model=list[LineResponse])
def get_order_lines(
    order_id: UUID,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    return [build_line_response(line) for line in list_order_lines_use_case(db=db, order_id=order_id)]


@router.post("/{order_id}/lines", response_model=LineResponse, status_code=201)
def add_order_line(
    order_id: UUID,
    payload: OrderLineCreate,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    line = add_order_line_use_case(
        lines=OrderLineRepository(db),
        order_id=order_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        delivery_date=payload.delivery_date,
        current_user=current_user,
    )
    return build_line_response(line)


@router.patch("/{order_id}/lines/{line_id}", response_model=AffectedLinesResponse)
def update_order_line(
    order_id: UUID,
    line_id: int,
    payload: OrderLineUpdate,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    """Edit product, quantity and delivery date; a grouped line moves its group's date."""
    affected = update_order_line_use_case(
        lines=OrderLineRepository(db),
        order_id=order_id,
        line_id=line_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        delivery_date=payload.delivery_date,
        current_user=current_user,
    )
    return AffectedLinesResponse(
        line_ids=[line.id for line in affected],
        lines=[build_line_response(line) for line in affected],
    )


@router.post("/{order_id}/lines/{line_id}/duplicate", response_model=LineResponse, status_code=201)
def duplicate_order_line(
    order_id: UUID,
    line_id: int,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    line = duplicate_order_line_use_case(
        lines=OrderLineRepository(db),
        order_id=order_id,
        line_id=line_id,
        current_user=current_user,
    )
    return build_line_response(line)


@router.delete("/{order_id}/lines/{line_id}", response_model=MessageResponse)
def delete_order_line(
    order_id: UUID,
    line_id: int,
    current_user: User = Depends(PermissionChecker("canManageOrders")),
    db: Session = Depends(get_db),
):
    delete_order_line_use_case(
        lines=OrderLineRepository(db),
        order_id=order_id,
        line_id=line_id,
        current_user=current_user,
    )
    return MessageResponse(message="Prodotto eliminato")
