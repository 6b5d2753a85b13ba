"""Endpoints shared by every page that shows order lines: dates, notes, deliveries."""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..repositories.order_lines import OrderLineRepository
from ..schemas import (
    AffectedLinesResponse,
    DeliveryDateUpdate,
    DeliveryEventCreate,
    LineResponse,
    NoteResponse,
    NoteUpdate,
)
from ..services.line_response_builder import build_line_response
from ..services.note_debouncer import NoteDebouncer
from ..use_cases.delivery_ledger import (
    add_delivery_event_use_case,
    remove_delivery_event_use_case,
    update_note_use_case,
)
from ..use_cases.line_transitions import update_delivery_date_use_case

router = APIRouter(prefix="/lines", tags=["lines"])


def get_note_debouncer(request: Request) -> NoteDebouncer:
    return request.app.state.note_debouncer


@router.patch("/{line_id}/delivery-date", response_model=AffectedLinesResponse)
def update_delivery_date(
    line_id: int,
    payload: DeliveryDateUpdate,
    current_user: User = Depends(PermissionChecker("canManageProduction", "canManageLoads")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Move the delivery date of a line, or of its whole group."""
    affected = update_delivery_date_use_case(
        lines=OrderLineRepository(db),
        line_id=line_id,
        new_date=payload.delivery_date,
    )
    return AffectedLinesResponse(
        line_ids=[line.id for line in affected],
        lines=[build_line_response(line, debouncer=debouncer) for line in affected],
    )


@router.put("/{line_id}/note", response_model=NoteResponse)
def update_note(
    line_id: int,
    payload: NoteUpdate,
    current_user: User = Depends(PermissionChecker("canManageLoads", "canViewDailyLoads", "canManageDdt")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Accept the note at once and persist it after the typing pause."""
    note = update_note_use_case(
        lines=OrderLineRepository(db),
        debouncer=debouncer,
        line_id=line_id,
        text=payload.note,
    )
    return NoteResponse(line_id=line_id, note=note, pending=debouncer.pending_note(line_id) is not None)


@router.post("/{line_id}/deliveries", response_model=LineResponse, status_code=201)
def add_delivery(
    line_id: int,
    payload: DeliveryEventCreate,
    current_user: User = Depends(PermissionChecker("canManageLoads", "canViewDailyLoads")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    line = add_delivery_event_use_case(
        lines=OrderLineRepository(db),
        line_id=line_id,
        delivered_on=payload.delivered_on,
        note=payload.note,
        current_user=current_user,
    )
    return build_line_response(line, debouncer=debouncer)


@router.delete("/{line_id}/deliveries/{index}", response_model=LineResponse)
def remove_delivery(
    line_id: int,
    index: int,
    current_user: User = Depends(PermissionChecker("canManageLoads", "canViewDailyLoads")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Remove the delivery at its current position in the list."""
    line = remove_delivery_event_use_case(
        lines=OrderLineRepository(db),
        line_id=line_id,
        index=index,
        current_user=current_user,
    )
    return build_line_response(line, debouncer=debouncer)
