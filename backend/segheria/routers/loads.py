"""Loads (carichi) and today's loads endpoints, including grouping."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..domain_errors import not_found
from ..models import User
from ..repositories.order_lines import OrderLineRepository
from ..schemas import (
    AffectedLinesResponse,
    CreateGroupRequest,
    DeliveryDateUpdate,
    GroupResponse,
    LineResponse,
    MessageResponse,
)
from ..services.line_ordering import order_for_display
from ..services.line_response_builder import build_line_response, build_ordered_line_responses, visible_lines
from ..services.line_state import DELIVERY, LOADING_STATUSES, READY_FOR_DELIVERY
from ..services.note_debouncer import NoteDebouncer
from ..use_cases.delivery_ledger import loads_for_day_use_case
from ..use_cases.line_groups import create_group_use_case, dissolve_group_use_case, group_consistency
from ..use_cases.line_transitions import (
    confirm_delivery_use_case,
    toggle_ready_for_delivery_use_case,
    update_group_delivery_date_use_case,
)
from .lines import get_note_debouncer

router = APIRouter(prefix="/loads", tags=["loads"])
logger = logging.getLogger(__name__)

# Ungrouped lines still to be prepared come before the ready ones.
LOADS_STATUS_ORDER = (DELIVERY, READY_FOR_DELIVERY)


def _affected(lines: list, debouncer: NoteDebouncer) -> AffectedLinesResponse:
    return AffectedLinesResponse(
        line_ids=[line.id for line in lines],
        lines=[build_line_response(line, debouncer=debouncer) for line in lines],
    )


@router.get("", response_model=list[LineResponse])
def get_loads(
    current_user: User = Depends(PermissionChecker("canManageLoads")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Lines awaiting delivery: groups first, then to-prepare before ready, each by date."""
    lines = visible_lines(OrderLineRepository(db).list_by_status(LOADING_STATUSES))
    ordered = order_for_display(lines, ungrouped_status_order=LOADS_STATUS_ORDER)
    return build_ordered_line_responses(ordered, debouncer=debouncer)


@router.get("/today", response_model=list[LineResponse])
def get_todays_loads(
    day: Optional[date] = Query(None),
    current_user: User = Depends(PermissionChecker("canManageLoads", "canViewDailyLoads")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Loads due today (or on `day`)."""
    lines = loads_for_day_use_case(lines=OrderLineRepository(db), day=day or date.today())
    return build_ordered_line_responses(visible_lines(lines), debouncer=debouncer)


@router.post("/{line_id}/toggle-ready", response_model=AffectedLinesResponse)
def toggle_ready(
    line_id: int,
    current_user: User = Depends(PermissionChecker("canManageLoads")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Flip between to-prepare and ready; grouped lines flip together."""
    affected = toggle_ready_for_delivery_use_case(
        lines=OrderLineRepository(db),
        line_id=line_id,
        current_user=current_user,
    )
    return _affected(affected, debouncer)


@router.post("/{line_id}/confirm", response_model=AffectedLinesResponse)
def confirm_delivery(
    line_id: int,
    current_user: User = Depends(PermissionChecker("canManageLoads", "canViewDailyLoads")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Mark the load delivered (evadi); returned lines leave this page for the DDT page."""
    affected = confirm_delivery_use_case(
        lines=OrderLineRepository(db),
        line_id=line_id,
        current_user=current_user,
    )
    return _affected(affected, debouncer)


@router.post("/groups", response_model=GroupResponse, status_code=201)
def create_group(
    payload: CreateGroupRequest,
    current_user: User = Depends(PermissionChecker("canManageLoads")),
    db: Session = Depends(get_db),
):
    """Group the selected loads; the first selected one sets status and date."""
    members = create_group_use_case(
        lines=OrderLineRepository(db),
        line_ids=payload.line_ids,
        current_user=current_user,
    )
    return GroupResponse(group_code=members[0].group_code, line_ids=[m.id for m in members])


@router.get("/groups/{group_code}", response_model=GroupResponse)
def get_group(
    group_code: str,
    current_user: User = Depends(PermissionChecker("canManageLoads")),
    db: Session = Depends(get_db),
):
    """Current members, and whether they still share status and date."""
    members = OrderLineRepository(db).members_of(group_code)
    if not members:
        raise not_found("GROUP_NOT_FOUND", "Raggruppamento non trovato", group_code=group_code)
    report = group_consistency(members)
    if not report["consistent"]:
        logger.warning("Group %s is inconsistent: %s", group_code, report)
    return GroupResponse(group_code=group_code, line_ids=[m.id for m in members], consistent=report["consistent"])


@router.delete("/groups/{group_code}", response_model=MessageResponse)
def dissolve_group(
    group_code: str,
    current_user: User = Depends(PermissionChecker("canManageLoads")),
    db: Session = Depends(get_db),
):
    members = dissolve_group_use_case(
        lines=OrderLineRepository(db),
        group_code=group_code,
        current_user=current_user,
    )
    return MessageResponse(message="Raggruppamento rimosso", details={"line_ids": [m.id for m in members]})


@router.patch("/groups/{group_code}/delivery-date", response_model=AffectedLinesResponse)
def update_group_delivery_date(
    group_code: str,
    payload: DeliveryDateUpdate,
    current_user: User = Depends(PermissionChecker("canManageLoads")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    affected = update_group_delivery_date_use_case(
        lines=OrderLineRepository(db),
        group_code=group_code,
        new_date=payload.delivery_date,
    )
    return _affected(affected, debouncer)
