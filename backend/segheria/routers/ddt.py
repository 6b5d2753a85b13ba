"""DDT (transport document) page endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..repositories.order_lines import OrderLineRepository
from ..schemas import AffectedLinesResponse, LineResponse
from ..services.line_ordering import order_for_display
from ..services.line_response_builder import build_line_response, build_ordered_line_responses, visible_lines
from ..services.line_state import DOCUMENTED
from ..services.note_debouncer import NoteDebouncer
from ..use_cases.line_transitions import confirm_ddt_use_case
from .lines import get_note_debouncer

router = APIRouter(prefix="/ddt", tags=["ddt"])


@router.get("", response_model=list[LineResponse])
def get_ddt_lines(
    current_user: User = Depends(PermissionChecker("canManageDdt")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Delivered lines waiting for their transport document."""
    lines = visible_lines(OrderLineRepository(db).list_by_status([DOCUMENTED]))
    return build_ordered_line_responses(order_for_display(lines), debouncer=debouncer)


@router.post("/{line_id}/confirm", response_model=AffectedLinesResponse)
def confirm_ddt(
    line_id: int,
    current_user: User = Depends(PermissionChecker("canManageDdt")),
    db: Session = Depends(get_db),
    debouncer: NoteDebouncer = Depends(get_note_debouncer),
):
    """Document issued: the line, or its whole group, is completed."""
    affected = confirm_ddt_use_case(
        lines=OrderLineRepository(db),
        line_id=line_id,
        current_user=current_user,
    )
    return AffectedLinesResponse(
        line_ids=[line.id for line in affected],
        lines=[build_line_response(line, debouncer=debouncer) for line in affected],
    )
