"""Production page endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..repositories.order_lines import OrderLineRepository
from ..schemas import AffectedLinesResponse, LineResponse
from ..services.line_ordering import order_for_display
from ..services.line_response_builder import build_line_response, build_ordered_line_responses, visible_lines
from ..services.line_state import PRODUCTION
from ..use_cases.line_transitions import confirm_production_use_case

router = APIRouter(prefix="/production", tags=["production"])


@router.get("", response_model=list[LineResponse])
def get_production_lines(
    current_user: User = Depends(PermissionChecker("canManageProduction")),
    db: Session = Depends(get_db),
):
    """Lines in production, groups first, then by delivery date."""
    lines = visible_lines(OrderLineRepository(db).list_by_status([PRODUCTION]))
    return build_ordered_line_responses(order_for_display(lines))


@router.post("/{line_id}/confirm", response_model=AffectedLinesResponse)
def confirm_production(
    line_id: int,
    current_user: User = Depends(PermissionChecker("canManageProduction")),
    db: Session = Depends(get_db),
):
    """Production done: the line moves to the loads page."""
    line = confirm_production_use_case(
        lines=OrderLineRepository(db),
        line_id=line_id,
        current_user=current_user,
    )
    return AffectedLinesResponse(line_ids=[line.id], lines=[build_line_response(line)])
