"""Dashboard endpoint."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth import PermissionChecker
from ..database import get_db
from ..models import User
from ..schemas import DashboardResponse
from ..use_cases.dashboard import dashboard_summary_use_case

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardResponse)
def get_dashboard(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    current_user: User = Depends(PermissionChecker("canViewDashboard")),
    db: Session = Depends(get_db),
):
    """Line and client figures, optionally restricted to a creation-date range."""
    return DashboardResponse(**dashboard_summary_use_case(db=db, start=start, end=end))
