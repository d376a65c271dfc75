# routes/analytics.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from analytics import build_feedback_analytics
from db import get_session
from schemas import AnalyticsOut
from security import Viewer, require_page_viewer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analytics"])


@router.get("/analytics", response_model=AnalyticsOut)
def feedback_analytics(
    course: Optional[str] = Query(default=None),
    session: Session = Depends(get_session),
    viewer: Viewer = Depends(require_page_viewer),
):
    return build_feedback_analytics(session, viewer, course)
