from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.clock import as_naive_utc
from app.database import get_db
from app.models.user import User
from app.routers.deps import require_manager
from app.schemas.ai_metrics import AIHealthStatus, AIMetrics
from app.services.ai_metrics import AIMetricsService

router = APIRouter(prefix="/ai", tags=["AI Monitoring"])


@router.get("/metrics", response_model=AIMetrics)
def get_ai_metrics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    """Generation totals, success rate, average confidence and edit rate (default: last 30 days)."""
    return AIMetricsService(db, current_user.organization_id).metrics(as_naive_utc(start), as_naive_utc(end))


@router.get("/health", response_model=AIHealthStatus)
def get_ai_health(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
):
    return AIMetricsService(db, current_user.organization_id).health()
