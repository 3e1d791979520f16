from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.database import get_db
from app.models.feedback import Feedback
from app.models.user import User
from app.routers.deps import (
    ensure_can_read,
    get_access_policy,
    get_ai,
    get_current_user,
    get_notifier,
    require_hr,
    require_manager,
)
from app.schemas.sentiment import (
    BatchAnalysisRequest,
    BatchAnalysisResult,
    BiasSummary,
    FeedbackImprovement,
    Period,
    SentimentAlertResponse,
    SentimentResult,
    SentimentTrend,
)
from app.services.access import OrganizationAccessPolicy
from app.services.ai_orchestrator import AIOrchestrator
from app.services.notification import DatabaseNotificationDispatcher
from app.services.sentiment_monitor import SentimentMonitor

router = APIRouter(prefix="/sentiment", tags=["Sentiment"])


def get_monitor(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ai: AIOrchestrator = Depends(get_ai),
    notifier: DatabaseNotificationDispatcher = Depends(get_notifier),
) -> SentimentMonitor:
    return SentimentMonitor(
        db,
        ai.classifier,
        notifier=notifier,
        organization_id=current_user.organization_id,
        completion=ai.completion,
    )


@router.post("/analyze/{feedback_id}", response_model=SentimentResult)
async def analyze_feedback(
    feedback_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
    monitor: SentimentMonitor = Depends(get_monitor),
):
    feedback = db.get(Feedback, feedback_id)
    if feedback is None:
        raise NotFoundError("Feedback", feedback_id)
    ensure_can_read(policy, current_user, feedback.receiver_id)
    return await monitor.analyze(feedback)


@router.post("/suggest-improvements/{feedback_id}", response_model=FeedbackImprovement)
async def suggest_improvements(
    feedback_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
    monitor: SentimentMonitor = Depends(get_monitor),
):
    """A more specific, actionable rewrite of one feedback item for its author to adopt or ignore."""
    feedback = db.get(Feedback, feedback_id)
    if feedback is None:
        raise NotFoundError("Feedback", feedback_id)
    # The author may always ask; anyone else needs read access to the receiver
    if feedback.giver is None or feedback.giver.user_id != current_user.id:
        ensure_can_read(policy, current_user, feedback.receiver_id)
    return await monitor.suggest_improvements(feedback)


@router.post("/batch", response_model=BatchAnalysisResult)
async def analyze_batch(
    payload: BatchAnalysisRequest,
    current_user: User = Depends(require_hr),
    monitor: SentimentMonitor = Depends(get_monitor),
):
    """Analyze feedback in bulk; fails as a whole when too many items fail."""
    return await monitor.analyze_batch(payload.employee_id, payload.only_unanalyzed)


@router.get("/trends/{employee_id}", response_model=SentimentTrend)
def get_trends(
    employee_id: int,
    period: Period = Query(default="month"),
    current_user: User = Depends(get_current_user),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
    monitor: SentimentMonitor = Depends(get_monitor),
):
    ensure_can_read(policy, current_user, employee_id)
    return monitor.summarize(employee_id, period)


@router.get("/alerts", response_model=List[SentimentAlertResponse])
def list_alerts(
    employee_id: Optional[int] = None,
    only_unacknowledged: bool = False,
    current_user: User = Depends(require_manager),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
    monitor: SentimentMonitor = Depends(get_monitor),
):
    if employee_id is not None:
        ensure_can_read(policy, current_user, employee_id)
    elif not current_user.is_hr:
        raise HTTPException(status_code=403, detail="Managers must filter alerts by employee_id")
    return monitor.list_alerts(employee_id, only_unacknowledged)


@router.post("/alerts/{alert_id}/acknowledge", response_model=SentimentAlertResponse)
def acknowledge_alert(
    alert_id: int,
    current_user: User = Depends(require_manager),
    monitor: SentimentMonitor = Depends(get_monitor),
):
    return monitor.acknowledge(alert_id, current_user.id)


@router.get("/bias-summary", response_model=BiasSummary)
def bias_summary(
    current_user: User = Depends(require_hr),
    monitor: SentimentMonitor = Depends(get_monitor),
):
    return monitor.bias_summary(current_user.organization_id)
