from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.limiter import limiter
from app.database import get_db
from app.models.user import User
from app.routers.deps import (
    ensure_can_read,
    get_access_policy,
    get_ai,
    get_current_user,
    get_notifier,
    require_manager,
)
from app.schemas.review import (
    GenerateReviewRequest,
    GenerationOutcome,
    OriginalContentResponse,
    ReviewEditRequest,
    ReviewResponse,
    ReviewValidationResponse,
)
from app.schemas.trust import load_sources
from app.services.access import OrganizationAccessPolicy
from app.services.ai_orchestrator import AIOrchestrator
from app.services.context_retriever import ContextIndexer
from app.services.edit_reconciliation import EditReconciliationService
from app.services.evidence_aggregator import EvidenceAggregator
from app.services.notification import DatabaseNotificationDispatcher
from app.services.review_pipeline import ReviewGenerationService
from app.services.review_generator import ReviewGenerator
from app.services.review_store import ReviewStore
from app.services.review_workflow import ReviewWorkflowService

router = APIRouter(prefix="/reviews", tags=["Reviews"])


@router.post("/generate", response_model=GenerationOutcome)
@limiter.limit(settings.generation_rate_limit)
async def generate_review(
    request: Request,
    payload: GenerateReviewRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ai: AIOrchestrator = Depends(get_ai),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
    notifier: DatabaseNotificationDispatcher = Depends(get_notifier),
):
    """Generate (or regenerate) an AI draft review. Returns a template instead when there is no evidence."""
    service = ReviewGenerationService(
        db,
        access_policy=policy,
        embedder=ai.embedder,
        vector_index=ai.vector_index,
        completion=ai.completion,
        notifier=notifier,
    )
    return await service.generate_review(current_user.id, payload)


@router.post("/index/{employee_id}")
async def index_employee(
    employee_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ai: AIOrchestrator = Depends(get_ai),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
):
    """(Re)build the vector context for one employee."""
    ensure_can_read(policy, current_user, employee_id)
    count = await ContextIndexer(db, ai.embedder, ai.vector_index).index_employee(employee_id)
    return {"employee_id": employee_id, "indexed": count}


@router.get("/{review_id}", response_model=ReviewResponse)
def get_review(
    review_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
):
    review = ReviewStore(db).find(review_id)
    ensure_can_read(policy, current_user, review.employee_id)
    return review


@router.get("/{review_id}/original", response_model=OriginalContentResponse)
def get_original_content(
    review_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
):
    """AI text as generated, alongside the current (possibly edited) text."""
    review = ReviewStore(db).find(review_id)
    ensure_can_read(policy, current_user, review.employee_id)
    return EditReconciliationService(db).get_original_content(review_id)


@router.patch("/{review_id}", response_model=ReviewResponse)
async def edit_review(
    review_id: int,
    payload: ReviewEditRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
):
    review = ReviewStore(db).find(review_id)
    ensure_can_read(policy, current_user, review.employee_id)
    return await EditReconciliationService(db).apply_human_edit(
        review_id, current_user.id, payload.field_patches, payload.expected_version
    )


@router.post("/{review_id}/submit", response_model=ReviewResponse)
async def submit_review(
    review_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
    notifier: DatabaseNotificationDispatcher = Depends(get_notifier),
):
    review = ReviewStore(db).find(review_id)
    ensure_can_read(policy, current_user, review.employee_id)
    return await ReviewWorkflowService(db, notifier).submit(review_id, current_user.id)


@router.post("/{review_id}/approve", response_model=ReviewResponse)
async def approve_review(
    review_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_manager),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
    notifier: DatabaseNotificationDispatcher = Depends(get_notifier),
):
    review = ReviewStore(db).find(review_id)
    ensure_can_read(policy, current_user, review.employee_id)
    return await ReviewWorkflowService(db, notifier).approve(review_id, current_user.id)


@router.post("/{review_id}/validate", response_model=ReviewValidationResponse)
@limiter.limit(settings.generation_rate_limit)
async def validate_review(
    request: Request,
    review_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    ai: AIOrchestrator = Depends(get_ai),
    policy: OrganizationAccessPolicy = Depends(get_access_policy),
):
    """Check the current text for claims its recorded sources do not support. Read-only."""
    review = ReviewStore(db).find(review_id)
    ensure_can_read(policy, current_user, review.employee_id)
    source_ids = [s.source_id for s in load_sources(review.ai_sources)]
    excerpts = EvidenceAggregator(db, policy).excerpts(review.employee_id, source_ids)
    verdict = await ReviewGenerator(ai.completion).validate_content(review.content(), excerpts)
    return ReviewValidationResponse(
        review_id=review.id,
        version=review.version,
        checked_sources=[e.source_id for e in excerpts],
        **verdict.model_dump(),
    )
