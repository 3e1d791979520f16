import pytest

from app.core.config import PipelineSettings
from app.core.exceptions import EditConflictError, InvalidTransitionError
from app.models.audit_log import AuditLog
from app.services.edit_reconciliation import EditReconciliationService
from app.services.review_store import ReviewLockRegistry, ReviewStore
from app.services.review_workflow import ReviewWorkflowService, can_transition

from tests.fakes import RecordingNotifier


@pytest.mark.asyncio
async def test_first_edit_keeps_ai_text_and_marks_review(db_session, manager, ai_review):
    service = EditReconciliationService(db_session)

    review = await service.apply_human_edit(ai_review.id, manager.user_id, {"strengths": "Rewritten by Maya"})

    assert review.strengths == "Rewritten by Maya"
    assert review.status == "human_edited"
    assert review.human_edited is True
    assert review.human_edited_by == manager.user_id
    assert review.human_edited_at is not None
    assert review.ai_original_content == {"strengths": "AI: strong delivery [feedback:1]"}
    assert review.version == 2

    audit = db_session.query(AuditLog).filter(AuditLog.action == "review_human_edited").one()
    assert audit.before_state == {"strengths": "AI: strong delivery [feedback:1]"}
    assert audit.after_state == {"strengths": "Rewritten by Maya"}


@pytest.mark.asyncio
async def test_later_edits_never_overwrite_original_or_first_editor(db_session, manager, hr_user, ai_review):
    service = EditReconciliationService(db_session)
    first = await service.apply_human_edit(ai_review.id, manager.user_id, {"strengths": "Second version"})
    first_edited_at = first.human_edited_at

    review = await service.apply_human_edit(
        ai_review.id, hr_user.id, {"strengths": "Third version", "achievements": "Edited achievements"}
    )

    assert review.ai_original_content == {
        "strengths": "AI: strong delivery [feedback:1]",
        "achievements": "AI: billing migration",
    }
    assert review.human_edited_by == manager.user_id
    assert review.human_edited_at >= first_edited_at
    assert review.version == 3


@pytest.mark.asyncio
async def test_editor_overwrite_can_be_enabled(db_session, manager, hr_user, ai_review):
    service = EditReconciliationService(db_session, pipeline=PipelineSettings(allow_editor_overwrite=True))
    await service.apply_human_edit(ai_review.id, manager.user_id, {"strengths": "v2"})
    review = await service.apply_human_edit(ai_review.id, hr_user.id, {"strengths": "v3"})
    assert review.human_edited_by == hr_user.id


@pytest.mark.asyncio
async def test_reapplying_same_patch_is_a_no_op(db_session, manager, ai_review):
    service = EditReconciliationService(db_session)
    await service.apply_human_edit(ai_review.id, manager.user_id, {"strengths": "Same text"})

    review = await service.apply_human_edit(ai_review.id, manager.user_id, {"strengths": "Same text"})

    assert review.version == 2
    assert db_session.query(AuditLog).filter(AuditLog.action == "review_human_edited").count() == 1


@pytest.mark.asyncio
async def test_stale_version_is_rejected(db_session, manager, ai_review):
    service = EditReconciliationService(db_session)
    await service.apply_human_edit(ai_review.id, manager.user_id, {"strengths": "First"})

    with pytest.raises(EditConflictError) as exc_info:
        await service.apply_human_edit(ai_review.id, manager.user_id, {"strengths": "Late"}, expected_version=1)
    assert exc_info.value.details["current_version"] == 2


@pytest.mark.asyncio
async def test_manual_draft_edit_does_not_track_ai_original(db_session, manager, draft_review):
    review = await EditReconciliationService(db_session).apply_human_edit(
        draft_review.id, manager.user_id, {"strengths": "Edited by hand"}
    )
    assert review.status == "draft"
    assert review.ai_original_content is None
    assert review.human_edited is False


@pytest.mark.asyncio
async def test_original_content_view(db_session, manager, ai_review):
    service = EditReconciliationService(db_session)
    await service.apply_human_edit(ai_review.id, manager.user_id, {"goals_for_next_period": "Own search"})

    view = service.get_original_content(ai_review.id)

    assert view.is_ai_generated is True
    assert view.original["goals_for_next_period"] == "AI: lead search work"
    assert view.current["goals_for_next_period"] == "Own search"
    assert view.original["strengths"] == view.current["strengths"]
    assert view.edited_fields == ["goals_for_next_period"]


def test_transition_table():
    assert can_transition("draft", "ai_generated")
    assert can_transition("ai_generated", "human_edited")
    assert can_transition("human_edited", "submitted")
    assert can_transition("submitted", "approved")
    assert not can_transition("draft", "approved")
    assert not can_transition("approved", "draft")
    assert not can_transition("submitted", "human_edited")


@pytest.mark.asyncio
async def test_submit_then_approve_notifies_manager_then_employee(db_session, employee, manager, hr_user, ai_review):
    notifier = RecordingNotifier()
    workflow = ReviewWorkflowService(db_session, notifier)

    submitted = await workflow.submit(ai_review.id, employee.user_id)
    assert submitted.status == "submitted"
    assert submitted.submitted_at is not None

    approved = await workflow.approve(ai_review.id, manager.user_id)
    assert approved.status == "approved"
    assert approved.approved_by == manager.user_id
    assert approved.version == 3

    assert [n["user_id"] for n in notifier.sent] == [manager.user_id, employee.user_id]
    assert notifier.sent[1]["status"] == "approved"


@pytest.mark.asyncio
async def test_approve_requires_submission(db_session, manager, draft_review):
    with pytest.raises(InvalidTransitionError):
        await ReviewWorkflowService(db_session).approve(draft_review.id, manager.user_id)


@pytest.mark.asyncio
async def test_approved_review_is_locked_for_edits(db_session, manager, ai_review):
    workflow = ReviewWorkflowService(db_session)
    await workflow.submit(ai_review.id, manager.user_id)
    await workflow.approve(ai_review.id, manager.user_id)

    with pytest.raises(EditConflictError):
        await EditReconciliationService(db_session).apply_human_edit(ai_review.id, manager.user_id, {"strengths": "Too late"})


def test_compare_and_swap_bumps_version_and_detects_conflicts(db_session, draft_review):
    store = ReviewStore(db_session)
    updated = store.compare_and_swap(draft_review.id, 1, {"strengths": "v2"})
    assert updated.version == 2

    with pytest.raises(EditConflictError):
        store.compare_and_swap(draft_review.id, 1, {"strengths": "stale"})
    assert store.find(draft_review.id).strengths == "v2"


def test_lock_registry_hands_out_one_lock_per_review():
    locks = ReviewLockRegistry()
    first = locks.lock_for(1)
    assert locks.lock_for(1) is first
    assert locks.lock_for(2) is not first
