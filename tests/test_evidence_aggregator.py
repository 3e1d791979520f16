from datetime import timedelta

import pytest

from app.core.clock import utcnow
from app.core.exceptions import InsufficientScopeError, NotFoundError
from app.models.feedback import Feedback, FeedbackAnalysis
from app.models.objective import Objective, ObjectiveMember
from app.models.performance_review import PerformanceReview
from app.models.review_cycle import ReviewCycle
from app.schemas.evidence import EvidenceWindow
from app.services.access import OrganizationAccessPolicy
from app.services.evidence_aggregator import EvidenceAggregator

from tests.fakes import AllowAll


def test_aggregates_okrs_and_feedback_in_window(db_session, employee, evidence):
    bundle = EvidenceAggregator(db_session, AllowAll()).aggregate(None, employee.id)

    assert bundle.employee_name == "Eli Engineer"
    assert {o.id for o in bundle.okrs} == {o.id for o in evidence["okrs"]}
    assert len(bundle.feedback_items) == 5
    assert bundle.feedback_items[0].giver_name == "Maya Manager"
    assert "(90% complete, active)" in next(o.text for o in bundle.okrs if o.progress == 90)
    assert bundle.prior_reviews == []


def test_window_excludes_older_evidence(db_session, org, employee, manager, evidence):
    old = Feedback(organization_id=org.id, giver_id=manager.id, receiver_id=employee.id,
                   content="Ancient praise", created_at=utcnow() - timedelta(days=400))
    db_session.add(old)
    db_session.commit()

    window = EvidenceWindow(start=utcnow() - timedelta(days=4, hours=12), end=utcnow())
    bundle = EvidenceAggregator(db_session, AllowAll()).aggregate(None, employee.id, window)

    texts = [f.text for f in bundle.feedback_items]
    assert "Ancient praise" not in texts
    assert len(texts) == 3  # created 2, 3 and 4 days ago
    assert [o.id for o in bundle.okrs] == [evidence["okrs"][1].id]


def test_member_okrs_are_included(db_session, org, employee, manager):
    team_okr = Objective(organization_id=org.id, owner_id=manager.id, title="Team reliability", progress=40)
    db_session.add(team_okr)
    db_session.flush()
    db_session.add(ObjectiveMember(objective_id=team_okr.id, employee_id=employee.id))
    db_session.commit()

    bundle = EvidenceAggregator(db_session, AllowAll()).aggregate(None, employee.id)

    assert [o.id for o in bundle.okrs] == [team_okr.id]


def test_known_sentiment_is_attached(db_session, employee, evidence):
    item = evidence["feedback"][0]
    db_session.add(FeedbackAnalysis(
        feedback_id=item.id, employee_id=employee.id, tone="positive", quality_score=82,
        specificity=70, actionability=60, feedback_created_at=item.created_at,
    ))
    db_session.commit()

    bundle = EvidenceAggregator(db_session, AllowAll()).aggregate(None, employee.id)

    sentiments = {f.id: f.sentiment for f in bundle.feedback_items}
    assert sentiments[item.id] == 82
    assert sentiments[evidence["feedback"][1].id] is None


def test_prior_reviews_only_count_when_finished(db_session, org, employee, draft_review, ai_review):
    finished = PerformanceReview(organization_id=org.id, employee_id=employee.id, status="approved",
                                 strengths="Consistent", version=1)
    db_session.add(finished)
    db_session.commit()

    bundle = EvidenceAggregator(db_session, AllowAll()).aggregate(None, employee.id)

    assert [r.id for r in bundle.prior_reviews] == [finished.id]
    assert "strengths: Consistent" in bundle.prior_reviews[0].text


def test_default_window_starts_after_last_completed_cycle(db_session, org):
    end = utcnow()
    db_session.add(ReviewCycle(organization_id=org.id, name="H1", status="completed",
                               start_date=end - timedelta(days=200), end_date=end - timedelta(days=20)))
    db_session.commit()

    window = EvidenceAggregator(db_session, AllowAll()).default_window(org.id, now=end)

    assert window.start == end - timedelta(days=20)
    assert window.end == end


def test_default_window_falls_back_to_trailing_year(db_session, org):
    end = utcnow()
    window = EvidenceAggregator(db_session, AllowAll()).default_window(org.id, now=end)
    assert window.start == end - timedelta(days=365)


def test_actor_outside_scope_is_rejected(db_session, employee, outsider, evidence):
    aggregator = EvidenceAggregator(db_session, OrganizationAccessPolicy(db_session))
    with pytest.raises(InsufficientScopeError):
        aggregator.aggregate(outsider.id, employee.id)


def test_unknown_employee_is_not_found(db_session):
    with pytest.raises(NotFoundError):
        EvidenceAggregator(db_session, AllowAll()).aggregate(None, 999999)


def test_access_policy_scopes(db_session, employee, manager, hr_user, outsider):
    policy = OrganizationAccessPolicy(db_session)
    assert policy.can_read(hr_user.id, employee.id)
    assert policy.can_read(manager.user_id, employee.id)
    assert policy.can_read(employee.user_id, employee.id)
    assert not policy.can_read(outsider.id, employee.id)
    assert not policy.can_read(employee.user_id, manager.id)
    assert not policy.can_read(None, employee.id)
