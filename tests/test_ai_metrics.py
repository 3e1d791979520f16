from datetime import timedelta

from app.core.clock import utcnow
from app.models.ai_generation import AIGeneration
from app.services.ai_metrics import AIMetricsService


def log_attempts(db_session, org, employee, outcomes, confidence=0.9):
    for outcome in outcomes:
        db_session.add(AIGeneration(
            organization_id=org.id,
            employee_id=employee.id,
            outcome=outcome,
            confidence=confidence if outcome == "success" else None,
            duration_ms=120.0,
            retried=outcome == "parse_failed",
        ))
    db_session.commit()


def test_metrics_aggregate_attempts_and_edits(db_session, org, employee, ai_review):
    log_attempts(db_session, org, employee, ["success", "success", "success", "parse_failed"])
    ai_review.human_edited = True
    db_session.commit()

    m = AIMetricsService(db_session, org.id).metrics()

    assert m.generation_stats.total_generations == 4
    assert m.generation_stats.success_rate == 75.0
    assert m.generation_stats.average_confidence == 0.9
    assert m.generation_stats.retry_rate == 25.0
    assert m.outcomes == {"success": 3, "parse_failed": 1}
    assert m.quality_metrics.ai_reviews == 1
    assert m.quality_metrics.edit_rate == 100.0
    assert len(m.time_series) == 1


def test_metrics_window_excludes_old_attempts(db_session, org, employee):
    db_session.add(AIGeneration(organization_id=org.id, employee_id=employee.id, outcome="success",
                                created_at=utcnow() - timedelta(days=45)))
    db_session.commit()

    assert AIMetricsService(db_session, org.id).metrics().generation_stats.total_generations == 0


def test_health_flags_low_success_rate(db_session, org, employee):
    log_attempts(db_session, org, employee, ["success", "timeout", "parse_failed"])

    health = AIMetricsService(db_session, org.id).health()

    assert health.status == "critical"
    assert "Low AI generation success rate" in health.issues


def test_health_is_healthy_without_traffic(db_session, org):
    assert AIMetricsService(db_session, org.id).health().status == "healthy"


def test_metrics_endpoints_require_manager(client, employee, hr_user):
    denied = client.get("/api/ai/metrics", headers={"X-User-ID": str(employee.user_id)})
    assert denied.status_code == 403

    metrics = client.get("/api/ai/metrics", headers={"X-User-ID": str(hr_user.id)})
    assert metrics.status_code == 200
    assert metrics.json()["generation_stats"]["total_generations"] == 0

    health = client.get("/api/ai/health", headers={"X-User-ID": str(hr_user.id)})
    assert health.json()["status"] == "healthy"
