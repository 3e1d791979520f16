import json

from app.models.feedback import Feedback
from app.models.notification import Notification


def headers(user_id):
    return {"X-User-ID": str(user_id)}


def biased_feedback(db_session, org, employee, manager):
    item = Feedback(organization_id=org.id, giver_id=manager.id, receiver_id=employee.id,
                    content="Solid quarter, but far too emotional in planning meetings.")
    db_session.add(item)
    db_session.commit()
    return item


def test_analyze_feedback_raises_and_routes_alert(client, db_session, org, employee, manager):
    item = biased_feedback(db_session, org, employee, manager)

    response = client.post(f"/api/sentiment/analyze/{item.id}", headers=headers(manager.user_id))

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["tone"] == "positive"
    assert "emotional" in body["bias_indicators"]
    assert len(body["alerts_raised"]) == 1

    alerts = client.get(f"/api/sentiment/alerts?employee_id={employee.id}", headers=headers(manager.user_id))
    assert [a["type"] for a in alerts.json()] == ["bias_detected"]

    inbox = db_session.query(Notification).filter(Notification.user_id == manager.user_id).all()
    assert [n.type for n in inbox] == ["sentiment_alert"]


def test_acknowledge_alert(client, db_session, org, employee, manager):
    item = biased_feedback(db_session, org, employee, manager)
    alert_id = client.post(f"/api/sentiment/analyze/{item.id}", headers=headers(manager.user_id)).json()["alerts_raised"][0]

    response = client.post(f"/api/sentiment/alerts/{alert_id}/acknowledge", headers=headers(manager.user_id))

    assert response.status_code == 200
    assert response.json()["acknowledged"] is True
    pending = client.get(
        f"/api/sentiment/alerts?employee_id={employee.id}&only_unacknowledged=true", headers=headers(manager.user_id)
    )
    assert pending.json() == []


def test_manager_must_filter_alerts_by_employee(client, manager, hr_user):
    response = client.get("/api/sentiment/alerts", headers=headers(manager.user_id))
    assert response.status_code == 403

    response = client.get("/api/sentiment/alerts", headers=headers(hr_user.id))
    assert response.status_code == 200


def test_employee_cannot_list_alerts(client, employee):
    response = client.get(f"/api/sentiment/alerts?employee_id={employee.id}", headers=headers(employee.user_id))
    assert response.status_code == 403


def test_analyze_unknown_feedback(client, manager):
    response = client.post("/api/sentiment/analyze/999999", headers=headers(manager.user_id))
    assert response.status_code == 404


def test_trends_after_batch(client, employee, manager, hr_user, evidence):
    batch = client.post("/api/sentiment/batch", json={"employee_id": employee.id}, headers=headers(hr_user.id))
    assert batch.status_code == 200, batch.text
    assert batch.json()["analyzed"] == 5
    assert batch.json()["failed"] == 0

    response = client.get(f"/api/sentiment/trends/{employee.id}?period=month", headers=headers(manager.user_id))

    assert response.status_code == 200
    trend = response.json()
    assert trend["period"] == "month"
    assert trend["average_quality"] == 80
    assert sum(b["count"] for b in trend["buckets"]) == 5


def test_trends_reject_unknown_period(client, employee, manager):
    response = client.get(f"/api/sentiment/trends/{employee.id}?period=decade", headers=headers(manager.user_id))
    assert response.status_code == 422


def test_trends_are_scoped(client, employee, outsider):
    response = client.get(f"/api/sentiment/trends/{employee.id}", headers=headers(outsider.id))
    assert response.status_code == 403
    assert response.json()["errors"][0]["code"] == "INSUFFICIENT_SCOPE"


def test_bias_summary_is_hr_only(client, db_session, org, employee, manager, hr_user):
    item = biased_feedback(db_session, org, employee, manager)
    client.post(f"/api/sentiment/analyze/{item.id}", headers=headers(manager.user_id))

    assert client.get("/api/sentiment/bias-summary", headers=headers(manager.user_id)).status_code == 403

    response = client.get("/api/sentiment/bias-summary", headers=headers(hr_user.id))
    assert response.status_code == 200
    summary = response.json()
    assert summary["total_feedback"] == 1
    assert summary["bias_detected"] == 1
    assert summary["common_bias_types"][0]["type"] == "emotional"


def test_author_gets_suggested_rewrite(client, db_session, fake_completion, org, employee, manager):
    item = biased_feedback(db_session, org, employee, manager)
    fake_completion.responses = [json.dumps({
        "improved": "Solid quarter. In planning, summarise your concerns in writing before the meeting.",
        "changes": ["Removed a personal remark", "Added a concrete next step"],
    })]

    response = client.post(f"/api/sentiment/suggest-improvements/{item.id}", headers=headers(manager.user_id))

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["original"] == item.content
    assert "emotional" not in body["improved"]
    assert body["changes"] == ["Removed a personal remark", "Added a concrete next step"]


def test_suggested_rewrite_parse_failure_is_reported(client, db_session, fake_completion, org, employee, manager):
    item = biased_feedback(db_session, org, employee, manager)
    fake_completion.responses = ["Try being nicer."]

    response = client.post(f"/api/sentiment/suggest-improvements/{item.id}", headers=headers(manager.user_id))

    assert response.status_code == 422
    assert response.json()["errors"][0]["code"] == "GENERATION_PARSE_FAILED"


def test_unrelated_user_cannot_request_rewrite(client, db_session, org, employee, manager, outsider):
    item = biased_feedback(db_session, org, employee, manager)

    response = client.post(f"/api/sentiment/suggest-improvements/{item.id}", headers=headers(outsider.id))

    assert response.status_code == 403
