"""
Partner Hub
Tests: escalation HTTP surface.
"""

from datetime import date, timedelta

from partnerhub.models.escalation import EscalationLog

RULE = {
    "name": "Overdue 1 day",
    "trigger_type": "days_after_due",
    "trigger_value": 1,
    "action": "notify_owner",
}


def _create_rule(client, **overrides):
    res = client.post("/api/v1/escalation/rules", json={**RULE, **overrides})
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestRulesApi:

    def test_crud(self, client):
        rule = _create_rule(client)
        assert rule["status"] == "active"

        res = client.get(f"/api/v1/escalation/rules/{rule['id']}")
        assert res.status_code == 200
        assert res.get_json()["name"] == "Overdue 1 day"

        res = client.patch(f"/api/v1/escalation/rules/{rule['id']}", json={"trigger_value": 3})
        assert res.status_code == 200
        assert res.get_json()["trigger_value"] == 3

        res = client.post(f"/api/v1/escalation/rules/{rule['id']}/toggle")
        assert res.get_json()["status"] == "inactive"

        res = client.delete(f"/api/v1/escalation/rules/{rule['id']}")
        assert res.status_code == 200
        assert client.get(f"/api/v1/escalation/rules/{rule['id']}").status_code == 404

    def test_list_filters(self, client):
        _create_rule(client, name="a", priority=3)
        _create_rule(client, name="b", priority=1, action="escalate_to_manager")
        items = client.get("/api/v1/escalation/rules").get_json()["items"]
        assert [r["name"] for r in items] == ["b", "a"]
        items = client.get("/api/v1/escalation/rules?action=notify_owner").get_json()["items"]
        assert [r["name"] for r in items] == ["a"]

    def test_validation_error(self, client):
        res = client.post("/api/v1/escalation/rules", json={**RULE, "trigger_value": 0})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_CONSTRAINT"
        assert "trigger_value" in body["details"]

    def test_malformed_body(self, client):
        res = client.post("/api/v1/escalation/rules", data="{not json", content_type="application/json")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_missing_rule(self, client):
        res = client.get("/api/v1/escalation/rules/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


class TestTickAndLogsApi:

    def test_manual_tick_then_logs(self, client, transport, make_task, assignee, project):
        _create_rule(client)
        make_task(assignee=assignee, due_date=date.today() - timedelta(days=2))

        res = client.post("/api/v1/escalation/tick")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "success"
        assert body["result"]["executed"] == 1
        assert transport.emails() == ["assignee@acme.test"]

        res = client.get("/api/v1/escalation/logs?status=executed")
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["action_detail"] == "Notified task assignee"

        res = client.get(f"/api/v1/escalation/projects/{project.id}/history")
        assert len(res.get_json()["items"]) == 1

        # same day: nothing new
        assert client.post("/api/v1/escalation/tick").get_json()["result"]["executed"] == 0
        assert EscalationLog.query.count() == 1

    def test_scoped_tick(self, client, transport, make_task, assignee):
        _create_rule(client)
        target = make_task(assignee=assignee, due_date=date.today() - timedelta(days=2))
        make_task(title="Elsewhere", assignee=assignee, due_date=date.today() - timedelta(days=2))

        res = client.post("/api/v1/escalation/tick", json={"task_id": target.id})

        assert res.status_code == 200
        body = res.get_json()
        assert body["scope"] == {"project_id": None, "task_id": target.id}
        assert body["result"]["executed"] == 1
        assert [log.task_id for log in EscalationLog.query.all()] == [target.id]

    def test_scoped_tick_rejects_bad_id(self, client):
        res = client.post("/api/v1/escalation/tick", json={"project_id": "abc"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_statistics(self, client, transport, make_task, assignee):
        _create_rule(client)
        _create_rule(client, name="Month overdue", trigger_value=30)
        off = _create_rule(client, name="Off")
        client.post(f"/api/v1/escalation/rules/{off['id']}/toggle")
        make_task(assignee=assignee, due_date=date.today() - timedelta(days=2))
        client.post("/api/v1/escalation/tick")

        stats = client.get("/api/v1/escalation/statistics").get_json()

        assert stats["total_rules"] == 3
        assert stats["active_rules"] == 2
        assert stats["logs_by_status"] == {"executed": 1}
        assert stats["logs_by_action"] == {"notify_owner": 1}
        assert stats["recent_escalations"] == stats["total_logs"] == 1

    def test_logs_bad_date_filter(self, client):
        res = client.get("/api/v1/escalation/logs?from=yesterday")
        assert res.status_code == 400

    def test_logs_pagination(self, client):
        res = client.get("/api/v1/escalation/logs?limit=1000&offset=-5")
        data = res.get_json()
        assert data["limit"] == 200
        assert data["offset"] == 0

    def test_jobs_listing(self, client):
        names = {j["job_name"] for j in client.get("/api/v1/escalation/jobs").get_json()["items"]}
        assert {"escalation_check", "expired_report_cleanup"} <= names


class TestHealth:

    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["database"] == "ok"
        assert res.headers.get("X-Request-ID")
