"""Automation API routes via FastAPI TestClient.

The lifespan is not run; each test wires in-memory collaborators onto
``app.state`` the way the lifespan would.
"""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from cadence.api.main import create_app
from cadence.workers.dispatcher import EventDispatcher

from helpers import FailingSender, chain, tag_node, trigger_node, welcome_series

BASE = "/v1/publications/pub-1/automation"


def _definition(d=None) -> dict:
    return (d or welcome_series()).model_dump(mode="json", by_alias=True)


@pytest.fixture
def client(manager, run_store, sender, matcher, engine):
    app = create_app()
    app.state.workflow_manager = manager
    app.state.run_store = run_store
    app.state.email_sender = sender
    app.state.dispatcher = EventDispatcher(matcher, engine, inline=True)
    return TestClient(app)


@pytest.fixture
def workflow(client) -> dict:
    resp = client.post(BASE, json={
        "name": "Welcome series",
        "trigger": "SUBSCRIBE",
        "definition": _definition(),
    })
    assert resp.status_code == 201
    return resp.json()["workflow"]


def _activate(client, workflow_id: str) -> dict:
    resp = client.post(f"{BASE}/{workflow_id}/activate")
    assert resp.status_code == 200
    return resp.json()["workflow"]


# ── CRUD ────────────────────────────────────────────────────────────────────

class TestWorkflowCrud:
    def test_create_returns_draft(self, workflow):
        assert workflow["status"] == "DRAFT"
        assert workflow["publicationId"] == "pub-1"
        assert workflow["version"] == 1
        assert len(workflow["definition"]["nodes"]) == 6

    def test_create_rejects_bad_body(self, client):
        resp = client.post(BASE, json={"name": "", "trigger": "SUBSCRIBE"})
        assert resp.status_code == 422
        resp = client.post(BASE, json={"name": "x", "trigger": "NOT_A_TRIGGER"})
        assert resp.status_code == 422

    def test_list_and_get(self, client, workflow):
        listed = client.get(BASE).json()["workflows"]
        assert [w["id"] for w in listed] == [workflow["id"]]
        assert client.get(BASE, params={"status": "ACTIVE"}).json()["workflows"] == []
        assert client.get(f"{BASE}/{workflow['id']}").json()["workflow"]["name"] == "Welcome series"

    def test_other_publication_sees_nothing(self, client, workflow):
        resp = client.get(f"/v1/publications/pub-2/automation/{workflow['id']}")
        assert resp.status_code == 404
        assert "not found" in resp.json()["detail"]["error"]
        assert client.get("/v1/publications/pub-2/automation").json()["workflows"] == []

    def test_update_metadata(self, client, workflow):
        resp = client.put(f"{BASE}/{workflow['id']}", json={"name": "Onboarding", "description": "new readers"})
        assert resp.status_code == 200
        assert resp.json()["workflow"]["name"] == "Onboarding"
        assert resp.json()["workflow"]["description"] == "new readers"

    def test_update_status_goes_through_transitions(self, client, workflow):
        resp = client.put(f"{BASE}/{workflow['id']}", json={"status": "ACTIVE"})
        assert resp.json()["workflow"]["status"] == "ACTIVE"
        resp = client.put(f"{BASE}/{workflow['id']}", json={"status": "DRAFT"})
        assert resp.status_code == 409

    def test_refused_transition_keeps_metadata(self, client, workflow):
        resp = client.put(f"{BASE}/{workflow['id']}", json={"name": "Renamed", "status": "PAUSED"})
        assert resp.status_code == 409

        stored = client.get(f"{BASE}/{workflow['id']}").json()["workflow"]
        assert stored["name"] == "Welcome series"
        assert stored["status"] == "DRAFT"

    def test_delete(self, client, workflow):
        assert client.delete(f"{BASE}/{workflow['id']}").json() == {"success": True}
        assert client.get(f"{BASE}/{workflow['id']}").status_code == 404
        assert client.delete(f"{BASE}/{workflow['id']}").status_code == 404

    def test_replace_steps_returns_validation(self, client, workflow):
        resp = client.put(f"{BASE}/{workflow['id']}/steps", json={
            "definition": _definition(chain(trigger_node(), tag_node("t", "x"))),
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["workflow"]["version"] == 2
        assert body["validation"]["valid"] is True

    def test_replace_steps_on_draft_keeps_invalid_graph(self, client, workflow):
        resp = client.put(f"{BASE}/{workflow['id']}/steps", json={"definition": {"nodes": [], "edges": []}})
        assert resp.status_code == 200
        assert resp.json()["validation"]["valid"] is False
        assert client.get(f"{BASE}/{workflow['id']}/validate").json()["valid"] is False

    def test_export_import_and_duplicate(self, client, workflow):
        exported = client.get(f"{BASE}/{workflow['id']}/export")
        assert exported.headers["content-type"] == "application/json"

        imported = client.post(f"{BASE}/import", json=exported.json())
        assert imported.status_code == 201
        assert imported.json()["workflow"]["id"] != workflow["id"]
        assert imported.json()["workflow"]["status"] == "DRAFT"

        copy = client.post(f"{BASE}/{workflow['id']}/duplicate")
        assert copy.status_code == 201
        assert copy.json()["workflow"]["name"] == "Welcome series (copy)"

    def test_import_garbage_is_400(self, client):
        resp = client.post(f"{BASE}/import", json={"nodes": "nope"})
        assert resp.status_code == 400


# ── Status transitions ──────────────────────────────────────────────────────

class TestTransitions:
    def test_activate_pause_archive(self, client, workflow):
        assert _activate(client, workflow["id"])["status"] == "ACTIVE"
        assert client.post(f"{BASE}/{workflow['id']}/pause").json()["workflow"]["status"] == "PAUSED"
        assert client.post(f"{BASE}/{workflow['id']}/archive").json()["workflow"]["status"] == "ARCHIVED"

        resp = client.post(f"{BASE}/{workflow['id']}/activate")
        assert resp.status_code == 409

    def test_activate_invalid_graph_lists_violations(self, client):
        created = client.post(BASE, json={"name": "empty", "trigger": "SUBSCRIBE"}).json()["workflow"]

        resp = client.post(f"{BASE}/{created['id']}/activate")

        assert resp.status_code == 422
        detail = resp.json()["detail"]
        assert detail["violations"]
        assert client.get(f"{BASE}/{created['id']}").json()["workflow"]["status"] == "DRAFT"

    def test_pause_draft_is_conflict(self, client, workflow):
        assert client.post(f"{BASE}/{workflow['id']}/pause").status_code == 409


# ── Preview / test send ─────────────────────────────────────────────────────

class TestPreview:
    def test_preview_uses_sample_data(self, client, workflow):
        resp = client.post(f"{BASE}/{workflow['id']}/preview", json={
            "subject": "Hi {{subscriber.firstName}}",
            "content": "Welcome to {{publication.name}} {{unknown.token}}",
        })
        preview = resp.json()["preview"]
        assert preview["subject"] == "Hi John"
        assert preview["content"] == "Welcome to My Newsletter {{unknown.token}}"
        assert preview["originalSubject"] == "Hi {{subscriber.firstName}}"

    def test_preview_personalization_overrides_samples(self, client, workflow):
        resp = client.post(f"{BASE}/{workflow['id']}/preview", json={
            "subject": "Hi {{subscriber.firstName}}",
            "content": "x",
            "personalization": {"{{subscriber.firstName}}": "Grace"},
        })
        assert resp.json()["preview"]["subject"] == "Hi Grace"

    def test_send_test_email(self, client, workflow, sender):
        resp = client.post(f"{BASE}/{workflow['id']}/test", json={
            "email": "editor@example.com",
            "subject": "Hi {{subscriber.firstName}}",
            "content": "<p>Hello</p>",
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["testEmail"] == {"to": "editor@example.com", "subject": "Hi John", "content": "<p>Hello</p>"}
        assert sender.sent[0]["to"] == "editor@example.com"

    def test_send_test_email_rejects_bad_address(self, client, workflow):
        resp = client.post(f"{BASE}/{workflow['id']}/test", json={"email": "nope", "subject": "s", "content": "c"})
        assert resp.status_code == 422

    def test_send_test_email_delivery_failure_is_502(self, client, workflow):
        client.app.state.email_sender = FailingSender()
        resp = client.post(f"{BASE}/{workflow['id']}/test", json={
            "email": "editor@example.com", "subject": "s", "content": "c",
        })
        assert resp.status_code == 502
        assert resp.json()["detail"]["reason"] == "sending service unavailable"


# ── Events and run history ──────────────────────────────────────────────────

class TestEventsAndRuns:
    def _ingest(self, client, **fields):
        event = {
            "id": f"evt-{uuid4().hex[:8]}",
            "kind": "SUBSCRIBE",
            "publicationId": "pub-1",
            "subscriberId": "sub-ada",
            **fields,
        }
        resp = client.post("/v1/events", json=event)
        assert resp.status_code == 202
        return resp.json()

    def test_event_starts_and_advances_run(self, client, workflow):
        _activate(client, workflow["id"])

        accepted = self._ingest(client, id="evt-1")

        assert accepted["accepted"] is True
        assert accepted["mode"] == "inline"
        (run_id,) = accepted["runIds"]

        runs = client.get(f"{BASE}/{workflow['id']}/runs").json()["runs"]
        assert [r["id"] for r in runs] == [run_id]
        assert runs[0]["status"] == "WAITING"
        assert "definition" not in runs[0]

        detail = client.get(f"{BASE}/{workflow['id']}/runs/{run_id}").json()
        assert detail["run"]["currentNodeId"] == "is-vip"
        assert [s["outcome"] for s in detail["steps"]] == ["triggered", "sent", "waiting"]

    def test_redelivered_event_starts_nothing(self, client, workflow):
        _activate(client, workflow["id"])
        assert len(self._ingest(client, id="evt-1")["runIds"]) == 1
        assert self._ingest(client, id="evt-1")["runIds"] == []

    def test_draft_workflow_is_not_triggered(self, client, workflow):
        assert self._ingest(client)["runIds"] == []

    def test_run_stats(self, client, workflow):
        _activate(client, workflow["id"])
        self._ingest(client, subscriberId="sub-ada")
        self._ingest(client, subscriberId="sub-bob")

        stats = client.get(f"{BASE}/{workflow['id']}/runs/stats").json()

        assert stats["workflowId"] == workflow["id"]
        assert stats["total"] == 2
        assert stats["counts"]["WAITING"] == 2
        assert stats["failed"] == 0
        waiting = client.get(f"{BASE}/{workflow['id']}/runs", params={"status": "WAITING"}).json()["runs"]
        assert len(waiting) == 2

    def test_unknown_run_is_404(self, client, workflow):
        assert client.get(f"{BASE}/{workflow['id']}/runs/nope").status_code == 404

    def test_custom_date_events_are_rejected(self, client):
        resp = client.post("/v1/events", json={
            "kind": "CUSTOM_DATE", "publicationId": "pub-1", "subscriberId": "sub-ada",
        })
        assert resp.status_code == 422

    def test_event_without_id_is_rejected(self, client, workflow):
        _activate(client, workflow["id"])
        resp = client.post("/v1/events", json={
            "kind": "SUBSCRIBE", "publicationId": "pub-1", "subscriberId": "sub-ada",
        })
        assert resp.status_code == 422
        assert client.get(f"{BASE}/{workflow['id']}/runs").json()["runs"] == []

    def test_matching_failure_is_retryable(self, client, workflow, engine):
        _activate(client, workflow["id"])
        broken = AsyncMock()
        broken.match.side_effect = ConnectionError("database unavailable")
        client.app.state.dispatcher = EventDispatcher(broken, engine, inline=True)

        resp = client.post("/v1/events", json={
            "id": "evt-1", "kind": "SUBSCRIBE", "publicationId": "pub-1", "subscriberId": "sub-ada",
        })

        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "30"
        assert resp.json()["detail"]["reason"] == "database unavailable"

    def test_job_status_without_queue(self, client):
        body = client.get("/v1/events/jobs/job-1").json()
        assert body["status"] == "not_found"


# ── Variables, health, wiring ───────────────────────────────────────────────

class TestMisc:
    def test_variables_catalog(self, client):
        variables = client.get("/v1/automation/variables").json()["variables"]
        assert len(variables) == 12
        assert variables[0]["key"] == "{{subscriber.name}}"

    def test_validate_template(self, client):
        resp = client.post("/v1/automation/variables/validate", json={
            "template": "Hi {{subscriber.name}} {{bogus.field}}",
        })
        assert resp.json() == {
            "isValid": False,
            "invalidVariables": ["{{bogus.field}}"],
            "missingVariables": [],
        }

    def test_health_reports_degraded_without_database(self, client):
        body = client.get("/v1/health").json()
        assert body["status"] == "degraded"
        assert body["services"] == {"api": True, "database": False, "task_queue": True}

    def test_security_headers(self, client):
        resp = client.get("/v1/automation/variables")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"

    def test_missing_state_is_503(self):
        bare = TestClient(create_app())
        assert bare.get(BASE).status_code == 503
        assert bare.post("/v1/events", json={
            "id": "evt-1", "kind": "SUBSCRIBE", "publicationId": "pub-1", "subscriberId": "s",
        }).status_code == 503
