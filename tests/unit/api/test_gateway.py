"""Tests for the API Gateway.

These tests verify that:
1. Every route requires a valid bearer token
2. Errors map onto the documented status codes and error body
3. The realtime socket sends a snapshot, then channel messages
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from behavioral_engine.api.auth import create_access_token
from behavioral_engine.api.gateway import LifecycleState, ServiceManager, app
from behavioral_engine.realtime import MessageType


def event(event_type, **fields):
    body = {"event_type": event_type, "device_identifier": "install-abc", "platform": "ios"}
    body.update(fields)
    return body


def trigger_nudge(api_client, headers):
    """Reopens at threshold plus a fast scroll: one soft nudge."""
    events = [event("session_start")] + [event("app_open")] * 4
    events.append(event("scroll", event_data={"scroll_velocity": 3000}))
    response = api_client.post("/v1/events", json={"events": events}, headers=headers)
    assert response.status_code == 200
    interventions = api_client.get("/v1/interventions", headers=headers).json()["interventions"]
    assert len(interventions) == 1
    return interventions[0]


class TestHealth:
    """Liveness, readiness and tracing headers."""

    def test_health(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "behavioral-engine-gateway"}

    def test_request_id_header(self, api_client):
        response = api_client.get("/health")
        assert response.headers["X-Request-ID"].startswith("req_")

    def test_ready_when_initialized(self, api_client):
        assert api_client.get("/ready").status_code == 200

    def test_not_ready_before_initialize(self):
        """Readiness reports the lifecycle state."""
        ServiceManager.shutdown()
        response = TestClient(app).get("/ready")

        assert response.status_code == 503
        assert response.json()["status"] == LifecycleState.UNINITIALIZED.value


class TestAuthentication:
    """Bearer token checks."""

    def test_missing_header(self, api_client):
        response = api_client.get("/v1/risk-state")

        assert response.status_code == 401
        body = response.json()
        assert body["error"] == "AUTHENTICATION_ERROR"
        assert body["request_id"] == response.headers["X-Request-ID"]

    def test_wrong_scheme(self, api_client):
        response = api_client.get("/v1/risk-state", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_bad_signature(self, api_client):
        token = create_access_token("user-1", secret="someone-elses-secret")
        response = api_client.get(
            "/v1/risk-state", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_expired_token(self, api_client):
        token = create_access_token("user-1", expires_minutes=-5)
        response = api_client.get(
            "/v1/risk-state", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_rejected_before_any_write(self, api_client, service):
        """An unauthenticated ingest records nothing."""
        response = api_client.post("/v1/events", json=event("session_start"))

        assert response.status_code == 401
        assert list(service.execution_logger.store.get_entries()) == []


class TestEvents:
    """POST /v1/events."""

    def test_single_event(self, api_client, auth):
        response = api_client.post("/v1/events", json=event("session_start"), headers=auth("user-1"))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["session_id"] is not None
        assert body["device_id"] is not None
        assert len(body["results"]) == 1
        assert body["results"][0]["event_id"] is not None

    def test_evaluation_follows_ingestion(self, api_client, auth):
        """Risk state exists once the dispatched run has finished."""
        headers = auth("user-1")
        api_client.post("/v1/events", json=event("session_start"), headers=headers)

        risk_state = api_client.get("/v1/risk-state", headers=headers).json()["risk_state"]
        assert risk_state["current_level"] == "low"
        assert risk_state["score"] == 0

    def test_unknown_event_type(self, api_client, auth):
        response = api_client.post("/v1/events", json=event("teleport"), headers=auth("user-1"))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"]["errors"]

    def test_missing_device(self, api_client, auth):
        response = api_client.post(
            "/v1/events", json={"event_type": "scroll"}, headers=auth("user-1")
        )
        assert response.status_code == 400

    def test_empty_batch(self, api_client, auth):
        response = api_client.post("/v1/events", json={"events": []}, headers=auth("user-1"))
        assert response.status_code == 400

    def test_non_object_body(self, api_client, auth):
        response = api_client.post("/v1/events", json=["scroll"], headers=auth("user-1"))
        assert response.status_code == 400


class TestInterventions:
    """Listing and responding."""

    def test_list_filters_by_status(self, api_client, auth):
        headers = auth("user-1")
        created = trigger_nudge(api_client, headers)
        assert created["type"] == "soft_nudge"

        pending = api_client.get("/v1/interventions?status=pending", headers=headers).json()
        dismissed = api_client.get("/v1/interventions?status=dismissed", headers=headers).json()
        assert len(pending["interventions"]) == 1
        assert dismissed["interventions"] == []

    def test_acknowledge(self, api_client, auth):
        headers = auth("user-1")
        created = trigger_nudge(api_client, headers)

        response = api_client.post(
            "/v1/interventions/respond",
            json={"intervention_id": created["id"], "action": "acknowledge"},
            headers=headers,
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "new_status": "acknowledged"}

    def test_backwards_transition_conflict(self, api_client, auth):
        headers = auth("user-1")
        created = trigger_nudge(api_client, headers)
        api_client.post(
            "/v1/interventions/respond",
            json={"intervention_id": created["id"], "action": "dismiss"},
            headers=headers,
        )

        response = api_client.post(
            "/v1/interventions/respond",
            json={"intervention_id": created["id"], "action": "acknowledge"},
            headers=headers,
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "INVALID_TRANSITION"
        assert body["details"]["current_status"] == "dismissed"

    def test_other_users_intervention(self, api_client, auth):
        """Someone else's intervention looks missing."""
        created = trigger_nudge(api_client, auth("user-1"))

        response = api_client.post(
            "/v1/interventions/respond",
            json={"intervention_id": created["id"], "action": "dismiss"},
            headers=auth("user-2"),
        )

        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"

    def test_invalid_action(self, api_client, auth):
        response = api_client.post(
            "/v1/interventions/respond",
            json={"intervention_id": "x", "action": "ignore"},
            headers=auth("user-1"),
        )
        assert response.status_code == 400

    def test_risk_history(self, api_client, auth):
        headers = auth("user-1")
        trigger_nudge(api_client, headers)

        history = api_client.get("/v1/risk-history?limit=5", headers=headers).json()["history"]
        assert history[0]["new_level"] == "medium"

    def test_limit_out_of_range(self, api_client, auth):
        response = api_client.get("/v1/risk-history?limit=0", headers=auth("user-1"))
        assert response.status_code == 400


class TestOrchestrate:
    """POST /v1/orchestrate."""

    def test_runs_synchronously(self, api_client, auth):
        response = api_client.post(
            "/v1/orchestrate", json={"event_type": "session_start"}, headers=auth("user-1")
        )

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "monitoring"
        assert [r["agent"] for r in body["agent_results"]] == ["risk_agent", "orchestrator"]

    def test_other_user_rejected(self, api_client, auth):
        response = api_client.post(
            "/v1/orchestrate",
            json={"user_id": "user-2", "event_type": "scroll"},
            headers=auth("user-1"),
        )
        assert response.status_code == 404


class TestGuardian:
    """Guardian views over linked users."""

    def test_children(self, api_client, auth, link_guardian):
        link_guardian("guardian-1", "user-1", display_name="Sam")

        children = api_client.get(
            "/v1/guardian/children", headers=auth("guardian-1")
        ).json()["children"]

        assert [(c["user_id"], c["display_name"]) for c in children] == [("user-1", "Sam")]

    def test_stats(self, api_client, auth, link_guardian):
        link_guardian("guardian-1", "user-1")
        trigger_nudge(api_client, auth("user-1"))

        stats = api_client.get(
            "/v1/guardian/children/user-1/stats", headers=auth("guardian-1")
        ).json()

        assert stats["session_count"] == 1
        assert stats["interventions_by_type"] == {"soft_nudge": 1}
        assert stats["risk_state"]["score"] == 40

    def test_stats_report_daily_limit(self, api_client, auth, link_guardian, clock):
        """Today's minutes are compared with the guardian's daily limit."""
        link_guardian("guardian-1", "user-1")
        api_client.put(
            "/v1/guardian/children/user-1/policy",
            json={"daily_limit_minutes": 30},
            headers=auth("guardian-1"),
        )
        api_client.post("/v1/events", json=event("session_start"), headers=auth("user-1"))
        clock.advance(minutes=40)

        stats = api_client.get(
            "/v1/guardian/children/user-1/stats", headers=auth("guardian-1")
        ).json()

        assert stats["minutes_today"] == 40
        assert stats["daily_limit_minutes"] == 30
        assert stats["daily_limit_reached"] is True

    def test_unlinked_child(self, api_client, auth):
        for path in ("stats", "interventions"):
            response = api_client.get(
                f"/v1/guardian/children/user-1/{path}", headers=auth("guardian-1")
            )
            assert response.status_code == 404

    def test_update_policy(self, api_client, auth, link_guardian):
        link_guardian("guardian-1", "user-1")

        response = api_client.put(
            "/v1/guardian/children/user-1/policy",
            json={"session_limit_minutes": 30, "bedtime_start": "21:00"},
            headers=auth("guardian-1"),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "user"
        assert body["session_limit_minutes"] == 30

    def test_update_policy_invalid(self, api_client, auth, link_guardian):
        link_guardian("guardian-1", "user-1")
        response = api_client.put(
            "/v1/guardian/children/user-1/policy",
            json={"session_limit_minutes": 0},
            headers=auth("guardian-1"),
        )
        assert response.status_code == 400

    def test_child_cannot_edit_own_policy(self, api_client, auth):
        response = api_client.put(
            "/v1/guardian/children/user-1/policy",
            json={"session_limit_minutes": 600},
            headers=auth("user-1"),
        )
        assert response.status_code == 404


class TestRealtime:
    """WebSocket /v1/realtime."""

    def test_bad_token_closes_with_policy_violation(self, api_client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with api_client.websocket_connect("/v1/realtime?token=nope"):
                pass
        assert exc_info.value.code == 1008

    def test_snapshot_then_messages(self, api_client, service):
        token = create_access_token("user-1")
        with api_client.websocket_connect(f"/v1/realtime?token={token}&subscriber_id=phone") as ws:
            snapshot = ws.receive_json()
            assert snapshot["type"] == "snapshot"
            assert snapshot["payload"] == {"risk_state": None, "open_interventions": []}

            service.channels.publish("user-1", MessageType.INTERVENTION_CREATED, {"id": "i-1"})
            message = ws.receive_json()

        assert message["type"] == "intervention_created"
        assert message["payload"] == {"id": "i-1"}
