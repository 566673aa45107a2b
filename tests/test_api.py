"""
Tests de integración para los endpoints de la API.

Usa TestClient de FastAPI con dependency overrides para:
- No cargar modelos ML reales
- No necesitar .env con API keys
- Testear HTTP status codes, response models y error handlers

Cubre:
- GET  /                   → 200 + info
- GET  /health             → 200 + HealthResponse
- POST /api/chat           → 200 + ChatResponse / 422 inválido
- GET  /api/orders/{id}    → 200 / 404
- POST /api/escalate       → 200 / 400 / 422
- GET  /api/agent/pending  → 200 / 401
- POST /api/agent/approve  → 200 / 404 / 409
- GET  /admin/audit        → 200 / 401
- GET  /metrics            → 200
- GET  /nonexist           → 404 + ErrorResponse
"""

import sys
from pathlib import Path

project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from api.config import Settings
from conftest import ADMIN_SECRET, AGENT_SECRET
from support.errors import PersistenceError


def _escalate(client, action, session_id="s1", order_id=None):
    return client.post(
        "/api/escalate",
        json={"session_id": session_id, "order_id": order_id, "action": action},
    )


# Root / Health


class TestRootEndpoint:
    def test_root_returns_200(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Support Copilot API"
        assert "version" in data


class TestHealthEndpoint:
    def test_health_components_present(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["components"]["database"] == "ok"
        assert data["components"]["knowledge_base"].startswith("ok (6 entries")
        assert data["components"]["groq_api"] == "ok"

    def test_health_degraded_without_llm(self, client, context):
        context.responder = None
        data = client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["components"]["groq_api"] == "no_api_key"


# Chat


class TestChatEndpoint:
    def test_chat_success(self, client):
        resp = client.post(
            "/api/chat",
            json={"message": "shipping", "order_id": "ORD-1001", "session_id": "abc"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["intent"] == "order_status"
        assert data["session_id"] == "abc"
        assert data["actions"] == [{"type": "none"}]
        assert data["kb_matches"][0]["id"] == "shipping-policy"

    def test_chat_generates_session_id(self, client):
        data = client.post("/api/chat", json={"message": "hello"}).json()
        assert data["session_id"]

    def test_chat_provider_down_still_200(self, client, responder):
        from support.errors import ProviderError

        responder.error = ProviderError("down")
        resp = client.post("/api/chat", json={"message": "hello"})
        assert resp.status_code == 200
        assert resp.json()["intent"] == "fallback"

    def test_chat_empty_message_422(self, client):
        resp = client.post("/api/chat", json={"message": ""})
        assert resp.status_code == 422
        assert resp.json()["type"] == "validation_error"

    def test_chat_persistence_failure_is_generic_500(self, client, context, monkeypatch):
        def broken(*args, **kwargs):
            raise PersistenceError("disk I/O error at /secret/path.db")

        monkeypatch.setattr(context.audit, "append", broken)
        resp = client.post("/api/chat", json={"message": "hello"})
        assert resp.status_code == 500
        assert "/secret/path.db" not in resp.text
        assert resp.json()["type"] == "persistence_error"


# Orders


class TestOrdersEndpoint:
    def test_get_order(self, client):
        resp = client.get("/api/orders/ORD-1002")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "shipped"
        assert data["items"][0]["sku"] == "MUG-BLUE"

    def test_missing_order_404(self, client):
        resp = client.get("/api/orders/ORD-9999")
        assert resp.status_code == 404
        assert resp.json()["type"] == "not_found"


# Escalations + agent flow


class TestEscalateEndpoint:
    def test_escalate(self, client):
        resp = _escalate(client, {"type": "cancel_order", "order_id": "ORD-1001"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "pending"
        assert data["escalation_id"] > 0
        assert "escalated" in data["message"]

    def test_unknown_action_422(self, client):
        resp = _escalate(client, {"type": "teleport", "order_id": "ORD-1001"})
        assert resp.status_code == 422

    def test_mismatched_order_400(self, client):
        resp = _escalate(
            client, {"type": "cancel_order", "order_id": "ORD-1001"}, order_id="ORD-1002"
        )
        assert resp.status_code == 400
        assert resp.json()["type"] == "validation_error"


class TestAgentEndpoints:
    def test_pending_requires_secret(self, client):
        assert client.get("/api/agent/pending").status_code == 401
        resp = client.get(
            "/api/agent/pending", headers={"Authorization": "Bearer wrong"}
        )
        assert resp.status_code == 401
        assert resp.json()["type"] == "unauthorized"

    def test_pending_lists_escalations(self, client, agent_headers):
        esc_id = _escalate(client, {"type": "cancel_order", "order_id": "ORD-1001"}).json()[
            "escalation_id"
        ]
        resp = client.get("/api/agent/pending", headers=agent_headers)
        assert resp.status_code == 200
        assert [e["id"] for e in resp.json()] == [esc_id]

    def test_approve_then_409(self, client, agent_headers):
        client.post("/api/chat", json={"message": "cancel my order", "session_id": "s1"})
        esc_id = _escalate(client, {"type": "cancel_order", "order_id": "ORD-1001"}).json()[
            "escalation_id"
        ]

        resp = client.post(
            "/api/agent/approve",
            json={"escalation_id": esc_id, "decision": "approve", "agent_notes": "ok"},
            headers=agent_headers,
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True,
            "result": {"message": "Order ORD-1001 has been cancelled"},
        }
        assert client.get("/api/orders/ORD-1001").json()["status"] == "cancelled"

        again = client.post(
            "/api/agent/approve",
            json={"escalation_id": esc_id, "action": "reject"},
            headers=agent_headers,
        )
        assert again.status_code == 409
        assert again.json()["type"] == "already_resolved"

    def test_approve_shipped_cancel_409(self, client, agent_headers):
        esc_id = _escalate(client, {"type": "cancel_order", "order_id": "ORD-1002"}).json()[
            "escalation_id"
        ]
        resp = client.post(
            "/api/agent/approve",
            json={"escalation_id": esc_id, "decision": "approve"},
            headers=agent_headers,
        )
        assert resp.status_code == 409
        assert resp.json()["type"] == "invalid_state"
        assert client.get("/api/orders/ORD-1002").json()["status"] == "shipped"

    def test_approve_missing_404(self, client, agent_headers):
        resp = client.post(
            "/api/agent/approve",
            json={"escalation_id": 999, "decision": "approve"},
            headers=agent_headers,
        )
        assert resp.status_code == 404

    def test_bearer_scheme_case_insensitive(self, client):
        resp = client.get(
            "/api/agent/pending", headers={"Authorization": f"bearer {AGENT_SECRET}"}
        )
        assert resp.status_code == 200

    def test_other_scheme_rejected(self, client):
        resp = client.get(
            "/api/agent/pending", headers={"Authorization": f"Basic {AGENT_SECRET}"}
        )
        assert resp.status_code == 401

    def test_approve_requires_secret(self, client):
        resp = client.post("/api/agent/approve", json={"escalation_id": 1, "decision": "approve"})
        assert resp.status_code == 401

    def test_unconfigured_secret_rejects_everyone(self, client, test_settings):
        test_settings.AGENT_SECRET = None
        resp = client.get("/api/agent/pending", headers={"Authorization": "Bearer "})
        assert resp.status_code == 401


# Admin / Metrics


class TestAdminAudit:
    def test_audit_masks_email(self, client):
        client.post(
            "/api/chat", json={"message": "hello", "user_email": "alice@example.com"}
        )
        resp = client.get("/admin/audit", params={"password": ADMIN_SECRET})
        assert resp.status_code == 200
        turns = resp.json()
        assert len(turns) == 1
        assert turns[0]["masked_user_email"] == "a***e@example.com"
        assert "alice@example.com" not in resp.text

    def test_audit_wrong_password(self, client):
        assert client.get("/admin/audit", params={"password": "nope"}).status_code == 401
        assert client.get("/admin/audit").status_code == 401


class TestMetricsEndpoint:
    def test_metrics(self, client):
        client.post("/api/chat", json={"message": "hello"})
        client.post("/api/chat", json={"message": "shipping"})
        _escalate(client, {"type": "none"})

        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert resp.json() == {
            "total_chats": 2,
            "total_escalations": 1,
            "bot_containment_estimate": 1.0,
        }


# Errors


class TestNotFound:
    def test_unknown_endpoint(self, client):
        resp = client.get("/nonexist")
        assert resp.status_code == 404
        data = resp.json()
        assert data["type"] == "not_found"
        assert data["status"] == 404


# Context


class TestServiceContext:
    def test_context_carries_settings(self, context, test_settings):
        assert isinstance(context.settings, Settings)
        assert context.settings is test_settings
