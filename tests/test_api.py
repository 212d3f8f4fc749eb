"""Tests for the FastAPI application."""

import io

import docx
import httpx
import pytest
from fastapi.testclient import TestClient

from kbchat.main import create_app
from kbchat.services.errors import ConfigurationError
from kbchat.services.fetcher import ContentFetcher
from tests.conftest import mock_http_client

PASTED = "Acme builds reusable rockets. Launches happen every second Tuesday."


@pytest.fixture
def relay_status():
    """Status code every relay answers with; tests flip it to simulate blocking."""
    return {"code": 200}


@pytest.fixture
def test_client(settings, fake_llm, scheduler, relay_status):
    page = "<!DOCTYPE html><html><body><main>" + "Acme rockets launch weekly. " * 40 + "</main></body></html>"

    def handler(request):
        return httpx.Response(relay_status["code"], text=page)

    fake_llm.complete.return_value = "We launch on **Tuesdays**."
    fetcher = ContentFetcher(settings, http_client=mock_http_client(handler))
    app = create_app(settings, llm_service=fake_llm, fetcher=fetcher, scheduler=scheduler)

    with TestClient(app) as client:
        yield client


def create_chat(client, source=None):
    response = client.post("/api/v1/sessions", json={
        "source": source or {"kind": "pasted_text", "text": PASTED}
    })
    assert response.status_code == 201, response.text
    return response.json()


def docx_bytes(*paragraphs):
    document = docx.Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_root_endpoint(test_client):
    response = test_client.get("/")
    assert response.status_code == 200
    assert response.json()["name"] == "Knowledge Chatbot API"


def test_health_endpoints(test_client):
    assert test_client.get("/health").json()["status"] == "healthy"
    assert test_client.get("/health/live").json()["status"] == "alive"
    ready = test_client.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json()["checks"]["llm"] == "healthy"


def test_readiness_without_model_key(test_client, fake_llm):
    fake_llm.configured = False
    response = test_client.get("/health/ready")
    assert response.status_code == 503
    assert response.json()["checks"]["llm"] == "unconfigured"


def test_metrics_endpoint(test_client):
    test_client.get("/health")
    response = test_client.get("/metrics")
    assert response.status_code == 200
    assert "kbchat_requests_total" in response.text


def test_request_id_is_echoed(test_client):
    response = test_client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"


def test_create_session_from_pasted_text(test_client):
    session = create_chat(test_client)

    assert session["state"] == "chatting"
    assert session["source_description"] == "pasted content"
    assert session["user_turn_count"] == 0
    assert session["turns_remaining"] == 3
    assert len(session["messages"]) == 1
    assert "trained on your pasted content" in session["messages"][0]["text"]


def test_create_session_from_link(test_client, fake_llm):
    session = create_chat(test_client, {"kind": "link", "url": "example.com"})

    assert session["state"] == "chatting"
    assert session["source_description"] == "website content"
    fake_llm.complete.assert_not_called()


def test_create_empty_session(test_client):
    response = test_client.post("/api/v1/sessions", json={})
    assert response.status_code == 201
    assert response.json()["state"] == "idle"


def test_three_turns_then_limit(test_client, scheduler):
    session_id = create_chat(test_client)["session_id"]

    for turn in (1, 2, 3):
        response = test_client.post(f"/api/v1/sessions/{session_id}/messages", json={"text": f"Q{turn}"})
        assert response.status_code == 200
        body = response.json()
        assert body["user_turn_count"] == turn
        assert body["messages"][-1]["sender"] == "assistant"
        assert "<strong>Tuesdays</strong>" in body["messages"][-1]["html"]
        assert body["messages"][-2]["html"] is None

    response = test_client.post(f"/api/v1/sessions/{session_id}/messages", json={"text": "Q4"})
    assert response.status_code == 409
    assert "limit" in response.json()["error"].lower()

    session = test_client.get(f"/api/v1/sessions/{session_id}").json()
    assert session["state"] == "limit_reached"
    assert session["user_turn_count"] == 3
    assert session["conversion"] is None

    scheduler.advance(2.0)
    session = test_client.get(f"/api/v1/sessions/{session_id}").json()
    assert session["state"] == "converting"
    assert session["conversion"]["booking_url"].startswith("https://")


def test_assistant_reply_pasted_as_new_source(test_client, fake_llm):
    fake_llm.complete.return_value = "### Hours\n- **Mon**: 9-5\n1. Call us"
    session_id = create_chat(test_client)["session_id"]
    reply = test_client.post(
        f"/api/v1/sessions/{session_id}/messages", json={"text": "When are you open?"}
    ).json()["messages"][-1]["text"]

    session = create_chat(test_client, {"kind": "pasted_text", "text": reply})

    assert session["state"] == "chatting"
    response = test_client.post(
        f"/api/v1/sessions/{session['session_id']}/messages", json={"text": "Monday?"}
    )
    assert response.status_code == 200
    assert "<h3>Hours</h3>" in response.json()["messages"][-1]["html"]


def test_restart_and_delete_while_busy_are_conflicts(test_client):
    session_id = test_client.post("/api/v1/sessions", json={}).json()["session_id"]
    controller = test_client.app.state.session_store.get(session_id)
    controller.turn_in_flight = True

    response = test_client.post(f"/api/v1/sessions/{session_id}/restart")
    assert response.status_code == 409
    assert test_client.delete(f"/api/v1/sessions/{session_id}").status_code == 409

    controller.turn_in_flight = False
    assert test_client.delete(f"/api/v1/sessions/{session_id}").status_code == 204


def test_acknowledge_and_capture_lead(test_client):
    session_id = create_chat(test_client)["session_id"]

    early = test_client.post(f"/api/v1/sessions/{session_id}/acknowledge")
    assert early.status_code == 409

    for turn in range(3):
        test_client.post(f"/api/v1/sessions/{session_id}/messages", json={"text": f"Q{turn}"})

    response = test_client.post(f"/api/v1/sessions/{session_id}/acknowledge")
    assert response.status_code == 200
    assert response.json()["state"] == "converting"

    invalid = test_client.post(f"/api/v1/sessions/{session_id}/lead", json={"email": "not-an-email"})
    assert invalid.status_code == 422

    response = test_client.post(f"/api/v1/sessions/{session_id}/lead", json={"email": "cto@example.com"})
    assert response.status_code == 200
    assert response.json()["conversion"]["lead_captured"] is True


def test_blocked_website_offers_manual_paste(test_client, relay_status):
    relay_status["code"] = 403

    response = test_client.post("/api/v1/sessions", json={
        "source": {"kind": "link", "url": "https://example.com"}
    })

    assert response.status_code == 422
    body = response.json()
    assert body["manual_paste"] is True
    assert "All retrieval strategies failed" in body["error"]
    session_id = body["session_id"]
    assert test_client.get(f"/api/v1/sessions/{session_id}").json()["state"] == "idle"

    response = test_client.post(f"/api/v1/sessions/{session_id}/source", json={
        "source": {"kind": "pasted_text", "text": PASTED, "replaces": "link"}
    })
    assert response.status_code == 200
    assert response.json()["state"] == "chatting"
    assert response.json()["source_description"] == "website content"


def test_social_profile_asks_for_manual_paste(test_client):
    response = test_client.post("/api/v1/sessions", json={
        "source": {"kind": "social_profile", "platform": "linkedin", "handle": "acme"}
    })

    assert response.status_code == 422
    body = response.json()
    assert body["manual_paste"] is True
    assert "authenticated backend" in body["error"]


def test_short_pasted_text_is_bad_request(test_client):
    response = test_client.post("/api/v1/sessions", json={
        "source": {"kind": "pasted_text", "text": "too short"}
    })
    assert response.status_code == 400
    assert response.json()["manual_paste"] is False


def test_missing_model_key_is_service_unavailable(test_client, fake_llm):
    fake_llm.complete.side_effect = ConfigurationError("Language model API key is not set.")

    response = test_client.post("/api/v1/sessions", json={
        "source": {"kind": "pasted_text", "text": PASTED}
    })

    assert response.status_code == 503
    assert "API key" in response.json()["error"]


def test_upload_word_document(test_client, fake_llm):
    content = docx_bytes("Acme Rockets", "We launch every second Tuesday.")

    response = test_client.post(
        "/api/v1/sessions/upload",
        files={"file": ("brochure.docx", content, "application/octet-stream")},
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["state"] == "chatting"
    assert body["source_description"] == "PDF or Word document"
    fake_llm.complete.assert_not_called()


def test_upload_unsupported_file(test_client):
    response = test_client.post(
        "/api/v1/sessions/upload",
        files={"file": ("notes.txt", b"plain text notes", "text/plain")},
    )
    assert response.status_code == 400
    assert "Unsupported file type" in response.json()["error"]


def test_upload_empty_file(test_client):
    response = test_client.post(
        "/api/v1/sessions/upload",
        files={"file": ("empty.pdf", b"", "application/pdf")},
    )
    assert response.status_code == 400


def test_restart_and_delete(test_client):
    session_id = create_chat(test_client)["session_id"]
    test_client.post(f"/api/v1/sessions/{session_id}/messages", json={"text": "Q1"})

    restarted = test_client.post(f"/api/v1/sessions/{session_id}/restart").json()
    assert restarted["state"] == "idle"
    assert restarted["messages"] == []

    assert test_client.delete(f"/api/v1/sessions/{session_id}").status_code == 204
    missing = test_client.get(f"/api/v1/sessions/{session_id}")
    assert missing.status_code == 404
    assert "not found" in missing.json()["error"]


def test_unknown_session(test_client):
    response = test_client.post("/api/v1/sessions/nope/messages", json={"text": "Hi"})
    assert response.status_code == 404
