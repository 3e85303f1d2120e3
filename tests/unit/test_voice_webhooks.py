"""Tests for the Twilio voice webhooks."""
import functools

from app.core.config import settings
from app.db.models import CallDirection, CallStatus


def seed_agent(client, store, name="Ava"):
    return client.portal.call(
        functools.partial(store.create_agent, name, agent_type="ai", status="available")
    )


class TestIncomingCallWebhook:
    """Test /webhooks/voice/incoming."""

    def test_form_payload_connects_agent(self, test_client, store, notification_hub):
        agent = seed_agent(test_client, store)

        response = test_client.post(
            "/webhooks/voice/incoming",
            data={"CallSid": "CA700", "From": "+12025550123", "To": "+15005550006", "CallStatus": "ringing"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert f"<Client>agent-{agent.id}</Client>" in response.text
        assert response.text.rstrip().endswith("</Response>")

        call = test_client.portal.call(store.get_call_by_provider_id, "CA700")
        assert call.direction == CallDirection.INBOUND
        assert call.ai_agent_id == agent.id
        assert any(m["event"] == "new-call" for m in notification_hub.history)

    def test_json_payload(self, test_client, store):
        seed_agent(test_client, store)

        response = test_client.post(
            "/webhooks/voice/incoming",
            json={"callSid": "CA701", "from": "+12025550123", "to": "+15005550006"},
        )

        assert response.status_code == 200
        assert "<Dial" in response.text
        assert test_client.portal.call(store.get_call_by_provider_id, "CA701") is not None

    def test_no_agent_available(self, test_client, store):
        response = test_client.post(
            "/webhooks/voice/incoming", data={"CallSid": "CA702", "From": "+12025550123"}
        )

        assert response.status_code == 200
        assert "<Dial" not in response.text
        assert settings.unavailable_message in response.text.replace("&apos;", "'")
        assert "<Hangup/>" in response.text

    def test_malformed_json_gets_apology(self, test_client, store):
        response = test_client.post(
            "/webhooks/voice/incoming",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 200
        assert "<Hangup/>" in response.text
        assert "error occurred" in response.text
        assert test_client.portal.call(store.list_calls) == []

    def test_missing_call_sid_gets_apology(self, test_client, store):
        response = test_client.post("/webhooks/voice/incoming", data={"From": "+12025550123"})

        assert response.status_code == 200
        assert "error occurred" in response.text
        assert test_client.portal.call(store.list_calls) == []


class TestCallStatusWebhook:
    """Test /webhooks/voice/status."""

    def test_completed_updates_call(self, test_client, store):
        call = test_client.portal.call(
            functools.partial(store.create_call, "+12025550123", provider_call_id="CA710")
        )

        response = test_client.post(
            "/webhooks/voice/status",
            data={"CallSid": "CA710", "CallStatus": "completed", "CallDuration": "42"},
        )

        assert response.status_code == 200
        assert "<Response></Response>" in response.text
        updated = test_client.portal.call(store.get_call, call.id)
        assert updated.status == CallStatus.COMPLETED
        assert updated.duration == 42
        assert updated.end_time is not None

    def test_no_answer_is_abandoned(self, test_client, store):
        call = test_client.portal.call(
            functools.partial(store.create_call, "+12025550123", provider_call_id="CA711")
        )

        test_client.post("/webhooks/voice/status", data={"CallSid": "CA711", "CallStatus": "no-answer"})

        updated = test_client.portal.call(store.get_call, call.id)
        assert updated.status == CallStatus.ABANDONED

    def test_unknown_call_is_acknowledged(self, test_client, store):
        response = test_client.post(
            "/webhooks/voice/status", data={"CallSid": "CA799", "CallStatus": "completed"}
        )

        assert response.status_code == 200
        assert test_client.portal.call(store.list_calls) == []

    def test_unknown_status_is_acknowledged(self, test_client, store):
        call = test_client.portal.call(
            functools.partial(store.create_call, "+12025550123", provider_call_id="CA712")
        )

        response = test_client.post(
            "/webhooks/voice/status", data={"CallSid": "CA712", "CallStatus": "on-hold"}
        )

        assert response.status_code == 200
        assert test_client.portal.call(store.get_call, call.id).status == CallStatus.ACTIVE


class TestOutboundAnswerWebhook:
    """Test /webhooks/voice/outbound."""

    def test_connects_requested_agent(self, test_client):
        response = test_client.post("/webhooks/voice/outbound", params={"agent_id": "12"})

        assert response.status_code == 200
        assert "<Client>agent-12</Client>" in response.text
        assert "<Say" in response.text

    def test_defaults_to_operator(self, test_client):
        response = test_client.post("/webhooks/voice/outbound")

        assert f"<Client>{settings.operator_client_name}</Client>" in response.text
