"""Tests for POST /webhooks/timelines (in-memory repositories)."""

import copy
import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from corretta.api.factory import create_app
from corretta.api.routes.webhooks_timelines import WebhookSettings, get_webhook_settings

WEBHOOK_URL = "/webhooks/timelines"
TEST_SECRET = "s3cr3t-webhook-value"

VALID_PAYLOAD = {
    "event_type": "message:received:new",
    "chat": {
        "chat_id": 987654,
        "phone": "+55 11 99999-8888",
        "full_name": "Maria Souza",
        "is_group": False,
    },
    "whatsapp_account": {"phone": "+55 11 3333-4444", "full_name": "Corretora Central"},
    "message": {
        "text": "Olá, quero uma cotação",
        "direction": "received",
        "timestamp": "2026-10-18T12:00:00Z",
        "message_uid": "MSG-0001",
        "sender": {"phone": "+55 11 99999-8888", "full_name": "Maria Souza"},
    },
}


def _payload(**overrides) -> dict:
    payload = copy.deepcopy(VALID_PAYLOAD)
    payload.update(overrides)
    return payload


@pytest.fixture
def client():
    app = create_app()
    app.dependency_overrides[get_webhook_settings] = lambda: WebhookSettings(secret=TEST_SECRET)
    return TestClient(app)


def _post(client, payload, secret=TEST_SECRET):
    headers = {"X-Webhook-Secret": secret} if secret is not None else {}
    return client.post(WEBHOOK_URL, json=payload, headers=headers)


class TestAuthentication:
    def test_missing_secret_returns_401(self, client, store):
        response = _post(client, VALID_PAYLOAD, secret=None)
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}
        assert store.channels == {}

    def test_wrong_length_secret_returns_401(self, client, store):
        response = _post(client, VALID_PAYLOAD, secret="short")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_same_length_wrong_secret_returns_401(self, client, store):
        wrong = "x" * len(TEST_SECRET)
        response = _post(client, VALID_PAYLOAD, secret=wrong)
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_unconfigured_secret_rejects_everything(self, store):
        app = create_app()
        app.dependency_overrides[get_webhook_settings] = lambda: WebhookSettings(secret="")
        response = _post(TestClient(app), VALID_PAYLOAD, secret="")
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_secret_via_query_param(self, client, store, no_media):
        response = client.post(f"{WEBHOOK_URL}?secret={TEST_SECRET}", json=VALID_PAYLOAD)
        assert response.status_code == 200
        assert response.json()["status"] == "success"

    def test_header_name_is_case_insensitive(self, client, store, no_media):
        response = client.post(
            WEBHOOK_URL, json=VALID_PAYLOAD, headers={"x-WEBHOOK-secret": TEST_SECRET}
        )
        assert response.status_code == 200

    def test_secret_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("TIMELINES_WEBHOOK_SECRET", "from-env")
        assert get_webhook_settings() == WebhookSettings(secret="from-env")


class TestRequestGuards:
    def test_get_returns_405(self, client, store):
        response = client.get(WEBHOOK_URL)
        assert response.status_code == 405
        assert store.channels == {}

    def test_options_returns_cors_headers(self, client):
        response = client.options(WEBHOOK_URL)
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        assert response.content == b""

    def test_oversized_declared_length_returns_413(self, client, store):
        response = client.post(
            WEBHOOK_URL,
            content=b"{}",
            headers={
                "X-Webhook-Secret": TEST_SECRET,
                "Content-Type": "application/json",
                "Content-Length": "1000001",
            },
        )
        assert response.status_code == 413
        assert store.channels == {}

    def test_invalid_json_returns_400(self, client, store):
        response = client.post(
            WEBHOOK_URL,
            content=b"{not json",
            headers={"X-Webhook-Secret": TEST_SECRET, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}

    @pytest.mark.parametrize("token", ["NaN", "Infinity", "-Infinity"])
    def test_non_standard_json_constants_return_400(self, client, store, token):
        body = json.dumps(VALID_PAYLOAD).replace("987654", token)
        response = client.post(
            WEBHOOK_URL,
            content=body.encode(),
            headers={"X-Webhook-Secret": TEST_SECRET, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}
        assert store.conversations == {}
        assert store.messages == {}

    @pytest.mark.parametrize("method", ["PUT", "PATCH", "DELETE", "TRACE"])
    def test_other_methods_return_cors_405(self, client, store, method):
        response = client.request(method, WEBHOOK_URL)
        assert response.status_code == 405
        assert response.json() == {"error": "Method not allowed"}
        assert response.headers["access-control-allow-origin"] == "*"
        assert store.channels == {}

    def test_head_returns_cors_405(self, client, store):
        response = client.head(WEBHOOK_URL)
        assert response.status_code == 405
        assert response.headers["access-control-allow-origin"] == "*"


class TestPayloadValidation:
    def test_missing_chat_id_returns_400_without_writes(self, client, store):
        payload = _payload()
        del payload["chat"]["chat_id"]
        response = _post(client, payload)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid payload"}
        assert store.channels == {}
        assert store.people == []
        assert store.messages == {}

    def test_invalid_direction_returns_400_without_writes(self, client, store):
        payload = _payload()
        payload["message"]["direction"] = "maybe"
        response = _post(client, payload)
        assert response.status_code == 400
        assert store.channels == {}
        assert store.conversations == {}

    def test_string_chat_id_is_rejected(self, client, store):
        payload = _payload()
        payload["chat"]["chat_id"] = "987654"
        assert _post(client, payload).status_code == 400

    def test_missing_account_phone_is_rejected(self, client, store):
        payload = _payload(whatsapp_account={"full_name": "No phone"})
        assert _post(client, payload).status_code == 400

    def test_non_object_body_is_rejected(self, client, store):
        assert _post(client, ["not", "an", "object"]).status_code == 400

    def test_unhandled_event_type_is_ignored(self, client, store):
        response = _post(client, _payload(event_type="message:delivered"))
        assert response.status_code == 200
        assert response.json() == {"status": "ignored", "event_type": "message:delivered"}
        assert store.channels == {}


class TestEndToEnd:
    def test_new_contact_full_flow(self, client, store, no_media):
        response = _post(client, VALID_PAYLOAD)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["is_new_conversation"] is True

        assert list(store.channels) == ["551133334444"]
        assert store.channels["551133334444"]["name"] == "Corretora Central"

        assert len(store.people) == 1
        person = store.people[0]
        assert person["id"] == body["person_id"]
        assert person["name"] == "Maria Souza"
        assert person["whatsapp"] == "+5511999998888"
        assert person["lead_source"] == "WhatsApp"

        conversation = store.conversations["987654"]
        assert conversation["id"] == body["conversation_id"]
        assert conversation["status"] == "pending"

        stored = store.messages["MSG-0001"]["row"]
        assert stored.message_type == "text"
        assert stored.content == "Olá, quero uma cotação"
        assert stored.sender_type == "contact"
        assert stored.status == "delivered"
        assert stored.media_url is None

        assert [h["event_type"] for h in store.history] == [
            "created",
            "whatsapp_conversation_started",
            "whatsapp_received",
        ]
        received = store.history_of("whatsapp_received")[0]
        assert received["description"] == 'WhatsApp: "Olá, quero uma cotação"'
        assert received["metadata"]["has_media"] is False

    def test_chat_event_without_message(self, client, store, no_media):
        payload = _payload(event_type="chat:incoming:new")
        del payload["message"]
        response = _post(client, payload)
        assert response.status_code == 200
        assert store.messages == {}
        assert len(store.conversations) == 1

    def test_sent_direction_is_agent_message(self, client, store, no_media):
        payload = _payload()
        payload["message"]["direction"] = "sent"
        _post(client, payload)
        assert store.messages["MSG-0001"]["row"].sender_type == "agent"
        assert store.history_of("whatsapp_sent")

    def test_contact_owner_comes_from_channel(self, client, store, no_media):
        store.set_channel_owner("551133334444", "owner-7")
        _post(client, VALID_PAYLOAD)
        assert store.people[0]["owner_id"] == "owner-7"
        assert store.history_of("created")[0]["created_by"] == "owner-7"

    def test_phone_like_name_falls_back_to_formatted_phone(self, client, store, no_media):
        payload = _payload()
        payload["chat"]["full_name"] = "+55 11 99999-8888"
        payload["message"]["sender"]["full_name"] = "(11) 99999 8888"
        _post(client, payload)
        assert store.people[0]["name"] == "+55 (11) 99999-8888"


class TestIdempotency:
    def test_redelivered_message_is_stored_once(self, client, store, no_media):
        first = _post(client, VALID_PAYLOAD)
        second = _post(client, VALID_PAYLOAD)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["status"] == "success"
        assert second.json()["is_new_conversation"] is False
        assert second.json()["conversation_id"] == first.json()["conversation_id"]
        assert len(store.messages) == 1
        assert len(store.history_of("whatsapp_received")) == 1

    def test_repeated_events_keep_one_channel_and_conversation(self, client, store, no_media):
        for i in range(3):
            payload = _payload()
            payload["message"]["message_uid"] = f"MSG-{i}"
            assert _post(client, payload).status_code == 200

        assert len(store.channels) == 1
        assert len(store.conversations) == 1
        assert len(store.people) == 1
        assert len(store.messages) == 3
        assert len(store.history_of("whatsapp_conversation_started")) == 1


class TestConversationStatus:
    def test_resolved_conversation_is_reopened(self, client, store, no_media):
        person_id = store.add_person("Maria", whatsapp="+5511999998888")
        store.add_conversation("987654", person_id, status="resolved")

        response = _post(client, VALID_PAYLOAD)

        assert response.status_code == 200
        assert response.json()["is_new_conversation"] is False
        conversation = store.conversations["987654"]
        assert conversation["status"] == "pending"
        assert conversation["last_message_at"] is not None

    def test_archived_conversation_is_reopened(self, client, store, no_media):
        person_id = store.add_person("Maria", whatsapp="+5511999998888")
        store.add_conversation("987654", person_id, status="archived")
        _post(client, VALID_PAYLOAD)
        assert store.conversations["987654"]["status"] == "pending"

    def test_in_progress_conversation_keeps_status(self, client, store, no_media):
        person_id = store.add_person("Maria", whatsapp="+5511999998888")
        store.add_conversation("987654", person_id, status="in_progress")

        _post(client, VALID_PAYLOAD)

        conversation = store.conversations["987654"]
        assert conversation["status"] == "in_progress"
        assert conversation["last_message_at"] is not None


class TestContactMatching:
    @pytest.mark.parametrize("inbound_phone", ["11999998888", "5511999998888", "+55 (11) 99999-8888"])
    def test_existing_contact_is_found(self, client, store, no_media, inbound_phone):
        person_id = store.add_person("Maria", whatsapp="+5511999998888")
        payload = _payload()
        payload["chat"]["phone"] = inbound_phone

        response = _post(client, payload)

        assert response.json()["person_id"] == person_id
        assert len(store.people) == 1
        assert store.history_of("created") == []

    def test_contact_stored_without_country_code_matches_prefixed_event(self, client, store, no_media):
        person_id = store.add_person("Maria", phone="11999998888")
        payload = _payload()
        payload["chat"]["phone"] = "5511999998888"
        assert _post(client, payload).json()["person_id"] == person_id


class TestSanitization:
    @pytest.mark.parametrize(
        "text",
        ["<script>alert(1)</script>oi", "&lt;script&gt;alert(1)&lt;/script&gt;oi"],
    )
    def test_markup_is_stripped(self, client, store, no_media, text):
        payload = _payload()
        payload["message"]["text"] = text
        _post(client, payload)
        content = store.messages["MSG-0001"]["row"].content
        assert "<" not in content
        assert "script>" not in content
        assert content == "alert(1)oi"


class TestFailureHandling:
    def test_storage_failure_returns_generic_500(self, client, store):
        store.fail_channel = True
        response = _post(client, VALID_PAYLOAD)
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "connection" not in json.dumps(response.json())

    def test_timeline_failure_does_not_fail_request(self, client, store, no_media):
        store.fail_history = True
        response = _post(client, VALID_PAYLOAD)
        assert response.status_code == 200
        assert len(store.messages) == 1
        assert store.history == []

    def test_media_failure_keeps_message(self, client, store, monkeypatch):
        monkeypatch.setattr("corretta.whatsapp.media.store_attachment", lambda **kwargs: None)
        payload = _payload()
        payload["message"]["attachment"] = {
            "temporary_download_url": "https://files.example/tmp/abc?token=1",
            "filename": "apolice.pdf",
            "size": 2048,
            "mimetype": "application/pdf",
        }
        response = _post(client, payload)
        assert response.status_code == 200
        stored = store.messages["MSG-0001"]["row"]
        assert stored.message_type == "document"
        assert stored.media_url is None
        assert stored.media_mime_type == "application/pdf"
        assert stored.metadata["original_filename"] == "apolice.pdf"

    def test_media_path_is_recorded(self, client, store, monkeypatch):
        calls = []

        def fake_store(**kwargs):
            calls.append(kwargs)
            return f"{kwargs['conversation_id']}/{kwargs['message_uid']}/foto.jpg"

        monkeypatch.setattr("corretta.whatsapp.media.store_attachment", fake_store)
        payload = _payload()
        payload["message"]["text"] = ""
        payload["message"]["attachments"] = [
            {"url": "https://files.example/legacy.jpg", "mime_type": "image/jpeg", "type": "image"}
        ]
        response = _post(client, payload)

        conversation_id = response.json()["conversation_id"]
        stored = store.messages["MSG-0001"]["row"]
        assert stored.message_type == "image"
        assert stored.media_url == f"{conversation_id}/MSG-0001/foto.jpg"
        assert calls[0]["url"] == "https://files.example/legacy.jpg"
        received = store.history_of("whatsapp_received")[0]
        assert received["description"] == 'WhatsApp: "[image]"'
        assert received["metadata"]["has_media"] is True


class TestNoPiiInLogs:
    def test_phone_name_and_text_never_logged(self, client, store, no_media):
        with patch("corretta.api.routes.webhooks_timelines.logger") as route_logger, patch(
            "corretta.whatsapp.ingest.logger"
        ) as ingest_logger:
            response = _post(client, VALID_PAYLOAD)

        assert response.status_code == 200
        assert route_logger.info.called
        assert ingest_logger.info.called

        logged = str(route_logger.mock_calls) + str(ingest_logger.mock_calls)
        assert "99999-8888" not in logged
        assert "5511999998888" not in logged
        assert "Maria" not in logged
        assert "cotação" not in logged


class TestOptionalFieldVariations:
    def test_numeric_optional_fields_are_accepted(self, client, store, monkeypatch):
        monkeypatch.setattr(
            "corretta.whatsapp.media.store_attachment",
            lambda **kwargs: f"{kwargs['conversation_id']}/{kwargs['message_uid']}/doc.pdf",
        )
        payload = _payload()
        payload["message"]["timestamp"] = 1760788800
        payload["message"]["sender"] = {"phone": 5511999998888, "full_name": None}
        payload["message"]["attachment"] = {
            "temporary_download_url": "https://files.example/doc.pdf",
            "filename": "doc.pdf",
            "size": 2048.5,
            "mimetype": "application/pdf",
        }

        response = _post(client, payload)

        assert response.status_code == 200
        stored = store.messages["MSG-0001"]["row"]
        assert stored.message_type == "document"
        assert stored.media_url is not None
        assert stored.metadata["timestamp"] == "1760788800"
        assert stored.metadata["sender_phone"] == "5511999998888"

    def test_malformed_sender_and_attachment_are_dropped(self, client, store, no_media):
        payload = _payload()
        payload["message"]["sender"] = "Maria"
        payload["message"]["attachment"] = ["not", "an", "object"]
        payload["chat"]["full_name"] = {"first": "Maria"}

        response = _post(client, payload)

        assert response.status_code == 200
        stored = store.messages["MSG-0001"]["row"]
        assert stored.message_type == "text"
        assert stored.metadata["sender_phone"] == ""
        assert store.people[0]["name"] == "+55 (11) 99999-8888"
