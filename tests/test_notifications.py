import pytest
import requests
from sqlalchemy import select

from attendance_module.models import WhatsappAlert
from attendance_module.notifications import WhatsAppDispatcher


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body if body is not None else {"messages": [{"id": "wamid.HBgM"}]}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def json(self):
        return self._body


@pytest.fixture
def whatsapp_enabled(school, set_setting):
    set_setting(school.id, "whatsapp_enabled", "true")
    set_setting(school.id, "whatsapp_api_key", "EAAG-secret-1234")
    set_setting(school.id, "whatsapp_phone_number_id", "10987654321")


@pytest.fixture
def posts(monkeypatch):
    calls = []
    responses = []

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        response = responses.pop(0) if responses else FakeResponse()
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(requests, "post", fake_post)
    return calls, responses


def test_sends_text_message_to_principal(db, session_factory, school, principal, whatsapp_enabled, posts):
    calls, _ = posts
    dispatcher = WhatsAppDispatcher(session_factory, api_base="https://graph.example.com/v17.0", timeout=3)

    result = dispatcher.send(school.id, "principal", "Teacher X marked attendance 500m from school (red zone)")

    assert result.success is True
    assert result.message_id == "wamid.HBgM"
    assert calls[0]["url"] == "https://graph.example.com/v17.0/10987654321/messages"
    assert calls[0]["json"] == {
        "messaging_product": "whatsapp",
        "to": "+919800000001",
        "type": "text",
        "text": {"body": "Teacher X marked attendance 500m from school (red zone)"},
    }
    assert calls[0]["headers"]["Authorization"] == "Bearer EAAG-secret-1234"
    assert calls[0]["timeout"] == 3

    log = db.execute(select(WhatsappAlert)).scalars().one()
    assert log.message_status == "sent"
    assert log.external_message_id == "wamid.HBgM"
    assert log.recipient_phone == "+919800000001"


def test_disabled_channel_makes_no_request(school, principal, session_factory, set_setting, posts):
    calls, _ = posts
    set_setting(school.id, "whatsapp_enabled", "false")
    set_setting(school.id, "whatsapp_api_key", "EAAG-secret-1234")
    set_setting(school.id, "whatsapp_phone_number_id", "10987654321")

    result = WhatsAppDispatcher(session_factory).send(school.id, "principal", "hello")

    assert result.success is False
    assert result.error == "WhatsApp not configured"
    assert calls == []


def test_missing_principal_phone(school, session_factory, whatsapp_enabled, posts):
    calls, _ = posts

    result = WhatsAppDispatcher(session_factory).send(school.id, "principal", "hello")

    assert result.success is False
    assert "phone" in result.error
    assert calls == []


@pytest.mark.parametrize(
    "failure",
    [FakeResponse(status_code=401, body={"error": {"message": "bad token"}}), requests.ConnectTimeout("timed out")],
)
def test_delivery_failure_is_logged_not_raised(db, school, principal, session_factory, whatsapp_enabled, posts, failure):
    _, responses = posts
    responses.append(failure)

    result = WhatsAppDispatcher(session_factory).send(school.id, "principal", "hello")

    assert result.success is False
    assert "Failed to send WhatsApp message" in result.error
    log = db.execute(select(WhatsappAlert)).scalars().one()
    assert log.message_status == "failed"
