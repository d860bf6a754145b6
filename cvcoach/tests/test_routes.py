"""
HTTP tests for the conversation routes and the application shell.

  POST /api/webhook/whatsapp              TwiML reply, Twilio signature check
  POST /api/webhook/payments/{provider}   Paystack HMAC callback -> reducer
  GET  /api/files/{ref}                   signed, expiring report links
  GET  /api/health

The lifespan is not run: ASGITransport calls the app directly and each test
wires app.state with in-memory collaborators.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import FakeGateway, FakeMessenger, FakeProfiles, InMemorySessionStore
from cvcoach.config import settings
from cvcoach.conversation import messages
from cvcoach.conversation.machine import TurnServices
from cvcoach.conversation.schemas import ConversationState, Session
from cvcoach.conversation.service import ConversationService
from cvcoach.integrations.payments import PaymentGateway, PaystackProvider
from cvcoach.main import app

IDENTITY = "447700900123"
PAYSTACK_SECRET = "sk_test_paystack"
TWILIO_TOKEN = "twilio-test-token"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def conversation(session_store: InMemorySessionStore, storage) -> ConversationService:
    services = TurnServices(
        messenger=FakeMessenger(),
        payments=FakeGateway(),
        storage=storage,
        reviewer=MagicMock(),
        profiles=FakeProfiles(),
    )
    return ConversationService(session_store, services)


@pytest_asyncio.fixture
async def client(conversation: ConversationService, storage):
    """Async httpx client using ASGI transport with app.state wired by hand."""
    paystack = PaystackProvider(
        http=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
        secret_key=PAYSTACK_SECRET,
        api_base="https://api.paystack.test",
        amount_minor=500000,
        currency="NGN",
        callback_url="http://test/paid",
    )
    app.state.conversation = conversation
    app.state.storage = storage
    app.state.payment_gateway = PaymentGateway(
        {"paystack": paystack}, active="paystack", fallback_url="https://pay.test/manual", timeout_s=5
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def _paystack_body(reference: str = "ref-1") -> bytes:
    return json.dumps({
        "event": "charge.success",
        "data": {"reference": reference, "amount": 500000, "currency": "NGN", "metadata": {"identity": IDENTITY}},
    }).encode()


def _paystack_headers(body: bytes) -> dict:
    signature = hmac.new(PAYSTACK_SECRET.encode("utf-8"), body, hashlib.sha512).hexdigest()
    return {"x-paystack-signature": signature, "content-type": "application/json"}


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# WhatsApp webhook
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_whatsapp_greeting_returns_twiml(client: AsyncClient, session_store: InMemorySessionStore) -> None:
    response = await client.post(
        "/api/webhook/whatsapp", data={"From": f"whatsapp:+{IDENTITY}", "Body": "Hi"}
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert "<Response><Message>" in response.text
    assert messages.CHOOSE_REVIEW_TYPE in response.text
    assert session_store.sessions[IDENTITY].state is ConversationState.choose_review_type


@pytest.mark.asyncio
async def test_whatsapp_media_ignored_when_num_media_is_zero(
    client: AsyncClient, session_store: InMemorySessionStore
) -> None:
    session_store.sessions[IDENTITY] = Session.fresh(IDENTITY).evolve(state=ConversationState.upload_cv)
    response = await client.post(
        "/api/webhook/whatsapp",
        data={"From": f"whatsapp:+{IDENTITY}", "NumMedia": "0", "MediaUrl0": "https://media.test/x"},
    )
    assert messages.AWAITING_CV in response.text


@pytest.mark.asyncio
async def test_whatsapp_missing_sender_is_422(client: AsyncClient) -> None:
    response = await client.post("/api/webhook/whatsapp", data={"Body": "hi"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_whatsapp_signature_enforced(client: AsyncClient) -> None:
    form = {"From": f"whatsapp:+{IDENTITY}", "Body": "hi"}
    signed = "http://public.test/api/webhook/whatsapp" + "".join(f"{k}{form[k]}" for k in sorted(form))
    good = base64.b64encode(hmac.new(TWILIO_TOKEN.encode(), signed.encode(), hashlib.sha1).digest()).decode()

    with patch.object(settings, "twilio_validate_signature", True), \
            patch.object(settings, "twilio_auth_token", TWILIO_TOKEN), \
            patch.object(settings, "public_base_url", "http://public.test"):
        rejected = await client.post("/api/webhook/whatsapp", data=form, headers={"X-Twilio-Signature": "bogus"})
        accepted = await client.post("/api/webhook/whatsapp", data=form, headers={"X-Twilio-Signature": good})

    assert rejected.status_code == 400
    assert rejected.json()["error"]["code"] == "INVALID_SIGNATURE"
    assert accepted.status_code == 200


# ---------------------------------------------------------------------------
# Payment webhook
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_paystack_callback_completes_payment(client: AsyncClient, session_store: InMemorySessionStore) -> None:
    session_store.sessions[IDENTITY] = Session.fresh(IDENTITY).evolve(state=ConversationState.payment)
    body = _paystack_body()

    response = await client.post("/api/webhook/payments/paystack", content=body, headers=_paystack_headers(body))

    assert response.status_code == 200
    assert response.json() == {"received": True, "state": "upload_cv"}
    assert session_store.sessions[IDENTITY].payment_reference == "ref-1"


@pytest.mark.asyncio
async def test_paystack_callback_with_stored_cv_schedules_resume(
    client: AsyncClient, conversation: ConversationService, session_store: InMemorySessionStore
) -> None:
    session_store.sessions[IDENTITY] = Session.fresh(IDENTITY).evolve(
        state=ConversationState.payment, cv_file_ref="cv-uploads/447700900123/1-cv.pdf"
    )
    resumed = []

    async def fake_resume(identity: str) -> None:
        resumed.append(identity)

    conversation.resume = fake_resume
    body = _paystack_body("ref-2")

    response = await client.post("/api/webhook/payments/paystack", content=body, headers=_paystack_headers(body))

    assert response.json()["state"] == "processing"
    assert resumed == [IDENTITY]


@pytest.mark.asyncio
async def test_paystack_callback_bad_signature(client: AsyncClient) -> None:
    response = await client.post(
        "/api/webhook/payments/paystack", content=_paystack_body(), headers={"x-paystack-signature": "00"}
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_SIGNATURE"


@pytest.mark.asyncio
async def test_unknown_payment_provider_is_404(client: AsyncClient) -> None:
    response = await client.post("/api/webhook/payments/paypal", content=b"{}")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_irrelevant_event_is_acknowledged(client: AsyncClient) -> None:
    body = json.dumps({"event": "transfer.success", "data": {}}).encode()
    response = await client.post("/api/webhook/payments/paystack", content=body, headers=_paystack_headers(body))
    assert response.status_code == 200
    assert response.json() == {"received": True}


# ---------------------------------------------------------------------------
# Signed file links
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_signed_link_serves_file(client: AsyncClient, storage, tmp_path: Path) -> None:
    source = tmp_path / "report.pdf"
    source.write_bytes(b"%PDF-1.4 report")
    ref = await storage.store(source, IDENTITY, folder="reports")

    response = await client.get(storage.get_retrievable_link(ref, ttl=60))

    assert response.status_code == 200
    assert response.content == b"%PDF-1.4 report"


@pytest.mark.asyncio
async def test_tampered_link_is_403(client: AsyncClient, storage, tmp_path: Path) -> None:
    source = tmp_path / "report.pdf"
    source.write_bytes(b"%PDF-1.4 report")
    ref = await storage.store(source, IDENTITY, folder="reports")
    link = storage.get_retrievable_link(ref, ttl=60)

    response = await client.get(link.replace("signature=", "signature=0"))
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_swept_file_is_404(client: AsyncClient, storage, tmp_path: Path) -> None:
    source = tmp_path / "report.pdf"
    source.write_bytes(b"%PDF-1.4 report")
    ref = await storage.store(source, IDENTITY, folder="reports")
    link = storage.get_retrievable_link(ref, ttl=60)
    await storage.delete(ref)

    response = await client.get(link)
    assert response.status_code == 404
