"""
Conversation HTTP routes - POST /api/webhook/whatsapp,
                           POST /api/webhook/payments/{provider},
                           GET  /api/files/{ref}

Collaborators are read from app.state (built once in the lifespan):
  app.state.conversation      ConversationService
  app.state.payment_gateway   PaymentGateway
  app.state.storage           LocalObjectStorage

Raw phone numbers are never logged; identities appear as identity_tag().
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Form, HTTPException, Query, Request
from fastapi.responses import FileResponse, JSONResponse, Response

from cvcoach.config import settings
from cvcoach.conversation.schemas import InboundMessage, identity_tag
from cvcoach.errors import InvalidWebhookSignature, StorageFailure
from cvcoach.integrations.twilio import twiml_message, validate_signature

router = APIRouter(prefix="/api", tags=["conversation"])
logger = logging.getLogger(__name__)

TWIML_MEDIA_TYPE = "application/xml"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _signature_error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "INVALID_SIGNATURE", "message": message, "details": []}},
    )


def _public_url(request: Request) -> str:
    """URL Twilio signed: the configured public base plus the request path."""
    url = settings.public_base_url.rstrip("/") + request.url.path
    if request.url.query:
        url += f"?{request.url.query}"
    return url


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/webhook/whatsapp")
async def whatsapp_webhook(
    request: Request,
    From: str = Form(...),
    Body: str = Form(""),
    NumMedia: int = Form(0),
    MediaUrl0: Optional[str] = Form(None),
    MediaContentType0: Optional[str] = Form(None),
) -> Response:
    """
    Twilio inbound message webhook. Runs one conversation turn and answers
    with TwiML so Twilio delivers the reply on the same exchange.
    """
    if settings.twilio_validate_signature:
        form = await request.form()
        params = {key: str(value) for key, value in form.items()}
        if not validate_signature(
            settings.twilio_auth_token,
            _public_url(request),
            params,
            request.headers.get("x-twilio-signature", ""),
        ):
            return _signature_error("Invalid Twilio request signature")

    message = InboundMessage(
        sender_id=From,
        text=Body,
        attachment_url=MediaUrl0 if NumMedia > 0 else None,
        attachment_content_type=MediaContentType0 if NumMedia > 0 else None,
    )
    reply = await request.app.state.conversation.handle_inbound(message)
    return Response(content=twiml_message(reply), media_type=TWIML_MEDIA_TYPE)


@router.post("/webhook/payments/{provider_name}")
async def payment_webhook(
    provider_name: str,
    request: Request,
    background_tasks: BackgroundTasks,
) -> JSONResponse:
    """
    Provider completion callback (stripe | paystack).

    Returns:
        200: {received: true, state?}
        400: INVALID_SIGNATURE
        404: unknown provider
        500: session store unavailable (provider retries the callback)
    """
    provider = request.app.state.payment_gateway.provider(provider_name)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Unknown payment provider: {provider_name}")

    payload = await request.body()
    try:
        event = provider.parse_webhook(payload, request.headers)
    except InvalidWebhookSignature as exc:
        logger.warning("Rejected %s webhook: %s", provider_name, exc)
        return _signature_error(str(exc))

    if event is None:
        return JSONResponse(status_code=200, content={"received": True})

    conversation = request.app.state.conversation
    session = await conversation.confirm_payment(
        event,
        on_processing=lambda identity: background_tasks.add_task(conversation.resume, identity),
    )
    logger.info(
        "Payment webhook provider=%s identity=%s state=%s",
        provider_name, identity_tag(session.identity), session.state.value,
    )
    return JSONResponse(
        status_code=200,
        content={"received": True, "state": session.state.value},
    )


@router.get("/files/{ref:path}")
async def download_file(
    ref: str,
    request: Request,
    expires: int = Query(...),
    signature: str = Query(...),
) -> FileResponse:
    """Serves a stored object behind an HMAC-signed, expiring link."""
    storage = request.app.state.storage
    if not storage.verify_link(ref, expires, signature):
        raise HTTPException(status_code=403, detail="Link is invalid or has expired")
    try:
        path = storage.open_path(ref)
    except StorageFailure:
        raise HTTPException(status_code=404, detail="File is no longer available")
    return FileResponse(path, filename=path.name)
