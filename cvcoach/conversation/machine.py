"""
machine.py - Per-identity conversation state machine.

    handle_turn(session, message, services) -> TurnResult(session, reply)

One coroutine per ConversationState, registered in TRANSITIONS. A greeting
in any state restarts the dialogue at choose_review_type before the state
handler runs.

  new / completed        -> greeting prompt, state new
  choose_review_type     -> basic: upload_cv | advanced: payment (+ link)
  payment                -> gated on payment_status == completed; optional email
  upload_cv              -> download, store, run the review graph
  processing             -> acknowledge; resume_review() runs the paid review
  upsell                 -> advanced: payment (+ link) | otherwise: new

Handlers never touch the session store; the turn boundary in service.py
decides whether the returned session is written back.
"""
from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlparse

from cvcoach.conversation import messages
from cvcoach.conversation.schemas import (
    ConversationState,
    InboundMessage,
    PaymentStatus,
    Session,
    TurnResult,
    identity_tag,
)
from cvcoach.errors import StorageFailure
from cvcoach.pipeline.extractor import resolve_format
from cvcoach.pipeline.schemas import DocumentFormat, ReviewType

logger = logging.getLogger(__name__)

_SKIP_WORDS = {"skip", "no"}


@dataclass
class TurnServices:
    """Collaborators available to a turn. profiles may be None."""
    messenger: Any       # Messenger
    payments: Any        # PaymentGateway
    storage: Any         # ObjectStorage
    reviewer: Any        # ReviewPipeline
    profiles: Optional[Any] = None   # ProfileDirectory
    bot_name: str = "CVCoach"


# ---------------------------------------------------------------------------
# Greeting detection
# ---------------------------------------------------------------------------

_GREETING_PHRASES = ("hi", "hello", "cv review", "review cv")


@functools.lru_cache(maxsize=8)
def _greeting_pattern(bot_name: str) -> re.Pattern:
    phrases = [re.escape(p) for p in _GREETING_PHRASES]
    phrases.append(r"hi\s+" + re.escape(bot_name.lower()))
    # Word-bounded rather than a plain substring test, so "philip@x.com" or
    # "this" never restart the dialogue
    return re.compile(r"(?<![\w@.])(?:" + "|".join(phrases) + r")(?![\w@])", re.IGNORECASE)


def is_greeting(text: str, bot_name: str = "CVCoach") -> bool:
    return bool(_greeting_pattern(bot_name).search(text))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _notify(services: TurnServices, identity: str, body: str) -> None:
    """Best-effort side message; the messenger adapter never raises."""
    if not await services.messenger.send_text(identity, body):
        logger.warning("Side message not delivered identity=%s", identity_tag(identity))


async def _start_checkout(session: Session, services: TurnServices, template: str) -> TurnResult:
    link = await services.payments.create_payment_link(session.identity, ReviewType.advanced)
    updated = session.evolve(
        state=ConversationState.payment,
        review_type=ReviewType.advanced,
        payment_status=PaymentStatus.pending,
        email_requested=False,
    )
    return TurnResult(updated, template.format(link=link))


def _attachment_format(message: InboundMessage) -> Optional[DocumentFormat]:
    if message.attachment_content_type:
        return resolve_format(message.attachment_content_type)
    # No declared type: fall back to the URL's extension
    return resolve_format(Path(urlparse(message.attachment_url or "").path).suffix)


async def _delivery_email(session: Session, services: TurnServices) -> Optional[str]:
    if session.email:
        return session.email
    if services.profiles is None:
        return None
    try:
        return await services.profiles.get_email(session.identity)
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Profile email lookup failed identity=%s: %s",
            identity_tag(session.identity), type(exc).__name__,
        )
        return None


async def _run_review(session: Session, cv_path: Path, cv_file_name: str, services: TurnServices) -> TurnResult:
    """Runs the review graph on a local CV copy and builds the result reply."""
    review_type = session.review_type
    if review_type is ReviewType.none:
        review_type = ReviewType.basic

    email = None
    if review_type is ReviewType.advanced:
        await _notify(services, session.identity, messages.ADVANCED_IN_PROGRESS)
        email = await _delivery_email(session, services)

    outcome = await services.reviewer.run(session.identity, review_type, cv_path, cv_file_name, email)
    review = outcome.review
    insights = messages.bullet_list(review.insights)

    if review_type is ReviewType.advanced:
        reply = messages.ADVANCED_RESULT.format(
            score=review.improvement_score,
            insights=insights,
            link=outcome.report_link,
        )
        if review.email_sent and email:
            reply += messages.EMAIL_SENT_NOTE.format(email=email)
        return TurnResult(session.evolve(state=ConversationState.completed, review_type=review_type), reply)

    return TurnResult(
        session.evolve(state=ConversationState.upsell, review_type=review_type),
        messages.BASIC_RESULT.format(insights=insights),
    )


async def _review_stored_cv(session: Session, services: TurnServices) -> TurnResult:
    local_copy = await services.storage.retrieve(session.cv_file_ref)
    try:
        return await _run_review(session, local_copy, Path(session.cv_file_ref).name, services)
    finally:
        local_copy.unlink(missing_ok=True)


def _review_failed(session: Session, exc: Exception) -> TurnResult:
    logger.error(
        "CV review failed identity=%s review_type=%s error=%s: %s",
        identity_tag(session.identity), session.review_type.value, type(exc).__name__, exc,
    )
    return TurnResult(session.evolve(state=ConversationState.new), messages.PROCESSING_ERROR)


# ---------------------------------------------------------------------------
# State handlers
# ---------------------------------------------------------------------------

Handler = Callable[[Session, InboundMessage, TurnServices], Awaitable[TurnResult]]


async def _on_idle(session: Session, message: InboundMessage, services: TurnServices) -> TurnResult:
    return TurnResult(
        session.evolve(state=ConversationState.new),
        messages.IDLE_PROMPT.format(bot=services.bot_name),
    )


async def _on_choose_review_type(session: Session, message: InboundMessage, services: TurnServices) -> TurnResult:
    text = message.normalized_text
    if "basic" in text:
        return TurnResult(
            session.evolve(
                state=ConversationState.upload_cv,
                review_type=ReviewType.basic,
                cv_file_ref=None,
            ),
            messages.UPLOAD_PROMPT,
        )
    if "advanced" in text:
        return await _start_checkout(session.evolve(cv_file_ref=None), services, messages.PAYMENT_LINK)
    return TurnResult(session, messages.CLARIFY_REVIEW_TYPE)


async def _on_payment(session: Session, message: InboundMessage, services: TurnServices) -> TurnResult:
    if session.payment_status is not PaymentStatus.completed:
        return TurnResult(session, messages.PAYMENT_PENDING)

    if not session.email_requested:
        return TurnResult(session.evolve(email_requested=True), messages.ASK_EMAIL)

    text = message.normalized_text
    if "@" in text and "." in text:
        email = message.text.strip()
        persisted = False
        if services.profiles is not None:
            try:
                await services.profiles.save_email(session.identity, email)
                persisted = True
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Profile email not saved identity=%s: %s",
                    identity_tag(session.identity), type(exc).__name__,
                )
        reply = messages.EMAIL_SAVED.format(email=email) if persisted else messages.EMAIL_NOTED
        return TurnResult(session.evolve(email=email, state=ConversationState.upload_cv), reply)

    if text in _SKIP_WORDS:
        return TurnResult(session.evolve(state=ConversationState.upload_cv), messages.EMAIL_SKIPPED)

    return TurnResult(session, messages.INVALID_EMAIL)


async def _on_upload_cv(session: Session, message: InboundMessage, services: TurnServices) -> TurnResult:
    if not message.has_attachment:
        return TurnResult(session, messages.AWAITING_CV)

    fmt = _attachment_format(message)
    if fmt is None:
        logger.info(
            "Rejected attachment identity=%s content_type=%s",
            identity_tag(session.identity), message.attachment_content_type,
        )
        return TurnResult(session, messages.UNSUPPORTED_FORMAT)

    await _notify(services, session.identity, messages.CV_RECEIVED)

    try:
        downloaded = await services.messenger.download_media(message.attachment_url, fmt.extension)
        cv_ref = await services.storage.store(downloaded, session.identity)
        session = session.evolve(cv_file_ref=cv_ref, state=ConversationState.processing)
        logger.info(
            "CV stored identity=%s format=%s review_type=%s",
            identity_tag(session.identity), fmt.extension, session.review_type.value,
        )
        return await _review_stored_cv(session, services)
    except Exception as exc:  # noqa: BLE001
        return _review_failed(session, exc)


def _resumable(session: Session) -> bool:
    return (
        session.state is ConversationState.processing
        and session.cv_file_ref is not None
        and session.review_type is ReviewType.advanced
        and session.payment_status is PaymentStatus.completed
    )


async def _on_processing(session: Session, message: InboundMessage, services: TurnServices) -> TurnResult:
    # The paid review runs in resume_review(); chat turns only acknowledge
    if _resumable(session):
        return TurnResult(session, messages.ADVANCED_IN_PROGRESS)
    return await _on_idle(session, message, services)


async def resume_review(session: Session, services: TurnServices) -> TurnResult:
    """
    Runs the advanced review for a session a payment callback left in
    processing. Sessions that are not resumable get the idle reply.
    """
    if not _resumable(session):
        return TurnResult(
            session.evolve(state=ConversationState.new),
            messages.IDLE_PROMPT.format(bot=services.bot_name),
        )

    try:
        return await _review_stored_cv(session, services)
    except StorageFailure:
        logger.info("Stored CV expired identity=%s", identity_tag(session.identity))
        return TurnResult(
            session.evolve(cv_file_ref=None, state=ConversationState.upload_cv),
            messages.CV_EXPIRED,
        )
    except Exception as exc:  # noqa: BLE001
        return _review_failed(session, exc)


async def _on_upsell(session: Session, message: InboundMessage, services: TurnServices) -> TurnResult:
    text = message.normalized_text
    if "advanced" in text or "yes" in text:
        return await _start_checkout(session, services, messages.UPSELL_PAYMENT_LINK)
    return TurnResult(session.evolve(state=ConversationState.new), messages.UPSELL_DECLINED)


TRANSITIONS: dict[ConversationState, Handler] = {
    ConversationState.new: _on_idle,
    ConversationState.choose_review_type: _on_choose_review_type,
    ConversationState.payment: _on_payment,
    ConversationState.upload_cv: _on_upload_cv,
    ConversationState.processing: _on_processing,
    ConversationState.upsell: _on_upsell,
    ConversationState.completed: _on_idle,
}

_unmapped = set(ConversationState) - set(TRANSITIONS)
if _unmapped:
    raise RuntimeError(f"No transition handler for states: {sorted(s.value for s in _unmapped)}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

async def handle_turn(session: Session, message: InboundMessage, services: TurnServices) -> TurnResult:
    if is_greeting(message.text, services.bot_name):
        return TurnResult(
            session.evolve(state=ConversationState.choose_review_type),
            messages.CHOOSE_REVIEW_TYPE,
        )
    handler = TRANSITIONS.get(session.state, _on_idle)
    return await handler(session, message, services)
