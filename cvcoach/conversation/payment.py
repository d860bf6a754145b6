"""
payment.py - Payment confirmation reducer.

Second entry point onto the session store, driven by provider callbacks
rather than chat turns:

    on_payment_completed(identity, amount, currency, reference, *, store, messenger)

Idempotent on the payment reference: a replayed callback for the reference
already recorded on the session neither writes nor messages. Store failures
propagate so the provider's retry delivers the event again.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from cvcoach.conversation import messages
from cvcoach.conversation.schemas import (
    ConversationState,
    PaymentStatus,
    Session,
    identity_tag,
    normalize_identity,
)
from cvcoach.pipeline.schemas import ReviewType

logger = logging.getLogger(__name__)


def apply_payment(
    session: Session,
    amount: float,
    currency: str,
    reference: str,
    now: Optional[datetime] = None,
) -> Optional[Session]:
    """
    Pure part of the reducer.

    Returns the updated session, or None when `reference` was already applied.
    """
    if session.payment_reference == reference:
        return None
    now = now or datetime.now(timezone.utc)
    next_state = ConversationState.processing if session.cv_file_ref else ConversationState.upload_cv
    return session.evolve(
        state=next_state,
        review_type=ReviewType.advanced,
        payment_status=PaymentStatus.completed,
        payment_reference=reference,
        payment_amount=amount,
        payment_currency=currency.upper(),
        payment_date=now,
        updated_at=now,
    )


async def reduce_payment(
    store: Any,
    identity: str,
    amount: float,
    currency: str,
    reference: str,
    now: Optional[datetime] = None,
) -> tuple[Session, bool]:
    """Loads, applies and persists. Returns (session, applied)."""
    current = await store.get(identity) or Session.fresh(identity)
    updated = apply_payment(current, amount, currency, reference, now)
    if updated is None:
        logger.info(
            "Duplicate payment callback ignored identity=%s", identity_tag(identity)
        )
        return current, False
    await store.upsert(identity, updated)
    return updated, True


async def on_payment_completed(
    identity: str,
    amount: float,
    currency: str,
    reference: str,
    *,
    store: Any,
    messenger: Any,
    on_processing: Optional[Callable[[str], None]] = None,
) -> Session:
    """
    on_processing(identity) is called when a newly applied payment leaves the
    session in processing (a CV is already stored), so the caller can
    schedule the advanced review.
    """
    identity = normalize_identity(identity)
    session, applied = await reduce_payment(store, identity, amount, currency, reference)
    if not applied:
        return session

    logger.info(
        "Payment applied identity=%s amount=%.2f %s next_state=%s",
        identity_tag(identity), amount, session.payment_currency, session.state.value,
    )
    notice = (
        messages.PAYMENT_RECEIVED_PROCESSING
        if session.state is ConversationState.processing
        else messages.PAYMENT_RECEIVED_UPLOAD
    )
    if not await messenger.send_text(identity, notice):
        logger.warning("Payment notice not delivered identity=%s", identity_tag(identity))
    if on_processing is not None and session.state is ConversationState.processing:
        on_processing(identity)
    return session
