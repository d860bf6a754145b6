"""
service.py - Turn boundary around the conversation machine.

ConversationService owns the SessionStore and the TurnServices container:

  handle_inbound(message)   chat turn: load -> handle_turn -> persist if changed
  resume(identity)          synthetic turn after a payment callback; reply goes
                            out through the messenger
  confirm_payment(event)    payment reducer entry point

A session that did not change is never written back, so a no-op turn cannot
overwrite a concurrent payment completion.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

from cvcoach.conversation.machine import TurnServices, handle_turn, resume_review
from cvcoach.conversation.payment import on_payment_completed
from cvcoach.conversation.schemas import (
    ConversationState,
    InboundMessage,
    Session,
    identity_tag,
    normalize_identity,
)
from cvcoach.errors import PersistenceFailure

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def get(self, identity: str) -> Optional[Session]:
        ...

    async def upsert(self, identity: str, session: Session) -> None:
        ...


class ConversationService:
    def __init__(self, store: SessionStore, services: TurnServices):
        self.store = store
        self.services = services

    async def _load(self, identity: str) -> Session:
        try:
            session = await self.store.get(identity)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Session load failed identity=%s, starting fresh: %s",
                identity_tag(identity), type(exc).__name__,
            )
            session = None
        return session or Session.fresh(identity)

    async def _save_if_changed(self, before: Session, after: Session) -> None:
        if after.same_as(before):
            return
        try:
            await self.store.upsert(after.identity, after.touched())
        except PersistenceFailure as exc:
            logger.error(
                "Session not persisted identity=%s state=%s: %s",
                identity_tag(after.identity), after.state.value, exc,
            )

    async def handle_inbound(self, message: InboundMessage) -> str:
        identity = normalize_identity(message.sender_id)
        session = await self._load(identity)
        result = await handle_turn(session, message, self.services)
        logger.info(
            "Turn identity=%s %s -> %s",
            identity_tag(identity), session.state.value, result.session.state.value,
        )
        await self._save_if_changed(session, result.session)
        return result.reply

    async def resume(self, identity: str) -> None:
        """Runs the pending review for a session left in processing."""
        identity = normalize_identity(identity)
        session = await self._load(identity)
        if session.state is not ConversationState.processing:
            logger.info(
                "Nothing to resume identity=%s state=%s",
                identity_tag(identity), session.state.value,
            )
            return
        result = await resume_review(session, self.services)
        await self._save_if_changed(session, result.session)
        if not await self.services.messenger.send_text(identity, result.reply):
            logger.warning("Resumed review reply not delivered identity=%s", identity_tag(identity))

    async def confirm_payment(self, event, on_processing: Optional[Callable[[str], None]] = None) -> Session:
        return await on_payment_completed(
            event.identity,
            event.amount,
            event.currency,
            event.reference,
            store=self.store,
            messenger=self.services.messenger,
            on_processing=on_processing,
        )
