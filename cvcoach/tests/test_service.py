"""
test_service.py - ConversationService.resume() after a payment callback, and
chat turns that arrive while that review is running.
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeGateway, FakeMessenger, InMemorySessionStore
from cvcoach.conversation import messages
from cvcoach.conversation.machine import TurnServices
from cvcoach.conversation.schemas import ConversationState, InboundMessage, PaymentStatus, Session
from cvcoach.conversation.service import ConversationService
from cvcoach.graph.graph import ReviewOutcome
from cvcoach.pipeline.schemas import CvMetrics, ReviewResult, ReviewType

IDENTITY = "447700900123"


def _service(storage, store: InMemorySessionStore, messenger: FakeMessenger) -> ConversationService:
    review = ReviewResult(
        identity=IDENTITY,
        review_type=ReviewType.advanced,
        cv_file_name="cv.pdf",
        improvement_score=81,
        insights=["Lead with outcomes."],
        detected_sections=[],
        metrics=CvMetrics(),
    )
    reviewer = MagicMock()
    reviewer.run = AsyncMock(
        return_value=ReviewOutcome(review=review, record_id="rec-1", report_link="http://test/api/files/r.pdf")
    )
    services = TurnServices(messenger=messenger, payments=FakeGateway(), storage=storage, reviewer=reviewer)
    return ConversationService(store, services)


def _processing(ref: str) -> Session:
    return Session.fresh(IDENTITY).evolve(
        state=ConversationState.processing,
        review_type=ReviewType.advanced,
        payment_status=PaymentStatus.completed,
        cv_file_ref=ref,
    )


@pytest.mark.asyncio
async def test_resume_runs_review_and_messages_result(storage, tmp_path) -> None:
    source = tmp_path / "cv.pdf"
    source.write_bytes(b"%PDF-1.4 cv")
    ref = await storage.store(source, IDENTITY)
    store, messenger = InMemorySessionStore(), FakeMessenger()
    store.sessions[IDENTITY] = _processing(ref)

    await _service(storage, store, messenger).resume(IDENTITY)

    assert store.sessions[IDENTITY].state is ConversationState.completed
    assert messenger.texts() == [
        messages.ADVANCED_IN_PROGRESS,
        messages.ADVANCED_RESULT.format(
            score=81, insights="• Lead with outcomes.", link="http://test/api/files/r.pdf"
        ),
    ]


@pytest.mark.asyncio
async def test_resume_with_expired_cv_asks_for_upload(storage) -> None:
    store, messenger = InMemorySessionStore(), FakeMessenger()
    store.sessions[IDENTITY] = _processing("cv-uploads/447700900123/1-swept.pdf")

    await _service(storage, store, messenger).resume(f"whatsapp:+{IDENTITY}")

    assert store.sessions[IDENTITY].state is ConversationState.upload_cv
    assert store.sessions[IDENTITY].cv_file_ref is None
    assert messenger.texts() == [messages.CV_EXPIRED]


@pytest.mark.asyncio
async def test_resume_outside_processing_is_a_no_op(storage) -> None:
    store, messenger = InMemorySessionStore(), FakeMessenger()
    store.sessions[IDENTITY] = Session.fresh(IDENTITY).evolve(state=ConversationState.completed)

    await _service(storage, store, messenger).resume(IDENTITY)

    assert store.writes == 0
    assert messenger.sent == []


@pytest.mark.asyncio
async def test_chat_during_resume_does_not_start_a_second_review(storage, tmp_path) -> None:
    source = tmp_path / "cv.pdf"
    source.write_bytes(b"%PDF-1.4 cv")
    ref = await storage.store(source, IDENTITY)
    store, messenger = InMemorySessionStore(), FakeMessenger()
    store.sessions[IDENTITY] = _processing(ref)
    service = _service(storage, store, messenger)
    outcome = service.services.reviewer.run.return_value

    async def slow_run(*args, **kwargs):
        await asyncio.sleep(0.2)
        return outcome

    service.services.reviewer.run = AsyncMock(side_effect=slow_run)

    _, reply = await asyncio.gather(
        service.resume(IDENTITY),
        service.handle_inbound(InboundMessage(sender_id=IDENTITY, text="ok")),
    )

    assert service.services.reviewer.run.await_count == 1
    assert reply == messages.ADVANCED_IN_PROGRESS
    assert store.sessions[IDENTITY].state is ConversationState.completed
