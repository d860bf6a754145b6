"""
schemas.py - Conversation Pydantic v2 data contracts.

Defines:
  - ConversationState, PaymentStatus enums
  - Session          (per-identity conversation snapshot, frozen)
  - InboundMessage   (transport-neutral chat event)
  - TurnResult       (new snapshot + reply text)
  - normalize_identity(), identity_tag()

Handlers never mutate a Session: they return session.model_copy(update=...)
and the turn boundary decides whether to persist.
"""
import hashlib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cvcoach.pipeline.schemas import ReviewType

_TRANSPORT_PREFIX = "whatsapp:"
_NON_WORD = re.compile(r"[^\w]")


def normalize_identity(sender_id: str) -> str:
    """'whatsapp:+44 7700-900123' -> '447700900123'"""
    raw = sender_id.strip()
    if raw.lower().startswith(_TRANSPORT_PREFIX):
        raw = raw[len(_TRANSPORT_PREFIX):]
    return _NON_WORD.sub("", raw)


def identity_tag(identity: str) -> str:
    """Short stable hash for log lines; raw phone numbers never reach the logs."""
    return hashlib.sha256(identity.encode("utf-8")).hexdigest()[:10]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ConversationState(str, Enum):
    new = "new"
    choose_review_type = "choose_review_type"
    payment = "payment"
    upload_cv = "upload_cv"
    processing = "processing"
    upsell = "upsell"
    completed = "completed"


class PaymentStatus(str, Enum):
    none = "none"
    pending = "pending"
    completed = "completed"


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    """
    Conversation snapshot for one identity.

    payment_* fields describe the most recently consumed payment; they survive
    a new checkout (payment_status goes back to pending) so a replayed
    callback for an old reference is recognisable.
    """
    model_config = ConfigDict(frozen=True)

    identity: str
    state: ConversationState = ConversationState.new
    review_type: ReviewType = ReviewType.none
    cv_file_ref: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.none
    payment_reference: Optional[str] = None
    payment_amount: Optional[float] = None
    payment_currency: Optional[str] = None
    payment_date: Optional[datetime] = None
    email: Optional[str] = None
    email_requested: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("state", mode="before")
    @classmethod
    def _unknown_state_is_new(cls, value: Any) -> Any:
        # Stored sessions from older deployments may carry retired state names
        if isinstance(value, str) and value not in ConversationState._value2member_map_:
            return ConversationState.new
        return value

    @classmethod
    def fresh(cls, identity: str) -> "Session":
        return cls(identity=identity)

    def evolve(self, **changes: Any) -> "Session":
        return self.model_copy(update=changes)

    def touched(self) -> "Session":
        return self.model_copy(update={"updated_at": _utcnow()})

    def same_as(self, other: "Session") -> bool:
        """Equality ignoring updated_at."""
        return self.model_dump(exclude={"updated_at"}) == other.model_dump(exclude={"updated_at"})


# ---------------------------------------------------------------------------
# Transport-neutral inbound message
# ---------------------------------------------------------------------------

class InboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender_id: str = Field(..., min_length=1)
    text: str = ""
    attachment_url: Optional[str] = None
    attachment_content_type: Optional[str] = None

    @property
    def normalized_text(self) -> str:
        return self.text.strip().lower()

    @property
    def has_attachment(self) -> bool:
        return bool(self.attachment_url)


@dataclass(frozen=True)
class TurnResult:
    session: Session
    reply: str
