"""
errors.py - Exception taxonomy for the review pipeline and its collaborators.

Which errors are fatal to a turn:
  UnsupportedFormat, ExtractionFailed, ReportGenerationFailed, StorageFailure
      -> caught at the turn boundary, user gets an apology, session resets to `new`
  RemoteScoringUnavailable
      -> never leaves the scorer, local fallback is used instead
  DeliveryFailure, PersistenceFailure
      -> logged, the primary reply is still delivered
  PaymentLinkUnavailable
      -> replaced by the configured fallback link
"""


class CVCoachError(Exception):
    """Base class for all domain errors."""


class UnsupportedFormat(CVCoachError):
    """The document is neither PDF nor DOCX."""


class ExtractionFailed(CVCoachError):
    """The parser could not read the document, or it contains no text."""


class ReportGenerationFailed(CVCoachError):
    """Rendering the PDF report raised."""


class RemoteScoringUnavailable(CVCoachError):
    """Remote scorer timed out, errored, or returned a malformed payload."""


class StorageFailure(CVCoachError):
    """Object storage read/write failed, or a reference no longer exists."""


class DeliveryFailure(CVCoachError):
    """Outbound email could not be delivered."""


class PersistenceFailure(CVCoachError):
    """A session read or write against the session store failed."""


class PaymentLinkUnavailable(CVCoachError):
    """The payment provider is unreachable or misconfigured."""


class InvalidWebhookSignature(CVCoachError):
    """A payment callback failed provider signature verification."""
