"""
twilio.py - Twilio WhatsApp transport adapter.

Components:
  TwilioMessenger          - outbound text via the REST Messages API + media download
  twiml_message()          - wrap a reply in a TwiML <Response><Message> envelope
  validate_signature()     - X-Twilio-Signature check (HMAC-SHA1, base64)

Raw phone numbers are never logged; callers pass the normalized identity and
log identity_tag() instead.
"""
import base64
import hashlib
import hmac
import logging
import tempfile
from pathlib import Path
from typing import Mapping
from xml.sax.saxutils import escape

import httpx

from cvcoach.errors import StorageFailure

logger = logging.getLogger(__name__)


def twiml_message(body: str) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<Response><Message>{escape(body)}</Message></Response>"
    )


def validate_signature(auth_token: str, url: str, params: Mapping[str, str], signature: str) -> bool:
    """
    Twilio signs the full request URL followed by every POST param
    (sorted by name, key immediately followed by value).
    """
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected, signature or "")


class TwilioMessenger:
    """Messenger implementation backed by the Twilio REST API."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        account_sid: str,
        auth_token: str,
        from_number: str,
        api_base: str,
        max_upload_bytes: int,
        download_timeout_s: float,
    ):
        self._http = http
        self._sid = account_sid
        self._token = auth_token
        self._from = from_number
        self._api_base = api_base.rstrip("/")
        self._max_upload_bytes = max_upload_bytes
        self._download_timeout_s = download_timeout_s

    @staticmethod
    def _whatsapp_address(number: str) -> str:
        number = number.removeprefix("whatsapp:")
        if not number.startswith("+"):
            number = f"+{number}"
        return f"whatsapp:{number}"

    async def send_text(self, identity: str, body: str) -> bool:
        """Send an out-of-band message. Returns False (and logs) on any failure."""
        if not self._sid or not self._token:
            logger.warning("Twilio credentials not configured, outbound message dropped")
            return False
        try:
            response = await self._http.post(
                f"{self._api_base}/Accounts/{self._sid}/Messages.json",
                auth=(self._sid, self._token),
                data={
                    "From": self._whatsapp_address(self._from),
                    "To": self._whatsapp_address(identity),
                    "Body": body,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Twilio send failed: %s", exc)
            return False
        return True

    async def download_media(self, url: str, suffix: str) -> Path:
        """
        Stream the attachment to a temp file, enforcing max_upload_bytes.
        The caller owns (and deletes, or hands to storage) the returned file.
        """
        fd, tmp_name = tempfile.mkstemp(suffix=suffix, prefix="cv-")
        tmp_path = Path(tmp_name)
        received = 0
        try:
            with open(fd, "wb") as out:
                async with self._http.stream(
                    "GET",
                    url,
                    auth=(self._sid, self._token) if self._sid else None,
                    follow_redirects=True,
                    timeout=self._download_timeout_s,
                ) as response:
                    response.raise_for_status()
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > self._max_upload_bytes:
                            raise StorageFailure(
                                f"Attachment exceeds {self._max_upload_bytes} bytes"
                            )
                        out.write(chunk)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.info("Downloaded attachment bytes=%d", received)
        return tmp_path
