"""
email.py - SMTP delivery of advanced review reports.

Components:
  Attachment, DeliveryResult   - send() contract types
  SmtpMailer.send()            - STARTTLS (or implicit SSL) SMTP send, run in a thread
                                 under an explicit timeout; never raises
  compose_review_email()       - subject + HTML + plain-text bodies for a ReviewResult

Delivery failure is never fatal to a review: send() returns
DeliveryResult(success=False, error=...) and the caller records email_sent=False.
"""
from __future__ import annotations

import asyncio
import html
import logging
import re
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from cvcoach.errors import DeliveryFailure
from cvcoach.pipeline.schemas import ReviewResult

logger = logging.getLogger(__name__)

REPORT_ATTACHMENT_NAME = "cv-review-report.pdf"

_EMAIL_SHAPE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    mime_type: str = "application/pdf"


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: Optional[str] = None


def is_valid_email(address: str) -> bool:
    return bool(address and _EMAIL_SHAPE.match(address))


class SmtpMailer:
    """Mailer implementation over smtplib."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout_s: float = 30.0,
    ):
        self._host = host
        self._port = port
        self._sender = sender
        self._user = user
        # App passwords are often copied with spaces every 4 chars
        self._password = password.replace(" ", "")
        self._use_tls = use_tls
        self._timeout_s = timeout_s

    def _deliver(self, msg: EmailMessage) -> None:
        context = ssl.create_default_context()
        if self._use_tls:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout_s) as server:
                server.starttls(context=context)
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.send_message(msg)
            return

        with smtplib.SMTP_SSL(self._host, self._port, context=context, timeout=self._timeout_s) as server:
            if self._user and self._password:
                server.login(self._user, self._password)
            server.send_message(msg)

    def _build_message(
        self,
        address: str,
        subject: str,
        html_body: str,
        text_body: str,
        attachment: Optional[Attachment],
    ) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._sender
        msg["To"] = address
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")
        if attachment is not None:
            maintype, _, subtype = attachment.mime_type.partition("/")
            msg.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return msg

    async def send(
        self,
        address: str,
        subject: str,
        html: str,
        text: str,
        attachment: Optional[Attachment] = None,
    ) -> DeliveryResult:
        try:
            if not self._host:
                raise DeliveryFailure("SMTP is not configured")
            if not is_valid_email(address):
                raise DeliveryFailure("Invalid email address")
            msg = self._build_message(address, subject, html, text, attachment)
            await asyncio.wait_for(asyncio.to_thread(self._deliver, msg), timeout=self._timeout_s + 5)
        except asyncio.TimeoutError:
            logger.warning("Email delivery timed out host=%s", self._host)
            return DeliveryResult(success=False, error="timeout")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Email delivery failed host=%s: %s", self._host, exc)
            return DeliveryResult(success=False, error=str(exc))

        logger.info("Review email sent attachment=%s", attachment is not None)
        return DeliveryResult(success=True)


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------

def _expiry_phrase(ttl_s: int) -> str:
    if ttl_s >= 3600 and ttl_s % 3600 == 0:
        hours = ttl_s // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    minutes = max(1, ttl_s // 60)
    return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"


def compose_review_email(
    review: ReviewResult,
    report_link: Optional[str],
    brand: str = "CVCoach",
    link_ttl_s: int = 3600,
) -> tuple[str, str, str]:
    """Return (subject, html_body, text_body). link_ttl_s is the report link lifetime."""
    expires = _expiry_phrase(link_ttl_s)
    subject = f"Your {brand} CV Review Report"
    score = review.improvement_score

    items_html = "".join(f"<li>{html.escape(insight)}</li>" for insight in review.insights)
    link_html = (
        f'<p><a href="{html.escape(report_link, quote=True)}">Download your full report</a> '
        f"(link expires in {expires}; the PDF is also attached).</p>"
        if report_link
        else ""
    )
    html_body = (
        "<html><body style=\"font-family: Arial, sans-serif;\">"
        f"<h2>{html.escape(brand)} CV Review</h2>"
        f"<p>Your CV improvement score: <strong>{score}/100</strong></p>"
        "<h3>Key insights</h3>"
        f"<ol>{items_html}</ol>"
        f"{link_html}"
        "<p>Good luck with your applications!</p>"
        "</body></html>"
    )

    lines = [f"{brand} CV Review", "", f"Your CV improvement score: {score}/100", "", "Key insights:"]
    lines.extend(f"{i}. {insight}" for i, insight in enumerate(review.insights, start=1))
    if report_link:
        lines.extend(["", f"Download your full report: {report_link}", f"The link expires in {expires}."])
    lines.extend(["", "Good luck with your applications!"])
    return subject, html_body, "\n".join(lines)
