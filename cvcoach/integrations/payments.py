"""
payments.py - Payment collaborator: checkout links + signed completion callbacks.

Two provider adapters behind one PaymentGateway:
  StripeProvider    - stripe SDK Checkout Session; webhook via stripe.Webhook.construct_event
  PaystackProvider  - REST transaction/initialize via httpx; webhook HMAC-SHA512 of raw body

Both adapters emit the same PaymentCompleted event and both carry the user's
identity in checkout metadata, so the reducer never sees provider-specific
field mappings.

create_payment_link() NEVER raises: any provider failure (misconfiguration,
network, timeout) is logged and the configured fallback URL is returned.
"""
import asyncio
import hashlib
import hmac
import json
import logging
import time
from typing import Mapping, Optional, Protocol

import httpx
import stripe
from pydantic import BaseModel

from cvcoach.errors import InvalidWebhookSignature, PaymentLinkUnavailable
from cvcoach.pipeline.schemas import ReviewType

logger = logging.getLogger(__name__)

# Paystack requires a customer email; WhatsApp users have none at checkout time
PLACEHOLDER_EMAIL_DOMAIN = "temporary.email"

STRIPE_COMPLETED_EVENT = "checkout.session.completed"
PAYSTACK_COMPLETED_EVENT = "charge.success"


class PaymentCompleted(BaseModel):
    identity: str
    # Major currency units (minor units / 100)
    amount: float
    currency: str
    reference: str
    provider: str


class PaymentProvider(Protocol):
    name: str

    async def create_checkout(self, identity: str, review_type: ReviewType) -> str:
        ...

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Optional[PaymentCompleted]:
        ...


# ---------------------------------------------------------------------------
# Stripe
# ---------------------------------------------------------------------------

class StripeProvider:
    name = "stripe"

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        price_id: str,
        amount_minor: int,
        currency: str,
        success_url: str,
        cancel_url: str,
    ):
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self._price_id = price_id
        self._amount_minor = amount_minor
        self._currency = currency
        self._success_url = success_url
        self._cancel_url = cancel_url

    def _line_items(self) -> list[dict]:
        if self._price_id:
            return [{"price": self._price_id, "quantity": 1}]
        return [
            {
                "price_data": {
                    "currency": self._currency.lower(),
                    "unit_amount": self._amount_minor,
                    "product_data": {"name": "Advanced CV Review"},
                },
                "quantity": 1,
            }
        ]

    async def create_checkout(self, identity: str, review_type: ReviewType) -> str:
        if not self._secret_key:
            raise PaymentLinkUnavailable("Stripe secret key is not configured")
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create,
                api_key=self._secret_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=self._line_items(),
                success_url=self._success_url,
                cancel_url=self._cancel_url,
                metadata={"identity": identity, "review_type": review_type.value},
            )
        except Exception as exc:
            raise PaymentLinkUnavailable(f"Stripe checkout failed: {exc}") from exc
        url = session.get("url")
        if not url:
            raise PaymentLinkUnavailable("Stripe checkout returned no URL")
        return url

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Optional[PaymentCompleted]:
        if not self._webhook_secret:
            raise InvalidWebhookSignature("Stripe webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=headers.get("stripe-signature", ""),
                secret=self._webhook_secret,
            )
        except Exception as exc:
            raise InvalidWebhookSignature("Invalid Stripe webhook signature") from exc

        if event.get("type") != STRIPE_COMPLETED_EVENT:
            return None
        session = event.get("data", {}).get("object", {})
        if session.get("payment_status") not in (None, "paid"):
            return None
        identity = (session.get("metadata") or {}).get("identity")
        if not identity:
            logger.warning("Stripe checkout completed without identity metadata")
            return None
        return PaymentCompleted(
            identity=identity,
            amount=(session.get("amount_total") or 0) / 100,
            currency=(session.get("currency") or self._currency).upper(),
            reference=session.get("id"),
            provider=self.name,
        )


# ---------------------------------------------------------------------------
# Paystack
# ---------------------------------------------------------------------------

class PaystackProvider:
    name = "paystack"

    def __init__(
        self,
        http: httpx.AsyncClient,
        secret_key: str,
        api_base: str,
        amount_minor: int,
        currency: str,
        callback_url: str,
    ):
        self._http = http
        self._secret_key = secret_key
        self._api_base = api_base.rstrip("/")
        self._amount_minor = amount_minor
        self._currency = currency
        self._callback_url = callback_url

    async def create_checkout(self, identity: str, review_type: ReviewType) -> str:
        if not self._secret_key:
            raise PaymentLinkUnavailable("Paystack secret key is not configured")
        body = {
            "email": f"{identity}@{PLACEHOLDER_EMAIL_DOMAIN}",
            "amount": self._amount_minor,
            "currency": self._currency,
            "reference": f"cvreview_{int(time.time() * 1000)}_{identity}",
            "callback_url": self._callback_url,
            "metadata": {"identity": identity, "review_type": review_type.value},
        }
        try:
            response = await self._http.post(
                f"{self._api_base}/transaction/initialize",
                json=body,
                headers={"Authorization": f"Bearer {self._secret_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise PaymentLinkUnavailable(f"Paystack initialize failed: {exc}") from exc

        url = (data.get("data") or {}).get("authorization_url") if data.get("status") else None
        if not url:
            raise PaymentLinkUnavailable(f"Paystack rejected initialize: {data.get('message')}")
        return url

    def _signature_valid(self, payload: bytes, signature: str) -> bool:
        expected = hmac.new(self._secret_key.encode("utf-8"), payload, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature or "")

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Optional[PaymentCompleted]:
        if not self._secret_key or not self._signature_valid(payload, headers.get("x-paystack-signature", "")):
            raise InvalidWebhookSignature("Invalid Paystack webhook signature")

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise InvalidWebhookSignature("Paystack webhook body is not JSON") from exc

        if event.get("event") != PAYSTACK_COMPLETED_EVENT:
            return None
        data = event.get("data") or {}
        identity = (data.get("metadata") or {}).get("identity")
        if not identity or not data.get("reference"):
            logger.warning("Paystack charge.success without identity metadata or reference")
            return None
        return PaymentCompleted(
            identity=identity,
            amount=(data.get("amount") or 0) / 100,
            currency=(data.get("currency") or self._currency).upper(),
            reference=data["reference"],
            provider=self.name,
        )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class PaymentGateway:
    """
    The Payment collaborator the conversation core talks to.

    `active` issues checkout links; every registered provider may deliver
    completion callbacks (e.g. links issued before a provider switch).
    """

    def __init__(
        self,
        providers: Mapping[str, PaymentProvider],
        active: str,
        fallback_url: str,
        timeout_s: float,
    ):
        self._providers = dict(providers)
        self._active = active
        self._fallback_url = fallback_url
        self._timeout_s = timeout_s

    def provider(self, name: str) -> Optional[PaymentProvider]:
        return self._providers.get(name)

    async def create_payment_link(self, identity: str, review_type: ReviewType) -> str:
        provider = self._providers.get(self._active)
        try:
            if provider is None:
                raise PaymentLinkUnavailable(f"Payment provider {self._active!r} is not registered")
            return await asyncio.wait_for(
                provider.create_checkout(identity, review_type), timeout=self._timeout_s
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Payment link unavailable, using fallback link: %s", exc or type(exc).__name__
            )
            return self._fallback_url
