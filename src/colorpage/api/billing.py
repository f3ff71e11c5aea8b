"""Credit purchases through Stripe Checkout.

Two operations make up the payment flow:

- :func:`create_checkout_session` starts a hosted checkout for one credit
  package and returns its URL.  The user id, credit count and package id
  travel in the session metadata.
- :func:`handle_webhook` receives Stripe's signed event notification and
  credits the purchased amount once the session is paid.

Crediting happens only in the webhook.  Each event id is claimed in the
ledger before crediting, so a redelivered event is acknowledged without
being applied twice.  If crediting fails the claim is released and the
error status tells Stripe to retry.
"""

from __future__ import annotations

import json
import logging

import stripe

from colorpage.core.config import ColorPageConfig
from colorpage.core.exceptions import (
    UpstreamError,
    ValidationError,
    WebhookSignatureError,
)
from colorpage.core.ledger import CreditLedger
from colorpage.core.packages import DEFAULT_PACKAGE_ID, get_package_by_id

logger = logging.getLogger(__name__)

DEFAULT_PURCHASE_CREDITS = 10

CREDITING_EVENTS = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
)


async def create_checkout_session(
    ledger: CreditLedger,
    cfg: ColorPageConfig,
    user_id: str,
    package_id: str | None,
    origin: str,
) -> str:
    """Create a payment-mode checkout session for a credit package.

    Args:
        ledger: Used to look up the buyer's email.
        cfg: Supplies the Stripe key and currency.
        user_id: Buyer; recorded in the session metadata.
        package_id: Package to buy; ``starter`` when empty.
        origin: Base URL for the success and cancel redirects.

    Returns:
        The hosted checkout URL.

    Raises:
        ConfigurationError: Stripe is not configured.
        ValidationError: Unknown package.
        NotFoundError: Unknown user.
        UpstreamError: Stripe rejected the request.
    """
    api_key = cfg.require("stripe_secret_key")
    package = get_package_by_id(package_id or DEFAULT_PACKAGE_ID)
    if package is None:
        raise ValidationError("Invalid package selected")

    profile = await ledger.get_profile(user_id)
    origin = origin.rstrip("/")

    try:
        session = await stripe.checkout.Session.create_async(
            api_key=api_key,
            mode="payment",
            payment_method_types=["card"],
            line_items=[
                {
                    "price_data": {
                        "currency": cfg.stripe_currency,
                        "product_data": {
                            "name": package.name,
                            "description": f"{package.credits} coloring page credits",
                        },
                        "unit_amount": package.price,
                    },
                    "quantity": 1,
                }
            ],
            customer_email=profile["email"] or None,
            metadata={
                "userId": user_id,
                "credits": str(package.credits),
                "packageId": package.id,
            },
            success_url=f"{origin}/purchase/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{origin}/",
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout error for {user_id}: {e}")
        raise UpstreamError("Failed to create checkout session") from e

    logger.info(f"Created checkout session {session.id} for {user_id} ({package.id})")
    return session.url


def verify_event(payload: bytes, signature: str | None, secret: str) -> dict:
    """Check the ``Stripe-Signature`` header and decode the event.

    Raises:
        WebhookSignatureError: The header is missing or does not match.
        ValidationError: The verified payload is not a JSON object.
    """
    if not signature:
        raise WebhookSignatureError("Missing stripe-signature header")
    try:
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, signature, secret)
    except (UnicodeDecodeError, stripe.SignatureVerificationError) as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise WebhookSignatureError(f"Webhook Error: {e}") from e
    try:
        event = json.loads(text)
    except ValueError as e:
        raise ValidationError("Webhook Error: invalid payload") from e
    if not isinstance(event, dict) or not event.get("id"):
        raise ValidationError("Webhook Error: invalid payload")
    return event


def purchased_credits(metadata: dict) -> int:
    """Credits bought in a session: metadata, then package, then 10."""
    raw = metadata.get("credits")
    if raw:
        try:
            credits = int(raw)
        except (TypeError, ValueError):
            credits = 0
        if credits > 0:
            return credits
    package = get_package_by_id(metadata.get("packageId") or "")
    if package is not None:
        return package.credits
    return DEFAULT_PURCHASE_CREDITS


async def handle_webhook(
    ledger: CreditLedger,
    cfg: ColorPageConfig,
    payload: bytes,
    signature: str | None,
) -> dict:
    """Verify and apply one webhook delivery.

    Returns:
        ``{"received": True}`` for every accepted delivery, including
        duplicates and event types that carry no credits.
    """
    secret = cfg.require("stripe_webhook_secret")
    event = verify_event(payload, signature, secret)
    event_id = event["id"]
    event_type = event.get("type")

    if event_type not in CREDITING_EVENTS:
        logger.info(f"Ignoring webhook event {event_id} of type {event_type}")
        return {"received": True}

    session = (event.get("data") or {}).get("object") or {}
    if session.get("payment_status") == "unpaid":
        logger.info(f"Checkout session {session.get('id')} is not paid yet")
        return {"received": True}

    if not await ledger.claim_event(event_id):
        logger.info(f"Webhook event {event_id} already processed")
        return {"received": True}

    try:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        if not user_id:
            logger.error(f"No userId in session metadata for event {event_id}")
            raise ValidationError("No userId in session metadata")
        credits = purchased_credits(metadata)
        balance = await ledger.add_credits(user_id, credits)
    except Exception:
        await ledger.release_event(event_id)
        raise

    logger.info(f"Event {event_id}: added {credits} credits to {user_id}, balance {balance}")
    return {"received": True}
