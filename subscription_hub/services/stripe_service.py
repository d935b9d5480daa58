"""Stripe billing adapter."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

import stripe

from ..domain.errors import SignatureInvalid, UpstreamBillingError
from ..domain.models import (
    UNSET,
    BillingEvent,
    RemoteSubscription,
    SubscriptionDeletedEvent,
    SubscriptionStatus,
    SubscriptionUpdatedEvent,
    UnhandledEvent,
)

logger = logging.getLogger(__name__)

EVENT_SUBSCRIPTION_UPDATED = "customer.subscription.updated"
EVENT_SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# Stripe statuses outside the local state machine.
_STATUS_ALIASES = {
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.UNPAID,
}


class StripeService:
    """Wraps the Stripe API calls the subscription lifecycle depends on.

    Credentials travel with every request instead of living on the global
    ``stripe.api_key`` so several adapters (or a fake) can coexist.
    """

    def __init__(
        self,
        api_key: Optional[str],
        api_version: Optional[str] = None,
        webhook_tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ) -> None:
        self._api_key = api_key or None
        self._api_version = api_version or None
        self._webhook_tolerance = webhook_tolerance

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def create_remote_subscription(
        self,
        customer_ref: str,
        price_ref: str,
        payment_method_ref: str,
    ) -> RemoteSubscription:
        """Create a Stripe subscription charged to the given payment method."""
        with self._stripe_call("create subscription"):
            subscription = stripe.Subscription.create(
                customer=customer_ref,
                items=[{"price": price_ref}],
                default_payment_method=payment_method_ref,
                expand=["latest_invoice.payment_intent"],
                **self._request_options(),
            )
        remote = self._to_remote_subscription(subscription)
        logger.info(
            "Created Stripe subscription %s for customer %s (%s)",
            remote.id,
            customer_ref,
            remote.status.value,
        )
        return remote

    def update_remote_subscription(
        self,
        remote_ref: str,
        *,
        price_ref: Any = UNSET,
        cancel_at_period_end: Any = UNSET,
    ) -> None:
        """Apply a partial change; fields left as ``UNSET`` are not sent."""
        params: Dict[str, Any] = {}
        if cancel_at_period_end is not UNSET:
            params["cancel_at_period_end"] = bool(cancel_at_period_end)
        with self._stripe_call("update subscription"):
            if price_ref is not UNSET:
                # Swap the price on the existing item; passing only a price would add a second item.
                current = stripe.Subscription.retrieve(remote_ref, **self._request_options())
                item_id = self._first_item_id(current)
                item: Dict[str, Any] = {"price": price_ref}
                if item_id:
                    item["id"] = item_id
                params["items"] = [item]
            if not params:
                return
            stripe.Subscription.modify(remote_ref, **params, **self._request_options())
        logger.info("Updated Stripe subscription %s: %s", remote_ref, sorted(params))

    def cancel_remote_subscription(self, remote_ref: str) -> None:
        """Cancel immediately, not at period end."""
        with self._stripe_call("cancel subscription"):
            stripe.Subscription.cancel(remote_ref, **self._request_options())
        logger.info("Canceled Stripe subscription %s", remote_ref)

    def parse_event(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        secret: Optional[str],
    ) -> BillingEvent:
        """Verify a webhook delivery and turn it into a typed event.

        Nothing in the payload is read before the signature checks out.
        """
        if not secret:
            raise SignatureInvalid("Webhook secret is not configured")
        if not signature_header:
            raise SignatureInvalid("Missing Stripe-Signature header")
        try:
            payload = raw_payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureInvalid("Webhook payload is not valid UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, secret, self._webhook_tolerance
            )
        except stripe.SignatureVerificationError as exc:
            raise SignatureInvalid("Invalid webhook signature") from exc

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise SignatureInvalid("Webhook payload is not valid JSON") from exc
        if not isinstance(event, dict):
            raise SignatureInvalid("Webhook payload is not an event object")

        return self._to_billing_event(event)

    # Helpers ----------------------------------------------------------------
    @contextmanager
    def _stripe_call(self, action: str) -> Iterator[None]:
        if not self._api_key:
            raise UpstreamBillingError("Stripe is not configured")
        try:
            yield
        except stripe.StripeError as exc:
            logger.error("Stripe %s failed: %s", action, exc)
            raise UpstreamBillingError(f"Failed to {action}") from exc

    def _request_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"api_key": self._api_key}
        if self._api_version:
            options["stripe_version"] = self._api_version
        return options

    def _to_billing_event(self, event: Dict[str, Any]) -> BillingEvent:
        event_id = event.get("id")
        event_type = str(event.get("type") or "")
        obj = (event.get("data") or {}).get("object") or {}
        subscription_ref = obj.get("id") if isinstance(obj, dict) else None

        if event_type == EVENT_SUBSCRIPTION_UPDATED and subscription_ref:
            period_start, period_end = self._period_bounds(obj)
            return SubscriptionUpdatedEvent(
                event_id=event_id,
                subscription_ref=subscription_ref,
                status=self._map_status(obj.get("status")),
                period_start=period_start,
                period_end=period_end,
                cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
            )
        if event_type == EVENT_SUBSCRIPTION_DELETED and subscription_ref:
            return SubscriptionDeletedEvent(event_id=event_id, subscription_ref=subscription_ref)
        return UnhandledEvent(event_id=event_id, type=event_type)

    def _to_remote_subscription(self, subscription: Any) -> RemoteSubscription:
        period_start, period_end = self._period_bounds(subscription)
        customer = _field(subscription, "customer")
        if customer is not None and not isinstance(customer, str):
            customer = _field(customer, "id")
        return RemoteSubscription(
            id=_field(subscription, "id"),
            customer_id=customer,
            status=self._map_status(_field(subscription, "status")),
            current_period_start=period_start,
            current_period_end=period_end,
            cancel_at_period_end=bool(_field(subscription, "cancel_at_period_end")),
        )

    @classmethod
    def _period_bounds(cls, subscription: Any) -> tuple[Optional[datetime], Optional[datetime]]:
        start = _field(subscription, "current_period_start")
        end = _field(subscription, "current_period_end")
        if start is None or end is None:
            # Newer API versions report the period on the subscription items.
            first_item = cls._first_item(subscription)
            if first_item is not None:
                start = start if start is not None else _field(first_item, "current_period_start")
                end = end if end is not None else _field(first_item, "current_period_end")
        return _from_timestamp(start), _from_timestamp(end)

    @staticmethod
    def _first_item(subscription: Any) -> Any:
        items = _field(subscription, "items")
        data = _field(items, "data") if items is not None else None
        return data[0] if data else None

    @classmethod
    def _first_item_id(cls, subscription: Any) -> Optional[str]:
        first_item = cls._first_item(subscription)
        return _field(first_item, "id") if first_item is not None else None

    @staticmethod
    def _map_status(value: Any) -> SubscriptionStatus:
        raw = str(value or "")
        if raw in _STATUS_ALIASES:
            return _STATUS_ALIASES[raw]
        try:
            return SubscriptionStatus(raw)
        except ValueError:
            logger.warning("Unknown Stripe subscription status %r, treating as incomplete", raw)
            return SubscriptionStatus.INCOMPLETE


def _field(obj: Any, name: str) -> Any:
    try:
        return obj[name]
    except (KeyError, TypeError, IndexError):
        return None


def _from_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)
