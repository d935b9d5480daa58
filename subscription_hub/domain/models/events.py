"""Typed billing events produced by the webhook parser."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .subscription import SubscriptionStatus


@dataclass(frozen=True, slots=True)
class SubscriptionUpdatedEvent:
    event_id: Optional[str]
    subscription_ref: str
    status: SubscriptionStatus
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    cancel_at_period_end: bool


@dataclass(frozen=True, slots=True)
class SubscriptionDeletedEvent:
    event_id: Optional[str]
    subscription_ref: str


@dataclass(frozen=True, slots=True)
class UnhandledEvent:
    event_id: Optional[str]
    type: str


BillingEvent = Union[SubscriptionUpdatedEvent, SubscriptionDeletedEvent, UnhandledEvent]


@dataclass(frozen=True, slots=True)
class RemoteSubscription:
    """Subset of a Stripe subscription the lifecycle manager adopts."""

    id: str
    customer_id: Optional[str]
    status: SubscriptionStatus
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool = False
