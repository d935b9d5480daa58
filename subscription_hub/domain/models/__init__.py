"""Domain models for the subscription hub."""

from .events import (
    BillingEvent,
    RemoteSubscription,
    SubscriptionDeletedEvent,
    SubscriptionUpdatedEvent,
    UnhandledEvent,
)
from .plan import Plan, PlanFeature, PlanLimits
from .subscription import (
    UNSET,
    Subscription,
    SubscriptionStatus,
    SubscriptionUpdate,
    can_transition,
)

__all__ = [
    "BillingEvent",
    "Plan",
    "PlanFeature",
    "PlanLimits",
    "RemoteSubscription",
    "Subscription",
    "SubscriptionDeletedEvent",
    "SubscriptionStatus",
    "SubscriptionUpdate",
    "SubscriptionUpdatedEvent",
    "UNSET",
    "UnhandledEvent",
    "can_transition",
]
