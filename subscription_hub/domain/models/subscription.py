"""Subscription domain model linking owners to plans and Stripe subscriptions."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .plan import Plan, PlanFeature, PlanLimits


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    """Canceled is terminal; every other status may move anywhere."""
    if current is SubscriptionStatus.CANCELED:
        return target is SubscriptionStatus.CANCELED
    return True


class _Unset:
    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(slots=True)
class Subscription:
    """
    Subscription entity with a snapshot of the plan terms it was sold under.

    Attributes:
        id: Store-assigned identifier
        user_id: Owning user
        business_id: Owning business (tenant), optional
        plan_id: Catalog plan reference
        stripe_subscription_id: Stripe subscription ID, set once for paid subscriptions
        stripe_customer_id: Stripe customer ID
        status: Subscription status
        current_period_start: Start of current billing period
        current_period_end: End of current billing period
        cancel_at_period_end: Whether subscription will cancel at period end
        trial_start: Start of the trial window
        trial_end: End of the trial window
        is_active: False once the subscription is canceled
    """

    id: Optional[int]
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    business_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    price: Optional[float] = None
    currency: str = "USD"
    interval: Optional[str] = None
    features: List[PlanFeature] = field(default_factory=list)
    limits: PlanLimits = field(default_factory=PlanLimits)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def apply_plan_terms(self, plan: Plan) -> None:
        self.plan_id = plan.id
        self.price = plan.price
        self.currency = plan.currency
        self.interval = plan.interval
        self.features = list(plan.features)
        self.limits = plan.limits

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} user_id={self.user_id} status={self.status.value}>"


@dataclass(slots=True)
class SubscriptionUpdate:
    """Field-level change set; only fields not left as ``UNSET`` are written."""

    plan_id: Any = UNSET
    status: Any = UNSET
    is_active: Any = UNSET
    current_period_start: Any = UNSET
    current_period_end: Any = UNSET
    cancel_at_period_end: Any = UNSET
    price: Any = UNSET
    currency: Any = UNSET
    interval: Any = UNSET
    features: Any = UNSET
    limits: Any = UNSET

    def changes(self) -> Dict[str, Any]:
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not UNSET
        }

    def with_plan_terms(self, plan: Plan) -> "SubscriptionUpdate":
        self.plan_id = plan.id
        self.price = plan.price
        self.currency = plan.currency
        self.interval = plan.interval
        self.features = list(plan.features)
        self.limits = plan.limits
        return self

    def with_status(self, status: SubscriptionStatus) -> "SubscriptionUpdate":
        self.status = status
        self.is_active = status is not SubscriptionStatus.CANCELED
        return self
