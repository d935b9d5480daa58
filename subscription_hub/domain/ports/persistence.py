from __future__ import annotations

from typing import Optional, Protocol

from ..models import Plan, Subscription, SubscriptionUpdate


class SubscriptionRepository(Protocol):
    """Abstract storage for subscription records."""

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        ...

    def find_active_by_user(self, user_id: str) -> Optional[Subscription]:
        ...

    def find_active_by_owner(
        self, user_id: str, business_id: Optional[str]
    ) -> Optional[Subscription]:
        ...

    def find_by_external_ref(self, stripe_subscription_id: str) -> Optional[Subscription]:
        ...

    def create_subscription(self, subscription: Subscription) -> Subscription:
        ...

    def update_subscription(
        self, subscription_id: int, changes: SubscriptionUpdate
    ) -> Optional[Subscription]:
        ...


class PlanRepository(Protocol):
    """Read-only access to the plan catalog."""

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        ...


class PersistenceGateway(SubscriptionRepository, PlanRepository, Protocol):
    """Composite gateway combining every persistence concern used by the app."""

    def ping(self) -> None:
        ...

    def close(self) -> None:
        ...
