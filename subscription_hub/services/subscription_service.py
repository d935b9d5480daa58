"""Subscription lifecycle: creation, trials, updates, cancellation and Stripe reconciliation."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from ..domain.errors import (
    ActiveSubscriptionExists,
    PlanNotFound,
    SubscriptionError,
    SubscriptionNotFound,
    UpstreamBillingError,
    ValidationError,
)
from ..domain.models import (
    UNSET,
    BillingEvent,
    Plan,
    Subscription,
    SubscriptionDeletedEvent,
    SubscriptionStatus,
    SubscriptionUpdate,
    SubscriptionUpdatedEvent,
    can_transition,
)
from ..domain.ports.billing import BillingGateway
from ..domain.ports.persistence import PlanRepository, SubscriptionRepository

logger = logging.getLogger(__name__)

DEFAULT_PERIOD = timedelta(days=30)
DEFAULT_TRIAL_DAYS = 14


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionService:
    """Keeps local subscription records consistent with the billing provider."""

    def __init__(
        self,
        subscription_repository: SubscriptionRepository,
        plan_repository: PlanRepository,
        billing: BillingGateway,
        clock: Callable[[], datetime] = _utcnow,
        default_trial_days: int = DEFAULT_TRIAL_DAYS,
    ) -> None:
        self._subscriptions = subscription_repository
        self._plans = plan_repository
        self._billing = billing
        self._clock = clock
        self.default_trial_days = default_trial_days

    def get_active_subscription(self, user_id: str) -> Subscription:
        subscription = self._subscriptions.find_active_by_user(user_id)
        if subscription is None:
            raise SubscriptionNotFound("No active subscription found")
        return subscription

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        return self._plans.get_plan(plan_id)

    def create(
        self,
        user_id: Optional[str],
        plan_id: Optional[str],
        business_id: Optional[str] = None,
        customer_ref: Optional[str] = None,
        payment_method_ref: Optional[str] = None,
    ) -> Subscription:
        """
        Create a subscription, remotely as well when billing details are given.

        Without both a Stripe customer and a payment method the record is local
        only: active for a 30 day period starting now.

        Raises:
            ValidationError: If user or plan id is missing
            PlanNotFound: If the plan is not in the catalog
            ActiveSubscriptionExists: If the owner already has an active subscription
            UpstreamBillingError: If Stripe rejects the subscription
        """
        self._require_owner(user_id, plan_id)
        plan = self._resolve_plan(plan_id)
        self._ensure_no_active(user_id, business_id)

        now = self._clock()
        subscription = Subscription(
            id=None,
            user_id=user_id,
            business_id=business_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=now,
            current_period_end=now + DEFAULT_PERIOD,
        )
        subscription.apply_plan_terms(plan)

        if customer_ref and payment_method_ref:
            if not plan.stripe_price_id:
                raise ValidationError(f"Plan {plan.id} has no Stripe price configured")
            remote = self._billing.create_remote_subscription(
                customer_ref, plan.stripe_price_id, payment_method_ref
            )
            subscription.stripe_subscription_id = remote.id
            subscription.stripe_customer_id = customer_ref
            subscription.status = remote.status
            subscription.is_active = remote.status is not SubscriptionStatus.CANCELED
            subscription.cancel_at_period_end = remote.cancel_at_period_end
            if remote.current_period_start is not None:
                subscription.current_period_start = remote.current_period_start
            if remote.current_period_end is not None:
                subscription.current_period_end = remote.current_period_end
        else:
            subscription.stripe_customer_id = customer_ref

        try:
            created = self._subscriptions.create_subscription(subscription)
        except SubscriptionError:
            if subscription.stripe_subscription_id:
                self._compensate_remote(subscription.stripe_subscription_id)
            raise
        logger.info(
            "Created subscription %s for user %s on plan %s (%s)",
            created.id,
            created.user_id,
            created.plan_id,
            created.status.value,
        )
        return created

    def start_free_trial(
        self,
        user_id: Optional[str],
        plan_id: Optional[str],
        business_id: Optional[str] = None,
        trial_days: Optional[int] = None,
    ) -> Subscription:
        """Start a local-only trial; trials are never pushed to Stripe."""
        self._require_owner(user_id, plan_id)
        if trial_days is None:
            trial_days = self.default_trial_days
        if isinstance(trial_days, bool) or not isinstance(trial_days, int) or trial_days <= 0:
            raise ValidationError("Trial days must be a positive integer")
        plan = self._resolve_plan(plan_id)
        self._ensure_no_active(user_id, business_id)

        now = self._clock()
        trial_end = now + timedelta(days=trial_days)
        subscription = Subscription(
            id=None,
            user_id=user_id,
            business_id=business_id,
            plan_id=plan.id,
            status=SubscriptionStatus.TRIALING,
            current_period_start=now,
            current_period_end=trial_end,
            trial_start=now,
            trial_end=trial_end,
        )
        subscription.apply_plan_terms(plan)
        created = self._subscriptions.create_subscription(subscription)
        logger.info(
            "Started %s day trial %s for user %s on plan %s",
            trial_days,
            created.id,
            created.user_id,
            created.plan_id,
        )
        return created

    def update(
        self,
        subscription_id: int,
        plan_id: Any = UNSET,
        status: Any = UNSET,
        cancel_at_period_end: Any = UNSET,
    ) -> Subscription:
        """
        Change plan, status or the cancel-at-period-end flag.

        Stripe is updated first; if that fails the local record is untouched.
        Moving a Stripe-backed subscription to canceled cancels it remotely.
        """
        subscription = self._get(subscription_id)
        changes = SubscriptionUpdate()

        if status is not UNSET:
            try:
                status = SubscriptionStatus(status)
            except ValueError as exc:
                raise ValidationError(f"Unknown subscription status: {status}") from exc
            if not can_transition(subscription.status, status):
                raise ValidationError(
                    f"Subscription {subscription_id} is canceled and cannot become {status.value}"
                )
            changes.with_status(status)

        plan: Optional[Plan] = None
        if plan_id is not UNSET:
            plan = self._resolve_plan(plan_id)
            changes.with_plan_terms(plan)

        if cancel_at_period_end is not UNSET:
            changes.cancel_at_period_end = bool(cancel_at_period_end)

        remote_ref = subscription.stripe_subscription_id
        already_canceled = subscription.status is SubscriptionStatus.CANCELED
        if remote_ref and already_canceled and (plan is not None or cancel_at_period_end is not UNSET):
            raise ValidationError(f"Subscription {subscription_id} is canceled and cannot be changed")

        if remote_ref and status is SubscriptionStatus.CANCELED and not already_canceled:
            # Stripe must stop billing before the record turns terminal.
            self._billing.cancel_remote_subscription(remote_ref)
        elif remote_ref and (plan is not None or cancel_at_period_end is not UNSET):
            price_ref: Any = UNSET
            if plan is not None:
                if not plan.stripe_price_id:
                    raise ValidationError(f"Plan {plan.id} has no Stripe price configured")
                price_ref = plan.stripe_price_id
            self._billing.update_remote_subscription(
                subscription.stripe_subscription_id,
                price_ref=price_ref,
                cancel_at_period_end=changes.cancel_at_period_end,
            )

        updated = self._subscriptions.update_subscription(subscription_id, changes)
        if updated is None:
            raise SubscriptionNotFound()
        logger.info("Updated subscription %s: %s", subscription_id, sorted(changes.changes()))
        return updated

    def cancel(self, subscription_id: int) -> Subscription:
        """Cancel immediately, remotely first when a Stripe subscription exists."""
        subscription = self._get(subscription_id)
        if subscription.status is SubscriptionStatus.CANCELED and not subscription.is_active:
            return subscription

        if subscription.stripe_subscription_id:
            self._billing.cancel_remote_subscription(subscription.stripe_subscription_id)

        updated = self._subscriptions.update_subscription(
            subscription_id, SubscriptionUpdate().with_status(SubscriptionStatus.CANCELED)
        )
        if updated is None:
            raise SubscriptionNotFound()
        logger.info("Canceled subscription %s", subscription_id)
        return updated

    def apply_event(self, event: BillingEvent) -> Optional[Subscription]:
        """
        Apply a verified billing event.

        Events overwrite fields by Stripe reference, so replaying one is
        harmless. Events for unknown subscriptions are ignored.
        """
        if isinstance(event, SubscriptionUpdatedEvent):
            subscription = self._subscriptions.find_by_external_ref(event.subscription_ref)
            if subscription is None:
                logger.warning(
                    "Ignoring %s for unknown Stripe subscription %s",
                    event.event_id,
                    event.subscription_ref,
                )
                return None
            if not can_transition(subscription.status, event.status):
                logger.warning(
                    "Ignoring %s: subscription %s is canceled, event reports %s",
                    event.event_id,
                    subscription.id,
                    event.status.value,
                )
                return subscription
            changes = SubscriptionUpdate(cancel_at_period_end=event.cancel_at_period_end)
            changes.with_status(event.status)
            if event.period_start is not None:
                changes.current_period_start = event.period_start
            if event.period_end is not None:
                changes.current_period_end = event.period_end
            updated = self._subscriptions.update_subscription(subscription.id, changes)
            logger.info(
                "Synchronized subscription %s from Stripe (%s)",
                subscription.id,
                event.status.value,
            )
            return updated

        if isinstance(event, SubscriptionDeletedEvent):
            subscription = self._subscriptions.find_by_external_ref(event.subscription_ref)
            if subscription is None:
                logger.warning(
                    "Ignoring %s for unknown Stripe subscription %s",
                    event.event_id,
                    event.subscription_ref,
                )
                return None
            updated = self._subscriptions.update_subscription(
                subscription.id, SubscriptionUpdate().with_status(SubscriptionStatus.CANCELED)
            )
            logger.info("Subscription %s canceled by Stripe", subscription.id)
            return updated

        logger.info("Unhandled event type: %s", event.type)
        return None

    # Helpers ----------------------------------------------------------------
    @staticmethod
    def _require_owner(user_id: Optional[str], plan_id: Optional[str]) -> None:
        if not user_id or not plan_id:
            raise ValidationError("User ID and Plan ID are required")

    def _resolve_plan(self, plan_id: Any) -> Plan:
        if not plan_id:
            raise ValidationError("Plan ID is required")
        plan = self._plans.get_plan(plan_id)
        if plan is None:
            raise PlanNotFound()
        return plan

    def _get(self, subscription_id: int) -> Subscription:
        subscription = self._subscriptions.get_subscription(subscription_id)
        if subscription is None:
            raise SubscriptionNotFound()
        return subscription

    def _ensure_no_active(self, user_id: str, business_id: Optional[str]) -> None:
        if self._subscriptions.find_active_by_owner(user_id, business_id) is not None:
            raise ActiveSubscriptionExists()

    def _compensate_remote(self, remote_ref: str) -> None:
        try:
            self._billing.cancel_remote_subscription(remote_ref)
        except UpstreamBillingError:
            logger.error("Failed to cancel orphaned Stripe subscription %s", remote_ref)
