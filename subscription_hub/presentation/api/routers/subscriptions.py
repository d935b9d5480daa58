"""API router for subscription lifecycle management."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status

from ....core.dependencies import get_subscription_service
from ....domain.models import UNSET, Plan, Subscription
from ....services.subscription_service import SubscriptionService
from ..schemas.subscription_schemas import (
    CreateSubscriptionRequest,
    FreeTrialRequest,
    PlanResponse,
    SubscriptionResponse,
    UpdateSubscriptionRequest,
)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


@router.get("/user/{user_id}")
def get_user_subscription(
    user_id: str,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    """Get the active subscription of a user, with its plan."""
    subscription = subscription_service.get_active_subscription(user_id)
    plan = subscription_service.get_plan(subscription.plan_id)
    return {"success": True, "data": _serialize(subscription, plan)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: CreateSubscriptionRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    """Create a subscription; billed through Stripe when customer and payment method are given."""
    subscription = subscription_service.create(
        user_id=payload.user_id,
        plan_id=payload.plan_id,
        business_id=payload.business_id,
        customer_ref=payload.stripe_customer_id,
        payment_method_ref=payload.payment_method_id,
    )
    return {"success": True, "data": _serialize(subscription)}


@router.post("/free-trial", status_code=status.HTTP_201_CREATED)
def start_free_trial(
    payload: FreeTrialRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    """Start a free trial that is not billed until converted."""
    subscription = subscription_service.start_free_trial(
        user_id=payload.user_id,
        plan_id=payload.plan_id,
        business_id=payload.business_id,
        trial_days=payload.trial_days,
    )
    return {"success": True, "data": _serialize(subscription)}


@router.put("/{subscription_id}")
def update_subscription(
    subscription_id: int,
    payload: UpdateSubscriptionRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    subscription = subscription_service.update(
        subscription_id,
        plan_id=_provided(payload, "plan_id"),
        status=_provided(payload, "status"),
        cancel_at_period_end=_provided(payload, "cancel_at_period_end"),
    )
    plan = subscription_service.get_plan(subscription.plan_id)
    return {"success": True, "data": _serialize(subscription, plan)}


@router.delete("/{subscription_id}")
def cancel_subscription(
    subscription_id: int,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
) -> Dict[str, Any]:
    subscription_service.cancel(subscription_id)
    return {"success": True, "message": "Subscription canceled successfully"}


def _provided(payload: UpdateSubscriptionRequest, name: str) -> Any:
    # Absent keys and explicit nulls both leave the field untouched.
    value = getattr(payload, name)
    if name not in payload.model_fields_set or value is None:
        return UNSET
    return value


def _serialize(subscription: Subscription, plan: Optional[Plan] = None) -> Dict[str, Any]:
    response = SubscriptionResponse.model_validate(subscription)
    if plan is not None:
        response.plan = PlanResponse.model_validate(plan)
    return response.model_dump(mode="json", by_alias=True)
