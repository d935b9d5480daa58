"""Pydantic schemas for subscription API endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ....domain.models import SubscriptionStatus


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys while exposing snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CreateSubscriptionRequest(CamelModel):
    """Request schema for creating a subscription.

    Ids are optional here so that the lifecycle service reports missing ones
    with its own validation message.
    """

    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    business_id: Optional[str] = None
    stripe_customer_id: Optional[str] = Field(None, description="Stripe customer to bill")
    payment_method_id: Optional[str] = Field(None, description="Stripe payment method to charge")


class FreeTrialRequest(CamelModel):
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    business_id: Optional[str] = None
    trial_days: Optional[int] = Field(None, description="Trial length in days, defaults to 14")


class UpdateSubscriptionRequest(CamelModel):
    """Partial update; only keys present in the body are applied."""

    plan_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    cancel_at_period_end: Optional[bool] = None


class FeatureResponse(CamelModel):
    name: str
    included: bool
    limit: Optional[float] = None


class LimitsResponse(CamelModel):
    franchises: Optional[int] = None
    forms: Optional[int] = None
    submissions: Optional[int] = None
    staff: Optional[int] = None
    storage: Optional[int] = None
    api_calls: Optional[int] = None


class PlanResponse(CamelModel):
    id: str
    name: str
    price: float
    currency: str
    interval: str
    features: List[FeatureResponse]
    limits: LimitsResponse
    stripe_price_id: Optional[str] = None


class SubscriptionResponse(CamelModel):
    """Response schema for subscription data."""

    id: int
    user_id: str
    business_id: Optional[str] = None
    plan_id: str
    stripe_subscription_id: Optional[str] = None
    stripe_customer_id: Optional[str] = None
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    price: Optional[float] = None
    currency: str
    interval: Optional[str] = None
    features: List[FeatureResponse]
    limits: LimitsResponse
    is_active: bool
    created_at: datetime
    updated_at: datetime
    plan: Optional[PlanResponse] = None
