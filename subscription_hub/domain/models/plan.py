"""Plan catalog entries and the plan terms copied onto subscriptions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class PlanFeature:
    name: str
    included: bool = True
    limit: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlanFeature":
        return cls(
            name=str(data.get("name", "")),
            included=bool(data.get("included", True)),
            limit=data.get("limit"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "included": self.included, "limit": self.limit}


@dataclass(slots=True)
class PlanLimits:
    franchises: Optional[int] = None
    forms: Optional[int] = None
    submissions: Optional[int] = None
    staff: Optional[int] = None
    storage: Optional[int] = None
    api_calls: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PlanLimits":
        data = data or {}
        return cls(
            franchises=data.get("franchises"),
            forms=data.get("forms"),
            submissions=data.get("submissions"),
            staff=data.get("staff"),
            storage=data.get("storage"),
            api_calls=data.get("api_calls", data.get("apiCalls")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "franchises": self.franchises,
            "forms": self.forms,
            "submissions": self.submissions,
            "staff": self.staff,
            "storage": self.storage,
            "api_calls": self.api_calls,
        }


@dataclass(slots=True)
class Plan:
    """
    Billing tier resolved from the plan catalog.

    Attributes:
        id: Catalog identifier
        price: Price in the plan currency
        interval: Billing interval (monthly, yearly, lifetime)
        stripe_price_id: Stripe price used when a remote subscription is created
    """

    id: str
    name: str
    price: float
    currency: str = "USD"
    interval: str = "monthly"
    features: List[PlanFeature] = field(default_factory=list)
    limits: PlanLimits = field(default_factory=PlanLimits)
    stripe_price_id: Optional[str] = None
    is_active: bool = True
