"""
Pytest configuration and fixtures
Shared test setup for all test modules
"""

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from subscription_hub.core.app_factory import create_application
from subscription_hub.core.config import Settings
from subscription_hub.domain.errors import UpstreamBillingError
from subscription_hub.domain.models import (
    UNSET,
    Plan,
    PlanFeature,
    PlanLimits,
    RemoteSubscription,
    SubscriptionStatus,
)
from subscription_hub.infrastructure.persistence.sqlite import SQLitePersistence
from subscription_hub.services.stripe_service import StripeService
from subscription_hub.services.subscription_service import SubscriptionService

FROZEN_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
REMOTE_PERIOD_START = datetime(2024, 2, 28, 0, 0, tzinfo=timezone.utc)
REMOTE_PERIOD_END = datetime(2024, 3, 28, 0, 0, tzinfo=timezone.utc)
WEBHOOK_SECRET = "whsec_test_secret"


class FakeBillingGateway:
    """In-memory stand-in for the Stripe adapter that records every call."""

    def __init__(self) -> None:
        self.calls = []
        self.fail_with: Optional[Exception] = None
        self.remote_status = SubscriptionStatus.ACTIVE
        self._parser = StripeService(api_key=None)
        self._counter = 0

    def create_remote_subscription(self, customer_ref, price_ref, payment_method_ref):
        self._record(("create", customer_ref, price_ref, payment_method_ref))
        self._counter += 1
        return RemoteSubscription(
            id=f"sub_{self._counter}",
            customer_id=customer_ref,
            status=self.remote_status,
            current_period_start=REMOTE_PERIOD_START,
            current_period_end=REMOTE_PERIOD_END,
        )

    def update_remote_subscription(self, remote_ref, *, price_ref=UNSET, cancel_at_period_end=UNSET):
        self._record(("update", remote_ref, price_ref, cancel_at_period_end))

    def cancel_remote_subscription(self, remote_ref):
        self._record(("cancel", remote_ref))

    def parse_event(self, raw_payload, signature_header, secret):
        return self._parser.parse_event(raw_payload, signature_header, secret)

    def _record(self, call) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.calls.append(call)


def _seed_plans(persistence: SQLitePersistence) -> None:
    persistence.save_plan(
        Plan(
            id="basic",
            name="Basic",
            price=19.0,
            currency="USD",
            interval="monthly",
            features=[PlanFeature(name="forms", included=True, limit=5)],
            limits=PlanLimits(franchises=1, forms=5, submissions=500, staff=3, storage=1024, api_calls=1000),
        )
    )
    persistence.save_plan(
        Plan(
            id="pro",
            name="Pro",
            price=49.0,
            currency="USD",
            interval="monthly",
            features=[PlanFeature(name="forms", included=True, limit=50)],
            limits=PlanLimits(franchises=5, forms=50, submissions=10000, staff=25, storage=10240, api_calls=50000),
            stripe_price_id="price_pro",
        )
    )
    persistence.save_plan(
        Plan(
            id="enterprise",
            name="Enterprise",
            price=199.0,
            interval="yearly",
            stripe_price_id="price_enterprise",
        )
    )


@pytest.fixture
def persistence(tmp_path):
    """Fresh SQLite store with the test plan catalog"""
    store = SQLitePersistence(tmp_path / "subscriptions.db")
    _seed_plans(store)
    yield store
    store.close()


@pytest.fixture
def billing() -> FakeBillingGateway:
    return FakeBillingGateway()


@pytest.fixture
def service(persistence, billing) -> SubscriptionService:
    return SubscriptionService(persistence, persistence, billing, clock=lambda: FROZEN_NOW)


@pytest.fixture
def paid_subscription(service):
    """Subscription backed by a (fake) Stripe subscription"""
    return service.create(
        user_id="user-paid",
        plan_id="pro",
        customer_ref="cus_123",
        payment_method_ref="pm_123",
    )


@pytest.fixture
def client(tmp_path, monkeypatch, billing):
    """Test client wired to a temporary store and the fake billing gateway"""
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "api.db"))
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.delenv("STRIPE_API_KEY", raising=False)
    monkeypatch.delenv("STRIPE_KEY", raising=False)

    app = create_application(Settings())
    with TestClient(app) as test_client:
        container = app.state.container
        _seed_plans(container.persistence)
        container.subscription_service = SubscriptionService(
            container.persistence,
            container.persistence,
            billing,
            clock=lambda: FROZEN_NOW,
        )
        yield test_client


def build_stripe_signature(payload: str, secret: str, timestamp: Optional[int] = None) -> str:
    ts = timestamp or int(time.time())
    signed_payload = f"{ts}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def build_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_1") -> str:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})


def subscription_object(
    subscription_id: str,
    status: str = "past_due",
    period_start: datetime = FROZEN_NOW,
    period_end: datetime = FROZEN_NOW + timedelta(days=30),
    cancel_at_period_end: bool = True,
) -> Dict[str, Any]:
    return {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "current_period_start": int(period_start.timestamp()),
        "current_period_end": int(period_end.timestamp()),
        "cancel_at_period_end": cancel_at_period_end,
        "metadata": {"ignored": "yes"},
    }


@pytest.fixture
def upstream_failure() -> UpstreamBillingError:
    return UpstreamBillingError("Failed to update subscription")
