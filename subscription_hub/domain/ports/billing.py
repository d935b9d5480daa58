from __future__ import annotations

from typing import Any, Optional, Protocol

from ..models import UNSET, BillingEvent, RemoteSubscription


class BillingGateway(Protocol):
    """Operations the lifecycle manager needs from the billing provider."""

    def create_remote_subscription(
        self,
        customer_ref: str,
        price_ref: str,
        payment_method_ref: str,
    ) -> RemoteSubscription:
        ...

    def update_remote_subscription(
        self,
        remote_ref: str,
        *,
        price_ref: Any = UNSET,
        cancel_at_period_end: Any = UNSET,
    ) -> None:
        ...

    def cancel_remote_subscription(self, remote_ref: str) -> None:
        ...

    def parse_event(
        self,
        raw_payload: bytes,
        signature_header: Optional[str],
        secret: Optional[str],
    ) -> BillingEvent:
        ...
