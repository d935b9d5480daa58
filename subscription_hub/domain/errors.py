"""Error taxonomy shared by the lifecycle manager and the HTTP boundary."""


class SubscriptionError(Exception):
    """Base class for every failure the service reports to callers."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SubscriptionError):
    """Missing or malformed input the caller can correct."""

    status_code = 400


class NotFound(SubscriptionError):
    status_code = 404


class SubscriptionNotFound(NotFound):
    def __init__(self, message: str = "Subscription not found") -> None:
        super().__init__(message)


class PlanNotFound(NotFound):
    def __init__(self, message: str = "Plan not found") -> None:
        super().__init__(message)


class ActiveSubscriptionExists(SubscriptionError):
    """The owner scope already holds an active subscription."""

    status_code = 409

    def __init__(self, message: str = "An active subscription already exists") -> None:
        super().__init__(message)


class SignatureInvalid(SubscriptionError):
    """A webhook payload failed authenticity checks and must not be processed."""

    status_code = 400


class UpstreamBillingError(SubscriptionError):
    """A call to the billing provider failed or timed out."""

    status_code = 500


class StorageError(SubscriptionError):
    """The record store is unavailable."""

    status_code = 500
