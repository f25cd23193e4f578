"""Billing error taxonomy."""

from typing import Optional

from common.core.exceptions import (
    AppException,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)


class BillingValidationError(ValidationError):
    """Unknown plan, non-purchasable combination or non-metered capability."""

    pass


class ProcessorUnavailableError(ExternalServiceError):
    """The payment processor could not be reached or returned an error."""

    pass


class SignatureVerificationFailedError(AppException):
    """Webhook signature did not verify. The payload is never parsed."""

    pass


class StaleEventError(AppException):
    """Event is older than the state already recorded."""

    def __init__(self, event_id: str, reason: str):
        self.event_id = event_id
        self.reason = reason
        super().__init__(f"Stale event {event_id}: {reason}")


class RecordNotFoundError(NotFoundError):
    """No local subscription for the event's processor identifier."""

    def __init__(self, key: str, event_id: Optional[str] = None):
        self.key = key
        self.event_id = event_id
        super().__init__(f"No subscription for {key}")


class ConcurrentModificationError(ConflictError):
    """Optimistic concurrency retries were exhausted."""

    pass


class SubscriptionNotFoundError(NotFoundError):
    """Account has no active paid subscription."""

    pass
