"""Payment request lifecycle package."""

from stashway.payments.errors import (
    AuthenticationError,
    AuthorizationError,
    FulfillmentInconsistencyError,
    InvalidPlanError,
    InvalidStatusTransitionError,
    PaymentError,
    PaymentRequestNotFoundError,
    PricingConfigError,
    RequestExpiredError,
    RequestFinalizedError,
    StatusConflictError,
)
from stashway.payments.extractions import ExtractionStore
from stashway.payments.reference import (
    REFERENCE_SECRET_LENGTH,
    generate_reference_code,
    generate_reference_secret,
)
from stashway.payments.requests import ALLOWED_SOURCES, PaymentRequestStore

__all__ = [
    # Errors
    "AuthenticationError",
    "AuthorizationError",
    "FulfillmentInconsistencyError",
    "InvalidPlanError",
    "InvalidStatusTransitionError",
    "PaymentError",
    "PaymentRequestNotFoundError",
    "PricingConfigError",
    "RequestExpiredError",
    "RequestFinalizedError",
    "StatusConflictError",
    # Stores
    "ALLOWED_SOURCES",
    "ExtractionStore",
    "PaymentRequestStore",
    # Reference generation
    "REFERENCE_SECRET_LENGTH",
    "generate_reference_code",
    "generate_reference_secret",
]
