"""
Payment workflow exceptions.

Reconciliation mismatches are NOT here: a failed match is a normal
VerificationResult, never an exception.
"""

from typing import Optional


class PaymentError(Exception):
    """Base exception for payment workflow errors."""
    pass


class InvalidPlanError(PaymentError):
    """Plan is not one of the paid tiers."""
    pass


class PricingConfigError(PaymentError):
    """A paid plan has no configured price."""
    pass


class PaymentRequestNotFoundError(PaymentError):
    """No such request, or it belongs to someone else."""
    pass


class InvalidStatusTransitionError(PaymentError):
    """The requested transition is not allowed from the current status."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move payment request from {current} to {target}")
        self.current = current
        self.target = target


class RequestFinalizedError(InvalidStatusTransitionError):
    """The request is verified, rejected or expired."""

    def __init__(self, current: str, target: str):
        super().__init__(current, target)
        self.args = (f"Payment request has already been {current}",)


class StatusConflictError(PaymentError):
    """The stored status changed between read and write."""
    pass


class RequestExpiredError(PaymentError):
    """The request passed its expiry time."""
    pass


class FulfillmentInconsistencyError(PaymentError):
    """
    The payment was verified but the plan could not be activated.

    Needs out-of-band remediation. The request stays verified.
    """

    def __init__(self, request_id, cause: Optional[Exception] = None):
        super().__init__(
            f"Payment request {request_id} is verified but plan activation failed"
            + (f": {cause}" if cause else "")
        )
        self.request_id = request_id
        self.cause = cause


class AuthenticationError(PaymentError):
    """Missing or invalid caller identity."""
    pass


class AuthorizationError(PaymentError):
    """Caller is not allowed to perform this operation."""
    pass
