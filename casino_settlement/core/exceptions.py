"""
Settlement error taxonomy.

Every rejection raised by a settlement handler derives from SettlementError and
carries the HTTP status the API layer renders it with. Handlers raise on the
first failed precondition; the surrounding settlement scope rolls back, so a
raised error never leaves partial effects behind.
"""
from decimal import Decimal
from typing import Any, Optional


class SettlementError(Exception):
    """Base class for all expected settlement failures."""

    status_code = 400
    error_type = "settlement_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.message, "type": self.error_type}
        payload.update(self.context)
        return payload


class PayloadValidationError(SettlementError):
    """Request payload is well-formed JSON but semantically invalid."""

    error_type = "validation_error"


class NotFoundError(SettlementError):
    """Referenced session, item or account does not exist."""

    status_code = 404
    error_type = "not_found"


class AuthorizationError(SettlementError):
    """Actor may not perform this action (not your game, not your turn)."""

    status_code = 403
    error_type = "authorization_error"


class StateConflictError(SettlementError):
    """
    Session is not in the status the action requires.

    Raised when an optimistic conditional update affects zero rows, i.e.
    another request already progressed the session. Callers may re-read
    state and retry.
    """

    status_code = 409
    error_type = "state_conflict"


class InsufficientFundsError(SettlementError):
    """Balance or item quantity is too low for the requested stake."""

    error_type = "insufficient_funds"

    def __init__(
        self,
        message: str,
        shortfall: Optional[Decimal] = None,
        item_id: Optional[str] = None,
    ):
        context: dict = {}
        if shortfall is not None:
            context["shortfall"] = str(shortfall)
        if item_id is not None:
            context["item_id"] = item_id
        super().__init__(message, **context)
        self.shortfall = shortfall
        self.item_id = item_id
