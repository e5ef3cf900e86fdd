"""Pointsman exceptions."""

from typing import Any


class BaseError(Exception):
    """
    Structured exception carrying a machine-readable code.

    Subclasses provide ``_default_messages`` so callers can raise by code
    alone and still get a human-readable message.
    """

    _default_messages: dict[str, str] = {}

    def __init__(self, code: str, /, message: str | None = None, **data: Any):
        self.code = code
        self.message = message or self._default_messages.get(code, code)
        self.data = data
        super().__init__(f"[{code}] {self.message}")

    def as_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": self.data}


class PointsmanError(BaseError):
    """
    Structured exception for ledger and redemption operations.

    Usage:
        try:
            RedemptionService.redeem(shop, "123", 150, backend)
        except PointsmanError as e:
            if e.code == "INSUFFICIENT_BALANCE":
                return JsonResponse({"error": e.message}, status=400)
    """

    _default_messages = {
        "INVALID_INPUT": "Invalid input",
        "INSUFFICIENT_BALANCE": "Insufficient points for redemption",
        "REDEMPTION_IN_PROGRESS": "Another redemption is in progress for this customer",
        "ISSUANCE_FAILED": "Discount code could not be issued",
        "SETTLEMENT_FAILED": "Discount code issued but points were not debited",
        "UPSTREAM_UNAVAILABLE": "Commerce platform unavailable",
        "INVALID_CONFIG": "Invalid exclusion configuration",
    }


# HTTP status per error code, used by the views.
HTTP_STATUS = {
    "INVALID_INPUT": 400,
    "INSUFFICIENT_BALANCE": 400,
    "REDEMPTION_IN_PROGRESS": 409,
    "ISSUANCE_FAILED": 500,
    "SETTLEMENT_FAILED": 500,
    "UPSTREAM_UNAVAILABLE": 500,
    "INVALID_CONFIG": 500,
}
