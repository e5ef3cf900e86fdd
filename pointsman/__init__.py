"""
Django Pointsman - VIP points ledger and redemption.

Usage:
    from pointsman import LedgerService, AccrualService, RedemptionService
    from pointsman.adapters import get_commerce_backend

    backend = get_commerce_backend("example.myshopify.com")
    AccrualService.handle_order("example.myshopify.com", order_payload, backend)
    result = RedemptionService.redeem("example.myshopify.com", "123", 150, backend, request_id="r-1")
    balance = LedgerService.get_balance("123")
"""


def __getattr__(name):
    if name == "LedgerService":
        from pointsman.services.ledger import LedgerService

        return LedgerService
    if name == "AccrualService":
        from pointsman.services.accrual import AccrualService

        return AccrualService
    if name == "RedemptionService":
        from pointsman.services.redemption import RedemptionService

        return RedemptionService
    if name == "PointsmanError":
        from pointsman.exceptions import PointsmanError

        return PointsmanError
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["LedgerService", "AccrualService", "RedemptionService", "PointsmanError"]
__version__ = "0.1.0"
