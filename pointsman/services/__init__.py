"""Pointsman services.

- ledger: LedgerService (balances and the transaction log)
- accrual: AccrualService (order events -> credits)
- eligibility: eligible_variant_ids (pure catalog filter)
- redemption: RedemptionService (points -> discount codes)
"""

from pointsman.services import eligibility
from pointsman.services import ledger
from pointsman.services import accrual
from pointsman.services import redemption

__all__ = ["eligibility", "ledger", "accrual", "redemption"]
