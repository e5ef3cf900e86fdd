"""Pointsman models.

Ledger models (owned by LedgerService):
- VipCustomer: per-customer balance
- RewardTransaction: append-only points log

Orchestration models:
- Redemption: redemption intents (owned by RedemptionService)
- ProcessedEvent: webhook replay protection
"""

from pointsman.models.vip_customer import VipCustomer
from pointsman.models.reward_transaction import RewardTransaction
from pointsman.models.redemption import Redemption, RedemptionStatus
from pointsman.models.processed_event import ProcessedEvent

__all__ = [
    # Ledger
    "VipCustomer",
    "RewardTransaction",
    # Redemption
    "Redemption",
    "RedemptionStatus",
    # Replay protection
    "ProcessedEvent",
]
