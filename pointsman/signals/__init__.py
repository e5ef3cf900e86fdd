"""
Pointsman signals - public event API.

Emitted signals:
- ledger_event: every operation outcome (sender=service class,
  operation, customer_id, outcome, data)
- points_credited: LedgerService.credit() (sender=VipCustomer, transaction)
- points_debited: LedgerService.debit() (sender=VipCustomer, transaction)
- redemption_settled: RedemptionService.redeem() (sender=Redemption)
- settlement_failed: code issued but debit failed (sender=Redemption, error)
"""

from django.dispatch import Signal

ledger_event = Signal()

# Ledger signals (emitted by services)
points_credited = Signal()
points_debited = Signal()

# Redemption signals
redemption_settled = Signal()
settlement_failed = Signal()
