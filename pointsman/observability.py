"""Structured operation events for the ledger and redemption services."""

import logging
from typing import Any

from pointsman.signals import ledger_event


class OperationLog:
    """
    Records one structured event per operation outcome.

    Each service holds an instance as its ``events`` attribute; replace it
    on a subclass to route events elsewhere. Records carry ``operation``,
    ``customer_id`` and ``outcome`` as log-record attributes so a JSON
    formatter can index them.
    """

    def __init__(self, logger: logging.Logger, sender: Any = None):
        self.logger = logger
        self.sender = sender

    def record(
        self,
        operation: str,
        customer_id: str | None,
        outcome: str,
        level: int = logging.INFO,
        **data: Any,
    ) -> None:
        details = " ".join(f"{key}={value}" for key, value in sorted(data.items()))
        self.logger.log(
            level,
            "%s %s customer=%s %s",
            operation,
            outcome,
            customer_id,
            details,
            extra={
                "operation": operation,
                "customer_id": customer_id,
                "outcome": outcome,
                "event_data": data,
            },
        )
        ledger_event.send(
            sender=self.sender or OperationLog,
            operation=operation,
            customer_id=customer_id,
            outcome=outcome,
            data=data,
        )
