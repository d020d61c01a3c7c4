"""Settlement providers.

A provider receives the transaction record once contracts are transferred
and returns it with payment fields filled in. ``requires_payment`` means
payment continues outside the purchase call; ``failed`` or ``expired``
aborts the purchase.
"""

import logging
from abc import ABC, abstractmethod

from models import TransactionRecord, TransactionStatus

logger = logging.getLogger(__name__)


class SettlementProvider(ABC):

    @abstractmethod
    async def settle(self, record: TransactionRecord) -> TransactionRecord:
        """Settle a purchase and return the updated record.

        Raises:
            SettlementError: If the payment cannot be made
        """


class NoopSettlement(SettlementProvider):
    """Marks every purchase paid without moving money."""

    def __init__(self, currency: str = 'usd', platform_fee_bps: int = 0):
        self.currency = currency
        self.platform_fee_bps = platform_fee_bps

    def platform_fee(self, record: TransactionRecord) -> int:
        return record.total_price_nanos * self.platform_fee_bps // 10000

    async def settle(self, record: TransactionRecord) -> TransactionRecord:
        settled = record.model_copy(update={
            'currency': self.currency,
            'platform_fee_nanos': self.platform_fee(record),
            'status': TransactionStatus.PAID,
        })
        logger.info(
            f"Settled transaction {record.id}: {settled.total_price_nanos} nanos, "
            f"fee {settled.platform_fee_nanos} {self.currency}"
        )
        return settled
