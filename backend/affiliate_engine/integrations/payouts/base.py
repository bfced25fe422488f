from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class PayoutItem:
    commission_id: int
    receiver: str
    amount: Decimal
    currency: str
    note: str | None = None


@dataclass(frozen=True)
class PayoutBatch:
    batch_id: str
    status: str


class PayoutProvider:
    """Money-moving collaborator. Implementations raise ``PayoutProviderError``."""

    def submit_payout(self, items: list[PayoutItem], *, sender_batch_id: str) -> PayoutBatch:
        raise NotImplementedError

    def get_payout_status(self, batch_id: str) -> str:
        raise NotImplementedError
