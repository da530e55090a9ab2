"""
Transaction Classifier - routes verified transactions.

Revocation and upgrade facts come from the ledger; nothing is computed
locally beyond comparing the revocation date with the clock.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum

from storekit_entitlements.models.storekit import ProductKind, VerifiedTransaction


class TransactionRoute(str, Enum):
    """Which reconciliation path a transaction takes."""

    GRANT_CONSUMABLE = "grant_consumable"
    REFRESH_ENTITLEMENTS = "refresh_entitlements"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransactionClassifier:
    """Classifies verified transactions by kind, revocation and upgrade status."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock

    def classify(self, transaction: VerifiedTransaction) -> ProductKind:
        return transaction.kind

    def is_revoked(self, transaction: VerifiedTransaction, now: datetime | None = None) -> bool:
        """Revoked when a revocation date is set and not in the future."""
        if transaction.revocation_date is None:
            return False
        return transaction.revocation_date <= (now or self._clock())

    def is_upgraded(self, transaction: VerifiedTransaction) -> bool:
        return transaction.is_upgraded

    def route(self, transaction: VerifiedTransaction) -> TransactionRoute:
        if self.classify(transaction) is ProductKind.CONSUMABLE:
            return TransactionRoute.GRANT_CONSUMABLE
        return TransactionRoute.REFRESH_ENTITLEMENTS
