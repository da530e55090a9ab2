"""
Entitlement Reconciler - collapses verified transactions into one
"what does this user currently own" snapshot.

Single writer: every mutation of the published EntitlementSnapshot goes
through ``_publish`` on the event loop that owns the reconciler. The
listener, purchase flows and restores all funnel through
``apply_transaction`` / ``refresh_from_ledger``; nothing else writes.

Two entry points:
- apply_transaction (push): consumables grant coins once per transaction
  id unless revoked; everything else triggers a full ledger pull.
- refresh_from_ledger (pull): rebuilds the owned set from scratch from
  the ledger's current entitlements. Passes run one at a time, so the
  published state always comes from the snapshot that was read last.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import replace

from structlog import get_logger

from storekit_entitlements.exceptions import LedgerError, VerificationFailedError
from storekit_entitlements.models.storekit import (
    EntitlementSnapshot,
    ProductKind,
    RenewalInfo,
    SubscriptionState,
    VerifiedTransaction,
)
from storekit_entitlements.observability import metrics, trace_operation
from storekit_entitlements.services.classifier import TransactionClassifier, TransactionRoute
from storekit_entitlements.services.store_protocols import LedgerClient
from storekit_entitlements.services.verification import VerificationGate

logger = get_logger(__name__)

NO_SUBSCRIPTION_STATUS = "No subscription"

SUBSCRIPTION_STATE_TEXT: dict[SubscriptionState, str] = {
    SubscriptionState.SUBSCRIBED: "Subscribed",
    SubscriptionState.EXPIRED: "Expired",
    SubscriptionState.IN_GRACE_PERIOD: "In grace period (billing failed, access retained)",
    SubscriptionState.REVOKED: "Revoked",
    SubscriptionState.IN_BILLING_RETRY_PERIOD: "In billing retry",
    SubscriptionState.UNKNOWN: "Unknown",
}

AUTO_RENEW_ON_TEXT = "Auto-renew on"
AUTO_RENEW_OFF_TEXT = "Auto-renew off"

SnapshotObserver = Callable[[EntitlementSnapshot], None]


def format_subscription_status(state: SubscriptionState, will_auto_renew: bool) -> str:
    """Compose "<state text> - <auto-renew text>"."""
    state_text = SUBSCRIPTION_STATE_TEXT.get(state, SUBSCRIPTION_STATE_TEXT[SubscriptionState.UNKNOWN])
    renew_text = AUTO_RENEW_ON_TEXT if will_auto_renew else AUTO_RENEW_OFF_TEXT
    return f"{state_text} - {renew_text}"


class EntitlementReconciler:
    """
    Owns the entitlement set, coin balance and subscription status text.

    Other components read ``snapshot``; they never mutate it.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        gate: VerificationGate,
        classifier: TransactionClassifier,
        coin_grant_amount: int = 100,
    ) -> None:
        """
        Initialize reconciler with empty state.

        Args:
            ledger: Transaction ledger collaborator
            gate: Verification gate for ledger entries and renewal info
            classifier: Transaction classifier
            coin_grant_amount: Coins granted per consumable transaction
        """
        if coin_grant_amount <= 0:
            raise ValueError(f"Coin grant must be positive: {coin_grant_amount}")

        self._ledger = ledger
        self._gate = gate
        self._classifier = classifier
        self._coin_grant_amount = coin_grant_amount

        self._snapshot = EntitlementSnapshot(
            purchased_product_ids=frozenset(),
            coin_balance=0,
            subscription_status=NO_SUBSCRIPTION_STATUS,
        )
        self._granted_transaction_ids: set[str] = set()
        self._refresh_lock = asyncio.Lock()
        self._observers: list[SnapshotObserver] = []

    @property
    def snapshot(self) -> EntitlementSnapshot:
        """Current published snapshot (immutable)."""
        return self._snapshot

    def owns(self, product_id: str) -> bool:
        return self._snapshot.owns(product_id)

    def add_observer(self, observer: SnapshotObserver) -> None:
        """Register a callback invoked after every publish."""
        self._observers.append(observer)

    def _publish(self, snapshot: EntitlementSnapshot) -> None:
        """Replace the published snapshot. The only mutation point."""
        self._snapshot = snapshot
        metrics.record_state(snapshot.coin_balance, len(snapshot.purchased_product_ids))
        for observer in self._observers:
            try:
                observer(snapshot)
            except Exception:
                logger.exception("entitlement_observer_failed")

    # ========================================================================
    # Push path
    # ========================================================================

    async def apply_transaction(self, transaction: VerifiedTransaction) -> EntitlementSnapshot:
        """
        Apply one verified transaction.

        Args:
            transaction: Transaction produced by the verification gate

        Returns:
            Snapshot after the transaction was applied

        Raises:
            LedgerError: If a non-consumable triggered a ledger pull that failed
        """
        route = self._classifier.route(transaction)

        if route is TransactionRoute.GRANT_CONSUMABLE:
            return self._grant_consumable(transaction)

        logger.info(
            "transaction_triggers_refresh",
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
            kind=transaction.kind.value,
        )
        snapshot = await self.refresh_from_ledger()
        metrics.record_transaction(transaction.kind.value, "refreshed")
        return snapshot

    def _grant_consumable(self, transaction: VerifiedTransaction) -> EntitlementSnapshot:
        if self._classifier.is_revoked(transaction):
            logger.info(
                "consumable_revoked",
                transaction_id=transaction.transaction_id,
                product_id=transaction.product_id,
            )
            metrics.record_transaction(transaction.kind.value, "revoked")
            return self._snapshot

        if transaction.transaction_id in self._granted_transaction_ids:
            logger.info(
                "consumable_already_granted",
                transaction_id=transaction.transaction_id,
                product_id=transaction.product_id,
            )
            metrics.record_transaction(transaction.kind.value, "duplicate")
            return self._snapshot

        self._granted_transaction_ids.add(transaction.transaction_id)
        balance_before = self._snapshot.coin_balance
        self._publish(replace(self._snapshot, coin_balance=balance_before + self._coin_grant_amount))
        metrics.record_transaction(transaction.kind.value, "granted")

        logger.info(
            "consumable_granted",
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
            balance_before=balance_before,
            balance_after=self._snapshot.coin_balance,
        )
        return self._snapshot

    # ========================================================================
    # Pull path
    # ========================================================================

    async def refresh_from_ledger(self) -> EntitlementSnapshot:
        """
        Rebuild the owned-product set from the ledger's current entitlements.

        Passes are single-flight: a pass waits for the one in progress, then
        reads the ledger itself. An older ledger read can never overwrite a
        newer one.

        Returns:
            Newly published snapshot

        Raises:
            LedgerError: If the current-entitlements snapshot cannot be read;
                the published snapshot is left untouched
        """
        async with self._refresh_lock:
            start_time = time.time()
            with trace_operation("refresh_from_ledger") as op:
                try:
                    entries = await self._read_current_entitlements()
                except LedgerError:
                    metrics.record_reconciliation("ledger_error", time.time() - start_time)
                    logger.exception("ledger_read_failed")
                    raise

                product_ids: set[str] = set()
                subscription: VerifiedTransaction | None = None

                for transaction in entries:
                    if transaction.kind is ProductKind.CONSUMABLE:
                        self._skip(transaction, "consumable")
                        continue
                    if self._classifier.is_upgraded(transaction):
                        self._skip(transaction, "upgraded")
                        continue
                    if self._classifier.is_revoked(transaction):
                        self._skip(transaction, "revoked")
                        continue

                    product_ids.add(transaction.product_id)
                    if (
                        subscription is None
                        and transaction.kind is ProductKind.AUTO_RENEWABLE_SUBSCRIPTION
                    ):
                        subscription = transaction

                if subscription is None:
                    status_text = NO_SUBSCRIPTION_STATUS
                else:
                    status_text = await self._subscription_status_text(subscription)

                self._publish(
                    replace(
                        self._snapshot,
                        purchased_product_ids=frozenset(product_ids),
                        subscription_status=status_text,
                    )
                )
                op.set_attributes(entitled_products=len(product_ids))

            metrics.record_reconciliation("success", time.time() - start_time)
            logger.info(
                "entitlements_refreshed",
                product_ids=sorted(product_ids),
                subscription_status=self._snapshot.subscription_status,
            )
            return self._snapshot

    async def _read_current_entitlements(self) -> list[VerifiedTransaction]:
        """Read and verify every entry; unverifiable entries are logged and skipped."""
        verified: list[VerifiedTransaction] = []
        try:
            async for envelope in self._ledger.current_entitlements():
                try:
                    verified.append(self._gate.verify_transaction(envelope))
                except VerificationFailedError as exc:
                    metrics.record_verification_failure("ledger")
                    metrics.record_skipped_entry("unverified")
                    logger.warning("ledger_entry_verification_failed", reason=exc.reason)
        except LedgerError:
            raise
        except Exception as exc:
            raise LedgerError(f"current entitlements unavailable: {exc}") from exc
        return verified

    def _skip(self, transaction: VerifiedTransaction, reason: str) -> None:
        metrics.record_skipped_entry(reason)
        logger.info(
            "ledger_entry_skipped",
            reason=reason,
            transaction_id=transaction.transaction_id,
            product_id=transaction.product_id,
        )

    async def _subscription_status_text(self, transaction: VerifiedTransaction) -> str:
        """
        Status text for the surviving subscription entry.

        Prefers the status whose renewal info belongs to the same original
        transaction, otherwise the first verifiable one. Lookup or renewal-verification failures keep the previous text.
        """
        previous = self._snapshot.subscription_status
        group_id = transaction.subscription_group_id
        if not group_id:
            logger.warning(
                "subscription_group_missing",
                transaction_id=transaction.transaction_id,
                product_id=transaction.product_id,
            )
            return previous

        try:
            statuses = await self._ledger.subscription_statuses(group_id)
        except Exception:
            logger.exception("subscription_status_lookup_failed", group_id=group_id)
            return previous

        if not statuses:
            logger.warning("subscription_status_empty", group_id=group_id)
            return previous

        fallback: tuple[SubscriptionState, RenewalInfo] | None = None
        for status in statuses:
            try:
                renewal_info = self._gate.verify_renewal_info(status.signed_renewal_info)
            except VerificationFailedError as exc:
                metrics.record_verification_failure("renewal_info")
                logger.warning(
                    "renewal_info_verification_failed", group_id=group_id, reason=exc.reason
                )
                continue
            if renewal_info.original_transaction_id == transaction.original_transaction_id:
                return format_subscription_status(status.state, renewal_info.will_renew())
            if fallback is None:
                fallback = (status.state, renewal_info)

        if fallback is None:
            return previous

        logger.info(
            "subscription_status_unmatched",
            group_id=group_id,
            original_transaction_id=transaction.original_transaction_id,
        )
        state, renewal_info = fallback
        return format_subscription_status(state, renewal_info.will_renew())
