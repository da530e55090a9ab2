"""
Purchase Flow Controller - drives one purchase (or restore) end to end.

Every attempt resolves to exactly one FlowResult; no exception escapes.
Acknowledgement always happens after reconciliation, so a crash in
between leaves the transaction unfinished and the store redelivers it.
"""

from structlog import get_logger

from storekit_entitlements.exceptions import (
    LedgerError,
    PurchaseError,
    RestoreSyncError,
    VerificationFailedError,
)
from storekit_entitlements.models.results import (
    FlowCancelled,
    FlowFailure,
    FlowPending,
    FlowResult,
    FlowSuccess,
    PurchaseApproved,
    PurchasePending,
    PurchaseUnknown,
    PurchaseUserCancelled,
)
from storekit_entitlements.models.storekit import ProductDescriptor, VerifiedTransaction
from storekit_entitlements.observability import log_context, metrics, trace_operation
from storekit_entitlements.services.reconciler import EntitlementReconciler
from storekit_entitlements.services.store_protocols import LedgerClient, PurchaseClient
from storekit_entitlements.services.verification import VerificationGate

logger = get_logger(__name__)

PURCHASE_SUCCESS_MESSAGE = "Purchase successful"
PURCHASE_CANCELLED_MESSAGE = "Purchase cancelled"
PURCHASE_PENDING_MESSAGE = "Purchase pending approval"
UNKNOWN_STATE_MESSAGE = "unknown state"
RESTORE_SUCCESS_MESSAGE = "Purchases restored"


class PurchaseFlowController:
    """
    Purchase and restore flows.

    Shares the reconciler with the transaction listener, so a purchase and
    a pushed update go through the same "apply a transaction" path.
    """

    def __init__(
        self,
        purchases: PurchaseClient,
        ledger: LedgerClient,
        gate: VerificationGate,
        reconciler: EntitlementReconciler,
    ) -> None:
        self._purchases = purchases
        self._ledger = ledger
        self._gate = gate
        self._reconciler = reconciler

    async def purchase(self, product: ProductDescriptor) -> FlowResult:
        """
        Purchase a product.

        Args:
            product: Catalog product to buy

        Returns:
            Success, Cancelled, Pending or Failure with a human-readable message
        """
        with log_context(product_id=product.product_id, flow="purchase"):
            with trace_operation("purchase", product_id=product.product_id) as op:
                result = await self._purchase(product)
                op.set_outcome(result.status)

            metrics.record_flow("purchase", result.status)
            logger.info("purchase_flow_completed", outcome=result.status, message=result.message)
            return result

    async def _purchase(self, product: ProductDescriptor) -> FlowResult:
        logger.info("purchase_started", kind=product.kind.value)

        try:
            outcome = await self._purchases.initiate_purchase(product)
        except Exception as exc:
            error = PurchaseError(product.product_id, str(exc) or type(exc).__name__)
            logger.error("purchase_primitive_failed", error=str(error), exc_info=True)
            return FlowFailure(message=str(error))

        if isinstance(outcome, PurchaseApproved):
            try:
                transaction = self._gate.verify_transaction(outcome.envelope)
            except VerificationFailedError as exc:
                metrics.record_verification_failure("purchase")
                logger.warning("purchase_verification_failed", reason=exc.reason)
                return FlowFailure(message=str(exc))
            return await self._complete(transaction)

        if isinstance(outcome, PurchaseUserCancelled):
            return FlowCancelled(message=PURCHASE_CANCELLED_MESSAGE)

        if isinstance(outcome, PurchasePending):
            # Resolution arrives later through the transaction listener
            return FlowPending(message=PURCHASE_PENDING_MESSAGE)

        if isinstance(outcome, PurchaseUnknown):
            logger.warning("purchase_outcome_unknown", raw=outcome.raw)
        else:
            logger.warning("purchase_outcome_unrecognized", outcome_type=type(outcome).__name__)
        return FlowFailure(message=UNKNOWN_STATE_MESSAGE)

    async def _complete(self, transaction: VerifiedTransaction) -> FlowResult:
        """Reconcile, then acknowledge."""
        try:
            await self._reconciler.apply_transaction(transaction)
        except LedgerError as exc:
            # Not acknowledged: the store redelivers it through the listener
            logger.error(
                "purchase_reconciliation_failed",
                transaction_id=transaction.transaction_id,
                error=str(exc),
            )
            return FlowFailure(
                message=f"Purchase completed but entitlements could not be refreshed: {exc.message}"
            )

        try:
            await self._ledger.acknowledge(transaction.transaction_id)
        except Exception:
            logger.exception(
                "purchase_acknowledge_failed", transaction_id=transaction.transaction_id
            )

        return FlowSuccess(message=PURCHASE_SUCCESS_MESSAGE)

    async def restore(self) -> FlowResult:
        """
        Force a ledger sync, then rebuild entitlements.

        Consumables are never re-granted by a restore.
        """
        with log_context(flow="restore"):
            with trace_operation("restore") as op:
                result = await self._restore()
                op.set_outcome(result.status)

            metrics.record_flow("restore", result.status)
            logger.info("restore_flow_completed", outcome=result.status, message=result.message)
            return result

    async def _restore(self) -> FlowResult:
        try:
            await self._ledger.sync_with_remote()
        except Exception as exc:
            error = exc if isinstance(exc, RestoreSyncError) else RestoreSyncError(str(exc))
            logger.error("restore_sync_failed", error=str(error))
            return FlowFailure(message=str(error))

        try:
            await self._reconciler.refresh_from_ledger()
        except LedgerError as exc:
            return FlowFailure(message=str(exc))

        return FlowSuccess(message=RESTORE_SUCCESS_MESSAGE)
