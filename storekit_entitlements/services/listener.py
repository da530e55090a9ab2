"""
Transaction Listener - supervised background consumer of the store's
transaction update stream.

Renewals, refunds, purchases made elsewhere (family sharing, other
devices) and test refunds/expirations all arrive here. Each event is
verified, applied through the reconciler, then acknowledged. One bad
event never stops the stream.
"""

import asyncio

from structlog import get_logger

from storekit_entitlements.exceptions import LedgerError, VerificationFailedError
from storekit_entitlements.models.storekit import SignedEnvelope
from storekit_entitlements.observability import log_context, metrics, trace_operation
from storekit_entitlements.services.reconciler import EntitlementReconciler
from storekit_entitlements.services.store_protocols import LedgerClient
from storekit_entitlements.services.verification import VerificationGate

logger = get_logger(__name__)


class TransactionListener:
    """
    Owns one background task for the lifetime of the session.

    ``start`` launches it, ``stop`` cancels it and waits for it to finish.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        gate: VerificationGate,
        reconciler: EntitlementReconciler,
        retry_delay_seconds: float = 5.0,
    ) -> None:
        self._ledger = ledger
        self._gate = gate
        self._reconciler = reconciler
        self._retry_delay_seconds = retry_delay_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start listening. Must be called from the owning event loop."""
        if self.is_running:
            logger.warning("transaction_listener_already_running")
            return
        self._task = asyncio.create_task(self._run(), name="transaction-listener")
        logger.info("transaction_listener_started")

    async def stop(self) -> None:
        """Cancel the listener and wait for it to exit."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("transaction_listener_stopped")

    async def _run(self) -> None:
        while True:
            try:
                async for envelope in self._ledger.stream_transaction_updates():
                    await self.handle_update(envelope)
                logger.warning("transaction_stream_ended")
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("transaction_stream_failed")

            await asyncio.sleep(self._retry_delay_seconds)
            logger.info("transaction_stream_resubscribing")

    async def handle_update(self, envelope: SignedEnvelope) -> bool:
        """
        Process one pushed transaction: verify, apply, acknowledge.

        Cancellation between apply and acknowledge is safe: the transaction
        stays unfinished and is redelivered next session.

        Returns:
            True if the transaction was applied and acknowledged
        """
        try:
            transaction = self._gate.verify_transaction(envelope)
        except VerificationFailedError as exc:
            metrics.record_verification_failure("listener")
            metrics.listener_events_total.labels(result="unverified").inc()
            logger.warning("listener_transaction_verification_failed", reason=exc.reason)
            return False

        with (
            log_context(transaction_id=transaction.transaction_id, source="listener"),
            trace_operation(
                "transaction_update",
                transaction_id=transaction.transaction_id,
                product_id=transaction.product_id,
            ) as op,
        ):
            try:
                await self._reconciler.apply_transaction(transaction)
            except LedgerError as exc:
                metrics.listener_events_total.labels(result="ledger_error").inc()
                logger.error("listener_apply_failed", error=str(exc))
                op.set_outcome("ledger_error")
                return False

            try:
                await self._ledger.acknowledge(transaction.transaction_id)
            except Exception:
                logger.exception("listener_acknowledge_failed")

            metrics.listener_events_total.labels(result="applied").inc()
            op.set_outcome("applied")
            logger.info("listener_transaction_processed", product_id=transaction.product_id)
            return True
