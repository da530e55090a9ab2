"""
Metrics Collection with Prometheus.

Exposes entitlement and purchase-flow metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from storekit_entitlements.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    KIND = "kind"
    SOURCE = "source"
    OUTCOME = "outcome"
    RESULT = "result"


class StoreMetrics:
    """
    Centralized metrics for the entitlement manager.

    Covers:
    - Transactions applied (by kind, duplicate or granted)
    - Verification failures (by source)
    - Reconciliation passes (rate, duration, result)
    - Purchase and restore flow outcomes
    - Published state (coin balance, entitled products)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "storekit_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # Transaction Metrics
        # ====================================================================
        self.transactions_applied_total = Counter(
            "storekit_transactions_applied_total",
            "Total verified transactions applied",
            [MetricLabels.KIND, MetricLabels.RESULT],
        )

        self.verification_failures_total = Counter(
            "storekit_verification_failures_total",
            "Total signed envelopes rejected by the verification gate",
            [MetricLabels.SOURCE],
        )

        self.listener_events_total = Counter(
            "storekit_listener_events_total",
            "Total transaction update events received by the listener",
            [MetricLabels.RESULT],
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.reconciliation_passes_total = Counter(
            "storekit_reconciliation_passes_total",
            "Total ledger reconciliation passes",
            [MetricLabels.RESULT],
        )

        self.reconciliation_duration_seconds = Histogram(
            "storekit_reconciliation_duration_seconds",
            "Ledger reconciliation pass duration in seconds",
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
        )

        self.reconciliation_entries_skipped_total = Counter(
            "storekit_reconciliation_entries_skipped_total",
            "Ledger entries skipped during reconciliation",
            ["reason"],
        )

        # ====================================================================
        # Flow Metrics
        # ====================================================================
        self.flow_outcomes_total = Counter(
            "storekit_flow_outcomes_total",
            "Purchase and restore flow outcomes",
            ["flow", MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Published State
        # ====================================================================
        self.coin_balance = Gauge(
            "storekit_coin_balance",
            "Current coin balance",
        )

        self.entitled_products = Gauge(
            "storekit_entitled_products",
            "Number of currently owned non-consumable/subscription products",
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_transaction(self, kind: str, result: str) -> None:
        """Record an applied transaction."""
        self.transactions_applied_total.labels(kind=kind, result=result).inc()

    def record_verification_failure(self, source: str) -> None:
        """Record a rejected envelope."""
        self.verification_failures_total.labels(source=source).inc()

    def record_reconciliation(self, result: str, duration: float) -> None:
        """Record a reconciliation pass."""
        self.reconciliation_passes_total.labels(result=result).inc()
        self.reconciliation_duration_seconds.observe(duration)

    def record_skipped_entry(self, reason: str) -> None:
        """Record a ledger entry skipped during reconciliation."""
        self.reconciliation_entries_skipped_total.labels(reason=reason).inc()

    def record_flow(self, flow: str, outcome: str) -> None:
        """Record a purchase or restore outcome."""
        self.flow_outcomes_total.labels(flow=flow, outcome=outcome).inc()

    def record_state(self, coin_balance: int, entitled_products: int) -> None:
        """Record the published state."""
        self.coin_balance.set(coin_balance)
        self.entitled_products.set(entitled_products)


# Global metrics instance
metrics = StoreMetrics()
