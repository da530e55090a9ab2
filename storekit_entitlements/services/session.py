"""
Store Session - dependency-injection root for one process session.

Builds exactly one reconciler and hands it to the listener and the
purchase flow controller; nothing reaches for a shared global.
"""

from collections.abc import Mapping

from structlog import get_logger

from storekit_entitlements.config import Settings
from storekit_entitlements.exceptions import LedgerError
from storekit_entitlements.models.results import FlowFailure, FlowResult
from storekit_entitlements.models.storekit import EntitlementSnapshot, ProductDescriptor
from storekit_entitlements.services.catalog import ProductCatalog
from storekit_entitlements.services.classifier import TransactionClassifier
from storekit_entitlements.services.eligibility import IntroEligibilityCache
from storekit_entitlements.services.listener import TransactionListener
from storekit_entitlements.services.products import known_product_ids, pro_product_ids
from storekit_entitlements.services.purchase_flow import PurchaseFlowController
from storekit_entitlements.services.reconciler import EntitlementReconciler
from storekit_entitlements.services.store_protocols import (
    CatalogClient,
    LedgerClient,
    PurchaseClient,
    SignatureVerifier,
)
from storekit_entitlements.services.verification import JWSSignatureVerifier, VerificationGate

logger = get_logger(__name__)


class StoreSession:
    """
    Wires the entitlement components over the platform collaborators.

    Lifecycle: ``start`` (listener, then catalog → eligibility → initial
    reconciliation), then purchases/restores, then ``close``.
    """

    def __init__(
        self,
        catalog_client: CatalogClient,
        purchase_client: PurchaseClient,
        ledger: LedgerClient,
        settings: Settings,
        verifier: SignatureVerifier | None = None,
        classifier: TransactionClassifier | None = None,
    ) -> None:
        if verifier is None:
            verifier = JWSSignatureVerifier(
                key=settings.verification_key,
                algorithm=settings.verification_algorithm,
                bundle_id=settings.bundle_id,
            )

        self.gate = VerificationGate(verifier)
        self.classifier = classifier or TransactionClassifier()
        self.reconciler = EntitlementReconciler(
            ledger=ledger,
            gate=self.gate,
            classifier=self.classifier,
            coin_grant_amount=settings.coin_grant_amount,
        )
        self.catalog = ProductCatalog(catalog_client, known_product_ids())
        self.eligibility = IntroEligibilityCache(
            catalog_client, optimistic=settings.optimistic_intro_eligibility
        )
        self.flows = PurchaseFlowController(
            purchases=purchase_client,
            ledger=ledger,
            gate=self.gate,
            reconciler=self.reconciler,
        )
        self.listener = TransactionListener(
            ledger=ledger,
            gate=self.gate,
            reconciler=self.reconciler,
            retry_delay_seconds=settings.listener_retry_delay_seconds,
        )

    @property
    def snapshot(self) -> EntitlementSnapshot:
        return self.reconciler.snapshot

    @property
    def products(self) -> tuple[ProductDescriptor, ...]:
        return self.catalog.products

    @property
    def intro_eligibility(self) -> Mapping[str, bool | None]:
        return self.eligibility.snapshot()

    @property
    def is_pro(self) -> bool:
        """Any lifetime or subscription tier unlocks Pro."""
        return bool(self.snapshot.purchased_product_ids & pro_product_ids())

    async def start(self) -> None:
        """Start listening for transactions, then load the store."""
        self.listener.start()
        await self.load_store()

    async def load_store(self) -> None:
        """Catalog → eligibility → initial reconciliation pull."""
        products = await self.catalog.refresh()
        await self.eligibility.refresh(products)
        try:
            await self.reconciler.refresh_from_ledger()
        except LedgerError as exc:
            logger.error("initial_reconciliation_failed", error=str(exc))

    async def purchase(self, product_id: str) -> FlowResult:
        product = self.catalog.get(product_id)
        if product is None:
            logger.warning("purchase_unknown_product", product_id=product_id)
            return FlowFailure(message=f"Product not available: {product_id}")
        return await self.flows.purchase(product)

    async def restore(self) -> FlowResult:
        return await self.flows.restore()

    async def close(self) -> None:
        """Stop the listener. State lives only for the session."""
        await self.listener.stop()
        logger.info("store_session_closed")
