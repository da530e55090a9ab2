"""
Introductory Offer Eligibility Cache.

Refreshed once per catalog load; read by the presentation layer only.
"""

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from structlog import get_logger

from storekit_entitlements.exceptions import EligibilityQueryError
from storekit_entitlements.models.storekit import OfferPaymentMode, ProductDescriptor
from storekit_entitlements.services.store_protocols import CatalogClient

logger = get_logger(__name__)


class IntroEligibilityCache:
    """
    Per-product flag for whether the introductory offer is still available.

    A stored ``None`` means "not yet determined" (the query failed);
    ``is_eligible`` resolves it with the configured policy.
    """

    def __init__(self, catalog: CatalogClient, optimistic: bool = True) -> None:
        """
        Args:
            catalog: Catalog collaborator that answers eligibility queries
            optimistic: Treat undetermined eligibility as eligible
        """
        self._catalog = catalog
        self._optimistic = optimistic
        self._eligibility: Mapping[str, bool | None] = MappingProxyType({})

    async def refresh(self, products: Iterable[ProductDescriptor]) -> Mapping[str, bool | None]:
        """Query eligibility for every subscription with an introductory offer."""
        fresh: dict[str, bool | None] = {}
        for product in products:
            if not product.is_subscription() or product.introductory_offer is None:
                continue
            fresh[product.product_id] = await self._query(product)

        self._eligibility = MappingProxyType(fresh)
        logger.info("intro_eligibility_refreshed", products=len(fresh))
        return self._eligibility

    async def _query(self, product: ProductDescriptor) -> bool | None:
        try:
            return await self._catalog.is_eligible_for_intro_offer(product)
        except Exception as exc:
            error = (
                exc
                if isinstance(exc, EligibilityQueryError)
                else EligibilityQueryError(product.product_id, str(exc))
            )
            logger.warning("intro_eligibility_query_failed", error=str(error))
            return None

    def snapshot(self) -> Mapping[str, bool | None]:
        """Read-only view of the raw cache."""
        return self._eligibility

    def is_determined(self, product_id: str) -> bool:
        return self._eligibility.get(product_id) is not None

    def is_eligible(self, product_id: str) -> bool:
        """
        Eligibility with the fallback policy applied.

        Products without a cached entry (no intro offer) are not eligible.
        """
        if product_id not in self._eligibility:
            return False
        value = self._eligibility[product_id]
        if value is None:
            return self._optimistic
        return value

    def describe_offer(self, product: ProductDescriptor) -> str | None:
        """Offer text for a subscription, or None if it has no intro offer."""
        offer = product.introductory_offer
        if not product.is_subscription() or offer is None:
            return None

        if not self.is_eligible(product.product_id):
            return f"Regular price: {product.display_price}"

        unit = offer.period_unit if offer.period_value == 1 else f"{offer.period_unit}s"
        if offer.payment_mode is OfferPaymentMode.FREE_TRIAL:
            return f"Free trial: {offer.period_value} {unit}"
        return f"Intro price: {offer.display_price} for {offer.period_value} {unit}"
