"""
Product Catalog - session copy of the store's product metadata.

Written once per refresh as a whole tuple, read by everyone else.
"""

from structlog import get_logger

from storekit_entitlements.exceptions import CatalogFetchError
from storekit_entitlements.models.storekit import ProductDescriptor
from storekit_entitlements.services.store_protocols import CatalogClient

logger = get_logger(__name__)


class ProductCatalog:
    """Loaded products, sorted ascending by price."""

    def __init__(self, client: CatalogClient, product_ids: frozenset[str]) -> None:
        self._client = client
        self._product_ids = product_ids
        self._products: tuple[ProductDescriptor, ...] = ()

    @property
    def products(self) -> tuple[ProductDescriptor, ...]:
        return self._products

    def get(self, product_id: str) -> ProductDescriptor | None:
        for product in self._products:
            if product.product_id == product_id:
                return product
        return None

    async def refresh(self) -> tuple[ProductDescriptor, ...]:
        """
        Fetch the catalog.

        On failure the previous (possibly empty) catalog is kept, so the
        presentation shows a stale or empty store and the user can retry.
        """
        try:
            fetched = await self._client.fetch_products(self._product_ids)
        except Exception as exc:
            error = exc if isinstance(exc, CatalogFetchError) else CatalogFetchError(str(exc))
            logger.error("catalog_fetch_failed", error=str(error), kept=len(self._products))
            return self._products

        self._products = tuple(sorted(fetched, key=lambda product: product.price))

        missing = self._product_ids - {product.product_id for product in self._products}
        for product in self._products:
            logger.info(
                "catalog_product_loaded",
                product_id=product.product_id,
                display_name=product.display_name,
                display_price=product.display_price,
            )
        if missing:
            logger.warning("catalog_products_missing", product_ids=sorted(missing))

        return self._products
