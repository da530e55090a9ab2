"""
StoreKit product catalog configuration.

Product IDs must match those configured in the store (or the local
.storekit configuration used by the emulator).
"""

from dataclasses import dataclass

from storekit_entitlements.models.storekit import ProductKind


@dataclass(frozen=True)
class KnownProduct:
    """Locally known product configuration."""

    product_id: str
    kind: ProductKind
    grants_pro: bool  # Owning it unlocks Pro features

    def __post_init__(self) -> None:
        """Validate product configuration."""
        if not self.product_id:
            raise ValueError("Product ID required")
        if self.grants_pro and self.kind is ProductKind.CONSUMABLE:
            raise ValueError("Consumables cannot grant Pro access")


LIFETIME_PRODUCT_ID = "com.myapp.lifetime"
MONTHLY_PRODUCT_ID = "com.myapp.pro.monthly"
YEARLY_PRODUCT_ID = "com.myapp.pro.yearly"
COINS_PRODUCT_ID = "com.myapp.coin.100"

# Monthly and yearly tiers share one subscription group
KNOWN_PRODUCTS: dict[str, KnownProduct] = {
    COINS_PRODUCT_ID: KnownProduct(
        product_id=COINS_PRODUCT_ID,
        kind=ProductKind.CONSUMABLE,
        grants_pro=False,
    ),
    LIFETIME_PRODUCT_ID: KnownProduct(
        product_id=LIFETIME_PRODUCT_ID,
        kind=ProductKind.NON_CONSUMABLE,
        grants_pro=True,
    ),
    MONTHLY_PRODUCT_ID: KnownProduct(
        product_id=MONTHLY_PRODUCT_ID,
        kind=ProductKind.AUTO_RENEWABLE_SUBSCRIPTION,
        grants_pro=True,
    ),
    YEARLY_PRODUCT_ID: KnownProduct(
        product_id=YEARLY_PRODUCT_ID,
        kind=ProductKind.AUTO_RENEWABLE_SUBSCRIPTION,
        grants_pro=True,
    ),
}


def get_known_product(product_id: str) -> KnownProduct:
    """
    Get product configuration by ID.

    Raises:
        ValueError: If product ID not found
    """
    product = KNOWN_PRODUCTS.get(product_id)
    if not product:
        raise ValueError(f"Unknown product ID: {product_id}")
    return product


def known_product_ids() -> frozenset[str]:
    """All product IDs requested from the catalog."""
    return frozenset(KNOWN_PRODUCTS)


def pro_product_ids() -> frozenset[str]:
    """Product IDs whose ownership unlocks Pro features."""
    return frozenset(pid for pid, product in KNOWN_PRODUCTS.items() if product.grants_pro)
