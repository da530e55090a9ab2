"""
StoreKit domain models - Immutable dataclasses for products and transactions.

NO DICTIONARIES - All data uses strongly typed models.

Transactions and renewal info arrive from the store as JWS (JSON Web
Signature) envelopes and are only turned into these models by the
verification gate.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum, IntEnum


class ProductKind(str, Enum):
    """Product type, valued with the App Store ``type`` strings."""

    CONSUMABLE = "Consumable"
    NON_CONSUMABLE = "Non-Consumable"
    AUTO_RENEWABLE_SUBSCRIPTION = "Auto-Renewable Subscription"

    @classmethod
    def from_store_type(cls, value: str) -> "ProductKind":
        """Map a store ``type`` string to a product kind.

        Non-renewing subscriptions show up in current entitlements exactly
        like non-consumables, so they are routed the same way.
        """
        if value == "Non-Renewing Subscription":
            return cls.NON_CONSUMABLE
        return cls(value)


class OfferPaymentMode(str, Enum):
    """How an introductory or promotional offer is paid."""

    FREE_TRIAL = "FreeTrial"
    PAY_AS_YOU_GO = "PayAsYouGo"
    PAY_UP_FRONT = "PayUpFront"


class SubscriptionState(IntEnum):
    """Subscription status values as reported by the store."""

    UNKNOWN = 0
    SUBSCRIBED = 1
    EXPIRED = 2
    IN_BILLING_RETRY_PERIOD = 3
    IN_GRACE_PERIOD = 4
    REVOKED = 5

    @classmethod
    def from_store_value(cls, value: int) -> "SubscriptionState":
        """Map a raw status value, falling back to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class SignedEnvelope:
    """Opaque signed payload (compact JWS) delivered by the store."""

    jws: str

    def __post_init__(self) -> None:
        """Validate envelope is non-empty."""
        if not self.jws:
            raise ValueError("Signed envelope cannot be empty")


@dataclass(frozen=True)
class SubscriptionOffer:
    """Introductory or promotional subscription offer."""

    payment_mode: OfferPaymentMode
    display_price: str
    period_value: int
    period_unit: str  # "day", "week", "month", "year"
    offer_id: str | None = None  # None for introductory offers

    def __post_init__(self) -> None:
        """Validate offer period."""
        if self.period_value <= 0:
            raise ValueError(f"Offer period must be positive: {self.period_value}")


@dataclass(frozen=True)
class ProductDescriptor:
    """Product metadata fetched from the store catalog.

    Fetched once per session and keyed by ``product_id``.
    """

    product_id: str
    display_name: str
    description: str
    kind: ProductKind
    price: Decimal
    display_price: str
    subscription_group_id: str | None = None
    introductory_offer: SubscriptionOffer | None = None
    promotional_offers: tuple[SubscriptionOffer, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        """Validate product descriptor."""
        if not self.product_id:
            raise ValueError("Product ID required")
        if self.price < 0:
            raise ValueError(f"Price cannot be negative: {self.price}")
        if self.is_subscription() and not self.subscription_group_id:
            raise ValueError(f"Subscription {self.product_id} requires a subscription group")

    def is_subscription(self) -> bool:
        """Check if this is an auto-renewable subscription."""
        return self.kind is ProductKind.AUTO_RENEWABLE_SUBSCRIPTION

    def is_consumable(self) -> bool:
        """Check if this is a consumable product."""
        return self.kind is ProductKind.CONSUMABLE


@dataclass(frozen=True)
class VerifiedTransaction:
    """Verified store transaction.

    Produced only by the verification gate; application code never builds
    one from unverified data.
    """

    transaction_id: str  # Unique transaction identifier (idempotency key)
    original_transaction_id: str  # First transaction in subscription chain
    product_id: str
    kind: ProductKind
    purchase_date: datetime
    signed_envelope: SignedEnvelope

    # Optional fields
    expires_date: datetime | None = None  # For subscriptions
    revocation_date: datetime | None = None  # If refunded or revoked
    revocation_reason: int | None = None  # 0: other, 1: app issue
    is_upgraded: bool = False  # Superseded by a higher tier in the same group
    subscription_group_id: str | None = None
    ownership_type: str = "PURCHASED"  # "PURCHASED" or "FAMILY_SHARED"
    environment: str = "Production"  # "Production", "Sandbox" or "Xcode"


@dataclass(frozen=True)
class RenewalInfo:
    """Verified subscription renewal information."""

    original_transaction_id: str
    product_id: str
    auto_renew_status: int  # 0: off, 1: on
    expiration_intent: int | None = None
    grace_period_expires_date: datetime | None = None
    is_in_billing_retry_period: bool = False

    def will_renew(self) -> bool:
        """Check if subscription will auto-renew."""
        return self.auto_renew_status == 1


@dataclass(frozen=True)
class SubscriptionStatusEnvelope:
    """One subscription status entry for a group, as returned by the ledger."""

    state: SubscriptionState
    signed_renewal_info: SignedEnvelope


@dataclass(frozen=True)
class EntitlementSnapshot:
    """Published, immutable view of what the user currently owns."""

    purchased_product_ids: frozenset[str]
    coin_balance: int
    subscription_status: str

    def owns(self, product_id: str) -> bool:
        """Check if a product is currently owned."""
        return product_id in self.purchased_product_ids
