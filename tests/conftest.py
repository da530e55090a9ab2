"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes and fixtures for testing:
- Signed envelope factories (HS256 JWS, same shape as store payloads)
- In-memory catalog, purchase and ledger collaborators
- Verification gate, reconciler and session wired over the fakes
"""

import asyncio
import os
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from itertools import count

import jwt
import pytest

# Set required environment variables BEFORE importing package modules
TEST_VERIFICATION_KEY = "test-verification-secret-at-least-32-bytes"
TEST_BUNDLE_ID = "com.myapp.storekitdemo"
os.environ.setdefault("VERIFICATION_KEY", TEST_VERIFICATION_KEY)
os.environ.setdefault("VERIFICATION_ALGORITHM", "HS256")
os.environ.setdefault("BUNDLE_ID", TEST_BUNDLE_ID)
os.environ.setdefault("LISTENER_RETRY_DELAY_SECONDS", "0.01")
os.environ.setdefault("LOG_FORMAT", "console")

from storekit_entitlements.config import Settings, get_settings
from storekit_entitlements.models.results import PurchaseApproved, PurchaseOutcome
from storekit_entitlements.models.storekit import (
    OfferPaymentMode,
    ProductDescriptor,
    ProductKind,
    SignedEnvelope,
    SubscriptionOffer,
    SubscriptionState,
    SubscriptionStatusEnvelope,
)
from storekit_entitlements.services.classifier import TransactionClassifier
from storekit_entitlements.services.products import (
    COINS_PRODUCT_ID,
    LIFETIME_PRODUCT_ID,
    MONTHLY_PRODUCT_ID,
    YEARLY_PRODUCT_ID,
)
from storekit_entitlements.services.reconciler import EntitlementReconciler
from storekit_entitlements.services.session import StoreSession
from storekit_entitlements.services.verification import JWSSignatureVerifier, VerificationGate

SUBSCRIPTION_GROUP_ID = "21482456"

_transaction_ids = count(2000000000000001)


def _ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


# ============================================================================
# Signed Envelope Factories
# ============================================================================


def sign_payload(payload: dict[str, object], key: str = TEST_VERIFICATION_KEY) -> SignedEnvelope:
    """Sign a payload as an HS256 compact JWS."""
    return SignedEnvelope(jws=jwt.encode(payload, key, algorithm="HS256"))


def make_signed_transaction(
    product_id: str,
    kind: ProductKind,
    transaction_id: str | None = None,
    revocation_date: datetime | None = None,
    is_upgraded: bool = False,
    key: str = TEST_VERIFICATION_KEY,
    bundle_id: str = TEST_BUNDLE_ID,
) -> SignedEnvelope:
    """Build a signed transaction shaped like a store JWS payload."""
    tx_id = transaction_id or str(next(_transaction_ids))
    now = datetime.now(UTC)
    payload: dict[str, object] = {
        "transactionId": tx_id,
        "originalTransactionId": tx_id,
        "productId": product_id,
        "bundleId": bundle_id,
        "type": kind.value,
        "purchaseDate": _ms(now),
        "environment": "Xcode",
        "inAppOwnershipType": "PURCHASED",
    }
    if kind is ProductKind.AUTO_RENEWABLE_SUBSCRIPTION:
        payload["subscriptionGroupIdentifier"] = SUBSCRIPTION_GROUP_ID
        payload["expiresDate"] = _ms(now + timedelta(days=30))
    if revocation_date is not None:
        payload["revocationDate"] = _ms(revocation_date)
        payload["revocationReason"] = 0
    if is_upgraded:
        payload["isUpgraded"] = True
    return sign_payload(payload, key=key)


def make_signed_renewal(
    product_id: str,
    auto_renew: bool = True,
    original_transaction_id: str = "2000000000000001",
) -> SignedEnvelope:
    return sign_payload(
        {
            "originalTransactionId": original_transaction_id,
            "productId": product_id,
            "bundleId": TEST_BUNDLE_ID,
            "autoRenewStatus": 1 if auto_renew else 0,
            "isInBillingRetryPeriod": False,
        }
    )


def unverifiable_envelope(product_id: str = LIFETIME_PRODUCT_ID) -> SignedEnvelope:
    """Well-formed JWS signed with the wrong key."""
    return make_signed_transaction(
        product_id, ProductKind.NON_CONSUMABLE, key="forged-key-that-is-also-32-bytes-long!!"
    )


@pytest.fixture
def signed_transaction() -> Callable[..., SignedEnvelope]:
    return make_signed_transaction


@pytest.fixture
def signed_renewal() -> Callable[..., SignedEnvelope]:
    return make_signed_renewal


@pytest.fixture
def forged_transaction() -> Callable[..., SignedEnvelope]:
    return unverifiable_envelope


# ============================================================================
# Catalog Fixtures
# ============================================================================


def build_products() -> list[ProductDescriptor]:
    """The four demo products, deliberately not in price order."""
    return [
        ProductDescriptor(
            product_id=YEARLY_PRODUCT_ID,
            display_name="Pro Yearly",
            description="All Pro features, billed yearly",
            kind=ProductKind.AUTO_RENEWABLE_SUBSCRIPTION,
            price=Decimal("68.00"),
            display_price="$68.00",
            subscription_group_id=SUBSCRIPTION_GROUP_ID,
        ),
        ProductDescriptor(
            product_id=COINS_PRODUCT_ID,
            display_name="100 Coins",
            description="Spend coins in the app",
            kind=ProductKind.CONSUMABLE,
            price=Decimal("0.99"),
            display_price="$0.99",
        ),
        ProductDescriptor(
            product_id=LIFETIME_PRODUCT_ID,
            display_name="Lifetime",
            description="Unlock Pro forever",
            kind=ProductKind.NON_CONSUMABLE,
            price=Decimal("98.00"),
            display_price="$98.00",
        ),
        ProductDescriptor(
            product_id=MONTHLY_PRODUCT_ID,
            display_name="Pro Monthly",
            description="All Pro features, billed monthly",
            kind=ProductKind.AUTO_RENEWABLE_SUBSCRIPTION,
            price=Decimal("6.00"),
            display_price="$6.00",
            subscription_group_id=SUBSCRIPTION_GROUP_ID,
            introductory_offer=SubscriptionOffer(
                payment_mode=OfferPaymentMode.FREE_TRIAL,
                display_price="$0.00",
                period_value=1,
                period_unit="week",
            ),
        ),
    ]


@pytest.fixture
def products() -> list[ProductDescriptor]:
    return build_products()


@pytest.fixture
def product_by_id(products: list[ProductDescriptor]) -> dict[str, ProductDescriptor]:
    return {product.product_id: product for product in products}


# ============================================================================
# Fake Collaborators
# ============================================================================


class FakeCatalogClient:
    """In-memory catalog collaborator."""

    def __init__(self, products: list[ProductDescriptor]) -> None:
        self.products = products
        self.eligibility: dict[str, bool] = {}
        self.fetch_error: Exception | None = None
        self.eligibility_error: Exception | None = None
        self.requested_ids: frozenset[str] | None = None

    async def fetch_products(self, product_ids: frozenset[str]) -> list[ProductDescriptor]:
        self.requested_ids = product_ids
        if self.fetch_error is not None:
            raise self.fetch_error
        return [product for product in self.products if product.product_id in product_ids]

    async def is_eligible_for_intro_offer(self, product: ProductDescriptor) -> bool:
        if self.eligibility_error is not None:
            raise self.eligibility_error
        return self.eligibility.get(product.product_id, True)


class FakePurchaseClient:
    """Scripted purchase sheet."""

    def __init__(self) -> None:
        self.outcome: PurchaseOutcome | None = None
        self.error: Exception | None = None
        self.purchased: list[str] = []

    async def initiate_purchase(self, product: ProductDescriptor) -> PurchaseOutcome:
        self.purchased.append(product.product_id)
        if self.error is not None:
            raise self.error
        assert self.outcome is not None, "test must script an outcome"
        return self.outcome


class FakeLedger:
    """
    In-memory transaction ledger.

    ``entitlements`` is the current-entitlements snapshot; ``snapshots``
    (if non-empty) is consumed one per read instead. ``updates`` feeds the
    push stream.
    """

    def __init__(self) -> None:
        self.entitlements: list[SignedEnvelope] = []
        self.snapshots: list[list[SignedEnvelope]] = []
        self.statuses: dict[str, list[SubscriptionStatusEnvelope]] = {}
        self.updates: asyncio.Queue[SignedEnvelope] = asyncio.Queue()
        self.acknowledged: list[str] = []
        self.entitlements_error: Exception | None = None
        self.sync_error: Exception | None = None
        self.status_error: Exception | None = None
        self.acknowledge_error: Exception | None = None
        self.sync_calls = 0
        self.entitlement_reads = 0
        self.read_delays: list[float] = []
        self.events: list[str] = []

    def set_subscription_status(
        self,
        product_id: str,
        state: SubscriptionState = SubscriptionState.SUBSCRIBED,
        auto_renew: bool = True,
    ) -> None:
        self.statuses[SUBSCRIPTION_GROUP_ID] = [
            SubscriptionStatusEnvelope(
                state=state,
                signed_renewal_info=make_signed_renewal(product_id, auto_renew=auto_renew),
            )
        ]

    async def stream_transaction_updates(self) -> AsyncIterator[SignedEnvelope]:
        while True:
            yield await self.updates.get()

    async def current_entitlements(self) -> AsyncIterator[SignedEnvelope]:
        self.entitlement_reads += 1
        if self.entitlements_error is not None:
            raise self.entitlements_error
        entries = self.snapshots.pop(0) if self.snapshots else list(self.entitlements)
        self.events.append(f"read:{len(entries)}")
        for entry in entries:
            if self.read_delays:
                await asyncio.sleep(self.read_delays.pop(0))
            yield entry

    async def acknowledge(self, transaction_id: str) -> None:
        self.events.append(f"ack:{transaction_id}")
        if self.acknowledge_error is not None:
            raise self.acknowledge_error
        self.acknowledged.append(transaction_id)

    async def sync_with_remote(self) -> None:
        self.sync_calls += 1
        if self.sync_error is not None:
            raise self.sync_error

    async def subscription_statuses(self, group_id: str) -> list[SubscriptionStatusEnvelope]:
        if self.status_error is not None:
            raise self.status_error
        return self.statuses.get(group_id, [])


@pytest.fixture
def catalog_client(products: list[ProductDescriptor]) -> FakeCatalogClient:
    return FakeCatalogClient(products)


@pytest.fixture
def purchase_client() -> FakePurchaseClient:
    return FakePurchaseClient()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def ledger_factory() -> type[FakeLedger]:
    return FakeLedger


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    return get_settings()


@pytest.fixture
def gate() -> VerificationGate:
    return VerificationGate(
        JWSSignatureVerifier(key=TEST_VERIFICATION_KEY, algorithm="HS256", bundle_id=TEST_BUNDLE_ID)
    )


@pytest.fixture
def classifier() -> TransactionClassifier:
    return TransactionClassifier()


@pytest.fixture
def reconciler(
    ledger: FakeLedger, gate: VerificationGate, classifier: TransactionClassifier
) -> EntitlementReconciler:
    return EntitlementReconciler(ledger=ledger, gate=gate, classifier=classifier)


@pytest.fixture
def store_session(
    catalog_client: FakeCatalogClient,
    purchase_client: FakePurchaseClient,
    ledger: FakeLedger,
    test_settings: Settings,
) -> StoreSession:
    return StoreSession(
        catalog_client=catalog_client,
        purchase_client=purchase_client,
        ledger=ledger,
        settings=test_settings,
    )


@pytest.fixture
def approve_purchase(
    purchase_client: FakePurchaseClient, ledger: FakeLedger
) -> Callable[..., SignedEnvelope]:
    """
    Script an approved purchase; non-consumables also land in the ledger's
    current entitlements, as the store does.
    """

    def _approve(product_id: str, kind: ProductKind, transaction_id: str | None = None) -> SignedEnvelope:
        envelope = make_signed_transaction(product_id, kind, transaction_id=transaction_id)
        purchase_client.outcome = PurchaseApproved(envelope=envelope)
        if kind is not ProductKind.CONSUMABLE:
            ledger.entitlements.append(envelope)
        return envelope

    return _approve
