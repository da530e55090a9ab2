"""
Store Collaborator Protocols - Platform-agnostic interfaces.

NO DICTIONARIES - All data uses strongly typed models.

The catalog, purchase sheet, transaction ledger and signature primitive
are external. Any backend (the HTTP store emulator, an in-memory fake in
tests) must implement these interfaces.
"""

from collections.abc import AsyncIterator
from typing import Protocol

from storekit_entitlements.models.results import PurchaseOutcome, VerificationResult
from storekit_entitlements.models.storekit import (
    ProductDescriptor,
    SignedEnvelope,
    SubscriptionStatusEnvelope,
)


class CatalogClient(Protocol):
    """Product catalog collaborator."""

    async def fetch_products(self, product_ids: frozenset[str]) -> list[ProductDescriptor]:
        """
        Fetch product metadata for the given IDs.

        Raises:
            CatalogFetchError: On network or lookup failure
        """
        ...

    async def is_eligible_for_intro_offer(self, product: ProductDescriptor) -> bool:
        """
        Check whether the user can still redeem the introductory offer.

        Raises:
            EligibilityQueryError: If eligibility cannot be determined
        """
        ...


class PurchaseClient(Protocol):
    """Platform purchase sheet collaborator."""

    async def initiate_purchase(self, product: ProductDescriptor) -> PurchaseOutcome:
        """
        Present the payment sheet and return its tagged outcome.

        May raise any exception; the purchase flow maps it to a failure.
        """
        ...


class LedgerClient(Protocol):
    """Platform transaction ledger collaborator."""

    def stream_transaction_updates(self) -> AsyncIterator[SignedEnvelope]:
        """Push stream of signed transactions, unbounded lifetime."""
        ...

    def current_entitlements(self) -> AsyncIterator[SignedEnvelope]:
        """
        Finite snapshot of the user's current entitlements.

        Raises:
            LedgerError: If the snapshot cannot be read
        """
        ...

    async def acknowledge(self, transaction_id: str) -> None:
        """Finish a transaction so it is not redelivered. Idempotent."""
        ...

    async def sync_with_remote(self) -> None:
        """
        Force a sync with the remote ledger (may prompt re-authentication).

        Raises:
            RestoreSyncError: If the sync fails
        """
        ...

    async def subscription_statuses(self, group_id: str) -> list[SubscriptionStatusEnvelope]:
        """
        Renewal states for a subscription group.

        Raises:
            LedgerError: If statuses cannot be read
        """
        ...


class SignatureVerifier(Protocol):
    """Signature verification primitive."""

    def verify(self, envelope: SignedEnvelope) -> VerificationResult:
        """Return Verified(payload) or Unverified(reason). Never raises."""
        ...
