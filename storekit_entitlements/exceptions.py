"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class StoreError(Exception):
    """Base exception for all store and entitlement errors."""

    pass


class VerificationFailedError(StoreError):
    """Raised when a signed envelope cannot be trusted.

    Always fatal to the single transaction, never to the process.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Verification failed: {reason}")


class CatalogFetchError(StoreError):
    """Raised when the product catalog cannot be loaded."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Catalog fetch failed: {message}")


class PurchaseError(StoreError):
    """Raised when the platform purchase primitive fails."""

    def __init__(self, product_id: str, message: str) -> None:
        self.product_id = product_id
        self.message = message
        super().__init__(f"Purchase of {product_id} failed: {message}")


class RestoreSyncError(StoreError):
    """Raised when a forced sync with the remote ledger fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Restore sync failed: {message}")


class EligibilityQueryError(StoreError):
    """Raised when introductory offer eligibility cannot be determined."""

    def __init__(self, product_id: str, message: str) -> None:
        self.product_id = product_id
        self.message = message
        super().__init__(f"Eligibility query for {product_id} failed: {message}")


class LedgerError(StoreError):
    """Raised when the transaction ledger cannot be read."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Ledger error: {message}")


class StoreTransportError(StoreError):
    """Raised when the store API returns an error or is unreachable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Store transport error: {message}")
