"""
HTTP Store Client - catalog, purchase and ledger collaborators over a
StoreKit-style store emulator REST API.

NO DICTIONARIES - Responses are parsed into typed models at the boundary.

Signed transactions are passed through untouched as SignedEnvelope; this
client never trusts or decodes them. Verification is the gate's job.
"""

import base64
import binascii
import json
import time
from collections.abc import AsyncIterator, Mapping
from decimal import Decimal, InvalidOperation

import httpx
import jwt
from structlog import get_logger

from storekit_entitlements.config import Settings
from storekit_entitlements.exceptions import (
    CatalogFetchError,
    EligibilityQueryError,
    LedgerError,
    RestoreSyncError,
    StoreTransportError,
)
from storekit_entitlements.models.results import (
    PurchaseApproved,
    PurchaseOutcome,
    PurchasePending,
    PurchaseUnknown,
    PurchaseUserCancelled,
)
from storekit_entitlements.models.storekit import (
    OfferPaymentMode,
    ProductDescriptor,
    ProductKind,
    SignedEnvelope,
    SubscriptionOffer,
    SubscriptionState,
    SubscriptionStatusEnvelope,
)

logger = get_logger(__name__)

_TOKEN_LIFETIME_SECONDS = 3600
_TOKEN_REFRESH_BUFFER_SECONDS = 300


def _parse_offer(data: Mapping[str, object]) -> SubscriptionOffer:
    period = data.get("period") or {}
    return SubscriptionOffer(
        payment_mode=OfferPaymentMode(data["paymentMode"]),
        display_price=str(data.get("displayPrice", "")),
        period_value=int(period.get("value", 1)),  # type: ignore[union-attr]
        period_unit=str(period.get("unit", "month")),  # type: ignore[union-attr]
        offer_id=data.get("id"),  # type: ignore[arg-type]
    )


def parse_product(data: Mapping[str, object]) -> ProductDescriptor:
    """Parse one catalog product from the store API."""
    subscription = data.get("subscription") or {}
    intro = subscription.get("introductoryOffer")  # type: ignore[union-attr]
    promos = subscription.get("promotionalOffers") or []  # type: ignore[union-attr]

    return ProductDescriptor(
        product_id=str(data["id"]),
        display_name=str(data.get("displayName", "")),
        description=str(data.get("description", "")),
        kind=ProductKind.from_store_type(str(data["type"])),
        price=Decimal(str(data["price"])),
        display_price=str(data.get("displayPrice", data["price"])),
        subscription_group_id=subscription.get("subscriptionGroupID"),  # type: ignore[union-attr]
        introductory_offer=_parse_offer(intro) if intro else None,
        promotional_offers=tuple(_parse_offer(offer) for offer in promos),
    )


class HttpStoreClient:
    """
    Store emulator client implementing CatalogClient, PurchaseClient and
    LedgerClient.

    Authenticates with a short-lived bearer JWT when a signing key is
    configured.
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize store client.

        Args:
            settings: Store URL, timeout and API credentials
            transport: Optional transport override (e.g. httpx.MockTransport)
        """
        self.settings = settings
        self._jwt_token: str | None = None
        self._jwt_expires_at: float = 0
        self._client = httpx.AsyncClient(
            base_url=settings.store_base_url,
            timeout=settings.store_request_timeout,
            transport=transport,
        )

        logger.info("http_store_client_initialized", base_url=settings.store_base_url)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _generate_jwt(self) -> str | None:
        """Bearer token for the store API, reused until close to expiry."""
        if not self.settings.store_api_private_key:
            return None

        now = time.time()
        if self._jwt_token and now < (self._jwt_expires_at - _TOKEN_REFRESH_BUFFER_SECONDS):
            return self._jwt_token

        private_key = self.settings.store_api_private_key
        try:
            private_key = base64.b64decode(private_key, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            pass  # Already plain text

        expires_at = now + _TOKEN_LIFETIME_SECONDS
        payload = {
            "iss": self.settings.store_api_issuer_id,
            "iat": int(now),
            "exp": int(expires_at),
            "aud": "appstoreconnect-v1",
            "bid": self.settings.bundle_id,
        }

        token = jwt.encode(
            payload,
            private_key,
            algorithm=self.settings.store_api_algorithm,
            headers={"kid": self.settings.store_api_key_id},
        )

        self._jwt_token = token
        self._jwt_expires_at = expires_at
        return token

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._generate_jwt()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        **kwargs: object,
    ) -> dict[str, object]:
        """Make authenticated request to the store API."""
        try:
            response = await self._client.request(
                method,
                endpoint,
                headers=self._headers(),
                **kwargs,  # type: ignore[arg-type]
            )
        except httpx.HTTPError as exc:
            raise StoreTransportError(f"{method} {endpoint}: {exc}") from exc

        if response.status_code == 401:
            raise StoreTransportError("Invalid API credentials", status_code=401)
        elif response.status_code == 404:
            raise StoreTransportError(f"Not found: {endpoint}", status_code=404)
        elif response.status_code >= 400:
            logger.error(
                "store_api_error",
                endpoint=endpoint,
                status=response.status_code,
                error=response.text,
            )
            raise StoreTransportError(
                f"API error: {response.status_code}", status_code=response.status_code
            )

        if not response.content:
            return {}
        try:
            result: dict[str, object] = response.json()
        except json.JSONDecodeError as exc:
            raise StoreTransportError(f"Invalid JSON from {endpoint}") from exc
        return result

    # ========================================================================
    # CatalogClient
    # ========================================================================

    async def fetch_products(self, product_ids: frozenset[str]) -> list[ProductDescriptor]:
        logger.info("fetching_store_products", count=len(product_ids))
        try:
            result = await self._make_request(
                "GET", "/v1/products", params={"ids": sorted(product_ids)}
            )
            raw_products = result.get("products", [])
            return [parse_product(item) for item in raw_products]  # type: ignore[union-attr]
        except StoreTransportError as exc:
            raise CatalogFetchError(exc.message) from exc
        except (AttributeError, KeyError, TypeError, ValueError, InvalidOperation) as exc:
            raise CatalogFetchError(f"Invalid product data: {exc}") from exc

    async def is_eligible_for_intro_offer(self, product: ProductDescriptor) -> bool:
        try:
            result = await self._make_request(
                "GET", f"/v1/products/{product.product_id}/intro-eligibility"
            )
        except StoreTransportError as exc:
            raise EligibilityQueryError(product.product_id, exc.message) from exc

        eligible = result.get("eligible")
        if not isinstance(eligible, bool):
            raise EligibilityQueryError(product.product_id, "missing eligibility flag")
        return eligible

    # ========================================================================
    # PurchaseClient
    # ========================================================================

    async def initiate_purchase(self, product: ProductDescriptor) -> PurchaseOutcome:
        """
        Raises:
            StoreTransportError: If the purchase request fails
        """
        result = await self._make_request(
            "POST", "/v1/purchases", json={"productId": product.product_id}
        )
        status = str(result.get("status", ""))

        if status == "success":
            signed = result.get("signedTransaction")
            if not signed:
                return PurchaseUnknown(raw="success without signedTransaction")
            return PurchaseApproved(envelope=SignedEnvelope(jws=str(signed)))
        if status == "userCancelled":
            return PurchaseUserCancelled()
        if status == "pending":
            return PurchasePending()
        return PurchaseUnknown(raw=status)

    # ========================================================================
    # LedgerClient
    # ========================================================================

    async def current_entitlements(self) -> AsyncIterator[SignedEnvelope]:
        try:
            result = await self._make_request("GET", "/v1/entitlements")
        except StoreTransportError as exc:
            raise LedgerError(exc.message) from exc

        for signed in result.get("signedTransactions", []):  # type: ignore[union-attr]
            if signed:
                yield SignedEnvelope(jws=str(signed))

    async def stream_transaction_updates(self) -> AsyncIterator[SignedEnvelope]:
        """
        Newline-delimited JSON stream; each line carries one signedTransaction.

        Raises:
            StoreTransportError: If the stream cannot be opened or breaks
        """
        timeout = httpx.Timeout(self.settings.store_request_timeout, read=None)
        try:
            async with self._client.stream(
                "GET", "/v1/transactions/updates", headers=self._headers(), timeout=timeout
            ) as response:
                if response.status_code >= 400:
                    raise StoreTransportError(
                        f"Update stream rejected: {response.status_code}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        signed = json.loads(line).get("signedTransaction")
                    except (json.JSONDecodeError, AttributeError):
                        logger.warning("transaction_update_unparseable", preview=line[:80])
                        continue
                    if signed:
                        yield SignedEnvelope(jws=str(signed))
        except httpx.HTTPError as exc:
            raise StoreTransportError(f"Update stream failed: {exc}") from exc

    async def acknowledge(self, transaction_id: str) -> None:
        await self._make_request("POST", f"/v1/transactions/{transaction_id}/finish")
        logger.info("store_transaction_finished", transaction_id=transaction_id)

    async def sync_with_remote(self) -> None:
        try:
            await self._make_request("POST", "/v1/sync")
        except StoreTransportError as exc:
            raise RestoreSyncError(exc.message) from exc

    async def subscription_statuses(self, group_id: str) -> list[SubscriptionStatusEnvelope]:
        try:
            result = await self._make_request("GET", f"/v1/subscriptions/{group_id}/statuses")
        except StoreTransportError as exc:
            raise LedgerError(exc.message) from exc

        statuses: list[SubscriptionStatusEnvelope] = []
        for item in result.get("statuses", []):  # type: ignore[union-attr]
            signed_renewal = item.get("signedRenewalInfo")
            if not signed_renewal:
                continue
            statuses.append(
                SubscriptionStatusEnvelope(
                    state=SubscriptionState.from_store_value(int(item.get("state", 0))),
                    signed_renewal_info=SignedEnvelope(jws=str(signed_renewal)),
                )
            )
        return statuses
