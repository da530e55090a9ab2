"""
Verification Gate - single trust boundary for signed store payloads.

NO DICTIONARIES - Downstream code only ever sees typed, verified models.

Transactions and renewal info are compact JWS envelopes. The signature
primitive checks them; the gate turns verified payloads into
VerifiedTransaction / RenewalInfo or raises VerificationFailedError.
"""

from collections.abc import Mapping
from datetime import UTC, datetime

import jwt
from structlog import get_logger

from storekit_entitlements.exceptions import VerificationFailedError
from storekit_entitlements.models.results import Unverified, Verified, VerificationResult
from storekit_entitlements.models.storekit import (
    ProductKind,
    RenewalInfo,
    SignedEnvelope,
    VerifiedTransaction,
)
from storekit_entitlements.services.store_protocols import SignatureVerifier

logger = get_logger(__name__)


class JWSSignatureVerifier:
    """
    Signature primitive backed by PyJWT.

    Checks the JWS signature against the configured key and the bundle
    identity claim. Never raises; failures come back as Unverified.
    """

    def __init__(self, key: str, algorithm: str, bundle_id: str) -> None:
        self._key = key
        self._algorithm = algorithm.upper()
        self._bundle_id = bundle_id

    def verify(self, envelope: SignedEnvelope) -> VerificationResult:
        try:
            payload: dict[str, object] = jwt.decode(
                envelope.jws,
                self._key,
                algorithms=[self._algorithm],
                options={"verify_aud": False},
            )
        except jwt.PyJWTError as exc:
            return Unverified(reason=f"invalid signature: {exc}")

        bundle_id = payload.get("bundleId")
        if bundle_id is None:
            return Unverified(reason="missing bundleId")
        if bundle_id != self._bundle_id:
            return Unverified(reason=f"bundle mismatch: {bundle_id}")

        return Verified(payload=payload)


def _parse_timestamp(ms: object) -> datetime | None:
    """Store timestamps are milliseconds since the epoch."""
    if ms is None:
        return None
    return datetime.fromtimestamp(int(ms) / 1000, tz=UTC)  # type: ignore[call-overload]


def _require_str(data: Mapping[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise VerificationFailedError(f"malformed payload: missing {key}")
    return value


def _require_int(data: Mapping[str, object], key: str) -> int:
    value = data.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise VerificationFailedError(f"malformed payload: missing {key}")
    return value


class VerificationGate:
    """
    Wraps every signed payload before anything downstream may trust it.

    This is the only place VerifiedTransaction is constructed.
    """

    def __init__(self, verifier: SignatureVerifier) -> None:
        self._verifier = verifier

    def _unwrap(self, envelope: SignedEnvelope) -> dict[str, object]:
        result = self._verifier.verify(envelope)
        if isinstance(result, Unverified):
            raise VerificationFailedError(result.reason)
        if isinstance(result, Verified):
            return result.payload
        raise VerificationFailedError(f"unexpected verification result: {type(result).__name__}")

    def verify_transaction(self, envelope: SignedEnvelope) -> VerifiedTransaction:
        """
        Verify a signed transaction.

        Args:
            envelope: Signed transaction from a purchase, the update stream
                or the current-entitlements snapshot

        Returns:
            Verified, typed transaction

        Raises:
            VerificationFailedError: If the signature, identity or payload is invalid
        """
        data = self._unwrap(envelope)

        try:
            kind = ProductKind.from_store_type(_require_str(data, "type"))
        except ValueError as exc:
            raise VerificationFailedError(f"malformed payload: {exc}") from exc

        transaction_id = _require_str(data, "transactionId")
        try:
            purchase_date = _parse_timestamp(data.get("purchaseDate")) or datetime.now(UTC)
            return VerifiedTransaction(
                transaction_id=transaction_id,
                original_transaction_id=str(data.get("originalTransactionId") or transaction_id),
                product_id=_require_str(data, "productId"),
                kind=kind,
                purchase_date=purchase_date,
                signed_envelope=envelope,
                expires_date=_parse_timestamp(data.get("expiresDate")),
                revocation_date=_parse_timestamp(data.get("revocationDate")),
                revocation_reason=data.get("revocationReason"),  # type: ignore[arg-type]
                is_upgraded=bool(data.get("isUpgraded", False)),
                subscription_group_id=data.get("subscriptionGroupIdentifier"),  # type: ignore[arg-type]
                ownership_type=str(data.get("inAppOwnershipType", "PURCHASED")),
                environment=str(data.get("environment", "Production")),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise VerificationFailedError(f"malformed payload: {exc}") from exc

    def verify_renewal_info(self, envelope: SignedEnvelope) -> RenewalInfo:
        """
        Verify signed subscription renewal info.

        Raises:
            VerificationFailedError: If the signature or payload is invalid
        """
        data = self._unwrap(envelope)
        original_transaction_id = _require_str(data, "originalTransactionId")
        product_id = _require_str(data, "productId")
        auto_renew_status = _require_int(data, "autoRenewStatus")
        if auto_renew_status not in (0, 1):
            raise VerificationFailedError(
                f"malformed payload: autoRenewStatus {auto_renew_status}"
            )
        try:
            return RenewalInfo(
                original_transaction_id=original_transaction_id,
                product_id=product_id,
                auto_renew_status=auto_renew_status,
                expiration_intent=data.get("expirationIntent"),  # type: ignore[arg-type]
                grace_period_expires_date=_parse_timestamp(data.get("gracePeriodExpiresDate")),
                is_in_billing_retry_period=bool(data.get("isInBillingRetryPeriod", False)),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise VerificationFailedError(f"malformed payload: {exc}") from exc
