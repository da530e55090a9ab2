"""
Tagged result types - discriminated unions for verification, purchase
outcomes and flow results.

Each union is matched exhaustively with ``isinstance``; nothing is
signalled with ad hoc strings.
"""

from dataclasses import dataclass
from typing import ClassVar

from storekit_entitlements.models.storekit import SignedEnvelope

# ============================================================================
# Verification primitive result
# ============================================================================


@dataclass(frozen=True)
class Verified:
    """Envelope passed signature and identity checks."""

    payload: dict[str, object]


@dataclass(frozen=True)
class Unverified:
    """Envelope failed verification."""

    reason: str


VerificationResult = Verified | Unverified


# ============================================================================
# Purchase primitive outcome
# ============================================================================


@dataclass(frozen=True)
class PurchaseApproved:
    """User approved the payment sheet; the store returned a signed transaction."""

    envelope: SignedEnvelope


@dataclass(frozen=True)
class PurchaseUserCancelled:
    """User dismissed the payment sheet."""


@dataclass(frozen=True)
class PurchasePending:
    """Payment awaits outside action (e.g. parental approval)."""


@dataclass(frozen=True)
class PurchaseUnknown:
    """Outcome the client does not recognise."""

    raw: str = ""


PurchaseOutcome = PurchaseApproved | PurchaseUserCancelled | PurchasePending | PurchaseUnknown


# ============================================================================
# Flow result (returned to the presentation layer)
# ============================================================================


@dataclass(frozen=True)
class FlowSuccess:
    message: str
    status: ClassVar[str] = "success"


@dataclass(frozen=True)
class FlowCancelled:
    message: str
    status: ClassVar[str] = "cancelled"


@dataclass(frozen=True)
class FlowPending:
    message: str
    status: ClassVar[str] = "pending"


@dataclass(frozen=True)
class FlowFailure:
    message: str
    status: ClassVar[str] = "failure"


FlowResult = FlowSuccess | FlowCancelled | FlowPending | FlowFailure
