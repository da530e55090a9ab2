"""
API Models - Pydantic models for the presentation adapter responses.

NO DICTIONARIES - All data structures are strongly typed.
"""

from typing import Literal

from pydantic import BaseModel, Field

from storekit_entitlements.models.results import FlowResult
from storekit_entitlements.models.storekit import EntitlementSnapshot, ProductDescriptor


class StatusResponse(BaseModel):
    """GET /status response - the published entitlement snapshot."""

    purchased_product_ids: list[str] = Field(..., description="Owned non-consumables/subscriptions")
    coin_balance: int = Field(..., ge=0)
    subscription_status: str
    is_pro: bool

    @classmethod
    def from_snapshot(cls, snapshot: EntitlementSnapshot, is_pro: bool) -> "StatusResponse":
        return cls(
            purchased_product_ids=sorted(snapshot.purchased_product_ids),
            coin_balance=snapshot.coin_balance,
            subscription_status=snapshot.subscription_status,
            is_pro=is_pro,
        )


class ProductResponse(BaseModel):
    """One catalog entry with its offer eligibility."""

    product_id: str
    display_name: str
    description: str
    kind: str
    display_price: str
    owned: bool
    intro_offer_eligible: bool | None = Field(
        None, description="None when the product has no introductory offer"
    )
    offer_text: str | None = None

    @classmethod
    def from_descriptor(
        cls,
        product: ProductDescriptor,
        owned: bool,
        intro_offer_eligible: bool | None,
        offer_text: str | None,
    ) -> "ProductResponse":
        return cls(
            product_id=product.product_id,
            display_name=product.display_name,
            description=product.description,
            kind=product.kind.value,
            display_price=product.display_price,
            owned=owned,
            intro_offer_eligible=intro_offer_eligible,
            offer_text=offer_text,
        )


class ProductListResponse(BaseModel):
    """GET /products response, sorted ascending by price."""

    products: list[ProductResponse]


class FlowResultResponse(BaseModel):
    """POST /purchases/{product_id} and POST /restore response."""

    status: Literal["success", "cancelled", "pending", "failure"]
    message: str

    @classmethod
    def from_result(cls, result: FlowResult) -> "FlowResultResponse":
        return cls(status=result.status, message=result.message)  # type: ignore[arg-type]


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    listener: Literal["running", "stopped"]
    catalog_products: int = Field(..., ge=0)
    timestamp: str
