"""
API Routes - read-only views of the published state plus the two
user-initiated actions (purchase, restore).

NO DICTIONARIES - All responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status

from storekit_entitlements.api.dependencies import get_store_session
from storekit_entitlements.models.api import (
    FlowResultResponse,
    HealthResponse,
    ProductListResponse,
    ProductResponse,
    StatusResponse,
)
from storekit_entitlements.services.session import StoreSession

router = APIRouter()


@router.get("/status", response_model=StatusResponse)
async def get_status(session: StoreSession = Depends(get_store_session)) -> StatusResponse:
    """Owned products, coin balance and subscription status."""
    return StatusResponse.from_snapshot(session.snapshot, is_pro=session.is_pro)


@router.get("/products", response_model=ProductListResponse)
async def list_products(session: StoreSession = Depends(get_store_session)) -> ProductListResponse:
    """Catalog sorted ascending by price, with introductory offer eligibility."""
    snapshot = session.snapshot
    eligibility = session.intro_eligibility
    return ProductListResponse(
        products=[
            ProductResponse.from_descriptor(
                product,
                owned=snapshot.owns(product.product_id),
                intro_offer_eligible=(
                    session.eligibility.is_eligible(product.product_id)
                    if product.product_id in eligibility
                    else None
                ),
                offer_text=session.eligibility.describe_offer(product),
            )
            for product in session.products
        ]
    )


@router.post("/purchases/{product_id}", response_model=FlowResultResponse)
async def purchase_product(
    product_id: str,
    session: StoreSession = Depends(get_store_session),
) -> FlowResultResponse:
    """Run one purchase flow. Always 200; the outcome is in ``status``."""
    result = await session.purchase(product_id)
    return FlowResultResponse.from_result(result)


@router.post("/restore", response_model=FlowResultResponse)
async def restore_purchases(
    session: StoreSession = Depends(get_store_session),
) -> FlowResultResponse:
    """Force a ledger sync and rebuild entitlements."""
    result = await session.restore()
    return FlowResultResponse.from_result(result)


@router.get("/health", response_model=HealthResponse)
async def health_check(session: StoreSession = Depends(get_store_session)) -> HealthResponse:
    """
    Health check for the process supervisor.

    Unhealthy once the transaction listener has stopped: pushed renewals
    and refunds would no longer be applied.
    """
    listener_running = session.listener.is_running
    response = HealthResponse(
        status="healthy" if listener_running else "unhealthy",
        listener="running" if listener_running else "stopped",
        catalog_products=len(session.products),
        timestamp=datetime.now(UTC).isoformat(),
    )
    if not listener_running:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=response.model_dump(),
        )
    return response
