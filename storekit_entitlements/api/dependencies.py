"""
FastAPI Dependencies - access to the running store session.
"""

from fastapi import HTTPException, Request, status

from storekit_entitlements.services.session import StoreSession


def get_store_session(request: Request) -> StoreSession:
    """
    FastAPI dependency returning the session created by the app lifespan.

    Raises:
        HTTPException: 503 if the session has not started
    """
    session: StoreSession | None = getattr(request.app.state, "store_session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Store session not started",
        )
    return session
