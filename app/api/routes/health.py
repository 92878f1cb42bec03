from fastapi import APIRouter, Depends, Response

from app.api.deps import get_stores
from app.storage.factory import Stores


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, stores: Stores = Depends(get_stores)) -> dict:
    """Readiness probe - returns 503 if the payment store is unavailable."""
    try:
        stores.payments.ping()
        return {"status": "ready"}
    except Exception as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e)}
