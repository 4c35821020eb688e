from fastapi import APIRouter, Depends

from app.api.deps import get_container
from app.core.container import AppContainer
from app.core.errors import APIError, PersistenceError

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
async def readiness(container: AppContainer = Depends(get_container)) -> dict[str, str]:
    try:
        container.store.ping()
    except PersistenceError as exc:
        raise APIError("store_unavailable", "Movie store is unreachable", status_code=503) from exc
    return {"status": "ok"}
