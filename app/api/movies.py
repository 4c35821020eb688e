from fastapi import APIRouter, Depends

from app.api.deps import get_container
from app.core.container import AppContainer
from app.core.errors import APIError
from app.models.ingest import MovieCountResponse
from app.models.movie import MovieRecord

router = APIRouter(prefix="/v1/movies", tags=["movies"])


@router.get("/count", response_model=MovieCountResponse)
async def movie_count(container: AppContainer = Depends(get_container)) -> MovieCountResponse:
    return container.ingestion_service.count_report()


@router.get("/{identity_key}", response_model=MovieRecord)
async def get_movie(identity_key: str, container: AppContainer = Depends(get_container)) -> MovieRecord:
    movie = container.ingestion_service.get_movie(identity_key)
    if movie is None:
        raise APIError("movie_not_found", "No movie stored under that key", status_code=404, details={"key": identity_key})
    return movie
