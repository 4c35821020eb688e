from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from app.api.deps import get_container
from app.core.container import AppContainer
from app.models.ingest import IngestIdsRequest, IngestionRun, IngestRequest
from app.models.movie import MovieRecord

router = APIRouter(prefix="/v1/ingest", tags=["ingestion"])


class TitleIngestResponse(BaseModel):
    run: IngestionRun
    movie: MovieRecord | None


@router.post("", response_model=IngestionRun)
async def ingest_movies(payload: IngestRequest, container: AppContainer = Depends(get_container)) -> IngestionRun:
    service = container.ingestion_service
    config = service.config_for(**payload.model_dump(exclude_none=True))
    return await service.run_ingestion(config)


@router.post("/stream")
async def ingest_movies_stream(payload: IngestRequest, container: AppContainer = Depends(get_container)) -> StreamingResponse:
    service = container.ingestion_service
    config = service.config_for(**payload.model_dump(exclude_none=True))
    events = service.stream_ingestion(config)

    async def _lines():
        async for event in events:
            yield event.model_dump_json(exclude_none=True) + "\n"

    return StreamingResponse(_lines(), media_type="application/x-ndjson")


@router.post("/recent", response_model=IngestionRun)
async def ingest_recent(payload: IngestRequest, container: AppContainer = Depends(get_container)) -> IngestionRun:
    service = container.ingestion_service
    config = service.config_for(**payload.model_dump(exclude_none=True))
    return await service.run_recent(config)


@router.post("/ids", response_model=IngestionRun)
async def ingest_ids(payload: IngestIdsRequest, container: AppContainer = Depends(get_container)) -> IngestionRun:
    service = container.ingestion_service
    config = service.config_for(worker_count=payload.worker_count, batch_size=payload.batch_size)
    return await service.run_ids(payload.imdb_ids, config)


@router.post("/titles/{imdb_id}", response_model=TitleIngestResponse)
async def ingest_title(imdb_id: str, container: AppContainer = Depends(get_container)) -> TitleIngestResponse:
    run, movie = await container.ingestion_service.ingest_title(imdb_id)
    return TitleIngestResponse(run=run, movie=movie)
