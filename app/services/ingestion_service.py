import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from datetime import date
from functools import partial
from typing import Any

from pydantic import ValidationError

from app.core.errors import APIError, PersistenceError
from app.core.settings import Settings
from app.models.ingest import IngestionConfig, IngestionRun, MovieCountFilter, MovieCountResponse, ProgressEvent
from app.models.movie import MovieRecord
from app.services.extractors import (
    extract_id_listing_item,
    extract_imdb_listing_card,
    extract_imdb_title_page,
    extract_tmdb_movie,
    normalize_imdb_id,
)
from app.services.imdb_client import RECENT_LISTING_PATHS, IMDbClient
from app.services.movie_store import SqlMovieStore
from app.services.scheduler import IngestionScheduler, Pipeline
from app.services.sources import ListingCursor, StaticListingSource
from app.services.tmdb_client import TMDB_PAGE_SIZE, TMDBClient

logger = logging.getLogger(__name__)


class IngestionService:
    """Entry points for ingestion runs.

    Every entry point is the same scheduler driving a different composition of
    listing source, detail source and extractors.
    """

    def __init__(
        self,
        settings: Settings,
        tmdb_client: TMDBClient,
        imdb_client: IMDbClient,
        store: SqlMovieStore,
        scheduler: IngestionScheduler,
        today: Callable[[], date] = date.today,
    ):
        self.settings = settings
        self.tmdb_client = tmdb_client
        self.imdb_client = imdb_client
        self.store = store
        self.scheduler = scheduler
        self._today = today

    def config_for(self, **overrides: Any) -> IngestionConfig:
        try:
            return IngestionConfig.from_settings(self.settings, **overrides)
        except ValidationError as exc:
            raise APIError(
                "invalid_config",
                "Ingestion config is invalid",
                status_code=422,
                details={"errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

    def _extract_tmdb(self) -> Callable:
        return partial(
            extract_tmdb_movie,
            image_base_url=self.settings.tmdb_image_base_url,
            cast_limit=self.settings.cast_limit,
        )

    def _extract_imdb_title(self) -> Callable:
        return partial(extract_imdb_title_page, cast_limit=self.settings.cast_limit)

    def years_pipeline(self, config: IngestionConfig) -> Pipeline:
        self.tmdb_client.ensure_configured()
        current_year = self._today().year
        cursors = [ListingCursor(year=current_year - offset) for offset in range(config.years_back)]
        return Pipeline(
            name="years",
            listing=self.tmdb_client,
            extract_listing=self._extract_tmdb(),
            cursors=cursors,
            max_pages_per_cursor=config.max_pages_per_year,
            detail=self.tmdb_client,
            extract_detail=self._extract_tmdb(),
            requested=len(cursors) * config.max_pages_per_year * TMDB_PAGE_SIZE,
        )

    def search_pipeline(self, query: str, config: IngestionConfig) -> Pipeline:
        self.tmdb_client.ensure_configured()
        if not query.strip():
            raise APIError("invalid_query", "Search query is empty", status_code=422)
        return Pipeline(
            name="search",
            listing=self.tmdb_client,
            extract_listing=self._extract_tmdb(),
            cursors=[ListingCursor(query=query.strip())],
            max_pages_per_cursor=config.max_pages_per_year,
            detail=self.tmdb_client,
            extract_detail=self._extract_tmdb(),
        )

    def recent_pipeline(self) -> Pipeline:
        return Pipeline(
            name="recent",
            listing=self.imdb_client,
            extract_listing=extract_imdb_listing_card,
            cursors=[ListingCursor()],
            max_pages_per_cursor=len(RECENT_LISTING_PATHS),
            detail=self.imdb_client,
            extract_detail=self._extract_imdb_title(),
        )

    def ids_pipeline(self, imdb_ids: list[str]) -> Pipeline:
        listing = StaticListingSource(imdb_ids)
        return Pipeline(
            name="ids",
            listing=listing,
            extract_listing=extract_id_listing_item,
            cursors=[ListingCursor()],
            max_pages_per_cursor=listing.page_count,
            detail=self.imdb_client,
            extract_detail=self._extract_imdb_title(),
            requested=len(listing.imdb_ids),
        )

    async def run_ingestion(self, config: IngestionConfig, cancel: asyncio.Event | None = None) -> IngestionRun:
        return await self.scheduler.run(self.years_pipeline(config), config, cancel=cancel)

    def stream_ingestion(
        self, config: IngestionConfig, cancel: asyncio.Event | None = None
    ) -> AsyncIterator[ProgressEvent]:
        pipeline = self.years_pipeline(config)
        # fail before the first event so callers can still report a clean error
        self.scheduler.check_ready(config)
        return self.scheduler.stream(pipeline, config, cancel=cancel)

    async def run_search(
        self, query: str, config: IngestionConfig, cancel: asyncio.Event | None = None
    ) -> IngestionRun:
        return await self.scheduler.run(self.search_pipeline(query, config), config, cancel=cancel)

    async def run_recent(self, config: IngestionConfig, cancel: asyncio.Event | None = None) -> IngestionRun:
        return await self.scheduler.run(self.recent_pipeline(), config, cancel=cancel)

    async def run_ids(
        self, imdb_ids: list[str], config: IngestionConfig, cancel: asyncio.Event | None = None
    ) -> IngestionRun:
        return await self.scheduler.run(self.ids_pipeline(imdb_ids), config, cancel=cancel)

    async def ingest_title(self, imdb_id: str) -> tuple[IngestionRun, MovieRecord | None]:
        normalized = normalize_imdb_id(imdb_id)
        if normalized is None:
            raise APIError("invalid_imdb_id", "Not an IMDb title id", status_code=422, details={"imdb_id": imdb_id})
        config = self.config_for(worker_count=1, batch_size=1)
        run = await self.run_ids([normalized], config)
        return run, self.get_movie(f"imdb:{normalized}")

    def get_movie(self, identity_key: str) -> MovieRecord | None:
        try:
            return self.store.get(identity_key)
        except PersistenceError as exc:
            raise APIError("store_unavailable", "Movie store is unreachable", status_code=503) from exc

    def count_report(self) -> MovieCountResponse:
        try:
            return MovieCountResponse(
                total=self.store.count(),
                with_poster=self.store.count(MovieCountFilter(has_poster=True)),
                with_description=self.store.count(MovieCountFilter(has_description=True)),
                with_cast=self.store.count(MovieCountFilter(has_cast=True)),
            )
        except PersistenceError as exc:
            logger.exception("Movie count failed")
            raise APIError("store_unavailable", "Movie store is unreachable", status_code=503) from exc
