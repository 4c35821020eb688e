import logging

from app.core.errors import PersistenceError
from app.core.settings import Settings
from app.services.imdb_client import IMDbClient
from app.services.ingestion_service import IngestionService
from app.services.movie_store import SqlMovieStore
from app.services.scheduler import IngestionScheduler
from app.services.tmdb_client import TMDBClient

logger = logging.getLogger(__name__)


class AppContainer:
    def __init__(self, settings: Settings, store: SqlMovieStore | None = None):
        self.settings = settings

        self.store = store or SqlMovieStore(settings)
        try:
            self.store.init_schema()
        except PersistenceError:
            if store is None:
                self.store.close()
            raise

        self.tmdb_client = TMDBClient(settings)
        self.imdb_client = IMDbClient(settings)
        self.scheduler = IngestionScheduler(self.store)

        self.ingestion_service = IngestionService(
            settings=settings,
            tmdb_client=self.tmdb_client,
            imdb_client=self.imdb_client,
            store=self.store,
            scheduler=self.scheduler,
        )

        logger.info(
            "App container initialized",
            extra={
                "database_url": self.store.engine.url.render_as_string(hide_password=True),
                "tmdb_configured": bool(settings.tmdb_api_key),
                "worker_count": settings.worker_count,
                "batch_size": settings.batch_size,
                "min_delay_ms": settings.min_delay_ms,
                "max_retries": settings.max_retries,
                "cast_limit": settings.cast_limit,
            },
        )

    async def close(self) -> None:
        await self.tmdb_client.close()
        await self.imdb_client.close()
        self.store.close()
