from datetime import date

import httpx
import pytest

from app.core.errors import APIError
from app.core.settings import Settings
from app.services.imdb_client import IMDbClient
from app.services.ingestion_service import IngestionService
from app.services.movie_store import SqlMovieStore
from app.services.scheduler import IngestionScheduler
from app.services.tmdb_client import TMDBClient

TITLE_PAGE = """
<html><body>
  <h1 data-testid="hero__pageTitle">{title}</h1>
  <span data-testid="plot-xl">{plot}</span>
</body></html>
"""

RECENT_PAGE = """
<html><body>
  <div class="ipc-poster-card">
    <img alt="Dune: Part Two" src="https://img/dune.jpg">
    <a data-testid="ipc-poster-card-title" href="/title/tt15239678/">Dune: Part Two</a>
  </div>
</body></html>
"""


async def _no_sleep(_: float) -> None:
    return None


def _tmdb_handler(requests: list[httpx.Request]):
    details = {
        "/3/movie/10": {"id": 10, "title": "Ten", "external_ids": {"imdb_id": "tt0000010"}, "runtime": 90},
        "/3/movie/11": {"id": 11, "title": "Eleven", "external_ids": {"imdb_id": "tt0000011"}},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/discover/movie"):
            return httpx.Response(
                200,
                json={"total_pages": 1, "results": [{"id": 10, "title": "Ten"}, {"id": 11, "title": "Eleven"}]},
            )
        if request.url.path in details:
            return httpx.Response(200, json=details[request.url.path])
        return httpx.Response(404, json={"status_message": "not found"})

    return handler


def _imdb_handler(request: httpx.Request) -> httpx.Response:
    html = {"content-type": "text/html; charset=utf-8"}
    if request.url.path in ("/movies-in-theaters/", "/movies-coming-soon/"):
        return httpx.Response(200, text=RECENT_PAGE, headers=html)
    if request.url.path.startswith("/title/tt"):
        imdb_id = request.url.path.split("/")[2]
        return httpx.Response(200, text=TITLE_PAGE.format(title=f"Title {imdb_id}", plot="A plot."), headers=html)
    return httpx.Response(404)


def _service(
    settings: Settings,
    store: SqlMovieStore,
    tmdb_requests: list[httpx.Request] | None = None,
    tmdb_handler=None,
    imdb_handler=None,
) -> IngestionService:
    tmdb_handler = tmdb_handler or _tmdb_handler(tmdb_requests if tmdb_requests is not None else [])
    return IngestionService(
        settings=settings,
        tmdb_client=TMDBClient(settings, transport=httpx.MockTransport(tmdb_handler)),
        imdb_client=IMDbClient(settings, transport=httpx.MockTransport(imdb_handler or _imdb_handler)),
        store=store,
        scheduler=IngestionScheduler(store, sleep=_no_sleep),
        today=lambda: date(2024, 6, 1),
    )


@pytest.mark.asyncio
async def test_run_ingestion_discovers_enriches_and_saves(settings, store) -> None:
    requests: list[httpx.Request] = []
    service = _service(settings, store, requests)
    config = service.config_for(years_back=2, max_pages_per_year=1, worker_count=2, batch_size=2, max_retries=1)

    run = await service.run_ingestion(config)

    assert run.requested == 2 * 1 * 20
    assert (run.found, run.saved, run.errored) == (4, 2, 0)
    assert run.skipped == 2
    discover_years = [r.url.params["primary_release_year"] for r in requests if r.url.path.endswith("/discover/movie")]
    assert discover_years == ["2024", "2023"]
    assert service.get_movie("imdb:tt0000010").runtime == 90
    assert service.count_report().total == 2


@pytest.mark.asyncio
async def test_stream_ingestion_reports_progress(settings, store) -> None:
    service = _service(settings, store)
    config = service.config_for(years_back=1, max_pages_per_year=1, worker_count=1, batch_size=1)

    events = [event async for event in service.stream_ingestion(config)]

    assert events[-1].finished is True
    assert events[-1].saved_count == 2
    assert events[-1].run.found == 2
    assert events[-1].run.requested == 20
    assert all(event.run is None for event in events[:-1])


@pytest.mark.asyncio
async def test_missing_tmdb_key_fails_before_the_run(settings, store) -> None:
    service = _service(settings.model_copy(update={"tmdb_api_key": None}), store)

    with pytest.raises(APIError) as exc:
        await service.run_ingestion(service.config_for())

    assert exc.value.code == "config_error"
    assert store.count() == 0


def test_invalid_config_is_rejected(settings, store) -> None:
    service = _service(settings, store)

    with pytest.raises(APIError) as exc:
        service.config_for(worker_count=0)

    assert exc.value.code == "invalid_config"
    assert exc.value.status_code == 422


def test_config_defaults_come_from_settings(settings, store) -> None:
    service = _service(settings.model_copy(update={"batch_size": 7, "min_delay_ms": 10}), store)

    config = service.config_for(worker_count=None, max_retries=1)

    assert (config.batch_size, config.min_delay_ms, config.max_retries) == (7, 10, 1)
    assert config.worker_count == settings.worker_count


@pytest.mark.asyncio
async def test_search_rejects_empty_query(settings, store) -> None:
    service = _service(settings, store)

    with pytest.raises(APIError) as exc:
        await service.run_search("   ", service.config_for())

    assert exc.value.code == "invalid_query"


@pytest.mark.asyncio
async def test_run_recent_scrapes_imdb_listing_and_title_pages(settings, store) -> None:
    service = _service(settings, store)

    run = await service.run_recent(service.config_for(worker_count=2, batch_size=5))

    # the same card appears on both recent pages
    assert (run.found, run.saved, run.skipped) == (2, 1, 1)
    movie = service.get_movie("imdb:tt15239678")
    assert movie.title == "Title tt15239678"
    assert movie.poster_url == "https://img/dune.jpg"


@pytest.mark.asyncio
async def test_run_ids_dedupes_the_id_list(settings, store) -> None:
    service = _service(settings, store)

    run = await service.run_ids(["tt0000001", "tt0000002", "tt0000001"], service.config_for(worker_count=2))

    assert run.requested == 2
    assert (run.found, run.saved) == (2, 2)


@pytest.mark.asyncio
async def test_ingest_title_returns_the_stored_movie(settings, store) -> None:
    service = _service(settings, store)

    run, movie = await service.ingest_title("https://www.imdb.com/title/tt0133093/")

    assert run.saved == 1
    assert movie.imdb_id == "tt0133093"
    assert movie.description == "A plot."


@pytest.mark.asyncio
async def test_ingest_title_rejects_non_imdb_ids(settings, store) -> None:
    service = _service(settings, store)

    with pytest.raises(APIError) as exc:
        await service.ingest_title("matrix")

    assert exc.value.code == "invalid_imdb_id"


@pytest.mark.asyncio
async def test_malformed_listing_body_still_returns_a_summary(settings, store) -> None:
    service = _service(
        settings,
        store,
        tmdb_handler=lambda request: httpx.Response(200, json={"results": 5, "total_pages": 1}),
    )

    run = await service.run_ingestion(service.config_for(years_back=2, max_pages_per_year=1))

    assert (run.pages_failed, run.pages_fetched) == (2, 0)
    assert (run.found, run.saved) == (0, 0)


@pytest.mark.asyncio
async def test_redirect_loop_on_listing_still_returns_a_summary(settings, store) -> None:
    def redirect_to_self(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"location": str(request.url)})

    service = _service(settings, store, imdb_handler=redirect_to_self)

    run = await service.run_recent(service.config_for(worker_count=1))

    assert run.pages_failed == 1
    assert run.found == 0
    assert run.cancelled is False
