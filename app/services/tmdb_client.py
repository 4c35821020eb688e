import logging
from typing import Any

import httpx

from app.core.errors import APIError, SourceParseError
from app.core.settings import Settings
from app.models.movie import MovieRecord
from app.services.sources import ListingCursor, ListingPage, RawPayload, decode_json, send_request

logger = logging.getLogger(__name__)

TMDB_PAGE_SIZE = 20
# TMDB refuses page numbers past this
TMDB_MAX_PAGE = 500


class TMDBClient:
    """TMDB catalog adapter: discover/search listings and per-title details.

    Listing cursors carry either a release year (discover) or a free text
    query (search). Details are fetched with credits and external ids in the
    same round trip so the IMDb id comes back with the payload.
    """

    name = "tmdb"
    remote = True

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.tmdb_base_url,
            timeout=settings.tmdb_timeout_seconds,
            headers={"User-Agent": settings.user_agent, "Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def ensure_configured(self) -> None:
        if not self.settings.tmdb_api_key:
            raise APIError("config_error", "TMDB_API_KEY is not set", status_code=500)

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        merged_params: dict[str, Any] = {"api_key": self.settings.tmdb_api_key, "language": "en-US"}
        if params:
            merged_params.update(params)
        response = await send_request(self._client, self.name, path, params=merged_params)
        return decode_json(self.name, response)

    async def fetch_listing(self, cursor: ListingCursor) -> ListingPage:
        if cursor.query:
            path = "/search/movie"
            params: dict[str, Any] = {"query": cursor.query, "include_adult": "false", "page": cursor.page}
        else:
            path = "/discover/movie"
            params = {"include_adult": "false", "sort_by": "popularity.desc", "page": cursor.page}
            if cursor.year is not None:
                params["primary_release_year"] = cursor.year

        payload = await self._get(path, params=params)
        results = payload.get("results") or []
        if not isinstance(results, list):
            raise SourceParseError(self.name, f"TMDB {path} results is a {type(results).__name__}, expected a list")
        items = [RawPayload(source=self.name, body=item) for item in results if isinstance(item, dict)]

        total_pages = payload.get("total_pages")
        if not isinstance(total_pages, int):
            total_pages = cursor.page
        has_more = bool(results) and cursor.page < min(total_pages, TMDB_MAX_PAGE)
        logger.debug(
            "TMDB listing page fetched",
            extra={"path": path, "year": cursor.year, "page": cursor.page, "items": len(items), "total_pages": total_pages},
        )
        return ListingPage(items=items, next_cursor=cursor.next() if has_more else None)

    def detail_key(self, record: MovieRecord) -> int | None:
        return record.tmdb_id

    async def fetch_detail(self, key: str | int) -> RawPayload:
        payload = await self._get(f"/movie/{key}", params={"append_to_response": "credits,external_ids"})
        return RawPayload(source=self.name, body=payload, key=key)
