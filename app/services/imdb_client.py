import logging

import httpx
from bs4 import BeautifulSoup

from app.core.settings import Settings
from app.models.movie import MovieRecord
from app.services.sources import ListingCursor, ListingPage, RawPayload, decode_html, send_request

logger = logging.getLogger(__name__)

RECENT_LISTING_PATHS = ["/movies-in-theaters/", "/movies-coming-soon/"]
POSTER_CARD_SELECTOR = "div.ipc-poster-card"


class IMDbClient:
    """Scrapes IMDb HTML pages.

    The recent listing walks the in-theaters and coming-soon pages, one page
    per cursor step. Cards are split out here so every listing item is a
    self-contained HTML fragment; reading fields out of them is left to the
    extractors.
    """

    name = "imdb"
    remote = True

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.imdb_base_url,
            timeout=settings.imdb_timeout_seconds,
            headers={"User-Agent": settings.user_agent, "Accept-Language": "en-US,en;q=0.9"},
            follow_redirects=True,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_listing(self, cursor: ListingCursor) -> ListingPage:
        index = cursor.page - 1
        if index < 0 or index >= len(RECENT_LISTING_PATHS):
            return ListingPage()

        path = RECENT_LISTING_PATHS[index]
        response = await send_request(self._client, self.name, path)
        html = decode_html(self.name, response)
        soup = BeautifulSoup(html, "html.parser")
        items = [RawPayload(source=self.name, body=str(card)) for card in soup.select(POSTER_CARD_SELECTOR)]
        logger.debug("IMDb listing page fetched", extra={"path": path, "items": len(items)})

        has_more = index + 1 < len(RECENT_LISTING_PATHS)
        return ListingPage(items=items, next_cursor=cursor.next() if has_more else None)

    def detail_key(self, record: MovieRecord) -> str | None:
        return record.imdb_id

    async def fetch_detail(self, key: str | int) -> RawPayload:
        response = await send_request(self._client, self.name, f"/title/{key}/")
        return RawPayload(source=self.name, body=decode_html(self.name, response), key=str(key))
