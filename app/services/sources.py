import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Protocol

import httpx

from app.core.errors import PermanentSourceError, SourceParseError, TransientSourceError
from app.models.movie import MovieRecord


RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class RawPayload:
    source: str
    body: Any
    # id the payload was requested with, for sources whose pages don't echo it back
    key: str | int | None = None


@dataclass(frozen=True)
class ListingCursor:
    page: int = 1
    year: int | None = None
    query: str | None = None

    def next(self) -> "ListingCursor":
        return ListingCursor(page=self.page + 1, year=self.year, query=self.query)


@dataclass
class ListingPage:
    items: list[RawPayload] = field(default_factory=list)
    next_cursor: ListingCursor | None = None


class ListingSource(Protocol):
    name: str
    remote: bool

    async def fetch_listing(self, cursor: ListingCursor) -> ListingPage: ...


class DetailSource(Protocol):
    name: str

    def detail_key(self, record: MovieRecord) -> str | int | None: ...

    async def fetch_detail(self, key: str | int) -> RawPayload: ...


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def raise_for_source_status(source: str, response: httpx.Response) -> None:
    """Map an HTTP response onto the source error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    path = response.request.url.path if response.request else ""
    if status in RETRYABLE_STATUS_CODES:
        raise TransientSourceError(
            source,
            f"{source} returned {status} for {path}",
            status_code=status,
            rate_limited=status == 429,
            retry_after=_retry_after_seconds(response),
        )
    if status >= 500:
        raise TransientSourceError(source, f"{source} returned {status} for {path}", status_code=status)
    raise PermanentSourceError(source, f"{source} returned {status} for {path}", status_code=status)


async def send_request(
    client: httpx.AsyncClient,
    source: str,
    path: str,
    params: dict[str, Any] | None = None,
) -> httpx.Response:
    """Single round trip, no retries.

    Transport failures surface as transient, responses that arrive but cannot be
    read (redirect loops, broken content encoding) as parse failures.
    """
    try:
        response = await client.get(path, params=params)
    except httpx.TimeoutException as exc:
        raise TransientSourceError(source, f"{source} timed out on {path}") from exc
    except (httpx.TooManyRedirects, httpx.DecodingError) as exc:
        raise SourceParseError(
            source, f"{source} sent an unreadable response for {path}: {exc.__class__.__name__}"
        ) from exc
    except httpx.RequestError as exc:
        raise TransientSourceError(source, f"{source} request failed on {path}: {exc.__class__.__name__}") from exc
    raise_for_source_status(source, response)
    return response


def decode_json(source: str, response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise SourceParseError(source, f"{source} sent a body that is not valid JSON", response.status_code) from exc
    if not isinstance(payload, dict):
        raise SourceParseError(source, f"{source} sent a JSON {type(payload).__name__}, expected an object")
    return payload


def decode_html(source: str, response: httpx.Response) -> str:
    content_type = response.headers.get("content-type", "")
    if content_type and "html" not in content_type and "text" not in content_type:
        raise SourceParseError(source, f"{source} sent {content_type}, expected HTML", response.status_code)
    try:
        return response.content.decode(response.encoding or "utf-8")
    except (LookupError, UnicodeDecodeError) as exc:
        raise SourceParseError(source, f"{source} sent an undecodable body", response.status_code) from exc


class StaticListingSource:
    """Serves a fixed list of IMDb ids as if it were a paged listing."""

    name = "static"
    remote = False

    def __init__(self, imdb_ids: list[str], page_size: int = 50):
        self.imdb_ids = list(dict.fromkeys(i.strip() for i in imdb_ids if i and i.strip()))
        self.page_size = page_size

    @property
    def page_count(self) -> int:
        return max((len(self.imdb_ids) + self.page_size - 1) // self.page_size, 1)

    async def fetch_listing(self, cursor: ListingCursor) -> ListingPage:
        start = (cursor.page - 1) * self.page_size
        chunk = self.imdb_ids[start : start + self.page_size]
        items = [RawPayload(source=self.name, body={"imdb_id": imdb_id}) for imdb_id in chunk]
        has_more = start + self.page_size < len(self.imdb_ids)
        return ListingPage(items=items, next_cursor=cursor.next() if has_more else None)
