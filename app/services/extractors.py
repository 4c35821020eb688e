"""Pure extractors turning raw source payloads into MovieRecords.

Every field is read from a fixed, ordered list of candidates and the first
non-empty candidate wins, so re-running over the same payload is
reproducible. Missing non-identity fields are left empty; a payload with no
identity at all raises ExtractionError(missing_identity).
"""

import json
import re
from datetime import date, datetime
from typing import Any

from bs4 import BeautifulSoup, Tag

from app.core.errors import ExtractionError
from app.models.movie import MovieRecord, clean_text, dedupe_names
from app.services.sources import RawPayload

IMDB_ID_RE = re.compile(r"\b(tt\d{5,10})\b")
YEAR_RE = re.compile(r"^(\d{4})$")
PARENTHETICAL_RE = re.compile(r"\([^)]*\)")
RUNTIME_HM_RE = re.compile(r"(?:(\d+)\s*h(?:ours?|rs?)?)?\s*(?:(\d+)\s*m(?:in(?:ute)?s?)?)?", re.IGNORECASE)
ISO_DURATION_RE = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?", re.IGNORECASE)

DATE_FORMATS = [
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %Y",
    "%b %Y",
]

TMDB_GENRES = {
    28: "Action",
    12: "Adventure",
    16: "Animation",
    35: "Comedy",
    80: "Crime",
    99: "Documentary",
    18: "Drama",
    10751: "Family",
    14: "Fantasy",
    36: "History",
    27: "Horror",
    10402: "Music",
    9648: "Mystery",
    10749: "Romance",
    878: "Science Fiction",
    10770: "TV Movie",
    53: "Thriller",
    10752: "War",
    37: "Western",
}

# IMDb title page selectors, highest priority first
IMDB_TITLE_SELECTORS = [
    'h1[data-testid="hero__pageTitle"]',
    'h1[data-testid="hero-title-block__title"]',
    "h1",
]
IMDB_RELEASE_SELECTORS = [
    'li[data-testid="title-details-releasedate"] a.ipc-metadata-list-item__list-content-item',
    'a[href*="releaseinfo"]',
]
IMDB_DIRECTOR_SELECTORS = [
    'li[data-testid="title-pc-principal-credit"] a[href*="/name/"]',
    'a[href*="/name/"]',
]
IMDB_PLOT_SELECTORS = [
    'span[data-testid="plot-xl"]',
    'span[data-testid="plot-l"]',
    'span[data-testid="plot-xs_to_m"]',
]
IMDB_POSTER_SELECTORS = [
    'div[data-testid="hero-media__poster"] img',
    'img[data-testid="hero-image__poster"]',
    "img.ipc-image",
]
IMDB_GENRE_SELECTORS = [
    'div[data-testid="genres"] a',
    'a[href*="/search/title?genres="]',
    'a[href*="/search/title/?genres="]',
]
IMDB_CAST_SELECTORS = ['a[data-testid="title-cast-item__actor"]']
IMDB_RUNTIME_SELECTORS = ['li[data-testid="title-techspec_runtime"] div']

IMDB_CARD_TITLE_SELECTORS = ['a[data-testid="ipc-poster-card-title"]', "h3"]


def parse_release_date(value: Any) -> date | None:
    """Permissive date parsing; unknown formats give None instead of raising."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    text = clean_text(PARENTHETICAL_RE.sub(" ", clean_text(value)))
    if not text:
        return None

    year_match = YEAR_RE.match(text)
    if year_match:
        year = int(year_match.group(1))
        return date(year, 1, 1) if year >= 1 else None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_runtime(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value > 0 else None
    text = clean_text(value)
    if not text:
        return None
    if text.isdigit():
        minutes = int(text)
        return minutes if minutes > 0 else None

    iso = ISO_DURATION_RE.match(text)
    if iso and (iso.group(1) or iso.group(2)):
        minutes = int(iso.group(1) or 0) * 60 + int(iso.group(2) or 0)
        return minutes or None

    # "2h 10m", "1 hour 54 minutes", "130 min"
    for match in RUNTIME_HM_RE.finditer(text):
        hours, mins = match.group(1), match.group(2)
        if hours or mins:
            minutes = int(hours or 0) * 60 + int(mins or 0)
            return minutes or None
    return None


def normalize_imdb_id(value: Any) -> str | None:
    match = IMDB_ID_RE.search(clean_text(value))
    return match.group(1) if match else None


def _tmdb_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or None
    return None


def _first(*candidates: Any) -> Any:
    for candidate in candidates:
        if isinstance(candidate, str):
            if candidate.strip():
                return candidate
        elif candidate:
            return candidate
    return None


def _names(entries: Any, key: str = "name") -> list[str]:
    if not isinstance(entries, list):
        return []
    names = []
    for entry in entries:
        if isinstance(entry, dict):
            names.append(clean_text(entry.get(key)))
        elif isinstance(entry, str):
            names.append(clean_text(entry))
    return [name for name in names if name]


def _require_identity(imdb_id: str | None, tmdb_id: int | None, source: str) -> None:
    if imdb_id is None and tmdb_id is None:
        raise ExtractionError(ExtractionError.MISSING_IDENTITY, f"{source} payload carries no movie id")


def extract_tmdb_movie(raw: RawPayload, image_base_url: str, cast_limit: int = 20) -> MovieRecord:
    """Handles both discover/search results and /movie/{id} detail payloads.

    Priority per field:
      title: title, original_title, name
      release_date: release_date, first_air_date
      description: overview
      poster_url: poster_path (prefixed with the image base url)
      director: first credits.crew entry with job Director
      imdb_id: imdb_id, external_ids.imdb_id
      tmdb_id: id
      genres: genres[].name, genre_ids mapped through TMDB_GENRES
      cast: credits.cast[].name ordered by billing order
      runtime: runtime
    """
    body = raw.body
    if not isinstance(body, dict):
        raise ExtractionError(ExtractionError.MALFORMED_PAYLOAD, "TMDB payload is not an object")

    external_ids = body.get("external_ids") if isinstance(body.get("external_ids"), dict) else {}
    imdb_id = normalize_imdb_id(_first(body.get("imdb_id"), external_ids.get("imdb_id")))
    tmdb_id = _tmdb_id(body.get("id"))
    _require_identity(imdb_id, tmdb_id, "TMDB")

    poster_path = clean_text(body.get("poster_path"))
    poster_url = None
    if poster_path:
        poster_url = poster_path if poster_path.startswith("http") else f"{image_base_url.rstrip('/')}/{poster_path.lstrip('/')}"

    credits = body.get("credits") if isinstance(body.get("credits"), dict) else {}
    crew = credits.get("crew") if isinstance(credits.get("crew"), list) else []
    director = None
    for person in crew:
        if isinstance(person, dict) and person.get("job") == "Director" and clean_text(person.get("name")):
            director = clean_text(person.get("name"))
            break

    cast_entries = credits.get("cast") if isinstance(credits.get("cast"), list) else []
    cast_entries = sorted(
        (entry for entry in cast_entries if isinstance(entry, dict)),
        key=lambda entry: entry.get("order") if isinstance(entry.get("order"), int) else 10**6,
    )
    cast = dedupe_names(_names(cast_entries))[:cast_limit]

    genres = _names(body.get("genres"))
    if not genres:
        genre_ids = body.get("genre_ids") if isinstance(body.get("genre_ids"), list) else []
        genres = [TMDB_GENRES[genre_id] for genre_id in genre_ids if genre_id in TMDB_GENRES]

    return MovieRecord(
        title=_first(body.get("title"), body.get("original_title"), body.get("name")) or "",
        release_date=parse_release_date(_first(body.get("release_date"), body.get("first_air_date"))),
        director=director,
        description=body.get("overview"),
        poster_url=poster_url,
        imdb_id=imdb_id,
        tmdb_id=tmdb_id,
        genres=genres,
        cast=cast,
        runtime=parse_runtime(body.get("runtime")),
    )


def _select_text(soup: BeautifulSoup | Tag, selectors: list[str]) -> str:
    for selector in selectors:
        for node in soup.select(selector):
            text = clean_text(node.get_text(" "))
            if text:
                return text
    return ""


def _select_attr(soup: BeautifulSoup | Tag, selectors: list[str], attr: str) -> str:
    for selector in selectors:
        for node in soup.select(selector):
            value = clean_text(node.get(attr))
            if value:
                return value
    return ""


def _select_texts(soup: BeautifulSoup | Tag, selectors: list[str]) -> list[str]:
    """All texts from the first selector that yields any."""
    for selector in selectors:
        texts = [clean_text(node.get_text(" ")) for node in soup.select(selector)]
        texts = [text for text in texts if text]
        if texts:
            return texts
    return []


def _meta_content(soup: BeautifulSoup, **attrs: str) -> str:
    node = soup.find("meta", attrs=attrs)
    return clean_text(node.get("content")) if node else ""


def _json_ld(soup: BeautifulSoup) -> dict[str, Any]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(script.string or "")
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and data.get("@type") == "Movie":
            return data
    return {}


def _ld_people(value: Any) -> list[str]:
    if isinstance(value, dict):
        value = [value]
    return _names(value)


def _ld_image(value: Any) -> str:
    # schema.org image is a URL, an ImageObject or a list of either
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, dict):
        value = value.get("url") or value.get("contentUrl")
    return clean_text(value) if isinstance(value, str) else ""


def _strip_title_suffix(title: str) -> str:
    # og:title looks like "Oppenheimer (2023) ⭐ 8.3 | Biography, Drama"
    return clean_text(re.split(r"\s\(\d{4}", title, maxsplit=1)[0].split(" | ")[0])


def extract_imdb_title_page(raw: RawPayload, cast_limit: int = 20) -> MovieRecord:
    """Reads an IMDb /title/ page.

    The imdb id comes from the key the page was requested with, falling back
    to the canonical link. Each field tries its selector list in order (see
    the IMDB_*_SELECTORS constants), then meta tags, then the page's JSON-LD
    block.
    """
    if not isinstance(raw.body, str):
        raise ExtractionError(ExtractionError.MALFORMED_PAYLOAD, "IMDb page body is not text")
    soup = BeautifulSoup(raw.body, "html.parser")
    ld = _json_ld(soup)

    canonical = soup.find("link", attrs={"rel": "canonical"})
    imdb_id = normalize_imdb_id(
        _first(raw.key, canonical.get("href") if canonical else None, ld.get("url"))
    )
    _require_identity(imdb_id, None, "IMDb")

    title = _first(
        _select_text(soup, IMDB_TITLE_SELECTORS),
        _strip_title_suffix(_meta_content(soup, property="og:title")),
        clean_text(ld.get("name")),
    )
    release_date = parse_release_date(_select_text(soup, IMDB_RELEASE_SELECTORS)) or parse_release_date(
        ld.get("datePublished")
    )
    director = _first(
        _select_text(soup, IMDB_DIRECTOR_SELECTORS),
        next(iter(_ld_people(ld.get("director"))), None),
    )
    description = _first(
        _select_text(soup, IMDB_PLOT_SELECTORS),
        _meta_content(soup, name="description"),
        clean_text(ld.get("description")),
    )
    poster_url = _first(_select_attr(soup, IMDB_POSTER_SELECTORS, "src"), _ld_image(ld.get("image")))
    ld_genres = ld.get("genre")
    genres = _first(_select_texts(soup, IMDB_GENRE_SELECTORS), [ld_genres] if isinstance(ld_genres, str) else _names(ld_genres))
    cast = _first(_select_texts(soup, IMDB_CAST_SELECTORS), _ld_people(ld.get("actor"))) or []

    runtime_texts = _select_texts(soup, IMDB_RUNTIME_SELECTORS)
    runtime = parse_runtime(runtime_texts[-1]) if runtime_texts else None
    if runtime is None:
        runtime = parse_runtime(ld.get("duration"))

    return MovieRecord(
        title=title or "",
        release_date=release_date,
        director=director,
        description=description,
        poster_url=poster_url,
        imdb_id=imdb_id,
        genres=genres or [],
        cast=dedupe_names(cast)[:cast_limit],
        runtime=runtime,
    )


def extract_imdb_listing_card(raw: RawPayload) -> MovieRecord:
    """title: card title link, h3, poster img alt. imdb id: title link href. poster: card img src."""
    if not isinstance(raw.body, str):
        raise ExtractionError(ExtractionError.MALFORMED_PAYLOAD, "IMDb card is not text")
    soup = BeautifulSoup(raw.body, "html.parser")
    imdb_id = normalize_imdb_id(_select_attr(soup, IMDB_CARD_TITLE_SELECTORS[:1], "href")) or normalize_imdb_id(
        _select_attr(soup, ['a[href*="/title/"]'], "href")
    )
    _require_identity(imdb_id, None, "IMDb card")

    return MovieRecord(
        title=_first(_select_text(soup, IMDB_CARD_TITLE_SELECTORS), _select_attr(soup, ["img"], "alt")) or "",
        imdb_id=imdb_id,
        poster_url=_select_attr(soup, ["img"], "src"),
    )


def extract_id_listing_item(raw: RawPayload) -> MovieRecord:
    body = raw.body if isinstance(raw.body, dict) else {}
    imdb_id = normalize_imdb_id(body.get("imdb_id"))
    _require_identity(imdb_id, None, "id list")
    return MovieRecord(imdb_id=imdb_id)
