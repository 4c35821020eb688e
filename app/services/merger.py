from typing import Any

from app.models.movie import MovieRecord

MERGED_FIELDS = (
    "title",
    "release_date",
    "director",
    "description",
    "poster_url",
    "imdb_id",
    "tmdb_id",
    "genres",
    "cast",
    "runtime",
)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple)):
        return len(value) == 0
    return False


def merge_records(base: MovieRecord, detail: MovieRecord) -> MovieRecord:
    """Field by field, a non-empty value on the detail record wins over base.

    Ids follow the same rule, so a detail fetch that learns the IMDb id of a
    catalog-only listing item upgrades the record's identity.
    """
    values = {}
    for name in MERGED_FIELDS:
        detail_value = getattr(detail, name)
        values[name] = getattr(base, name) if is_empty(detail_value) else detail_value
    return MovieRecord(**values)
