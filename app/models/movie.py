from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator


def clean_text(value: object) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def dedupe_names(values: list[str], casefold: bool = False) -> list[str]:
    """Trim, drop empties and duplicates while keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = clean_text(value)
        if not text:
            continue
        key = text.casefold() if casefold else text
        if key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


class MovieRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = ""
    release_date: date | None = None
    director: str | None = None
    description: str | None = None
    poster_url: str | None = None
    imdb_id: str | None = None
    tmdb_id: int | None = None
    genres: list[str] = Field(default_factory=list)
    cast: list[str] = Field(default_factory=list)
    runtime: int | None = None

    @field_validator("title", mode="before")
    @classmethod
    def normalize_title(cls, value: object) -> str:
        return clean_text(value)

    @field_validator("director", "description", "poster_url", "imdb_id", mode="before")
    @classmethod
    def blank_to_none(cls, value: object) -> str | None:
        text = clean_text(value)
        return text or None

    @field_validator("tmdb_id", mode="before")
    @classmethod
    def positive_tmdb_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool) and value <= 0:
            return None
        return value

    @field_validator("genres", mode="before")
    @classmethod
    def normalize_genres(cls, value: list[str] | None) -> list[str]:
        return dedupe_names(value or [], casefold=True)

    @field_validator("cast", mode="before")
    @classmethod
    def normalize_cast(cls, value: list[str] | None) -> list[str]:
        return dedupe_names(value or [])

    @field_validator("runtime", mode="before")
    @classmethod
    def positive_runtime(cls, value: object) -> object:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value <= 0:
            return None
        return value

    @property
    def identity_key(self) -> str | None:
        if self.imdb_id:
            return f"imdb:{self.imdb_id}"
        if self.tmdb_id is not None:
            return f"tmdb:{self.tmdb_id}"
        return None

    @property
    def label(self) -> str:
        return self.title or self.identity_key or "<unknown>"
