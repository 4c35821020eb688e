from datetime import date, datetime, timezone

from sqlalchemy import JSON, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from app.models.movie import MovieRecord


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class MovieRow(Base):
    __tablename__ = "movies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    imdb_id: Mapped[str | None] = mapped_column(String(16), unique=True, index=True, nullable=True)
    tmdb_id: Mapped[int | None] = mapped_column(Integer, unique=True, index=True, nullable=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    release_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    director: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    poster_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    genres: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    cast: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    runtime: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_record(self) -> MovieRecord:
        return MovieRecord(
            title=self.title,
            release_date=self.release_date,
            director=self.director,
            description=self.description,
            poster_url=self.poster_url,
            imdb_id=self.imdb_id,
            tmdb_id=self.tmdb_id,
            genres=list(self.genres or []),
            cast=list(self.cast or []),
            runtime=self.runtime,
        )
