import logging
from pathlib import Path
from typing import Protocol

from sqlalchemy import Engine, create_engine, func, make_url, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import PersistenceError
from app.core.settings import Settings
from app.models.db import Base, MovieRow
from app.models.ingest import MovieCountFilter
from app.models.movie import MovieRecord
from app.services.merger import MERGED_FIELDS, is_empty

logger = logging.getLogger(__name__)


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


class MovieStore(Protocol):
    def ping(self) -> None: ...

    def upsert(self, identity_key: str, record: MovieRecord) -> bool: ...

    def count(self, filters: MovieCountFilter | None = None) -> int: ...


class SqlMovieStore:
    """Relational movie store keyed on imdb_id, falling back to tmdb_id.

    Each upsert runs in its own transaction. Empty incoming fields never
    overwrite stored values, so the stored row behaves as the base of one
    more merge and repeated runs converge.
    """

    def __init__(self, settings: Settings, engine: Engine | None = None):
        self.settings = settings
        if engine is None:
            _ensure_sqlite_dir(settings.database_url)
            engine = create_engine(settings.database_url, echo=settings.database_echo)
        self.engine = engine
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

    def init_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not create movie schema: {exc.__class__.__name__}") from exc

    def close(self) -> None:
        self.engine.dispose()

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Movie store unreachable: {exc.__class__.__name__}") from exc

    @staticmethod
    def _find(session: Session, record: MovieRecord) -> MovieRow | None:
        if record.imdb_id:
            row = session.scalars(select(MovieRow).where(MovieRow.imdb_id == record.imdb_id)).first()
            if row is not None:
                return row
        if record.tmdb_id is not None:
            return session.scalars(select(MovieRow).where(MovieRow.tmdb_id == record.tmdb_id)).first()
        return None

    @staticmethod
    def _claim_tmdb_id(session: Session, row: MovieRow, record: MovieRecord) -> None:
        """Fold a catalog-only row into the imdb-keyed row that now owns its tmdb id."""
        if record.tmdb_id is None or row.tmdb_id == record.tmdb_id:
            return
        other = session.scalars(
            select(MovieRow).where(MovieRow.tmdb_id == record.tmdb_id, MovieRow.id != row.id)
        ).first()
        if other is None:
            return
        if other.imdb_id and other.imdb_id != record.imdb_id:
            raise PersistenceError(
                f"tmdb id {record.tmdb_id} already belongs to {other.imdb_id}",
                identity_key=record.identity_key,
            )
        session.delete(other)
        session.flush()

    def upsert(self, identity_key: str, record: MovieRecord) -> bool:
        """Returns True when a new row was created."""
        if record.identity_key != identity_key:
            raise PersistenceError(
                f"identity key {identity_key} does not match record {record.identity_key}",
                identity_key=identity_key,
            )
        if not record.title:
            raise PersistenceError("movie title is required", identity_key=identity_key)

        try:
            with self._session_factory() as session, session.begin():
                row = self._find(session, record)
                created = row is None
                if row is None:
                    row = MovieRow(title=record.title)
                    session.add(row)
                else:
                    if row.imdb_id and record.imdb_id and row.imdb_id != record.imdb_id:
                        raise PersistenceError(
                            f"tmdb id {record.tmdb_id} is stored under {row.imdb_id}",
                            identity_key=identity_key,
                        )
                    self._claim_tmdb_id(session, row, record)

                for name in MERGED_FIELDS:
                    value = getattr(record, name)
                    if not is_empty(value):
                        setattr(row, name, list(value) if isinstance(value, list) else value)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"upsert failed for {identity_key}: {exc.__class__.__name__}", identity_key=identity_key
            ) from exc

        logger.debug("Movie upserted", extra={"identity_key": identity_key, "created": created})
        return created

    def get(self, identity_key: str) -> MovieRecord | None:
        kind, _, value = identity_key.partition(":")
        if kind == "imdb":
            stmt = select(MovieRow).where(MovieRow.imdb_id == value)
        elif kind == "tmdb" and value.isdigit():
            stmt = select(MovieRow).where(MovieRow.tmdb_id == int(value))
        else:
            return None
        try:
            with self._session_factory() as session:
                row = session.scalars(stmt).first()
                return row.to_record() if row else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"lookup failed for {identity_key}", identity_key=identity_key) from exc

    def count(self, filters: MovieCountFilter | None = None) -> int:
        stmt = select(func.count()).select_from(MovieRow)
        if filters is not None:
            if filters.has_poster is not None:
                stmt = stmt.where(MovieRow.poster_url.isnot(None) if filters.has_poster else MovieRow.poster_url.is_(None))
            if filters.has_description is not None:
                stmt = stmt.where(
                    MovieRow.description.isnot(None) if filters.has_description else MovieRow.description.is_(None)
                )
            if filters.has_cast is not None:
                cast_size = func.json_array_length(MovieRow.cast)
                stmt = stmt.where(cast_size > 0 if filters.has_cast else cast_size == 0)
        try:
            with self._session_factory() as session:
                return int(session.scalar(stmt) or 0)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"count failed: {exc.__class__.__name__}") from exc
