from collections.abc import Iterator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app.core.settings import Settings
from app.services.movie_store import SqlMovieStore


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="test", tmdb_api_key="test-key", database_url="sqlite://")


@pytest.fixture
def store(settings: Settings) -> Iterator[SqlMovieStore]:
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    movie_store = SqlMovieStore(settings, engine=engine)
    movie_store.init_schema()
    yield movie_store
    movie_store.close()
