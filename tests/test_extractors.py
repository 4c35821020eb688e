from datetime import date

import pytest

from app.core.errors import ExtractionError
from app.services.extractors import (
    extract_id_listing_item,
    extract_imdb_listing_card,
    extract_imdb_title_page,
    extract_tmdb_movie,
    parse_release_date,
    parse_runtime,
)
from app.services.sources import RawPayload

IMAGE_BASE = "https://image.tmdb.org/t/p/w500"

TITLE_PAGE = """
<html>
<head>
  <meta property="og:title" content="Past Lives (2023) | Drama, Romance">
  <meta name="description" content="Meta description.">
</head>
<body>
  <h1 data-testid="hero__pageTitle"><span>  Past Lives </span></h1>
  <a href="/title/tt13238346/releaseinfo">2023</a>
  <li data-testid="title-pc-principal-credit">
    <a href="/name/nm3918035/">Celine Song</a>
  </li>
  <span data-testid="plot-xl">Nora and Hae Sung, two deeply connected childhood friends.</span>
  <div data-testid="hero-media__poster"><img src="https://m.media-amazon.com/poster.jpg"></div>
  <div data-testid="genres">
    <a href="/search/title?genres=drama">Drama</a>
    <a href="/search/title?genres=romance">Romance</a>
    <a href="/search/title?genres=drama"> drama </a>
  </div>
  <a data-testid="title-cast-item__actor" href="/name/nm1">Greta Lee</a>
  <a data-testid="title-cast-item__actor" href="/name/nm2">Teo Yoo</a>
  <a data-testid="title-cast-item__actor" href="/name/nm2">Teo Yoo</a>
  <a data-testid="title-cast-item__actor" href="/name/nm3">John Magaro</a>
  <li data-testid="title-techspec_runtime"><span>Runtime</span><div>1h 45m</div></li>
</body>
</html>
"""


def test_tmdb_detail_maps_all_fields() -> None:
    raw = RawPayload(
        source="tmdb",
        key=603,
        body={
            "id": 603,
            "title": " The Matrix ",
            "release_date": "1999-03-30",
            "overview": "A hacker learns the truth.",
            "poster_path": "/matrix.jpg",
            "runtime": 136,
            "genres": [{"name": "Action"}, {"name": "Science Fiction"}, {"name": "action"}],
            "external_ids": {"imdb_id": "tt0133093"},
            "credits": {
                "cast": [
                    {"name": "Carrie-Anne Moss", "order": 2},
                    {"name": "Keanu Reeves", "order": 0},
                    {"name": "Laurence Fishburne", "order": 1},
                ],
                "crew": [
                    {"name": "Bill Pope", "job": "Director of Photography"},
                    {"name": "Lana Wachowski", "job": "Director"},
                ],
            },
        },
    )

    movie = extract_tmdb_movie(raw, image_base_url=IMAGE_BASE, cast_limit=2)

    assert movie.title == "The Matrix"
    assert movie.release_date == date(1999, 3, 30)
    assert movie.imdb_id == "tt0133093"
    assert movie.tmdb_id == 603
    assert movie.poster_url == "https://image.tmdb.org/t/p/w500/matrix.jpg"
    assert movie.director == "Lana Wachowski"
    assert movie.genres == ["Action", "Science Fiction"]
    assert movie.cast == ["Keanu Reeves", "Laurence Fishburne"]
    assert movie.runtime == 136
    assert movie.identity_key == "imdb:tt0133093"


def test_tmdb_listing_item_tolerates_missing_fields() -> None:
    raw = RawPayload(source="tmdb", body={"id": 42, "title": "Sparse", "genre_ids": [18, 99999], "runtime": 0})

    movie = extract_tmdb_movie(raw, image_base_url=IMAGE_BASE)

    assert movie.tmdb_id == 42
    assert movie.imdb_id is None
    assert movie.release_date is None
    assert movie.description is None
    assert movie.poster_url is None
    assert movie.cast == []
    assert movie.genres == ["Drama"]
    assert movie.runtime is None
    assert movie.identity_key == "tmdb:42"


@pytest.mark.parametrize(
    "body",
    [
        {"title": "No ids at all"},
        {"id": None, "imdb_id": "", "title": "Blank ids"},
        {"id": "abc", "imdb_id": "not-an-id"},
    ],
)
def test_tmdb_payload_without_identity_is_rejected(body: dict) -> None:
    with pytest.raises(ExtractionError) as exc:
        extract_tmdb_movie(RawPayload(source="tmdb", body=body), image_base_url=IMAGE_BASE)

    assert exc.value.missing_identity


def test_tmdb_non_object_payload_is_malformed() -> None:
    with pytest.raises(ExtractionError) as exc:
        extract_tmdb_movie(RawPayload(source="tmdb", body=["not", "a", "dict"]), image_base_url=IMAGE_BASE)

    assert exc.value.reason == ExtractionError.MALFORMED_PAYLOAD


def test_imdb_title_page_follows_selector_priority() -> None:
    movie = extract_imdb_title_page(RawPayload(source="imdb", body=TITLE_PAGE, key="tt13238346"))

    assert movie.imdb_id == "tt13238346"
    assert movie.title == "Past Lives"
    assert movie.release_date == date(2023, 1, 1)
    assert movie.director == "Celine Song"
    assert movie.description == "Nora and Hae Sung, two deeply connected childhood friends."
    assert movie.poster_url == "https://m.media-amazon.com/poster.jpg"
    assert movie.genres == ["Drama", "Romance"]
    assert movie.cast == ["Greta Lee", "Teo Yoo", "John Magaro"]
    assert movie.runtime == 105


def test_imdb_title_page_falls_back_to_meta_and_json_ld() -> None:
    page = """
    <html><head>
      <meta property="og:title" content="Oppenheimer (2023) ⭐ 8.3 | Biography, Drama">
      <meta name="description" content="The story of J. Robert Oppenheimer.">
      <script type="application/ld+json">
        {"@type": "Movie", "name": "Oppenheimer", "datePublished": "2023-07-21",
         "genre": ["Biography", "Drama"], "duration": "PT3H",
         "director": [{"@type": "Person", "name": "Christopher Nolan"}],
         "actor": [{"name": "Cillian Murphy"}, {"name": "Emily Blunt"}]}
      </script>
    </head><body></body></html>
    """

    movie = extract_imdb_title_page(RawPayload(source="imdb", body=page, key="tt15398776"))

    assert movie.title == "Oppenheimer"
    assert movie.description == "The story of J. Robert Oppenheimer."
    assert movie.release_date == date(2023, 7, 21)
    assert movie.director == "Christopher Nolan"
    assert movie.genres == ["Biography", "Drama"]
    assert movie.cast == ["Cillian Murphy", "Emily Blunt"]
    assert movie.runtime == 180


@pytest.mark.parametrize(
    "image",
    [
        '{"@type": "ImageObject", "url": "https://img/poster.jpg"}',
        '[{"@type": "ImageObject", "contentUrl": "https://img/poster.jpg"}]',
        '"https://img/poster.jpg"',
    ],
)
def test_imdb_json_ld_image_yields_the_poster_url(image: str) -> None:
    page = f"""
    <html><head>
      <script type="application/ld+json">{{"@type": "Movie", "name": "Dune", "image": {image}}}</script>
    </head><body></body></html>
    """

    movie = extract_imdb_title_page(RawPayload(source="imdb", body=page, key="tt1160419"))

    assert movie.poster_url == "https://img/poster.jpg"


def test_imdb_title_page_without_title_still_extracts() -> None:
    movie = extract_imdb_title_page(RawPayload(source="imdb", body="<html><body></body></html>", key="tt0000001"))

    assert movie.imdb_id == "tt0000001"
    assert movie.title == ""
    assert movie.genres == []


def test_imdb_title_page_without_key_or_canonical_is_missing_identity() -> None:
    with pytest.raises(ExtractionError) as exc:
        extract_imdb_title_page(RawPayload(source="imdb", body="<html><h1>Orphan</h1></html>"))

    assert exc.value.missing_identity


def test_imdb_listing_card() -> None:
    card = """
    <div class="ipc-poster-card">
      <img alt="Dune: Part Two" src="https://m.media-amazon.com/dune.jpg">
      <a data-testid="ipc-poster-card-title" href="/title/tt15239678/?ref_=in_theaters">
        <span>Dune: Part Two</span>
      </a>
    </div>
    """

    movie = extract_imdb_listing_card(RawPayload(source="imdb", body=card))

    assert movie.imdb_id == "tt15239678"
    assert movie.title == "Dune: Part Two"
    assert movie.poster_url == "https://m.media-amazon.com/dune.jpg"


def test_imdb_listing_card_without_link_is_missing_identity() -> None:
    card = '<div class="ipc-poster-card"><img alt="Mystery" src="x.jpg"></div>'

    with pytest.raises(ExtractionError) as exc:
        extract_imdb_listing_card(RawPayload(source="imdb", body=card))

    assert exc.value.missing_identity


def test_id_listing_item() -> None:
    movie = extract_id_listing_item(RawPayload(source="static", body={"imdb_id": " tt1517268 "}))

    assert movie.imdb_id == "tt1517268"
    assert movie.title == ""


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("2021", date(2021, 1, 1)),
        (2019, date(2019, 1, 1)),
        ("2023-07-21", date(2023, 7, 21)),
        ("July 21, 2023 (United States)", date(2023, 7, 21)),
        ("21 July 2023", date(2023, 7, 21)),
        ("Mar 2024", date(2024, 3, 1)),
        ("sometime next year", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_release_date(text, expected) -> None:
    assert parse_release_date(text) == expected


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("130", 130),
        ("2h 10m", 130),
        ("1 hour 54 minutes", 114),
        ("95 min", 95),
        ("PT1H30M", 90),
        (0, None),
        ("-5", None),
        ("unknown", None),
    ],
)
def test_parse_runtime(text, expected) -> None:
    assert parse_runtime(text) == expected
