import pytest

from lantern import OfflineConfig


def test_fallbacks_resolve_against_base_url():
    config = OfflineConfig(
        generation_name="MOVIE_MASTER_V1",
        base_url="https://movies.example.com",
        manifest=["/", "/imdb-logo.svg", "https://cdn.example.com/fonts.css"],
    )

    assert config.manifest_urls == (
        "https://movies.example.com/",
        "https://movies.example.com/imdb-logo.svg",
        "https://cdn.example.com/fonts.css",
    )
    assert config.navigation_fallback == "https://movies.example.com/offline"
    # Defaults to the navigation fallback
    assert config.generic_fallback == "https://movies.example.com/offline"


def test_generic_fallback():
    config = OfflineConfig(
        generation_name="v1",
        base_url="https://movies.example.com",
        navigation_fallback_url="/offline.html",
        generic_fallback_url="/unavailable.svg",
    )

    assert config.navigation_fallback == "https://movies.example.com/offline.html"
    assert config.generic_fallback == "https://movies.example.com/unavailable.svg"


def test_values_are_normalized():
    config = OfflineConfig(
        generation_name="v1",
        base_url="https://movies.example.com",
        manifest=["https://movies.example.com/"],
        structured_origins=["HTTPS://WWW.OMDBAPI.COM/"],
        fetchable_schemes=["HTTPS"],
    )

    assert config.manifest == ("https://movies.example.com/",)
    assert config.structured_origins == ("https://www.omdbapi.com",)
    assert config.fetchable_schemes == ("https",)
    assert config.is_structured_origin("https://www.omdbapi.com/?s=batman")


def test_empty_generation_name():
    with pytest.raises(ValueError, match="generation_name"):
        OfflineConfig(generation_name="")


def test_relative_manifest_without_base_url():
    with pytest.raises(ValueError, match="'/imdb-logo.svg' requires a base_url"):
        OfflineConfig(generation_name="v1", manifest=["/imdb-logo.svg"])


@pytest.mark.parametrize(
    "fallbacks, url",
    [
        ({}, "/offline"),
        ({"navigation_fallback_url": "https://movies.example.com/offline", "generic_fallback_url": "/x.svg"}, "/x.svg"),
    ],
)
def test_relative_fallback_without_base_url(fallbacks: dict, url: str):
    with pytest.raises(ValueError, match=f"'{url}' requires a base_url"):
        OfflineConfig(generation_name="v1", **fallbacks)


def test_absolute_fallbacks_without_base_url():
    config = OfflineConfig(
        generation_name="v1",
        manifest=["https://movies.example.com/offline"],
        navigation_fallback_url="https://movies.example.com/offline",
    )

    assert config.navigation_fallback == "https://movies.example.com/offline"
    assert config.generic_fallback == "https://movies.example.com/offline"


def test_manifest_urls_are_normalized():
    config = OfflineConfig(
        generation_name="v1",
        base_url="https://movies.example.com",
        manifest=["HTTPS://Movies.Example.com:443", "/films/amélie"],
    )

    assert config.manifest_urls == ("https://movies.example.com/", "https://movies.example.com/films/am%C3%A9lie")


def test_base_url_must_be_fetchable():
    with pytest.raises(ValueError, match="base_url"):
        OfflineConfig(generation_name="v1", base_url="file:///srv/movies")


def test_malformed_origin_pattern():
    with pytest.raises(ValueError, match="scheme://host"):
        OfflineConfig(generation_name="v1", structured_origins=["www.omdbapi.com"])


def test_config_is_frozen():
    config = OfflineConfig(generation_name="v1", base_url="https://movies.example.com")

    with pytest.raises(AttributeError):
        config.generation_name = "v2"  # type: ignore[misc]
