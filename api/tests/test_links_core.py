from datetime import datetime, timezone

from shortlinks.core.links import (
    ROOT_KEY,
    is_valid_url,
    normalize_header,
    normalize_string,
    parse_datetime,
    short_link,
    split_link,
)


def test_normalize_header_folds_case_spacing_and_punctuation() -> None:
    assert normalize_header("\ufeffShort Link") == "shortlink"
    assert normalize_header("short_link") == "shortlink"
    assert normalize_header("Created-At") == "createdat"


def test_normalize_string_collapses_whitespace() -> None:
    assert normalize_string("  Q3   launch\t") == "Q3 launch"


def test_split_link_strips_scheme_and_lowercases_domain() -> None:
    assert split_link("https://Acme.CO/Spring/Sale") == ("acme.co", "Spring/Sale")
    assert split_link("acme.co") == ("acme.co", ROOT_KEY)
    assert split_link("acme.co/") == ("acme.co", ROOT_KEY)


def test_short_link_uses_bare_domain_for_root_key() -> None:
    assert short_link("acme.co", ROOT_KEY) == "https://acme.co"
    assert short_link("acme.co", "promo") == "https://acme.co/promo"


def test_is_valid_url_requires_scheme_and_host() -> None:
    assert is_valid_url("https://example.com/landing?ref=csv")
    assert is_valid_url("mailto:team@example.com")
    assert not is_valid_url("example.com/landing")
    assert not is_valid_url("https://")
    assert not is_valid_url("not a url")


def test_parse_datetime_accepts_iso_and_epoch_values() -> None:
    assert parse_datetime("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_datetime("2024-03-01") == datetime(2024, 3, 1, tzinfo=timezone.utc)
    assert parse_datetime("1709287200") == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_datetime("1709287200000") == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_parse_datetime_returns_none_for_garbage() -> None:
    assert parse_datetime("next tuesday-ish??") is None
    assert parse_datetime("   ") is None
