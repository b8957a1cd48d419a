import asyncio
import csv
from datetime import datetime, timezone

import pytest

from shortlinks.jobs.csv_rows import RowWindow, iter_csv_records, iter_csv_rows, map_csv_row
from shortlinks.schemas.imports import LinkMapping

MAPPING = LinkMapping(
    link="Short Link",
    url="Destination",
    title="Title",
    tags="Tags",
    created_at="Created",
)


async def _lines(text: str):
    for line in text.splitlines():
        yield line


async def _collect(source):
    return [item async for item in source]


def test_map_csv_row_builds_intent_from_normalized_headers() -> None:
    row = {
        "\ufeffshort_link": "https://Acme.co/spring",
        "destination": " https://example.com/spring ",
        "TITLE": "Spring sale",
        "tags": "Promo, promo ,  Q2 launch,",
        "created": "2024-03-01T10:00:00Z",
    }

    mapped = map_csv_row(row, MAPPING)

    assert mapped.success is True
    assert mapped.data is not None
    assert (mapped.data.domain, mapped.data.key) == ("acme.co", "spring")
    assert mapped.data.url == "https://example.com/spring"
    assert mapped.data.title == "Spring sale"
    assert mapped.data.tags == ["Promo", "Q2 launch"]
    assert mapped.data.created_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_map_csv_row_reports_missing_and_invalid_fields() -> None:
    missing_link = map_csv_row({"Short Link": "", "Destination": "https://example.com"}, MAPPING)
    missing_url = map_csv_row({"Short Link": "acme.co/a", "Destination": ""}, MAPPING)
    invalid_url = map_csv_row({"Short Link": "acme.co/b", "Destination": "example.com/b"}, MAPPING)

    assert missing_link.error == "Missing required field: link"
    assert (missing_url.domain, missing_url.key, missing_url.error) == (
        "acme.co",
        "a",
        "Missing required field: url",
    )
    assert invalid_url.error == "Invalid URL format: example.com/b"
    assert invalid_url.to_error_link().key == "b"


def test_map_csv_row_drops_unparseable_created_at_but_keeps_row() -> None:
    mapped = map_csv_row(
        {"Short Link": "acme.co/c", "Destination": "https://example.com", "Created": "sometime"},
        MAPPING,
    )
    assert mapped.success is True
    assert mapped.data is not None
    assert mapped.data.created_at is None


def test_iter_csv_records_joins_quoted_multiline_fields() -> None:
    text = 'link,url,title\nacme.co/a,https://example.com,"two\nlines"\n\nacme.co/b,https://example.com,"say ""hi"""\n'

    records = asyncio.run(_collect(iter_csv_records(_lines(text))))

    assert records == [
        ["link", "url", "title"],
        ["acme.co/a", "https://example.com", "two\nlines"],
        ["acme.co/b", "https://example.com", 'say "hi"'],
    ]


def test_iter_csv_records_rejects_unterminated_quote() -> None:
    with pytest.raises(csv.Error):
        asyncio.run(_collect(iter_csv_records(_lines('link,url\n"acme.co/a,https://example.com\n'))))


def test_iter_csv_rows_pads_short_records() -> None:
    rows = asyncio.run(_collect(iter_csv_rows(_lines("\ufefflink,url,title\nacme.co/a,https://example.com\n"))))
    assert rows == [{"link": "acme.co/a", "url": "https://example.com", "title": ""}]


def test_row_window_resumes_after_start_and_detects_more_rows() -> None:
    source = [{"n": str(index)} for index in range(7)]

    async def rows():
        for row in source:
            yield row

    window = RowWindow(start=2, limit=3)
    taken = asyncio.run(_collect(window.rows(rows())))

    assert [index for index, _ in taken] == [2, 3, 4]
    assert [row["n"] for _, row in taken] == ["2", "3", "4"]
    assert window.taken == 3
    assert window.is_complete is False


def test_row_window_is_complete_when_stream_ends_exactly_at_limit() -> None:
    async def rows():
        for index in range(3):
            yield {"n": str(index)}

    window = RowWindow(start=0, limit=3)
    asyncio.run(_collect(window.rows(rows())))

    assert window.taken == 3
    assert window.is_complete is True


def test_row_window_past_end_takes_nothing() -> None:
    async def rows():
        for index in range(2):
            yield {"n": str(index)}

    window = RowWindow(start=5, limit=3)
    taken = asyncio.run(_collect(window.rows(rows())))

    assert taken == []
    assert window.is_complete is True


def test_iter_csv_records_keeps_literal_quotes_inside_unquoted_fields() -> None:
    text = (
        "link,url,title\n"
        'acme.co/tv,https://example.com/tv,27" monitor\n'
        'acme.co/desk,https://example.com/desk,"quoted, with comma"\n'
        'acme.co/rack,https://example.com/rack,19" rack "pro"\n'
    )

    records = asyncio.run(_collect(iter_csv_records(_lines(text))))

    assert records[1:] == [
        ["acme.co/tv", "https://example.com/tv", '27" monitor'],
        ["acme.co/desk", "https://example.com/desk", "quoted, with comma"],
        ["acme.co/rack", "https://example.com/rack", '19" rack "pro"'],
    ]


def test_iter_csv_records_matches_csv_reader_on_mixed_quoting() -> None:
    text = 'a,b\n"multi\nline ""x""",tail"s\nplain,"end"\n'

    records = asyncio.run(_collect(iter_csv_records(_lines(text))))

    assert records == list(csv.reader(text.splitlines(keepends=True)))
