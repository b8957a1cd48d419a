from __future__ import annotations

import csv
from collections.abc import AsyncIterable, AsyncIterator, Mapping
from dataclasses import dataclass

from shortlinks.core.links import is_valid_url, normalize_header, normalize_string, parse_datetime, split_link
from shortlinks.schemas.imports import LinkMapping
from shortlinks.services.cursor_store import ErrorLink
from shortlinks.services.links import LinkIntent


@dataclass(slots=True)
class MappedRow:
    success: bool
    data: LinkIntent | None = None
    error: str | None = None
    domain: str = ""
    key: str = ""

    @classmethod
    def failure(cls, error: str, *, domain: str = "", key: str = "") -> "MappedRow":
        return cls(success=False, error=error, domain=domain, key=key)

    def to_error_link(self) -> ErrorLink:
        return ErrorLink(domain=self.domain, key=self.key, error=self.error or "Unknown error occurred")


def map_csv_row(row: Mapping[str, str | None], mapping: LinkMapping) -> MappedRow:
    """Map one CSV row to a link intent. Malformed input yields a failure, never an exception."""
    try:
        return _map_csv_row(row, mapping)
    except Exception as exc:  # one bad row must not abort the batch
        return MappedRow.failure(str(exc) or "Unknown error occurred")


def _map_csv_row(row: Mapping[str, str | None], mapping: LinkMapping) -> MappedRow:
    headers: dict[str, str] = {}
    for header in row:
        headers.setdefault(normalize_header(header), header)

    def value_of(column: str | None) -> str:
        if not column:
            return ""
        header = headers.get(normalize_header(column))
        if header is None:
            return ""
        return (row.get(header) or "").strip()

    link_value = value_of(mapping.link)
    url_value = value_of(mapping.url)

    if not link_value:
        return MappedRow.failure("Missing required field: link")

    domain, key = split_link(link_value)
    if not url_value:
        return MappedRow.failure("Missing required field: url", domain=domain, key=key)
    if not is_valid_url(url_value):
        return MappedRow.failure(f"Invalid URL format: {url_value}", domain=domain, key=key)

    intent = LinkIntent(domain=domain, key=key, url=url_value)

    title = value_of(mapping.title)
    if title:
        intent.title = title

    description = value_of(mapping.description)
    if description:
        intent.description = description

    created_at = value_of(mapping.created_at)
    if created_at:
        # unparseable dates are dropped, the row is still imported
        intent.created_at = parse_datetime(created_at)

    tags = value_of(mapping.tags)
    if tags:
        intent.tags = _split_tags(tags) or None

    return MappedRow(success=True, data=intent, domain=domain, key=key)


def _split_tags(raw: str) -> list[str]:
    tags: list[str] = []
    seen: set[str] = set()
    for chunk in raw.split(","):
        tag = normalize_string(chunk)
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        tags.append(tag)
    return tags


async def iter_csv_records(lines: AsyncIterable[str]) -> AsyncIterator[list[str]]:
    """Parse CSV records from a line stream as lines arrive.

    A record may span several lines when a quoted field contains newlines. As
    with the default ``csv`` dialect, a quote only opens a quoted field at the
    start of a field; elsewhere it is literal text. Blank lines are skipped.
    """
    pending: list[str] = []
    in_quotes = False
    async for line in lines:
        pending.append(line)
        in_quotes = _ends_inside_quotes(line, in_quotes=in_quotes)
        if in_quotes:
            continue

        text = "\n".join(pending)
        pending = []
        if not text.strip():
            continue
        yield next(csv.reader([text]))

    if pending:
        raise csv.Error("unexpected end of data: unterminated quoted field")


def _ends_inside_quotes(line: str, *, in_quotes: bool) -> bool:
    """Scan one physical line, starting inside a quoted field or at the start of a record."""
    field_start = not in_quotes
    index = 0
    while index < len(line):
        char = line[index]
        if in_quotes:
            if char == '"':
                if line[index + 1 : index + 2] == '"':
                    index += 1
                else:
                    in_quotes = False
        elif char == '"' and field_start:
            in_quotes = True
        field_start = not in_quotes and char == ","
        index += 1
    return in_quotes


async def iter_csv_rows(lines: AsyncIterable[str]) -> AsyncIterator[dict[str, str]]:
    """Yield header-keyed rows; the first record is the header."""
    header: list[str] | None = None
    async for record in iter_csv_records(lines):
        if header is None:
            header = [name.lstrip("\ufeff").strip() for name in record]
            continue
        yield {name: record[index] if index < len(record) else "" for index, name in enumerate(header)}


class RowWindow:
    """Take at most ``limit`` rows starting at row index ``start`` of a row stream.

    Rows before ``start`` are still read, so the stream position stays exact.
    Once the window is full one more row is read to learn whether the stream
    has ended; ``is_complete`` is only true when it has.
    """

    def __init__(self, *, start: int, limit: int) -> None:
        self.start = max(0, start)
        self.limit = max(0, limit)
        self.position = 0
        self.taken = 0
        self.is_complete = False

    async def rows(self, source: AsyncIterable[dict[str, str]]) -> AsyncIterator[tuple[int, dict[str, str]]]:
        async for row in source:
            if self.position < self.start:
                self.position += 1
                continue
            if self.taken >= self.limit:
                return
            yield self.position, row
            self.position += 1
            self.taken += 1
        self.is_complete = True
