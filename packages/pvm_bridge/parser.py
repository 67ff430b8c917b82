"""Record Parser: chunked delimited text → header-keyed records.

The tokenizer is a two-state machine (normal / inside quotes) that keeps its
partial field, partial row and quote flag between :meth:`RecordTokenizer.feed`
calls, so a chunk may end anywhere (mid-field, mid-quote, between ``\\r`` and
``\\n``, between the two quotes of an escaped ``""``) and the emitted rows are
the same as for the unsplit input.

Quoting rules:

- A quote character opens a quoted section; inside it, ``""`` is a literal
  quote and everything else (delimiters, line breaks) is literal text.
- Unquoted whitespace at either end of a field is trimmed. Text inside quotes
  is kept as is.
- ``\\r``, ``\\n`` and ``\\r\\n`` each end one row.
- Malformed quoting never raises. An unterminated quote at end of input keeps
  its text literally.

Rows that consist of a single empty field are dropped. The first row is the
header; shorter data rows are padded with ``""`` and extra fields are ignored.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import re
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from .logging_setup import get_logger
from .models import Record
from .numeric import is_numeric
from .settings import (
    COLUMN_PATTERNS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DATE_SAMPLE_SIZE,
    DEFAULT_SCAN_ROWS,
)

_logger = get_logger("pvm_bridge.parser")

DEFAULT_DELIMITER = ","
QUOTE = '"'


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


class RecordTokenizer:
    """Incremental delimited-text tokenizer.

    Feed text chunks in order, then call :meth:`finish` once. Each call
    returns the rows completed by that call, as lists of field strings.
    """

    def __init__(self, delimiter: str = DEFAULT_DELIMITER) -> None:
        if len(delimiter) != 1 or delimiter in (QUOTE, "\r", "\n"):
            raise ValueError(f"unsupported delimiter: {delimiter!r}")
        self.delimiter = delimiter
        self._special = re.compile(f"[{re.escape(delimiter)}{re.escape(QUOTE)}\r\n]")

        self._field = ""
        self._row: list[str] = []
        self._in_quotes = False
        # Quoted region of the current field, as offsets into ``_field``.
        self._quote_start: int | None = None
        self._quote_end: int | None = None
        # A chunk ended on a quote while inside quotes: escape or close is
        # decided by the next character.
        self._pending_quote = False
        # A chunk ended on ``\r``: a leading ``\n`` in the next chunk is part
        # of the same line break.
        self._pending_cr = False
        self._finished = False

    def feed(self, chunk: str) -> list[list[str]]:
        if self._finished:
            raise RuntimeError("tokenizer already finished")
        rows: list[list[str]] = []
        n = len(chunk)
        if n == 0:
            return rows
        i = 0

        if self._pending_cr:
            self._pending_cr = False
            if chunk[0] == "\n":
                i = 1

        if self._pending_quote:
            self._pending_quote = False
            if chunk[i] == QUOTE:
                self._field += QUOTE
                i += 1
            else:
                self._close_quote()

        while i < n:
            if self._in_quotes:
                j = chunk.find(QUOTE, i)
                if j < 0:
                    self._field += chunk[i:]
                    break
                self._field += chunk[i:j]
                if j + 1 == n:
                    self._pending_quote = True
                    break
                if chunk[j + 1] == QUOTE:
                    self._field += QUOTE
                    i = j + 2
                else:
                    self._close_quote()
                    i = j + 1
                continue

            m = self._special.search(chunk, i)
            if m is None:
                self._field += chunk[i:]
                break
            j = m.start()
            self._field += chunk[i:j]
            c = chunk[j]
            if c == self.delimiter:
                self._end_field()
                i = j + 1
            elif c == QUOTE:
                if self._quote_start is None:
                    self._quote_start = len(self._field)
                self._in_quotes = True
                i = j + 1
            elif c == "\r":
                self._end_row(rows)
                if j + 1 == n:
                    self._pending_cr = True
                    break
                i = j + 2 if chunk[j + 1] == "\n" else j + 1
            else:
                self._end_row(rows)
                i = j + 1
        return rows

    def finish(self) -> list[list[str]]:
        """Flush the trailing row (if any) as though a line break followed."""

        if self._finished:
            return []
        rows: list[list[str]] = []
        if self._pending_quote:
            self._pending_quote = False
            self._close_quote()
        if self._in_quotes:
            _logger.debug("unterminated quoted field at end of input; kept literally")
            self._in_quotes = False
        if self._field or self._row or self._quote_start is not None:
            self._end_row(rows)
        self._finished = True
        return rows

    # -- internals -----------------------------------------------------------

    def _close_quote(self) -> None:
        self._in_quotes = False
        self._quote_end = len(self._field)

    def _end_field(self) -> None:
        raw = self._field
        if self._quote_start is None:
            value = raw.strip()
        else:
            qs = self._quote_start
            qe = self._quote_end if self._quote_end is not None else len(raw)
            value = raw[:qs].lstrip() + raw[qs:qe] + raw[qe:].rstrip()
        self._row.append(value)
        self._field = ""
        self._quote_start = None
        self._quote_end = None

    def _end_row(self, out: list[list[str]]) -> None:
        self._end_field()
        row = self._row
        self._row = []
        if len(row) == 1 and row[0] == "":
            return
        out.append(row)


# ---------------------------------------------------------------------------
# Rows → records
# ---------------------------------------------------------------------------


class RecordAssembler:
    """Turns row arrays into records keyed by the first row (the header)."""

    def __init__(self, header: Sequence[str] | None = None) -> None:
        self.header: tuple[str, ...] | None = tuple(header) if header is not None else None

    def push(self, row: Sequence[str]) -> Record | None:
        """Return the record for ``row``, or ``None`` when ``row`` became the header."""

        if self.header is None:
            self.header = tuple(row)
            return None
        width = len(self.header)
        values = list(row[:width])
        if len(values) < width:
            values.extend([""] * (width - len(values)))
        return MappingProxyType(dict(zip(self.header, values, strict=True)))


def iter_rows(chunks: Iterable[str], *, delimiter: str = DEFAULT_DELIMITER) -> Iterator[list[str]]:
    """Tokenize text chunks into row arrays (header row included)."""

    tokenizer = RecordTokenizer(delimiter)
    for chunk in chunks:
        yield from tokenizer.feed(chunk)
    yield from tokenizer.finish()


def _cell_text(cell: object) -> str:
    if cell is None:
        return ""
    return cell if isinstance(cell, str) else str(cell)


def text_rows(rows: Iterable[Sequence[object]]) -> Iterator[list[str]]:
    """Pre-tabularized row arrays as text rows.

    Cells are converted to text (``None`` becomes ``""``). Rows whose cells
    are all blank are skipped, like blank lines in delimited text.
    """

    for row in rows:
        cells = [_cell_text(c) for c in row]
        if any(c.strip() for c in cells):
            yield cells


def records_from_rows(rows: Iterable[Sequence[object]]) -> Iterator[Record]:
    """Records from pre-tabularized row arrays (e.g. a spreadsheet sheet)."""

    assembler = RecordAssembler()
    for cells in text_rows(rows):
        record = assembler.push(cells)
        if record is not None:
            yield record


def iter_records(chunks: Iterable[str], *, delimiter: str = DEFAULT_DELIMITER) -> Iterator[Record]:
    """Lazily parse text chunks into records."""

    assembler = RecordAssembler()
    for row in iter_rows(chunks, delimiter=delimiter):
        record = assembler.push(row)
        if record is not None:
            yield record


async def aiter_records(
    chunks: AsyncIterable[str], *, delimiter: str = DEFAULT_DELIMITER
) -> AsyncIterator[Record]:
    """Async variant of :func:`iter_records`; suspends only while awaiting chunks."""

    tokenizer = RecordTokenizer(delimiter)
    assembler = RecordAssembler()
    async for chunk in chunks:
        for row in tokenizer.feed(chunk):
            record = assembler.push(row)
            if record is not None:
                yield record
    for row in tokenizer.finish():
        record = assembler.push(row)
        if record is not None:
            yield record


# ---------------------------------------------------------------------------
# File source
# ---------------------------------------------------------------------------


class FileSource:
    """A file read in fixed-size byte chunks and decoded incrementally.

    ``utf-8-sig`` drops a leading byte-order mark. Multi-byte characters split
    across reads are reassembled by the incremental decoder.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        encoding: str = "utf-8-sig",
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.path = Path(path)
        self.chunk_size = chunk_size
        self.encoding = encoding
        self.bytes_read = 0

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    def iter_text(self) -> Iterator[str]:
        decoder = codecs.getincrementaldecoder(self.encoding)()
        self.bytes_read = 0
        with self.path.open("rb") as fh:
            while True:
                data = fh.read(self.chunk_size)
                if not data:
                    break
                self.bytes_read += len(data)
                text = decoder.decode(data)
                if text:
                    yield text
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

    async def aiter_text(self) -> AsyncIterator[str]:
        decoder = codecs.getincrementaldecoder(self.encoding)()
        self.bytes_read = 0
        fh = await asyncio.to_thread(self.path.open, "rb")
        try:
            while True:
                data = await asyncio.to_thread(fh.read, self.chunk_size)
                if not data:
                    break
                self.bytes_read += len(data)
                text = decoder.decode(data)
                if text:
                    yield text
        finally:
            fh.close()
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail


def read_chunks(path: str | Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    return FileSource(path, chunk_size=chunk_size).iter_text()


def aread_chunks(path: str | Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[str]:
    return FileSource(path, chunk_size=chunk_size).aiter_text()


# ---------------------------------------------------------------------------
# Inspection helpers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class FileScan:
    headers: tuple[str, ...]
    sample_rows: tuple[Record, ...]


def scan_file(
    path: str | Path,
    max_rows: int = DEFAULT_SCAN_ROWS,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    delimiter: str = DEFAULT_DELIMITER,
) -> FileScan:
    """Read the header and up to ``max_rows`` records, then stop reading."""

    tokenizer = RecordTokenizer(delimiter)
    assembler = RecordAssembler()
    sample: list[Record] = []

    def take(rows: list[list[str]]) -> bool:
        for row in rows:
            record = assembler.push(row)
            if record is not None:
                sample.append(record)
                if len(sample) >= max_rows:
                    return True
        return False

    with contextlib.closing(read_chunks(path, chunk_size)) as chunks:
        done = False
        for chunk in chunks:
            if take(tokenizer.feed(chunk)):
                done = True
                break
        if not done:
            take(tokenizer.finish())

    return FileScan(assembler.header or (), tuple(sample))


@dataclass(frozen=True, slots=True)
class DetectedColumns:
    """Best-guess column roles from header names and sample values."""

    date: str | None = None
    sales: str | None = None
    quantity: str | None = None
    cost: str | None = None
    dimensions: tuple[str, ...] = field(default_factory=tuple)


def detect_column_mappings(
    headers: Sequence[str], sample_rows: Sequence[Mapping[str, str]]
) -> DetectedColumns:
    """Guess which headers hold the date, sales, quantity and cost.

    Roles are filled in order (date, sales, quantity, cost). For each role the
    pattern list is tried in order, and the first unused header matching the
    earliest pattern wins. Leftover columns whose non-blank sample values are
    not all numeric become dimension candidates.
    """

    used: set[str] = set()
    found: dict[str, str | None] = {}
    for role in ("date", "sales", "quantity", "cost"):
        found[role] = None
        for pattern in COLUMN_PATTERNS[role]:
            match = next((h for h in headers if h not in used and pattern.search(h)), None)
            if match is not None:
                found[role] = match
                used.add(match)
                break

    dimensions = []
    for header in headers:
        if header in used:
            continue
        values = [row.get(header, "") for row in sample_rows]
        if not all(not v or not v.strip() or is_numeric(v) for v in values):
            dimensions.append(header)

    return DetectedColumns(
        date=found["date"],
        sales=found["sales"],
        quantity=found["quantity"],
        cost=found["cost"],
        dimensions=tuple(dimensions),
    )


def extract_date_samples(
    sample_rows: Iterable[Mapping[str, str]],
    column: str,
    limit: int = DEFAULT_DATE_SAMPLE_SIZE,
) -> list[str]:
    """First ``limit`` distinct non-blank values of ``column``, trimmed."""

    seen: dict[str, None] = {}
    for row in sample_rows:
        value = (row.get(column) or "").strip()
        if value:
            seen.setdefault(value, None)
            if len(seen) >= limit:
                break
    return list(seen)


__all__ = [
    "DetectedColumns",
    "FileScan",
    "FileSource",
    "RecordAssembler",
    "RecordTokenizer",
    "aiter_records",
    "aread_chunks",
    "detect_column_mappings",
    "extract_date_samples",
    "iter_records",
    "iter_rows",
    "read_chunks",
    "records_from_rows",
    "scan_file",
    "text_rows",
]
