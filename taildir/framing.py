"""Record framers: split raw file bytes into discrete records.

Every framer exposes the same pure call::

    records, consumed = framer.frame(data, base_offset, limit, final)

``data`` holds the bytes starting at absolute file offset ``base_offset``.
``consumed`` counts the leading bytes that were fully accounted for (emitted
or deliberately dropped); everything after it is offered again on the next
call once more bytes have arrived. ``final`` asks the framer to flush records
it would otherwise hold back because they might still be growing.
"""

import re
from dataclasses import dataclass
from typing import Iterator, Protocol, runtime_checkable

from taildir.config import (
    DelimitedConfig,
    FixedWidthConfig,
    FramingConfig,
    LineConfig,
    RegexPairConfig,
    TaggedBlockConfig,
)

_LINE_BREAKS = b"\r\n"


@dataclass(frozen=True)
class FramedRecord:
    body: bytes
    offset: int  # absolute byte offset of the record start


@runtime_checkable
class RecordFramer(Protocol):
    def frame(
        self, data: bytes, base_offset: int, limit: int, final: bool = False
    ) -> tuple[list[FramedRecord], int]: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _iter_lines(data: bytes, final: bool) -> Iterator[tuple[int, int, int]]:
    """Yield ``(start, end, next_start)`` for each line in *data*.

    ``end`` excludes the terminator (``\\n`` or ``\\r\\n``). The unterminated
    tail is only yielded when *final* is set.
    """
    start = 0
    size = len(data)
    while start < size:
        nl = data.find(b"\n", start)
        if nl == -1:
            if final:
                yield start, size, size
            return
        end = nl - 1 if nl > start and data[nl - 1] == 0x0D else nl
        yield start, end, nl + 1
        start = nl + 1


# ---------------------------------------------------------------------------
# Framers
# ---------------------------------------------------------------------------


class LineFraming:
    """One record per line (or per ``lines_per_record`` lines)."""

    def __init__(self, lines_per_record: int = 1, skip_header: bool = False):
        self.lines_per_record = lines_per_record
        self.skip_header = skip_header

    def frame(self, data, base_offset, limit, final=False):
        records: list[FramedRecord] = []
        consumed = 0
        pending: list[tuple[int, int]] = []
        last_next = 0

        for start, end, nxt in _iter_lines(data, final):
            if len(records) >= limit:
                break
            if self.skip_header and base_offset + start == 0:
                consumed = nxt
                continue
            pending.append((start, end))
            last_next = nxt
            if len(pending) == self.lines_per_record:
                records.append(self._join(data, base_offset, pending))
                pending = []
                consumed = nxt

        if final and pending and len(records) < limit:
            records.append(self._join(data, base_offset, pending))
            consumed = last_next
        return records, consumed

    @staticmethod
    def _join(data, base_offset, spans) -> FramedRecord:
        body = b"\n".join(data[s:e] for s, e in spans)
        return FramedRecord(body, base_offset + spans[0][0])


class TaggedBlockFraming:
    """Multi-line ``<node>...</node>`` blocks; text outside blocks is dropped."""

    def __init__(self, node: str):
        self.node = node
        name = re.escape(node.encode("utf-8"))
        self._open_re = re.compile(rb"<" + name + rb"(?=[\s/>])")
        self._self_closing_re = re.compile(rb"<" + name + rb"(?:\s[^<>]*)?/>")
        self._close = b"</" + node.encode("utf-8") + b">"

    def frame(self, data, base_offset, limit, final=False):
        records: list[FramedRecord] = []
        consumed = 0
        block_start = None

        for start, end, nxt in _iter_lines(data, final):
            if len(records) >= limit:
                break
            line = data[start:end]
            pos = 0

            # A single line may hold several blocks.
            while True:
                if block_start is None:
                    opened = self._open_re.search(line, pos)
                    if opened is None:
                        break
                    if len(records) >= limit:
                        return records, start + opened.start()
                    block_start = start + opened.start()
                    self_closing = self._self_closing_re.match(line, opened.start())
                    if self_closing:
                        records.append(FramedRecord(
                            data[block_start:start + self_closing.end()], base_offset + block_start))
                        block_start = None
                        pos = self_closing.end()
                        continue
                    pos = opened.end()

                idx = line.find(self._close, pos)
                if idx == -1:
                    break
                block_end = start + idx + len(self._close)
                records.append(FramedRecord(data[block_start:block_end], base_offset + block_start))
                block_start = None
                pos = idx + len(self._close)

            consumed = nxt if block_start is None else block_start

        return records, consumed


class DelimitedFraming:
    """Separator-delimited records that may span several physical lines.

    A line starts a new record when its first field matches ``leading_field``;
    any other line continues the record being assembled.
    """

    def __init__(self, leading_field: str, separator: str = ","):
        self.separator = separator.encode("utf-8")
        self._leading_re = re.compile(leading_field.encode("utf-8"))

    def _starts_record(self, line: bytes) -> bool:
        first = line.split(self.separator, 1)[0]
        return self._leading_re.fullmatch(first) is not None

    def frame(self, data, base_offset, limit, final=False):
        records: list[FramedRecord] = []
        consumed = 0
        rec_start = rec_end = rec_next = None

        for start, end, nxt in _iter_lines(data, final):
            if len(records) >= limit:
                break
            line = data[start:end]
            if self._starts_record(line):
                if rec_start is not None:
                    records.append(FramedRecord(data[rec_start:rec_end], base_offset + rec_start))
                    consumed = start
                    rec_start = None
                    if len(records) >= limit:
                        break
                rec_start, rec_end, rec_next = start, end, nxt
            elif rec_start is not None:
                rec_end, rec_next = end, nxt
            else:
                records.append(FramedRecord(line, base_offset + start))
                consumed = nxt

        if final and rec_start is not None and len(records) < limit:
            records.append(FramedRecord(data[rec_start:rec_end], base_offset + rec_start))
            consumed = rec_next
        return records, consumed


class FixedWidthFraming:
    """Fixed-size binary records; a short trailing chunk is always held back."""

    def __init__(self, width: int, variant: str = "a", skip_line_breaks: bool = False):
        self.width = width
        self.variant = variant
        self.skip_line_breaks = skip_line_breaks

    def frame(self, data, base_offset, limit, final=False):
        records: list[FramedRecord] = []
        pos = 0
        size = len(data)
        while len(records) < limit:
            if self.skip_line_breaks:
                while pos < size and data[pos] in _LINE_BREAKS:
                    pos += 1
            if size - pos < self.width:
                break
            records.append(FramedRecord(data[pos:pos + self.width], base_offset + pos))
            pos += self.width
        return records, pos


class RegexPairFraming:
    """Records opened by a start marker and extended by continuation lines.

    A line that matches neither marker closes the open record and is emitted
    as a record of its own. Markers are matched at the beginning of the line.
    """

    def __init__(self, start: str, continuation: str, literal: bool = False):
        if literal:
            start, continuation = re.escape(start), re.escape(continuation)
        self._start_re = re.compile(start.encode("utf-8"))
        self._cont_re = re.compile(continuation.encode("utf-8"))

    def frame(self, data, base_offset, limit, final=False):
        records: list[FramedRecord] = []
        consumed = 0
        rec_start = rec_end = rec_next = None

        for start, end, nxt in _iter_lines(data, final):
            if len(records) >= limit:
                break
            line = data[start:end]

            if self._start_re.match(line):
                if rec_start is not None:
                    records.append(FramedRecord(data[rec_start:rec_end], base_offset + rec_start))
                    consumed = start
                    rec_start = None
                    if len(records) >= limit:
                        break
                rec_start, rec_end, rec_next = start, end, nxt
                continue

            if rec_start is not None and self._cont_re.match(line):
                rec_end, rec_next = end, nxt
                continue

            if rec_start is not None:
                records.append(FramedRecord(data[rec_start:rec_end], base_offset + rec_start))
                consumed = start
                rec_start = None
                if len(records) >= limit:
                    break
            records.append(FramedRecord(line, base_offset + start))
            consumed = nxt

        if final and rec_start is not None and len(records) < limit:
            records.append(FramedRecord(data[rec_start:rec_end], base_offset + rec_start))
            consumed = rec_next
        return records, consumed


def build_framer(config: FramingConfig) -> RecordFramer:
    """Turn a framing config value into its framer."""
    if isinstance(config, LineConfig):
        return LineFraming(config.lines_per_record, config.skip_header)
    if isinstance(config, TaggedBlockConfig):
        return TaggedBlockFraming(config.node)
    if isinstance(config, DelimitedConfig):
        return DelimitedFraming(config.leading_field, config.separator)
    if isinstance(config, FixedWidthConfig):
        return FixedWidthFraming(config.width, config.variant, config.skip_line_breaks)
    if isinstance(config, RegexPairConfig):
        return RegexPairFraming(config.start, config.continuation, config.literal)
    raise TypeError(f"Unsupported framing config: {type(config).__name__}")
