from __future__ import annotations

import re
from dataclasses import dataclass

from stockdata.config.settings import DomesticLayout
from stockdata.errors import SchemaDriftError
from stockdata.logging_config import get_logger
from stockdata.schemas.master import DomesticRecord, DomesticSegment, ForeignRecord, Venue

logger = get_logger(__name__)

DOMESTIC_CODE_RE = re.compile(r"^\d{6}$")
FOREIGN_SYMBOL_RE = re.compile(r"^[A-Z0-9.\-]{1,10}$")
WHITESPACE_RE = re.compile(r"\s+")

# Applied in order. Vendor appends group codes (ST10), ETF markers (EF 0000)
# and notice codes (BC ...) after the display name.
NAME_SUFFIX_PATTERNS = (
    re.compile(r"\s*ST\d+.*$"),
    re.compile(r"\s+EF(\s+.*)?$"),
    re.compile(r"\s*EF\s*$"),
    re.compile(r"\s+BC\s+.*$"),
)

FOREIGN_MIN_LINE_LENGTH = 10
# Share of rejected lines above which a foreign segment is treated as shifted columns.
DRIFT_THRESHOLD = 0.5


@dataclass(frozen=True)
class ForeignFieldMap:
    version: str
    symbol: int
    name: int
    local_name: int | None
    min_fields: int = 8


FOREIGN_FIELD_MAPS = {
    "v1": ForeignFieldMap(version="v1", symbol=4, name=6, local_name=3),
    "v2": ForeignFieldMap(version="v2", symbol=4, name=7, local_name=6),
}


def get_field_map(version: str) -> ForeignFieldMap:
    try:
        return FOREIGN_FIELD_MAPS[version]
    except KeyError:
        known = ", ".join(sorted(FOREIGN_FIELD_MAPS))
        raise ValueError(f"Unknown foreign field map {version!r} (known: {known})") from None


def _lines(text: str) -> list[str]:
    # Only LF separates records; vendor trailers may carry other control bytes.
    return [line.rstrip("\r") for line in text.split("\n")]


def collapse_whitespace(value: str) -> str:
    return WHITESPACE_RE.sub(" ", value).strip()


def clean_name(raw: str) -> str:
    cleaned = raw.strip()
    for pattern in NAME_SUFFIX_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return collapse_whitespace(cleaned)


def parse_domestic_line(
    line: str, segment: DomesticSegment, layout: DomesticLayout
) -> DomesticRecord | None:
    if len(line.strip()) < layout.min_line_length:
        return None
    code = line[layout.code_start : layout.code_start + layout.code_length].strip()
    if not DOMESTIC_CODE_RE.match(code):
        return None
    name = clean_name(line[layout.name_start : layout.name_start + layout.name_length])
    if not name:
        return None
    return DomesticRecord(symbol=code, name=name, segment=segment)


def parse_domestic(
    text: str, segment: DomesticSegment, layout: DomesticLayout | None = None
) -> list[DomesticRecord]:
    layout = layout or DomesticLayout()
    records: list[DomesticRecord] = []
    skipped = 0
    for line in _lines(text):
        if not line.strip():
            continue
        record = parse_domestic_line(line, segment, layout)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    logger.info(
        "%s parsed: %d records, %d lines skipped", segment.value, len(records), skipped
    )
    return records


def parse_foreign(
    text: str, venue: Venue, field_map: ForeignFieldMap | None = None
) -> list[ForeignRecord]:
    """Parse a tab-delimited foreign master file.

    Raises SchemaDriftError when most lines are short or carry an invalid
    symbol in the mapped column, which means the vendor moved the columns.
    """
    field_map = field_map or FOREIGN_FIELD_MAPS["v2"]
    records: list[ForeignRecord] = []
    considered = 0
    short = 0
    bad_symbol = 0
    for line in _lines(text):
        if len(line.strip()) < FOREIGN_MIN_LINE_LENGTH:
            continue
        considered += 1
        parts = line.split("\t")
        if len(parts) < field_map.min_fields:
            short += 1
            continue

        symbol = parts[field_map.symbol].strip()
        if not FOREIGN_SYMBOL_RE.match(symbol):
            bad_symbol += 1
            continue

        name = collapse_whitespace(parts[field_map.name])
        local_name = ""
        if field_map.local_name is not None:
            local_name = collapse_whitespace(parts[field_map.local_name])
        final_name = name or local_name
        if not final_name:
            continue

        records.append(
            ForeignRecord(
                symbol=symbol,
                name=final_name,
                local_name=local_name or None,
                venue=venue,
            )
        )

    rejected = short + bad_symbol
    if considered and rejected / considered > DRIFT_THRESHOLD:
        raise SchemaDriftError(
            f"{venue.value}: {rejected}/{considered} lines rejected "
            f"({short} short, {bad_symbol} invalid symbol) with field map {field_map.version}"
        )
    logger.info(
        "%s parsed: %d records, %d lines rejected", venue.value, len(records), rejected
    )
    return records
