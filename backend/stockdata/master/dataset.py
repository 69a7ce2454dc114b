from __future__ import annotations

import datetime
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Callable, Sequence

from pydantic import TypeAdapter, ValidationError

from stockdata.cache import CacheEntry, Clock, LocalTier, utcnow
from stockdata.config.settings import MasterSettings
from stockdata.errors import MasterDataError
from stockdata.logging_config import get_logger
from stockdata.master.fetcher import decode_text, download_archive, extract_single_entry
from stockdata.master.parser import get_field_map, parse_domestic, parse_foreign
from stockdata.schemas.master import (
    DatasetCacheStatus,
    DomesticSegment,
    MasterDataset,
    MasterRecord,
    Venue,
)

logger = get_logger(__name__)

DOMESTIC = "kr"
FOREIGN = "us"
MARKETS = (DOMESTIC, FOREIGN)

_RECORDS_ADAPTER = TypeAdapter(list[MasterRecord])


@dataclass(frozen=True)
class Segment:
    name: str
    url: str
    parse: Callable[[str], Sequence[MasterRecord]]


@dataclass(frozen=True)
class DatasetDefinition:
    name: str
    cache_key: str
    segments: tuple[Segment, ...]


def build_definitions(master: MasterSettings) -> dict[str, DatasetDefinition]:
    field_map = get_field_map(master.foreign_field_map)
    domestic = DatasetDefinition(
        name=DOMESTIC,
        cache_key="stocks-kr",
        segments=tuple(
            Segment(
                name=name,
                url=url,
                parse=partial(
                    parse_domestic,
                    segment=DomesticSegment(name),
                    layout=master.domestic_layout,
                ),
            )
            for name, url in master.domestic_urls.items()
        ),
    )
    foreign = DatasetDefinition(
        name=FOREIGN,
        cache_key="stocks-us",
        segments=tuple(
            Segment(
                name=name,
                url=url,
                parse=partial(parse_foreign, venue=Venue(name), field_map=field_map),
            )
            for name, url in master.foreign_urls.items()
        ),
    )
    return {DOMESTIC: domestic, FOREIGN: foreign}


def resolve_markets(market: str) -> list[str]:
    normalized = market.strip().lower()
    if normalized == "all":
        return list(MARKETS)
    if normalized in MARKETS:
        return [normalized]
    raise ValueError(f"market must be one of: all, {', '.join(MARKETS)}")


class MasterDataService:
    """Downloads, parses and caches the security master datasets.

    Each dataset lives in one local-tier file and is replaced as a whole.
    No distributed lock is taken: any instance can rebuild the data on its own.
    """

    def __init__(
        self,
        local: LocalTier,
        definitions: dict[str, DatasetDefinition],
        encoding: str = "euc-kr",
        ttl_seconds: float = 24 * 60 * 60,
        timeout_seconds: float = 30.0,
        max_workers: int = 5,
        fetch: Callable[[str, float], bytes] = download_archive,
        clock: Clock = utcnow,
    ) -> None:
        self._local = local
        self.definitions = definitions
        self._encoding = encoding
        self._ttl_seconds = ttl_seconds
        self._timeout_seconds = timeout_seconds
        self._max_workers = max_workers
        self._fetch = fetch
        self._clock = clock

    @classmethod
    def from_settings(cls, local: LocalTier, master: MasterSettings) -> MasterDataService:
        return cls(
            local,
            build_definitions(master),
            encoding=master.encoding,
            ttl_seconds=master.ttl_seconds,
            timeout_seconds=master.http_timeout_seconds,
            max_workers=master.max_workers,
        )

    def definition(self, name: str) -> DatasetDefinition:
        try:
            return self.definitions[name]
        except KeyError:
            raise ValueError(f"Unknown dataset {name!r}") from None

    def sync_dataset(self, definition: DatasetDefinition) -> MasterDataset:
        logger.info("Syncing %s master data (%d segments)", definition.name, len(definition.segments))
        segments = definition.segments
        results: list[Sequence[MasterRecord]] = []
        if segments:
            workers = max(1, min(self._max_workers, len(segments)))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(self._load_segment, segment) for segment in segments]
                for segment, future in zip(segments, futures):
                    try:
                        results.append(future.result())
                    except (MasterDataError, ValueError, OSError) as exc:
                        logger.error("Segment %s skipped: %s", segment.name, exc)

        # Segment order decides collisions: later segments overwrite earlier ones.
        records: dict[str, MasterRecord] = {}
        for segment_records in results:
            for record in segment_records:
                records[record.symbol] = record

        now = self._clock()
        dataset = MasterDataset(
            name=definition.name,
            records=records,
            created_at=now,
            expires_at=now + datetime.timedelta(seconds=self._ttl_seconds),
        )
        logger.info("%s master data synced: %d records", definition.name, len(records))
        return dataset

    def get_dataset(self, name: str, force_refresh: bool = False) -> MasterDataset:
        definition = self.definition(name)
        cached = self._load_cached(definition)
        if not force_refresh and cached is not None and not cached.is_expired(self._clock()):
            return cached

        fresh = self.sync_dataset(definition)
        if not fresh.records:
            logger.warning("%s refresh produced no records, keeping previous data", name)
            return cached if cached is not None else fresh

        self._persist(definition, fresh)
        return fresh

    def clear_cache(self) -> None:
        for definition in self.definitions.values():
            self._local.delete(definition.cache_key)
        logger.info("Master data cache cleared")

    def get_cache_status(self) -> dict[str, DatasetCacheStatus]:
        status: dict[str, DatasetCacheStatus] = {}
        for name, definition in self.definitions.items():
            entry = self._local.read_entry(definition.cache_key)
            if entry is None:
                status[name] = DatasetCacheStatus(exists=False)
                continue
            count = len(entry.data) if isinstance(entry.data, list) else 0
            status[name] = DatasetCacheStatus(
                exists=True, expires_at=entry.expires_at, count=count
            )
        return status

    def _load_segment(self, segment: Segment) -> Sequence[MasterRecord]:
        archive = self._fetch(segment.url, self._timeout_seconds)
        raw = extract_single_entry(archive)
        text = decode_text(raw, self._encoding)
        return segment.parse(text)

    def _persist(self, definition: DatasetDefinition, dataset: MasterDataset) -> None:
        data = [record.model_dump(mode="json") for record in dataset.records.values()]
        self._local.set(
            definition.cache_key, data, self._ttl_seconds, now=dataset.created_at
        )

    def _load_cached(self, definition: DatasetDefinition) -> MasterDataset | None:
        entry: CacheEntry | None = self._local.read_entry(definition.cache_key)
        if entry is None or not isinstance(entry.data, list):
            return None
        try:
            records = _RECORDS_ADAPTER.validate_python(entry.data)
        except ValidationError as exc:
            logger.warning("Cached %s master data unreadable: %s", definition.name, exc)
            return None
        return MasterDataset(
            name=definition.name,
            records={record.symbol: record for record in records},
            created_at=entry.created_at,
            expires_at=entry.expires_at,
        )
