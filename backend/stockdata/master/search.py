from __future__ import annotations

from typing import Iterable

from stockdata.schemas.master import DomesticRecord, ForeignRecord, MasterDataset, SearchResult


def _to_result(record: DomesticRecord | ForeignRecord) -> SearchResult:
    if isinstance(record, DomesticRecord):
        return SearchResult(
            market="kr", symbol=record.symbol, name=record.name, exchange=record.segment.value
        )
    return SearchResult(
        market="us",
        symbol=record.symbol,
        name=record.name,
        local_name=record.local_name,
        exchange=record.venue.value,
    )


def _matches(record: DomesticRecord | ForeignRecord, needle: str) -> bool:
    if needle in record.symbol.casefold() or needle in record.name.casefold():
        return True
    local_name = getattr(record, "local_name", None)
    return bool(local_name and needle in local_name.casefold())


def search_records(
    datasets: Iterable[MasterDataset], query: str, limit: int = 50
) -> list[SearchResult]:
    """Substring search over symbol and names.

    Symbol-prefix matches rank first, then name-prefix matches, then by symbol.
    """
    needle = query.strip().casefold()
    if not needle or limit <= 0:
        return []

    results: list[SearchResult] = []
    for dataset in datasets:
        matched = 0
        for record in dataset.records.values():
            if not _matches(record, needle):
                continue
            results.append(_to_result(record))
            matched += 1
            if matched >= limit:
                break

    results.sort(
        key=lambda result: (
            not result.symbol.casefold().startswith(needle),
            not result.name.casefold().startswith(needle),
            result.symbol,
        )
    )
    return results[:limit]
