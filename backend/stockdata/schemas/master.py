from __future__ import annotations

import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class DomesticSegment(str, Enum):
    KOSPI = "KOSPI"
    KOSDAQ = "KOSDAQ"


class Venue(str, Enum):
    NASDAQ = "NASDAQ"
    NYSE = "NYSE"
    AMEX = "AMEX"


class DomesticRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["domestic"] = "domestic"
    symbol: str = Field(pattern=r"^\d{6}$")
    name: str = Field(min_length=1)
    segment: DomesticSegment


class ForeignRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["foreign"] = "foreign"
    symbol: str = Field(min_length=1, max_length=10)
    name: str = Field(min_length=1)
    local_name: str | None = None
    venue: Venue


MasterRecord = Annotated[Union[DomesticRecord, ForeignRecord], Field(discriminator="kind")]


class MasterDataset(BaseModel):
    name: str
    records: dict[str, MasterRecord] = Field(default_factory=dict)
    created_at: datetime.datetime
    expires_at: datetime.datetime

    def is_expired(self, now: datetime.datetime) -> bool:
        return now >= self.expires_at

    def get(self, symbol: str) -> DomesticRecord | ForeignRecord | None:
        return self.records.get(symbol)

    def __len__(self) -> int:
        return len(self.records)


class DatasetCacheStatus(BaseModel):
    exists: bool
    expires_at: datetime.datetime | None = None
    count: int = 0


class SearchResult(BaseModel):
    market: Literal["kr", "us"]
    symbol: str
    name: str
    local_name: str | None = None
    exchange: str


class MasterDataResponse(BaseModel):
    success: bool = True
    korean: list[DomesticRecord] | None = None
    us: list[ForeignRecord] | None = None
    cache: dict[str, DatasetCacheStatus]
    timestamp: datetime.datetime


class SearchResponse(BaseModel):
    success: bool = True
    query: str
    results: list[SearchResult]
    total_count: int
    timestamp: datetime.datetime


class RefreshResponse(BaseModel):
    markets: list[str]
    status: Literal["queued", "completed"]
    job_id: str | None = None
    counts: dict[str, int] = Field(default_factory=dict)
