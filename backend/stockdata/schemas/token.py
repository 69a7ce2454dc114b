from __future__ import annotations

import datetime

from pydantic import BaseModel, Field

KST = datetime.timezone(datetime.timedelta(hours=9), name="KST")
_VENDOR_EXPIRY_FORMAT = "%Y-%m-%d %H:%M:%S"


class TokenResponse(BaseModel):
    """Credential exchange payload. Numeric fields arrive as strings or ints."""

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: int = Field(gt=0)
    access_token_token_expired: str | None = None

    def vendor_expiry(self) -> datetime.datetime | None:
        raw = (self.access_token_token_expired or "").strip()
        if not raw:
            return None
        try:
            parsed = datetime.datetime.strptime(raw, _VENDOR_EXPIRY_FORMAT)
        except ValueError:
            return None
        return parsed.replace(tzinfo=KST).astimezone(datetime.UTC)

    def expires_at(self, now: datetime.datetime) -> datetime.datetime:
        computed = now + datetime.timedelta(seconds=self.expires_in)
        vendor = self.vendor_expiry()
        if vendor is None:
            return computed
        return min(computed, vendor)


class CachedToken(BaseModel):
    value: str
    expires_at: datetime.datetime

    def is_usable(self, now: datetime.datetime, buffer_seconds: float) -> bool:
        return now < self.expires_at - datetime.timedelta(seconds=buffer_seconds)

    def is_expired(self, now: datetime.datetime) -> bool:
        return now >= self.expires_at


class TokenStatus(BaseModel):
    has_token: bool
    expires_at: datetime.datetime | None = None
    rate_limited_until: datetime.datetime | None = None
    remote_available: bool
