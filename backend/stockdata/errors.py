from __future__ import annotations

import datetime


class StockDataError(Exception):
    pass


class CacheTierUnavailable(StockDataError):
    """The remote tier is unconfigured or failed; callers degrade to local-only."""


class TokenError(StockDataError):
    """No usable bearer token could be obtained."""


class MissingCredentialsError(TokenError):
    pass


class TokenExchangeError(TokenError):
    def __init__(
        self, message: str, status: int | None = None, vendor_code: str | None = None
    ) -> None:
        super().__init__(message)
        self.status = status
        self.vendor_code = vendor_code


class TokenRateLimitedError(TokenError):
    def __init__(self, retry_after: datetime.datetime) -> None:
        super().__init__(
            f"Token issuance is rate limited until {retry_after.isoformat()}."
        )
        self.retry_after = retry_after


class MasterDataError(StockDataError):
    pass


class ArchiveError(MasterDataError):
    pass


class SchemaDriftError(MasterDataError):
    pass
