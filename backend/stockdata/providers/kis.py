from __future__ import annotations

import http.client
import json
import re
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from pydantic import ValidationError

from stockdata.config.settings import KisSettings
from stockdata.errors import MissingCredentialsError, TokenExchangeError
from stockdata.logging_config import get_logger
from stockdata.schemas.token import TokenResponse

logger = get_logger(__name__)

# Vendor code for "one token issuance per minute" violations.
RATE_LIMIT_CODE = "EGW00133"

_VENDOR_CODE_RE = re.compile(r"\bEGW\d{5}\b")


def _require_credentials(kis: KisSettings) -> tuple[str, str]:
    if not kis.app_key or not kis.app_secret:
        raise MissingCredentialsError(
            "KIS_APP_KEY and KIS_APP_SECRET must be set to obtain an access token."
        )
    return kis.app_key, kis.app_secret


def _read_error_body(exc: HTTPError) -> str:
    try:
        return exc.read().decode("utf-8", errors="replace")
    except (OSError, AttributeError):
        return ""


def issue_token(kis: KisSettings) -> TokenResponse:
    """Exchange app key/secret for a bearer token. Every failure raises TokenExchangeError."""
    app_key, app_secret = _require_credentials(kis)
    url = f"{kis.base_url.rstrip('/')}{kis.token_path}"
    body = json.dumps(
        {
            "grant_type": "client_credentials",
            "appkey": app_key,
            "appsecret": app_secret,
        }
    ).encode("utf-8")
    request = Request(
        url,
        data=body,
        method="POST",
        headers={"Content-Type": "application/json; charset=utf-8"},
    )
    logger.info("Requesting new access token")
    try:
        with urlopen(request, timeout=kis.http_timeout_seconds) as response:
            raw = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        detail = _read_error_body(exc)
        match = _VENDOR_CODE_RE.search(detail)
        vendor_code = match.group(0) if match else None
        logger.error("Token exchange rejected: %s %s", exc.code, detail[:200])
        raise TokenExchangeError(
            f"Token exchange failed: {exc.code}", status=exc.code, vendor_code=vendor_code
        ) from exc
    # URLError, timeouts and resets are OSError; truncated bodies are HTTPException.
    except (http.client.HTTPException, OSError) as exc:
        logger.error("Token exchange unreachable: %s", exc)
        raise TokenExchangeError(f"Token exchange failed: {exc}") from exc

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise TokenExchangeError("Token exchange returned invalid JSON.") from exc
    if not isinstance(payload, dict):
        raise TokenExchangeError("Token exchange returned an unexpected payload.")

    try:
        return TokenResponse.model_validate(payload)
    except ValidationError as exc:
        raise TokenExchangeError(f"Token exchange response rejected: {exc}") from exc


def common_headers(access_token: str, tr_id: str, kis: KisSettings) -> dict[str, str]:
    """Headers required by every upstream quotation call."""
    app_key, app_secret = _require_credentials(kis)
    return {
        "Content-Type": "application/json; charset=utf-8",
        "authorization": f"Bearer {access_token}",
        "appkey": app_key,
        "appsecret": app_secret,
        "tr_id": tr_id,
    }
