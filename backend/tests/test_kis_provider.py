import http.client
import io
import json
from unittest.mock import patch
from urllib.error import HTTPError, URLError

import pytest

from stockdata.config.settings import KisSettings
from stockdata.errors import MissingCredentialsError, TokenError, TokenExchangeError
from stockdata.providers import kis


class FakeResponse:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


def make_settings() -> KisSettings:
    return KisSettings(
        app_key="key",
        app_secret="secret",
        base_url="https://example.test:9443/",
        http_timeout_seconds=4,
    )


def test_issue_token_posts_credentials() -> None:
    body = json.dumps(
        {
            "access_token": "tok",
            "token_type": "Bearer",
            "expires_in": 86400,
            "access_token_token_expired": "2026-01-06 09:00:00",
        }
    ).encode("utf-8")
    with patch("stockdata.providers.kis.urlopen", return_value=FakeResponse(body)) as urlopen_mock:
        response = kis.issue_token(make_settings())

    request = urlopen_mock.call_args.args[0]
    assert request.full_url == "https://example.test:9443/oauth2/tokenP"
    assert request.get_method() == "POST"
    assert json.loads(request.data) == {
        "grant_type": "client_credentials",
        "appkey": "key",
        "appsecret": "secret",
    }
    assert urlopen_mock.call_args.kwargs["timeout"] == 4
    assert response.access_token == "tok"
    assert response.expires_in == 86400


def test_issue_token_requires_credentials() -> None:
    settings = KisSettings(app_key=None, app_secret=None)
    with patch("stockdata.providers.kis.urlopen") as urlopen_mock:
        with pytest.raises(MissingCredentialsError):
            kis.issue_token(settings)
    assert urlopen_mock.called is False


def test_issue_token_reports_rate_limit_code() -> None:
    error = HTTPError(
        "https://example.test/oauth2/tokenP",
        403,
        "Forbidden",
        {},
        io.BytesIO(b'{"error_code":"EGW00133","error_description":"1 per minute"}'),
    )
    with patch("stockdata.providers.kis.urlopen", side_effect=error):
        with pytest.raises(TokenExchangeError) as excinfo:
            kis.issue_token(make_settings())

    assert excinfo.value.status == 403
    assert excinfo.value.vendor_code == kis.RATE_LIMIT_CODE


def test_issue_token_network_error() -> None:
    with patch("stockdata.providers.kis.urlopen", side_effect=URLError("timed out")):
        with pytest.raises(TokenExchangeError) as excinfo:
            kis.issue_token(make_settings())
    assert excinfo.value.vendor_code is None


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[]",
        b'{"access_token": "tok", "expires_in": "soon"}',
        b'{"expires_in": 86400}',
    ],
)
def test_issue_token_rejects_malformed_response(body: bytes) -> None:
    with patch("stockdata.providers.kis.urlopen", return_value=FakeResponse(body)):
        with pytest.raises(TokenExchangeError):
            kis.issue_token(make_settings())


def test_common_headers() -> None:
    headers = kis.common_headers("tok", "FHKST01010100", make_settings())

    assert headers["authorization"] == "Bearer tok"
    assert headers["appkey"] == "key"
    assert headers["appsecret"] == "secret"
    assert headers["tr_id"] == "FHKST01010100"


class BrokenBodyResponse(FakeResponse):
    def __init__(self, error: Exception) -> None:
        super().__init__(b"")
        self._error = error

    def read(self) -> bytes:
        raise self._error


@pytest.mark.parametrize(
    "error",
    [
        http.client.IncompleteRead(b"{\"acc", 200),
        ConnectionResetError("connection reset by peer"),
    ],
)
def test_issue_token_body_read_failure_is_token_error(error: Exception) -> None:
    with patch("stockdata.providers.kis.urlopen", return_value=BrokenBodyResponse(error)):
        with pytest.raises(TokenError) as excinfo:
            kis.issue_token(make_settings())

    assert isinstance(excinfo.value, TokenExchangeError)
    assert excinfo.value.vendor_code is None
