import httpx
import pytest

from studydocs.retry import is_transient_http_error


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://localhost:11434/v1/embeddings")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("request failed", request=request, response=response)


@pytest.mark.parametrize(
    ("status_code", "expected"),
    [(429, True), (408, True), (500, True), (503, True), (400, False), (404, False)],
)
def test_status_errors_are_classified(status_code: int, expected: bool) -> None:
    assert is_transient_http_error(_status_error(status_code)) is expected


def test_transport_errors_are_transient_and_others_are_not() -> None:
    request = httpx.Request("GET", "http://localhost:11434/v1/models")

    assert is_transient_http_error(httpx.ReadTimeout("timed out", request=request)) is True
    assert is_transient_http_error(httpx.ConnectError("refused", request=request)) is True
    assert is_transient_http_error(ValueError("bad payload")) is False
