"""Unit tests for the shared REST helper: status mapping and error handling."""

import httpx
import pytest

from agenthost.provisioning import rest
from agenthost.provisioning.capabilities import ProviderError
from agenthost.provisioning.rest import api_request, check_response

URL = "https://api.test.example/v1/servers"


def _response(status_code, json=None, content=None):
    request = httpx.Request("GET", URL)
    if json is not None:
        return httpx.Response(status_code, json=json, request=request)
    return httpx.Response(status_code, content=content or b"", request=request)


def _use_transport(monkeypatch, handler):
    """Route api_request through an in-memory transport."""
    real_client = httpx.AsyncClient

    def _client(*args, **kwargs):
        return real_client(*args, transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(rest.httpx, "AsyncClient", _client)


# ── check_response ───────────────────────────────────────────────


def test_check_response_success():
    check_response(_response(201, json={"ok": True}), "create server")


@pytest.mark.parametrize(
    "code, message, transient",
    [
        (401, "Invalid API token", False),
        (403, "read-write for creating", False),
        (429, "Too many requests", True),
    ],
)
def test_check_response_known_codes(code, message, transient):
    with pytest.raises(ProviderError, match=message) as exc_info:
        check_response(_response(code), "create server")
    assert exc_info.value.status_code == code
    assert exc_info.value.transient is transient


def test_check_response_uses_body_message():
    resp = _response(422, json={"id": "unprocessable_entity", "message": "You specified an invalid size."})
    with pytest.raises(ProviderError, match="invalid size") as exc_info:
        check_response(resp, "create server")
    assert exc_info.value.transient is False


def test_check_response_nested_error_message():
    resp = _response(409, json={"error": {"code": "uniqueness_error", "message": "SSH key not unique"}})
    with pytest.raises(ProviderError, match="SSH key not unique"):
        check_response(resp, "add SSH key")


def test_check_response_server_error_is_transient():
    with pytest.raises(ProviderError, match="Failed to fetch server") as exc_info:
        check_response(_response(503, content=b"upstream down"), "fetch server")
    assert exc_info.value.transient


# ── api_request ──────────────────────────────────────────────────


async def test_api_request_sends_bearer_token(monkeypatch):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json={"servers": []})

    _use_transport(monkeypatch, handler)

    result = await api_request("GET", URL, "secret-token", params={"per_page": 50})

    assert result == {"servers": []}
    assert seen["auth"] == "Bearer secret-token"
    assert seen["params"] == {"per_page": "50"}


async def test_api_request_not_found_allowed(monkeypatch):
    _use_transport(monkeypatch, lambda request: httpx.Response(404, json={"message": "not found"}))
    assert await api_request("GET", URL, "t", allow_not_found=True) is None


async def test_api_request_not_found_raises_by_default(monkeypatch):
    _use_transport(monkeypatch, lambda request: httpx.Response(404, json={"message": "not found"}))
    with pytest.raises(ProviderError) as exc_info:
        await api_request("GET", URL, "t")
    assert exc_info.value.status_code == 404


async def test_api_request_empty_body(monkeypatch):
    _use_transport(monkeypatch, lambda request: httpx.Response(204))
    assert await api_request("DELETE", URL, "t") == {}


async def test_api_request_network_error_is_transient(monkeypatch):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    _use_transport(monkeypatch, handler)
    with pytest.raises(ProviderError, match="Network error") as exc_info:
        await api_request("GET", URL, "t", action="fetch server")
    assert exc_info.value.transient


async def test_api_request_non_json_body(monkeypatch):
    _use_transport(monkeypatch, lambda request: httpx.Response(200, content=b"<html>oops</html>"))
    with pytest.raises(ProviderError, match="not JSON"):
        await api_request("GET", URL, "t")
