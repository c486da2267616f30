"""Authenticated JSON requests against provider REST APIs."""

import logging

import httpx

from agenthost.provisioning.capabilities import ProviderError

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    401: "Invalid API token. Please check and try again.",
    403: "Token needs read permission for viewing or read-write for creating.",
    429: "Too many requests. Please wait and try again.",
}


def _error_message(resp):
    """Pull a human-readable message out of an error body, if any."""
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    if isinstance(body.get("error"), dict):
        return body["error"].get("message")
    return body.get("message")


def check_response(resp, action):
    """Raise ProviderError for a non-2xx response."""
    if resp.is_success:
        return
    code = resp.status_code
    if code in _STATUS_MESSAGES:
        raise ProviderError(_STATUS_MESSAGES[code], status_code=code, transient=code == 429)
    message = _error_message(resp) or f"Failed to {action}"
    raise ProviderError(f"{message} (HTTP {code})", status_code=code, transient=code >= 500)


async def api_request(method, url, token, payload=None, params=None, action="complete request", allow_not_found=False, timeout=60):
    """Make a bearer-token JSON request.

    Returns:
        Parsed JSON body (dict), ``{}`` for empty bodies, or ``None`` for a
        404 when ``allow_not_found`` is set.

    Raises:
        ProviderError: on network failure (transient) or a non-2xx status.
    """
    headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
    logger.debug(f"{method} {url}")
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.request(method, url, json=payload, params=params, headers=headers, timeout=timeout)
    except httpx.HTTPError as e:
        raise ProviderError(f"Network error while trying to {action}: {e}", transient=True) from e

    if allow_not_found and resp.status_code == 404:
        return None
    check_response(resp, action)
    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError as e:
        raise ProviderError(f"Unexpected response while trying to {action}: not JSON") from e
