"""Shared HTTP helpers for upstream clients."""

from typing import Any

import httpx

from sentinel.errors import NotFoundError, TransientUpstreamError, UpstreamError


def check_response(response: httpx.Response, context: str) -> None:
    """Translate an HTTP error status into the upstream error taxonomy."""
    status = response.status_code
    if status < 400:
        return
    if status == 404:
        raise NotFoundError(f"{context}: not found", status_code=status)
    if status == 429 or status >= 500:
        raise TransientUpstreamError(f"{context}: HTTP {status}", status_code=status)
    raise UpstreamError(f"{context}: HTTP {status}", status_code=status)


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    context: str,
    params: dict[str, Any] | None = None,
) -> Any:
    """GET a JSON document, raising taxonomy errors on failure."""
    try:
        response = await client.get(url, params=params)
    except httpx.TransportError as e:
        raise TransientUpstreamError(f"{context}: {e.__class__.__name__}: {e}") from e
    check_response(response, context)
    try:
        return response.json()
    except ValueError as e:
        raise TransientUpstreamError(f"{context}: invalid JSON body") from e
