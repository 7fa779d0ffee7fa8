"""Shared plumbing for the provider HTTP clients."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

# Transport failures only; a 4xx/5xx response is returned to the caller untouched.
transport_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)


class ProviderClient:
    """Base for the thin per-provider clients.

    An injected ``httpx.AsyncClient`` is reused for every call (tests pass one
    built on ``httpx.MockTransport``); otherwise each call opens its own.
    """

    provider = "provider"

    def __init__(self, *, http_client: httpx.AsyncClient | None = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._http = http_client
        self._timeout = timeout

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    @transport_retry
    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        async with self._client() as client:
            response = await client.request(method, url, **kwargs)
        if response.is_error:
            logger.warning("%s %s %s returned %s", self.provider, method, url, response.status_code)
        return response


def error_message(response: httpx.Response) -> str:
    """Best-effort human readable error out of a provider response body."""

    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return data.get("error_description") or error
        if data.get("message"):
            return str(data["message"])
    return f"HTTP {response.status_code}"
