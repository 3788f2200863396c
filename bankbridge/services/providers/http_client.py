"""Shared httpx client for REST vendor APIs."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from bankbridge.core.exceptions import from_http_error
from bankbridge.core.retry import RetryPolicy, with_rate_limit_retry

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0


class VendorHttpClient:
    """
    Base class for vendor REST clients.

    Subclasses provide ``provider`` and may override ``_auth_headers``.
    Every request goes through the rate-limit retry, and non-2xx responses
    surface as ``ProviderError``. Transport errors (timeouts, refused
    connections) propagate unchanged and are not retried.
    """

    provider: str = ""

    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cert: Any = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        client_kwargs: Dict[str, Any] = {
            "base_url": self.base_url,
            "timeout": timeout,
            "transport": transport,
        }
        if cert:
            client_kwargs["cert"] = cert
        self._client = httpx.AsyncClient(**client_kwargs)

    async def _auth_headers(self) -> Dict[str, str]:
        return {}

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        auth: Any = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        request_headers = {"Accept": "application/json"}
        if authenticated:
            request_headers.update(await self._auth_headers())
        if headers:
            request_headers.update(headers)

        if params:
            params = {key: value for key, value in params.items() if value is not None}

        kwargs: Dict[str, Any] = {"params": params, "headers": request_headers}
        if json is not None:
            kwargs["json"] = json
        if auth is not None:
            kwargs["auth"] = auth

        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response

    async def _make_request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request with rate-limit retry and return the decoded JSON body."""

        async def attempt() -> httpx.Response:
            return await self._send(method, path, **kwargs)

        try:
            response = await with_rate_limit_retry(
                attempt,
                self._retry_policy,
                provider=self.provider,
                sleep=self._sleep,
            )
        except httpx.HTTPStatusError as exc:
            raise from_http_error(self.provider, exc) from exc

        return response.json() if response.content else {}

    async def _probe(self, path: str, **kwargs) -> bool:
        """Health probe: True on any 2xx, False on any failure."""
        try:
            await self._send("GET", path, **kwargs)
            return True
        except Exception as exc:
            logger.warning("%s health check failed: %s", self.provider, exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()
