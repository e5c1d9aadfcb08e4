"""
Async HTTP client wrapper for provider requests.
Includes retry logic and timeout management; exhausted retries surface as TransientProviderError.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.errors import TransientProviderError
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data provider APIs.
    Every request is bounded by a timeout; 429 and 5xx responses are retried.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        api_key: str = "",
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_s or settings.provider_request_timeout_s
        self._max_retries = max_retries
        self._default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def provider(self) -> str:
        return self._provider

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()

    async def __aenter__(self) -> "ProviderHTTPClient":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Perform a GET request with retry and structured logging, returning decoded JSON.

        Raises:
            TransientProviderError: On timeouts, transport errors, or exhausted retries.
            httpx.HTTPStatusError: On non-retryable 4xx responses.
        """
        if not self._client:
            raise RuntimeError("ProviderHTTPClient not started. Call start() first.")

        merged_headers = {**self._default_headers}
        if extra_headers:
            merged_headers.update(extra_headers)

        last_error = "no attempt made"
        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            try:
                resp = await self._client.get(path, params=params, headers=merged_headers)
            except httpx.TimeoutException:
                last_error = "timeout"
                logger.warning("provider_timeout", provider=self._provider, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)
                continue
            except httpx.TransportError as exc:
                last_error = str(exc) or type(exc).__name__
                logger.warning(
                    "provider_request_error",
                    provider=self._provider,
                    path=path,
                    error=last_error,
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)
                continue

            if resp.status_code == 429:
                last_error = "rate limited"
                logger.warning("provider_rate_limited", provider=self._provider, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    retry_after = float(resp.headers.get("Retry-After", "2"))
                    await asyncio.sleep(min(retry_after, 10.0))
                continue

            if resp.status_code >= 500:
                last_error = f"status {resp.status_code}"
                logger.warning(
                    "provider_server_error",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    attempt=attempt,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(1.0 * attempt)
                continue

            # 4xx other than 429 is not retried
            resp.raise_for_status()

            logger.debug(
                "provider_request_success",
                provider=self._provider,
                path=path,
                status=resp.status_code,
                latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return resp.json()

        raise TransientProviderError(self._provider, f"{path}: {last_error}")
