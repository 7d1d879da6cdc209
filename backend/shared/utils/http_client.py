"""
Async HTTP client wrapper for provider requests.
Includes retry logic, timeout management, and metrics collection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.errors import AdapterError, ProviderHTTPError
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_REQUESTS

logger = get_logger(__name__)


class ProviderHTTPClient:
    """
    Async HTTP client tailored for sports data provider APIs.

    Retries server errors and timeouts a bounded number of times; everything
    else surfaces immediately as ``ProviderHTTPError`` / ``AdapterError`` so the
    aggregator can fall through to the next provider.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.provider_timeout_s
        self._max_retries = max(1, max_retries if max_retries is not None else settings.provider_max_retries)
        self._default_headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET ``path`` and decode the JSON body.

        Raises:
            ProviderHTTPError: On a non-retryable status or when retries are exhausted.
            AdapterError: On transport failures, timeouts or an undecodable body.
        """
        if not self._client:
            await self.start()
        assert self._client is not None

        last_exc: Optional[Exception] = None
        for attempt in range(1, self._max_retries + 1):
            start_time = time.perf_counter()
            status = "unknown"
            try:
                resp = await self._client.get(path, params=params)
                status = str(resp.status_code)

                if resp.status_code == 429:
                    retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
                    logger.warning("provider_rate_limited", provider=self._provider, path=path)
                    raise ProviderHTTPError(self._provider, 429, retry_after=retry_after)

                if resp.status_code >= 500:
                    last_exc = ProviderHTTPError(self._provider, resp.status_code)
                    logger.warning(
                        "provider_server_error",
                        provider=self._provider,
                        path=path,
                        status=resp.status_code,
                        attempt=attempt,
                    )
                    if attempt < self._max_retries:
                        await asyncio.sleep(0.5 * attempt)
                        continue
                    raise last_exc

                if resp.status_code >= 400:
                    raise ProviderHTTPError(self._provider, resp.status_code)

                logger.debug(
                    "provider_request_success",
                    provider=self._provider,
                    path=path,
                    status=resp.status_code,
                    latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
                )
                try:
                    return resp.json()
                except ValueError as exc:
                    raise AdapterError(f"{self._provider} returned invalid JSON") from exc

            except httpx.TimeoutException as exc:
                status = "timeout"
                last_exc = AdapterError(f"{self._provider} request timed out")
                logger.warning("provider_timeout", provider=self._provider, path=path, attempt=attempt)
                if attempt < self._max_retries:
                    await asyncio.sleep(0.5 * attempt)
                    continue
                raise last_exc from exc

            except httpx.HTTPError as exc:
                status = "error"
                raise AdapterError(f"{self._provider} transport error: {exc}") from exc

            finally:
                PROVIDER_REQUESTS.labels(provider=self._provider, status=status).inc()

        raise last_exc or AdapterError(f"{self._provider} request failed after {self._max_retries} attempts")


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None
