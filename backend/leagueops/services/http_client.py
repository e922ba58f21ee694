import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("leagueops.http_client")

# Retryable HTTP status codes
_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
_MAX_DELAY_SECONDS = 30.0


class CircuitBreaker:
    """Simple circuit breaker for outbound calls to one collaborator."""

    def __init__(self, failure_threshold: int = 3, recovery_timeout: int = 120):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.is_open = False

    def record_success(self) -> None:
        self.failure_count = 0
        self.is_open = False

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.failure_count >= self.failure_threshold:
            self.is_open = True
            logger.warning(
                "Circuit breaker OPEN after %d failures", self.failure_count
            )

    def can_attempt(self) -> bool:
        if not self.is_open:
            return True
        # Allow retry after recovery timeout (half-open)
        if self.last_failure_time and (
            time.time() - self.last_failure_time > self.recovery_timeout
        ):
            logger.info("Circuit breaker half-open, allowing retry")
            return True
        return False


class CircuitOpenError(httpx.HTTPError):
    """Raised instead of calling out while the breaker is open."""


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except (ValueError, TypeError):
        return None


def _safe_url(url: str) -> str:
    """Strip query params (signed URLs, tokens) for safe logging."""
    parsed = urlparse(str(url))
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"


class ResilientClient:
    """httpx.AsyncClient wrapper with retry, exponential backoff, and circuit breaker."""

    def __init__(
        self,
        name: str,
        timeout: float = 15.0,
        max_retries: int = 2,
        base_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._name = name
        self._max_retries = max_retries
        self._base_delay = base_delay
        self.circuit = CircuitBreaker()

    async def request(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry/backoff on transient failures."""
        if not self.circuit.can_attempt():
            raise CircuitOpenError(f"[{self._name}] circuit open for {_safe_url(url)}")

        last_exc: Optional[Exception] = None
        last_resp: Optional[httpx.Response] = None

        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.request(method, url, **kwargs)

                if resp.status_code not in _RETRYABLE_STATUSES:
                    self.circuit.record_success()
                    return resp

                last_resp = resp
                logger.warning(
                    "[%s] Retryable status %d on %s %s (attempt %d/%d)",
                    self._name, resp.status_code, method, _safe_url(url),
                    attempt + 1, self._max_retries + 1,
                )

                if attempt < self._max_retries:
                    delay = _parse_retry_after(resp)
                    if delay is None:
                        delay = self._base_delay * (2 ** attempt)
                    await asyncio.sleep(min(delay, _MAX_DELAY_SECONDS))

            except (httpx.TimeoutException, httpx.ConnectError, httpx.RemoteProtocolError) as exc:
                last_exc = exc
                logger.warning(
                    "[%s] Network error on %s %s (attempt %d/%d): %s",
                    self._name, method, _safe_url(url),
                    attempt + 1, self._max_retries + 1, exc,
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(min(self._base_delay * (2 ** attempt), _MAX_DELAY_SECONDS))

        self.circuit.record_failure()

        if last_resp is not None:
            logger.error(
                "[%s] All %d attempts failed for %s %s (last status: %d)",
                self._name, self._max_retries + 1, method, _safe_url(url),
                last_resp.status_code,
            )
            return last_resp

        logger.error(
            "[%s] All %d attempts failed for %s %s: %s",
            self._name, self._max_retries + 1, method, _safe_url(url), last_exc,
        )
        raise last_exc  # type: ignore[misc]

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
