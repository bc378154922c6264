"""
Resilient HTTP client shared by the Pipefy and D4Sign integrations.

Every outbound call goes through :class:`ResilientClient`, which bounds each
attempt with a timeout, retries transient network failures with exponential
backoff and propagates everything else untouched.
"""

import asyncio
import errno
import socket
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

import httpx

from signbridge.core.errors import TransientNetworkError
from signbridge.shared.logging import get_logger

logger = get_logger("signbridge.http")

_ERRNO_REASONS = {
    errno.ECONNRESET: "connection_reset",
    errno.ENETUNREACH: "network_unreachable",
    errno.EHOSTUNREACH: "host_unreachable",
    errno.ETIMEDOUT: "timeout",
    errno.EPIPE: "connection_reset",
}


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt count, backoff base (seconds) and per-attempt timeout (seconds)."""

    attempts: int = 5
    base_delay: float = 0.5
    timeout: float = 20.0
    retry_on_status: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

    def delay_before(self, attempt: int) -> float:
        """Return the backoff (seconds) to wait before ``attempt`` (1-based)."""
        if attempt <= 1:
            return 0.0
        return self.base_delay * (2 ** (attempt - 1))


PIPEFY_POLICY = RetryPolicy(attempts=5, base_delay=0.5, timeout=20.0)
D4SIGN_POLICY = RetryPolicy(attempts=5, base_delay=0.6, timeout=20.0)


def _errno_reason(exc: BaseException) -> str | None:
    """Walk the exception chain looking for a socket-level cause."""
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return "dns_error"
        if isinstance(current, OSError) and current.errno in _ERRNO_REASONS:
            return _ERRNO_REASONS[current.errno]
        if isinstance(current, ConnectionRefusedError):
            return "connection_refused"
        current = current.__cause__ or current.__context__
    return None


def classify_failure(exc: BaseException) -> str | None:
    """
    Return a failure code for a transient error, or None if it is terminal.

    Transient: DNS failure, connection reset, timeout, host/network
    unreachable, aborted attempt. Everything else is terminal.
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return "timeout"

    if isinstance(exc, httpx.ConnectError):
        reason = _errno_reason(exc)
        if reason == "connection_refused":
            return None
        if reason:
            return reason
        message = str(exc).lower()
        if "name or service not known" in message or "nodename nor servname" in message:
            return "dns_error"
        if "temporary failure in name resolution" in message:
            return "dns_error"
        return "connect_error"

    if isinstance(exc, (httpx.ReadError, httpx.WriteError)):
        return "connection_reset"

    if isinstance(exc, httpx.RemoteProtocolError):
        return "remote_disconnected"

    if isinstance(exc, httpx.NetworkError):
        return "network_error"

    if isinstance(exc, OSError):
        reason = _errno_reason(exc)
        return None if reason == "connection_refused" else reason

    return None


class ResilientClient:
    """Pooled async HTTP client with per-attempt timeout and backoff retries."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client or httpx.AsyncClient(
            transport=transport,
            limits=httpx.Limits(max_keepalive_connections=10, keepalive_expiry=30.0),
        )
        self._sleep = sleeper

    async def request(
        self,
        method: str,
        url: str,
        policy: RetryPolicy,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request under ``policy``.

        HTTP error responses are returned to the caller unless their status is
        listed in ``policy.retry_on_status``. Raises :class:`TransientNetworkError`
        once every attempt failed transiently.
        """
        host = urlparse(url).hostname or url
        last_error: BaseException | None = None
        last_reason = "unknown"

        for attempt in range(1, policy.attempts + 1):
            if attempt > 1:
                delay = policy.delay_before(attempt)
                logger.warning(
                    f"Retrying {method} {host} (attempt {attempt}/{policy.attempts}, "
                    f"code={last_reason}, delay={delay:.2f}s)",
                    extra={
                        "action": "http_retry",
                        "data": {
                            "host": host,
                            "attempt": attempt,
                            "attempts": policy.attempts,
                            "code": last_reason,
                            "delay": delay,
                        },
                    },
                )
                if delay > 0:
                    await self._sleep(delay)

            try:
                response = await asyncio.wait_for(
                    self._client.request(method, url, timeout=policy.timeout, **kwargs),
                    timeout=policy.timeout,
                )
            except Exception as exc:
                reason = classify_failure(exc)
                if reason is None:
                    raise
                last_error = exc
                last_reason = reason
                continue

            if response.status_code in policy.retry_on_status and attempt < policy.attempts:
                last_reason = f"status_{response.status_code}"
                await response.aclose()
                continue

            return response

        logger.error(
            f"Giving up on {method} {host} after {policy.attempts} attempts (code={last_reason})",
            extra={
                "action": "http_exhausted",
                "data": {"host": host, "attempts": policy.attempts, "code": last_reason},
            },
        )
        raise TransientNetworkError(
            f"{method} {host} failed after {policy.attempts} attempts: {last_reason}",
            attempts=policy.attempts,
            reason=last_reason,
            details={"host": host},
        ) from last_error

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ResilientClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
