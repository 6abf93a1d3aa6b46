"""Feed HTTP client with retry policy and status-aware error handling."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional

import httpx

from fleetview.config import settings

logger = logging.getLogger(__name__)

# Retryable exceptions (transport errors)
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
)


@dataclass(frozen=True)
class FeedPolicy:
    """Per-feed HTTP request policy."""

    name: str
    max_attempts: int = 3
    timeout: httpx.Timeout = None  # Will be set to default if None
    backoff_base: float = 2.0
    treat_404_as_permanent: bool = True

    def __post_init__(self):
        if self.timeout is None:
            object.__setattr__(
                self,
                'timeout',
                httpx.Timeout(settings.http_timeout_seconds, connect=10.0)
            )


class PermanentURLError(RuntimeError):
    """Raised when a URL is permanently invalid (404)."""
    pass


class TransientFetchError(RuntimeError):
    """Raised when a fetch fails after retries (5xx, timeouts, etc.)."""
    pass


class RateLimitedError(RuntimeError):
    """Raised when rate limited (429)."""

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__("Rate limited")
        self.retry_after = retry_after


def default_headers() -> dict[str, str]:
    """Get default request headers."""
    return {
        "User-Agent": "fleetview/0.1 (+https://mudfish.net)",
        "Accept": "text/html, application/json; q=0.9, */*; q=0.8",
        "Accept-Language": "en-US, en; q=0.9",
        "Cache-Control": "no-cache",
    }


def _backoff(policy: FeedPolicy, attempt: int) -> float:
    return (policy.backoff_base ** attempt) + random.random()


async def fetch_with_policy(
    client: httpx.AsyncClient,
    url: str,
    policy: FeedPolicy,
    headers: Optional[dict[str, str]] = None,
) -> httpx.Response:
    """
    Fetch URL with a feed policy and status-aware error handling.

    Args:
        client: httpx AsyncClient instance
        url: URL to fetch
        policy: FeedPolicy configuration
        headers: Optional additional headers (merged with defaults)

    Returns:
        httpx.Response on success

    Raises:
        PermanentURLError: If URL is permanently invalid (404)
        RateLimitedError: If still rate limited on the last attempt
        TransientFetchError: If fetch fails after retries
    """
    hdrs = default_headers()
    if headers:
        hdrs.update(headers)

    last_exc: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            resp = await client.get(
                url,
                headers=hdrs,
                timeout=policy.timeout,
                follow_redirects=True,
            )

            sc = resp.status_code

            if sc == 404 and policy.treat_404_as_permanent:
                raise PermanentURLError(f"{policy.name}: 404 for {url}")

            if sc == 429:
                retry_after = resp.headers.get("Retry-After")
                retry_seconds = None
                if retry_after:
                    try:
                        retry_seconds = int(retry_after)
                    except (ValueError, TypeError):
                        pass
                raise RateLimitedError(retry_after=retry_seconds)

            if 200 <= sc < 300:
                return resp

            raise TransientFetchError(f"{policy.name}: status {sc} for {url}")

        except RateLimitedError as e:
            if attempt >= policy.max_attempts:
                raise
            sleep_s = float(e.retry_after) if e.retry_after is not None else _backoff(policy, attempt)
            logger.warning(
                f"{policy.name}: Rate limited (429), retrying in {sleep_s:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await asyncio.sleep(sleep_s)
            last_exc = e

        except RETRYABLE_EXC as e:
            if attempt >= policy.max_attempts:
                raise TransientFetchError(
                    f"{policy.name}: Transport error after {policy.max_attempts} attempts: {url}"
                ) from e
            sleep_s = _backoff(policy, attempt)
            logger.warning(
                f"{policy.name}: Transport error ({type(e).__name__}), "
                f"retrying in {sleep_s:.1f}s (attempt {attempt}/{policy.max_attempts})"
            )
            await asyncio.sleep(sleep_s)
            last_exc = e

        except TransientFetchError as e:
            if attempt >= policy.max_attempts:
                raise
            sleep_s = _backoff(policy, attempt)
            logger.warning(
                f"{e}, retrying in {sleep_s:.1f}s "
                f"(attempt {attempt}/{policy.max_attempts})"
            )
            await asyncio.sleep(sleep_s)
            last_exc = e

    raise TransientFetchError(
        f"{policy.name}: failed after {policy.max_attempts} attempts: {url}"
    ) from last_exc


def build_policies() -> dict[str, FeedPolicy]:
    """Policies for the three feeds, sized from settings."""
    attempts = max(1, settings.http_max_attempts)
    return {
        "staticnodes": FeedPolicy(name="staticnodes", max_attempts=attempts),
        "server-status": FeedPolicy(name="server-status", max_attempts=attempts),
        # Detail fetches are retried by re-entering view, not here
        "detail": FeedPolicy(name="detail", max_attempts=1),
    }
