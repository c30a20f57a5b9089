# modengine/http/client.py
from __future__ import annotations
import asyncio
import logging
import random
from typing import Any
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

__all__ = ["HTTPError", "request"]



class HTTPError(Exception):
    def __init__(self, status: int, body: str):
        super().__init__(f"HTTP {status}: {body[:200]}")
        self.status = status
        self.body = body



def _parseRetryAfter(value: str | None) -> float | None:
    """Return seconds suggested by Retry-After header, if parsable."""
    if not value:
        return None
    # Retry-After: seconds
    try:
        secondsF = float(value)
        if secondsF >= 0:
            return secondsF
        return None
    except ValueError:
        pass
    # Retry-After: HTTP-date
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    now = datetime.now(timezone.utc).timestamp()
    return max(0.0, dt.timestamp() - now)



def _shouldRetry(status: int) -> bool:
    # Typical transient HTTP errors upon which retry makes sense
    return status in (408, 429, 500, 502, 503, 504)



def _backoffDelayMs(attempt: int, backoffBaseMs: int, backoffMaxMs: int) -> float:
    # Exponential backoff with jitter
    base = min(backoffMaxMs, backoffBaseMs * (2 ** attempt))
    jitter = base * 0.25
    return max(0.0, base + random.uniform(-jitter, jitter))



async def request(
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    json: Any | None = None,
    data: Any | None = None,
    params: dict[str, Any] | None = None,
    timeoutMs: int = 30_000,
    retries: int = 2,
    backoffBaseMs: int = 250,
    backoffMaxMs: int = 1_000,
    followRedirects: bool = True
) -> dict[str, Any]:
    """
    Simple outbound HTTP client with timeout and retries (408/429/5xx).

    Returns:
    {
        "status": int,
        "headers": dict[str,str],
        "text": str,
        "content": bytes,
        "json": Any? # Present when response looks like JSON and parses
    }

    - Non-retryable 4xx responses are returned, not raised; callers decide.
    - Raises HTTPError for 408/429/5xx after exhausting retries.
    - Raises httpx.HTTPError (incl. httpx.TimeoutException) for transport errors after exhausting retries.
    """
    if timeoutMs <= 0:
        timeoutMs = 1
    timeout = httpx.Timeout(timeoutMs / 1_000)
    attempt = 0
    method = str(method).upper()
    retries = max(0, retries)
    if json is not None and data is not None:
        raise ValueError("Pass either 'json' or 'data', not both")

    host = urlparse(url).hostname
    logger.debug("http.request %s %s (timeoutMs=%d, retries=%d)", method, url, timeoutMs, retries)

    async with httpx.AsyncClient(timeout=timeout, http2=True) as cli:
        while True:
            try:
                resp = await cli.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    data=data,
                    params=params,
                    follow_redirects=followRedirects
                )
                status = resp.status_code

                if _shouldRetry(status) and attempt < retries:
                    retryAfter = _parseRetryAfter(resp.headers.get("Retry-After"))
                    if retryAfter is not None:
                        delay = retryAfter
                    else:
                        delay = _backoffDelayMs(attempt, backoffBaseMs, backoffMaxMs) / 1000.0

                    logger.debug(
                        "http.retry %s status=%d attempt=%d delay=%.3fs",
                        host, status, attempt + 1, delay,
                    )
                    attempt += 1
                    await asyncio.sleep(delay)
                    continue

                if status >= 500 or status in (408, 429):
                    raise HTTPError(status, resp.text)

                out: dict[str, Any] = {
                    "status": status,
                    "headers": dict(resp.headers), # note: Duplicate header keys are collapsed
                    "text": resp.text,
                    "content": resp.content,
                }

                # Best-effort JSON parse
                ctype = resp.headers.get("Content-Type", "")
                if "json" in ctype.lower():
                    try:
                        out["json"] = resp.json()
                    except ValueError:
                        # Caller still has "text"
                        pass

                logger.debug(
                    "http.response %s status=%d attempt=%d bytes=%d",
                    host, status, attempt, len(resp.content),
                )
                return out

            except asyncio.CancelledError:
                raise
            except HTTPError as err:
                attempt += 1
                if attempt > retries:
                    logger.debug("http.error %s status=%d attempts=%d", host, err.status, attempt)
                    raise
                delayMs = _backoffDelayMs(attempt - 1, backoffBaseMs, backoffMaxMs)
                logger.debug("http.retryAfterError %s status=%d attempt=%d", host, err.status, attempt)
                await asyncio.sleep(delayMs / 1000.0)
            except httpx.HTTPError as err:
                # Transport-level error (connect, read, timeout). Retry with backoff.
                attempt += 1
                if attempt > retries:
                    logger.debug("http.transportError %s %s attempts=%d", host, type(err).__name__, attempt)
                    raise
                delayMs = _backoffDelayMs(attempt - 1, backoffBaseMs, backoffMaxMs)
                logger.debug("http.transportRetry %s %s attempt=%d", host, type(err).__name__, attempt)
                await asyncio.sleep(delayMs / 1000.0)
