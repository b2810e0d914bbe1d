"""Bounded retry with backoff for upstream HTTP calls.

Only rate limiting (429) and transport failures are retried. Every other
status comes back to the caller untouched so it can apply its own policy.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from rainwatch.core.errors import RetriesExhausted

logger = logging.getLogger(__name__)

RATE_LIMITED = 429

Sleep = Callable[[float], Awaitable[None]]
Send = Callable[[], Awaitable[httpx.Response]]


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0
    jitter: float = 0.25
    backoff: str = "exponential"  # exponential | linear
    # After the retries are used up, back off once more, make one last attempt
    # and hand back whatever comes out instead of raising.
    final_attempt: bool = False

    def delay(self, attempt: int, rand: Callable[[float, float], float] = random.uniform) -> float:
        if self.backoff == "linear":
            raw = self.base_delay * (attempt + 1)
        else:
            raw = (2 ** attempt) * self.base_delay
        return min(raw + rand(0.0, self.jitter), self.max_delay)


# Public weather API: exponential, 1 s base, 10 s cap, one last unthrottled try.
WEATHER_POLICY = RetryPolicy(max_retries=2, base_delay=1.0, max_delay=10.0, final_attempt=True)

# Push gateway: 1 s fixed increment, give up with an error.
PUSH_POLICY = RetryPolicy(max_retries=2, base_delay=1.0, max_delay=10.0, jitter=0.0,
                          backoff="linear", final_attempt=False)


def _retry_after(resp: httpx.Response) -> float | None:
    raw = (resp.headers.get("Retry-After") or "").strip()
    if not raw:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


class RetryingExecutor:
    def __init__(self, sleep: Sleep | None = None, rand: Callable[[float, float], float] | None = None):
        self._sleep = sleep or asyncio.sleep
        self._rand = rand or random.uniform

    async def execute(self, send: Send, policy: RetryPolicy, label: str = "request") -> httpx.Response:
        """Run ``send`` until it yields a non-retryable response or attempts run out.

        Makes ``policy.max_retries + 1`` attempts with backoff between them.
        Raises ``RetriesExhausted`` when they all fail and the policy has no
        final attempt.
        """
        last_error: Exception | None = None
        last_status: int | None = None
        attempts = 0

        for attempt in range(policy.max_retries + 1):
            attempts += 1
            wait: float | None = None
            try:
                resp = await send()
            except httpx.TransportError as e:
                last_error, last_status = e, None
                logger.warning("%s attempt %d failed: %s", label, attempts, e)
            else:
                if resp.status_code != RATE_LIMITED:
                    return resp
                last_error, last_status = None, resp.status_code
                wait = _retry_after(resp)
                logger.warning("%s attempt %d rate limited", label, attempts)

            if attempt < policy.max_retries or policy.final_attempt:
                delay = policy.delay(attempt, self._rand)
                if wait is not None:
                    delay = min(wait, policy.max_delay)
                await self._sleep(delay)

        if not policy.final_attempt:
            raise RetriesExhausted(attempts, last_error, last_status)

        attempts += 1
        try:
            return await send()
        except httpx.TransportError as e:
            raise RetriesExhausted(attempts, e) from e
