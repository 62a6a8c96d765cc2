"""Bounded polling.

Both readiness gates in a run (node liveness after start, host creation after
provisioning) share the same policy: probe up to a fixed number of attempts,
sleep a fixed interval between attempts, then give up.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class PollExhausted(Exception):
    """Raised when the probe never succeeded within the attempt budget."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"condition not met after {attempts} attempts")


@dataclass
class PollOutcome(Generic[T]):
    value: T
    attempts: int


async def poll_until(
    probe: Callable[[], Awaitable[Optional[T]]],
    *,
    attempts: int,
    interval: float,
    retry_on: Tuple[Type[BaseException], ...] = (),
    label: str = "poll",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PollOutcome[T]:
    """Call ``probe`` until it returns a non-None value.

    Exceptions listed in ``retry_on`` count as a failed attempt; anything else
    propagates. The probe is called at most ``attempts`` times and the sleep
    happens only between attempts, so a budget of N costs N-1 intervals.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        logger.debug({label: {"attempt": attempt, "of": attempts}})
        try:
            result = await probe()
        except retry_on as exc:
            last_error = exc
            logger.debug({label: {"attempt": attempt, "error": str(exc)}})
            result = None
        if result is not None:
            return PollOutcome(value=result, attempts=attempt)
        if attempt < attempts:
            await sleep(interval)
    raise PollExhausted(attempts, last_error)


__all__ = ["PollExhausted", "PollOutcome", "poll_until"]
