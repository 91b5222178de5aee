from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Tuple, Type, TypeVar

import httpx

from .project_constants import DELAY_ERROR, DELAY_LONG, DELAY_SHORT, MAX_RETRIES

log = logging.getLogger(__name__)

T = TypeVar("T")


class RetryError(RuntimeError):
    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


def is_retryable(exc: BaseException) -> bool:
    """Transport failures and errors flagged retryable by the RPC layer."""
    if isinstance(exc, httpx.TransportError):
        return True
    return bool(getattr(exc, "retryable", False))


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = MAX_RETRIES
    base_delay_s: float = DELAY_ERROR
    backoff: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_s * (self.backoff ** (attempt - 1))

    def run(self, fn: Callable[[], T], description: str = "remote call") -> T:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        last: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except self.retry_on as e:
                if not is_retryable(e):
                    raise
                last = e
                if attempt == self.max_attempts:
                    break
                wait = self.delay_for(attempt)
                log.debug(
                    "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                    description,
                    attempt,
                    self.max_attempts,
                    e,
                    wait,
                )
                self.sleep(wait)

        raise RetryError(
            f"Failed {description} after {self.max_attempts} attempts: {last}",
            attempts=self.max_attempts,
        ) from last


@dataclass(frozen=True)
class Pacer:
    """Fixed pauses that keep us under provider rate limits."""

    short_s: float = DELAY_SHORT
    long_s: float = DELAY_LONG
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def short(self) -> None:
        if self.short_s > 0:
            self.sleep(self.short_s)

    def long(self) -> None:
        if self.long_s > 0:
            self.sleep(self.long_s)
