"""Retry policy for part uploads."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pebbledrive.client.errors import ServerError, TransportError


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient part-upload failures.

    Only transport errors and 5xx responses are retried. The default performs
    a single attempt, so the first failed part ends the upload.
    """

    max_attempts: int = 1
    backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def retrying(self, sleep: Optional[Callable[[float], Awaitable[None]]] = None) -> AsyncRetrying:
        """Build the tenacity controller for one part upload."""
        kwargs = {}
        if sleep is not None:
            kwargs["sleep"] = sleep
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.backoff_seconds,
                exp_base=self.backoff_multiplier,
                max=self.max_backoff_seconds,
            ),
            retry=retry_if_exception_type((TransportError, ServerError)),
            reraise=True,
            **kwargs,
        )
