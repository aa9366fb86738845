"""Retry policy for executor calls."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from stack_provisioner.engine.errors import ProvisionError, ProvisionErrorKind

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A timed-out call is retried this many times before it is given up on.
TIMEOUT_RETRIES = 1


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff.

    ``transient`` errors are retried until ``max_attempts`` calls have been
    made, ``timeout`` errors are retried once; both are then escalated to
    ``fatal``. ``conflict`` and ``fatal`` errors are never retried.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must not be negative")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    def allows_retry(self, kind: ProvisionErrorKind, attempt: int, timeouts: int) -> bool:
        match kind:
            case ProvisionErrorKind.TRANSIENT:
                return attempt < self.max_attempts
            case ProvisionErrorKind.TIMEOUT:
                return timeouts <= TIMEOUT_RETRIES
            case _:
                return False

    def call(
        self,
        fn: Callable[[], T],
        *,
        label: str = "",
        on_retry: Callable[[ProvisionError, int], None] | None = None,
    ) -> tuple[T, int]:
        """Run *fn* under this policy. Returns ``(result, attempts)``.

        *on_retry* is called with the error and the failed attempt number before
        each retry. Raises the final ``ProvisionError``; one whose retries ran
        out is escalated to kind ``fatal``.
        """
        attempt = 0
        timeouts = 0
        while True:
            attempt += 1
            try:
                return fn(), attempt
            except ProvisionError as e:
                if e.kind is ProvisionErrorKind.TIMEOUT:
                    timeouts += 1
                if self.allows_retry(e.kind, attempt, timeouts):
                    wait = self.delay(attempt)
                    logger.warning(
                        "%s failed (%s, attempt %d); retrying in %.1fs",
                        label or "call",
                        e.kind.value,
                        attempt,
                        wait,
                    )
                    if on_retry is not None:
                        on_retry(e, attempt)
                    self.sleep(wait)
                    continue
                if e.kind in (ProvisionErrorKind.TRANSIENT, ProvisionErrorKind.TIMEOUT):
                    escalated = ProvisionError(
                        ProvisionErrorKind.FATAL,
                        f"gave up after {attempt} attempts: {e.message}",
                        address=e.address,
                        attempts=attempt,
                    )
                    raise escalated from e
                e.attempts = attempt
                raise
