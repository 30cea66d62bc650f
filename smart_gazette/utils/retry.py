from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")


def _never(error: BaseException) -> bool:
    del error
    return False


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempts, backoff, and the predicate that stops retrying early."""

    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    multiplier: float = 2.0
    is_non_retryable: Callable[[BaseException], bool] = field(default=_never)

    def delay_for_retry(self, retry_number: int) -> float:
        return self.base_delay_seconds * (self.multiplier ** (retry_number - 1))


def run_with_retry(
    *,
    operation: Callable[[], T],
    policy: RetryPolicy,
    sleep_fn: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, float, BaseException], None] | None = None,
) -> T:
    """Run `operation` under `policy`; the last error is re-raised when it gives up."""

    def _before_sleep(retry_state: RetryCallState) -> None:
        if on_retry is None or retry_state.outcome is None:
            return
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        on_retry(retry_state.attempt_number, delay, error)

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(
            multiplier=policy.base_delay_seconds,
            exp_base=policy.multiplier,
            min=0,
            max=float("inf"),
        ),
        retry=retry_if_exception(lambda error: not policy.is_non_retryable(error)),
        sleep=sleep_fn,
        before_sleep=_before_sleep,
        reraise=True,
    )
    return retrying(operation)
