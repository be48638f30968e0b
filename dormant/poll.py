"""Bounded poll-until-condition built on tenacity.

Every wait in Dormant (instance power state, volume state, attachment state,
command completion, public IP) goes through poll_until. Each loop has an
explicit attempt budget; exhausting it raises PollTimeoutError.

Example:
    from dormant.poll import PollPolicy, poll_until

    volume = poll_until(
        lambda: compute.describe_volume(volume_id),
        done=lambda v: v.state == "available",
        policy=PollPolicy(interval=5, attempts=60),
        what=f"volume {volume_id} available",
    )
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from tenacity import (
    RetryCallState,
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from dormant.exceptions import PollTimeoutError

log = logger.bind(component="poll")


@dataclass(frozen=True, slots=True)
class PollPolicy:
    """Fixed-interval polling budget.

    Attributes:
        interval: Seconds between attempts.
        attempts: Maximum number of attempts, including the first one.
    """

    interval: float
    attempts: int

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must be non-negative")

    @property
    def budget_seconds(self) -> float:
        return self.interval * self.attempts


class _StillPending(Exception):
    """Condition not met yet - retry."""

    def __init__(self, observed: Any = None) -> None:
        super().__init__(observed)
        self.observed = observed


def poll_until[T](
    fetch: Callable[[], T],
    *,
    done: Callable[[T], bool],
    policy: PollPolicy,
    what: str,
    check: Callable[[T], None] | None = None,
    transient: Callable[[Exception], bool] | None = None,
    timeout: float | None = None,
) -> T:
    """Call ``fetch`` until ``done`` holds for its result.

    Args:
        fetch: Reads the current value from the control plane.
        done: Predicate that ends the poll successfully.
        policy: Interval and attempt budget.
        what: Human readable description used in logs and the timeout error.
        check: Called with every fetched value before ``done``; raise from it
            to abort the poll (e.g. the resource entered an incompatible state).
        transient: Classifies exceptions raised by ``fetch`` that mean
            "not visible yet" and are treated as still pending.
        timeout: Optional wall-clock limit in seconds on top of the attempt budget.

    Returns:
        The first fetched value satisfying ``done``.

    Raises:
        PollTimeoutError: The budget ran out before ``done`` held.
    """
    stop = stop_after_attempt(policy.attempts)
    if timeout is not None:
        stop = stop | stop_after_delay(timeout)

    def _log_attempt(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        observed = exc.observed if isinstance(exc, _StillPending) else None
        log.debug(
            "Waiting for {what} (attempt {n}/{total}): {observed}",
            what=what,
            n=state.attempt_number,
            total=policy.attempts,
            observed=observed,
        )

    @retry(
        stop=stop,
        wait=wait_fixed(policy.interval),
        retry=retry_if_exception_type(_StillPending),
        before_sleep=_log_attempt,
    )
    def _probe() -> T:
        try:
            value = fetch()
        except Exception as e:
            if transient is not None and transient(e):
                raise _StillPending(type(e).__name__) from e
            raise

        if check is not None:
            check(value)
        if done(value):
            return value
        raise _StillPending(value)

    try:
        return _probe()
    except RetryError as e:
        last = e.last_attempt.exception()
        observed = last.observed if isinstance(last, _StillPending) else None
        raise PollTimeoutError(
            f"Timed out waiting for {what} after {e.last_attempt.attempt_number} attempts"
            f" (last observed: {observed})"
        ) from e
