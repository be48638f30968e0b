from __future__ import annotations

import pytest

from dormant.exceptions import NotFoundError, PollTimeoutError, UnexpectedStateError
from dormant.poll import PollPolicy, poll_until

pytestmark = [pytest.mark.xdist_group("unit")]

FAST = PollPolicy(interval=0, attempts=4)


def _sequence(*values):
    it = iter(values)
    calls = []

    def fetch():
        value = next(it)
        calls.append(value)
        if isinstance(value, Exception):
            raise value
        return value

    return fetch, calls


class TestPollPolicy:
    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            PollPolicy(interval=1, attempts=0)

    def test_rejects_negative_interval(self):
        with pytest.raises(ValueError):
            PollPolicy(interval=-1, attempts=1)

    def test_budget(self):
        assert PollPolicy(interval=2, attempts=60).budget_seconds == 120


class TestPollUntil:
    def test_returns_first_matching_value(self):
        fetch, calls = _sequence("creating", "creating", "available", "in-use")
        result = poll_until(fetch, done=lambda v: v == "available", policy=FAST, what="volume")
        assert result == "available"
        assert len(calls) == 3

    def test_exhaustion_raises_timeout(self):
        fetch, calls = _sequence(*["creating"] * 10)
        with pytest.raises(PollTimeoutError) as exc:
            poll_until(fetch, done=lambda v: v == "available", policy=FAST, what="volume vol-1")
        assert len(calls) == FAST.attempts
        assert "volume vol-1" in str(exc.value)
        assert "creating" in str(exc.value)

    def test_transient_errors_count_as_pending(self):
        fetch, _ = _sequence(NotFoundError("not yet"), NotFoundError("not yet"), "ready")
        result = poll_until(
            fetch,
            done=lambda v: v == "ready",
            policy=FAST,
            what="thing",
            transient=lambda e: isinstance(e, NotFoundError),
        )
        assert result == "ready"

    def test_non_transient_errors_propagate_immediately(self):
        fetch, calls = _sequence(NotFoundError("gone"), "ready")
        with pytest.raises(NotFoundError):
            poll_until(fetch, done=lambda v: v == "ready", policy=FAST, what="thing")
        assert len(calls) == 1

    def test_check_aborts_the_poll(self):
        def check(value):
            if value == "terminated":
                raise UnexpectedStateError("i-1", value, "running")

        fetch, calls = _sequence("pending", "terminated", "running")
        with pytest.raises(UnexpectedStateError):
            poll_until(fetch, done=lambda v: v == "running", check=check, policy=FAST, what="instance")
        assert len(calls) == 2

    def test_perpetual_transient_errors_time_out(self):
        fetch, _ = _sequence(*[NotFoundError("not yet")] * 10)
        with pytest.raises(PollTimeoutError):
            poll_until(
                fetch,
                done=lambda v: True,
                policy=FAST,
                what="thing",
                transient=lambda e: isinstance(e, NotFoundError),
            )
