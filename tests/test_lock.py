from __future__ import annotations

import json

import pytest

from dormant.constants import ACTION_LOCK_PARAMETER
from dormant.exceptions import CommandFailedError, LockConflictError
from dormant.lock import ActionLock
from dormant.model import ActionLockRecord
from tests.fakes import FakeStore

pytestmark = [pytest.mark.xdist_group("unit")]


class _Clock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestAcquireRelease:
    def test_acquire_writes_record(self):
        store = FakeStore()
        clock = _Clock()
        ActionLock(store, clock=clock).acquire("start")

        stored = json.loads(store.values[ACTION_LOCK_PARAMETER])
        assert stored == {"action": "start", "timestamp": int(clock.now * 1000)}

    def test_acquire_is_conditional_put(self):
        store = FakeStore()
        ActionLock(store).acquire("start")
        assert store.puts[0][2] is False

    def test_second_acquire_conflicts(self):
        store = FakeStore()
        lock = ActionLock(store)
        lock.acquire("start")

        with pytest.raises(LockConflictError) as exc:
            lock.acquire("stop")
        assert exc.value.current_action == "start"
        assert "Another operation is in progress: start" in str(exc.value)

    def test_release_then_acquire_succeeds(self):
        store = FakeStore()
        lock = ActionLock(store)
        lock.acquire("start")
        lock.release()
        record = lock.acquire("backup")
        assert record.action == "backup"

    def test_release_is_idempotent(self):
        store = FakeStore()
        lock = ActionLock(store)
        lock.release()
        lock.acquire("stop")
        lock.release()
        lock.release()
        assert lock.current() is None

    def test_conflict_leaves_holder_untouched(self):
        store = FakeStore()
        lock = ActionLock(store)
        lock.acquire("hibernate")
        with pytest.raises(LockConflictError):
            lock.acquire("resume")
        assert lock.current().action == "hibernate"


class TestCurrent:
    def test_idle(self):
        assert ActionLock(FakeStore()).current() is None

    def test_unparseable_value_is_still_held(self):
        store = FakeStore({ACTION_LOCK_PARAMETER: "not json"})
        lock = ActionLock(store)
        assert lock.current().action == "unknown"
        with pytest.raises(LockConflictError):
            lock.acquire("start")

    def test_custom_key(self):
        store = FakeStore()
        ActionLock(store, key="/test/lock").acquire("start")
        assert "/test/lock" in store.values


class TestStaleLocks:
    def test_no_expiry_by_default(self):
        clock = _Clock()
        store = FakeStore({ACTION_LOCK_PARAMETER: ActionLockRecord("start", 0).to_json()})
        with pytest.raises(LockConflictError):
            ActionLock(store, clock=clock).acquire("stop")

    def test_stale_lock_is_cleared(self):
        clock = _Clock()
        old = ActionLockRecord("start", int((clock.now - 600) * 1000))
        store = FakeStore({ACTION_LOCK_PARAMETER: old.to_json()})
        lock = ActionLock(store, stale_after={"start": 300}, clock=clock)

        record = lock.acquire("stop")
        assert record.action == "stop"
        assert lock.current().action == "stop"

    def test_fresh_lock_is_kept(self):
        clock = _Clock()
        recent = ActionLockRecord("backup", int((clock.now - 60) * 1000))
        store = FakeStore({ACTION_LOCK_PARAMETER: recent.to_json()})
        lock = ActionLock(store, stale_after={"backup": 3600}, clock=clock)

        with pytest.raises(LockConflictError):
            lock.acquire("stop")


class TestHold:
    def test_releases_on_success(self):
        store = FakeStore()
        lock = ActionLock(store)
        with lock.hold("start") as record:
            assert record.action == "start"
            assert lock.current() is not None
        assert lock.current() is None

    def test_releases_on_failure(self):
        store = FakeStore()
        lock = ActionLock(store)
        with pytest.raises(CommandFailedError):
            with lock.hold("backup"):
                raise CommandFailedError("disk full")
        assert lock.current() is None

    def test_conflict_does_not_release_holder(self):
        store = FakeStore()
        lock = ActionLock(store)
        lock.acquire("restore")
        with pytest.raises(LockConflictError):
            with lock.hold("start"):
                pytest.fail("body must not run")
        assert lock.current().action == "restore"

    def test_failed_release_keeps_block_result(self):
        store = FakeStore(fail_deletes=True)
        lock = ActionLock(store)

        def body() -> str:
            with lock.hold("hibernate"):
                return "volumes deleted"

        assert body() == "volumes deleted"
        assert store.deletes == [ACTION_LOCK_PARAMETER]

    def test_failed_release_keeps_block_error(self):
        lock = ActionLock(FakeStore(fail_deletes=True))
        with pytest.raises(CommandFailedError, match="disk full"):
            with lock.hold("backup"):
                raise CommandFailedError("disk full")
