"""System-wide action lock held in the shared parameter store.

At most one lifecycle workflow runs at a time. The lock is a single
parameter whose presence means a workflow is in flight; acquisition is a
conditional put, so two concurrent acquirers cannot both succeed.

There is no heartbeat. A workflow that crashes leaves the lock held until
it is cleared with ``release`` (the CLI ``unlock`` command) or, when
configured, until ``stale_after`` for its action elapses.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from types import MappingProxyType

from loguru import logger

from dormant.constants import ACTION_LOCK_PARAMETER
from dormant.exceptions import DormantError, LockConflictError, NotFoundError, ParameterExistsError
from dormant.model import ActionLockRecord
from dormant.protocols import ParameterStore

log = logger.bind(component="lock")


class ActionLock:
    def __init__(
        self,
        store: ParameterStore,
        *,
        key: str = ACTION_LOCK_PARAMETER,
        stale_after: Mapping[str, float] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.key = key
        self._stale_after = MappingProxyType(dict(stale_after or {}))
        self._clock = clock

    def current(self) -> ActionLockRecord | None:
        """Return the held record, or None when idle.

        A value that cannot be parsed still means the lock is held; it is
        reported with action "unknown".
        """
        raw = self._store.get(self.key)
        if raw is None:
            return None
        return ActionLockRecord.from_json(raw) or ActionLockRecord(action="unknown", acquired_at_ms=0)

    def _is_stale(self, record: ActionLockRecord) -> bool:
        limit = self._stale_after.get(record.action)
        return limit is not None and record.age_seconds(self._clock()) > limit

    def acquire(self, action: str) -> ActionLockRecord:
        """Atomically take the lock for ``action``.

        Raises:
            LockConflictError: Another workflow holds the lock.
        """
        # Two rounds: the holder may release, or a stale record may be
        # cleared, between the failed put and the read.
        for _ in range(2):
            record = ActionLockRecord(action=action, acquired_at_ms=int(self._clock() * 1000))
            try:
                self._store.put(self.key, record.to_json(), overwrite=False)
            except ParameterExistsError:
                holder = self.current()
                if holder is None:
                    continue
                if self._is_stale(holder):
                    log.warning(
                        "Clearing stale lock for {held} held {age:.0f}s",
                        held=holder.action,
                        age=holder.age_seconds(self._clock()),
                    )
                    self.release()
                    continue
                raise LockConflictError(holder.action, requested=action) from None
            log.info("Acquired lock for {action}", action=action)
            return record

        holder = self.current()
        raise LockConflictError(holder.action if holder else "unknown", requested=action)

    def release(self) -> None:
        """Release the lock. Releasing an idle lock is a no-op."""
        try:
            self._store.delete(self.key)
        except NotFoundError:
            log.debug("Lock already released")
            return
        log.info("Released lock")

    @contextmanager
    def hold(self, action: str) -> Iterator[ActionLockRecord]:
        """Hold the lock for the duration of the block, releasing on every exit path.

        A failed release is logged and never replaces the block's own outcome.
        """
        record = self.acquire(action)
        try:
            yield record
        finally:
            try:
                self.release()
            except DormantError:
                log.exception("Failed to release lock after {action}", action=action)
