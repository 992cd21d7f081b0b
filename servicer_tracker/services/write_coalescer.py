"""
Debounced writes and submission locks.

WriteCoalescer keeps at most one pending write per entity: a new edit to the
same task, customer or sub-category replaces the one still waiting out its
delay, so a burst of edits reaches the store as a single last-value write.
Writes for one entity never overlap: a write waits for the previous write to
the same key to finish, so the store ends up with the newest value.
InFlightGuard stops a create form from being submitted twice while the first
request is still running.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional, Tuple

from ..config import get_settings
from ..exceptions import DuplicateSubmissionError

logger = logging.getLogger(__name__)

WriteFn = Callable[[], Awaitable[Any]]


class WriteCoalescer:
    """Single-writer-per-entity debounce"""

    def __init__(self, delay: Optional[float] = None):
        self.delay = get_settings().WRITE_DEBOUNCE_SECONDS if delay is None else delay
        # key -> (sleeping task, write); an entry leaves this map before its write starts
        self._pending: Dict[Hashable, Tuple[asyncio.Task, WriteFn]] = {}
        # key -> task running (or queued to run) the latest write for that key
        self._writing: Dict[Hashable, asyncio.Task] = {}

    def schedule(self, key: Hashable, write: WriteFn) -> asyncio.Task:
        """Queue ``write`` for ``key`` after the delay, dropping any earlier pending write"""
        if self.cancel(key):
            logger.debug(f"🔄 Replacing pending write for {key}")
        task = asyncio.create_task(self._write_after_delay(key, write))
        self._pending[key] = (task, write)
        return task

    async def _write_after_delay(self, key: Hashable, write: WriteFn) -> Any:
        await asyncio.sleep(self.delay)
        self._pending.pop(key, None)
        return await self._execute(key, write)

    async def _execute(self, key: Hashable, write: WriteFn) -> Any:
        """Run ``write`` once the previous write for ``key`` has finished"""
        previous = self._writing.get(key)
        current = asyncio.current_task()
        self._writing[key] = current
        try:
            if previous is not None and previous is not current and not previous.done():
                # Its outcome belongs to whoever awaits it
                await asyncio.wait([previous])
            return await write()
        except Exception as e:
            logger.error(f"❌ Write for {key} failed: {e}")
            raise
        finally:
            if self._writing.get(key) is current:
                del self._writing[key]

    def cancel(self, key: Hashable) -> bool:
        entry = self._pending.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    async def flush(self) -> List[Any]:
        """Run every pending write now; the first failure is re-raised after all have run"""
        pending, self._pending = self._pending, {}
        results = []
        first_error: Optional[Exception] = None
        for key, (task, write) in pending.items():
            task.cancel()
            try:
                results.append(await self._execute(key, write))
            except Exception as e:
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error
        return results

    @property
    def pending_keys(self) -> List[Hashable]:
        return list(self._pending)

    def __len__(self) -> int:
        return len(self._pending)


class InFlightGuard:
    """
    Per-operation "in flight" flag.

    Usage::

        guard = InFlightGuard("add sub-category")
        async with guard:
            await update_service.add_sub_category(...)

    Entering while the flag is set raises DuplicateSubmissionError. The check
    and the set happen without yielding to the event loop, so two submissions
    in the same tick cannot both get through. The flag is cleared on exit
    whether the body succeeded or raised.
    """

    def __init__(self, operation: str):
        self.operation = operation
        self.in_flight = False

    async def __aenter__(self) -> "InFlightGuard":
        if self.in_flight:
            raise DuplicateSubmissionError(f"{self.operation} is already in progress")
        self.in_flight = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.in_flight = False
        return False
