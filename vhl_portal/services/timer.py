"""Server-side countdown for in-progress attempts.

One ``loop.call_later`` handle per attempt. When it fires, the database work
runs in the loop's default executor through ``exam_service.expire_if_due``,
which is a no-op for attempts that were already submitted, so a leaked or late
handle is harmless.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlmodel import Session

from vhl_portal.services import exam_service
from vhl_portal.utils import utcnow

logger = logging.getLogger(__name__)


class AttemptTimers:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self._handles: dict[int, asyncio.TimerHandle] = {}
        self._running: set[asyncio.Future] = set()

    def schedule(
        self,
        attempt_id: int,
        deadline: datetime,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """(Re)arm the timer for an attempt. Must run on the event loop."""
        loop = loop or asyncio.get_running_loop()
        self.cancel(attempt_id)
        delay = max(0.0, (deadline - self.clock()).total_seconds())
        self._handles[attempt_id] = loop.call_later(delay, self._fire, loop, attempt_id)
        logger.debug("Timer armed for attempt id=%s in %.1fs", attempt_id, delay)

    def cancel(self, attempt_id: int) -> None:
        handle = self._handles.pop(attempt_id, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> int:
        attempt_ids = list(self._handles)
        for attempt_id in attempt_ids:
            self.cancel(attempt_id)
        return len(attempt_ids)

    def pending(self, attempt_id: int) -> bool:
        return attempt_id in self._handles

    async def join(self) -> None:
        """Wait for expirations already handed to the executor."""
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)

    def _fire(self, loop: asyncio.AbstractEventLoop, attempt_id: int) -> None:
        self._handles.pop(attempt_id, None)
        future = loop.run_in_executor(None, self._expire, attempt_id)
        self._running.add(future)
        future.add_done_callback(self._running.discard)

    def _expire(self, attempt_id: int) -> None:
        try:
            with self.session_factory() as session:
                result = exam_service.expire_if_due(session, attempt_id, now=self.clock())
        except Exception:
            # No retry queue: the next page load or answer save expires it
            logger.exception("Timed submission failed for attempt id=%s", attempt_id)
            return
        if result is not None:
            logger.info("Attempt id=%s submitted on timeout", attempt_id)
