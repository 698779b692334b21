"""Ordered, de-duplicated and resumable application log feed.

Sequence tokens are consecutive integers per application. The streamer keeps
the last token it delivered and uses it to resume after a reconnect, dropping
anything at or below it. Entries arriving out of order are held back until the
missing tokens show up, or until the reorder window overflows, in which case a
gap marker is emitted and delivery moves on.
"""

import asyncio
import heapq
import logging
from typing import Any, AsyncIterator, List, Optional, Self, Set

from .api import PlatformAPI
from .errors import LogStreamUnreachable, ResumeRejected, TransportError
from .models import Application, LogEntry, gap_marker
from .retry import Backoff, RetryPolicy, Sleep

logger = logging.getLogger(__name__)

_ENDED = object()
_STOPPED = object()


class ReorderBuffer:
    """Releases entries in strictly increasing token order, each at most once."""

    def __init__(self: Self, last_delivered: Optional[int] = None, window: int = 64) -> None:
        self.last = last_delivered
        self.window = window
        self._heap: List[LogEntry] = []
        self._pending: Set[int] = set()
        self._rebase = False
        # First token released on a fresh stream; anything older arrived too late
        self._baseline: Optional[int] = None
        self._late: Set[int] = set()

    def __len__(self: Self) -> int:
        return len(self._heap)

    def rebase(self: Self) -> None:
        """Accept the next smallest token even if it does not follow ``last``."""
        self._rebase = True

    def push(self: Self, entries: List[LogEntry]) -> List[LogEntry]:
        """Buffer a batch and return the entries ready for delivery.

        A record older than the first one delivered on a fresh stream can no
        longer be delivered in order; it is reported with a gap marker.
        """
        late = []
        for entry in entries:
            token = entry.token
            if token is None:
                continue
            if self.last is not None and token <= self.last:
                if self._baseline is not None and token < self._baseline and token not in self._late:
                    self._late.add(token)
                    logger.warning("Log token %d arrived after token %d was delivered", token, self._baseline)
                    late.append(gap_marker(self.last, None, f"record {token} arrived out of order"))
                continue
            if token in self._pending:
                continue
            self._pending.add(token)
            heapq.heappush(self._heap, entry)
        return late + self._release(force=False)

    def flush(self: Self) -> List[LogEntry]:
        """Release everything buffered, marking any holes."""
        return self._release(force=True)

    def _pop(self: Self) -> LogEntry:
        entry = heapq.heappop(self._heap)
        self._pending.discard(entry.token)
        self.last = entry.token
        return entry

    def _release(self: Self, force: bool) -> List[LogEntry]:
        ready = []
        while self._heap:
            smallest = self._heap[0].token
            if self.last is None or self._rebase or smallest == self.last + 1:
                if self.last is None:
                    self._baseline = smallest
                self._rebase = False
                ready.append(self._pop())
            elif force or len(self._heap) > self.window:
                logger.warning("Log tokens %d..%d never arrived", self.last + 1, smallest - 1)
                ready.append(gap_marker(self.last, smallest, "missing records"))
                ready.append(self._pop())
            else:
                break
        return ready


async def _anext_or_end(feed: AsyncIterator[List[LogEntry]]) -> Any:
    try:
        return await feed.__anext__()
    except StopAsyncIteration:
        return _ENDED


class LogStreamer:
    """Follows the log feed of one application."""

    def __init__(
        self: Self,
        api: PlatformAPI,
        app: Application,
        since: Optional[int] = None,
        policy: Optional[RetryPolicy] = None,
        reorder_window: int = 64,
        tail_grace: float = 1.0,
        sleep: Sleep = asyncio.sleep
    ) -> None:
        """Initialize the streamer.

        Args:
            api: Platform capability providing the raw feed.
            app: Application whose logs are followed.
            since: Resume after this token; the platform default when None.
            policy: Reconnection policy; the ceiling applies to consecutive
                failed connections.
            reorder_window: Out-of-order entries held before declaring a gap.
            tail_grace: Seconds to keep reading after ``stop`` is set.
            sleep: Awaitable sleep, replaceable in tests.
        """
        self.api = api
        self.app = app
        self.policy = policy or RetryPolicy()
        self.tail_grace = tail_grace
        self._sleep = sleep
        self._buffer = ReorderBuffer(since, reorder_window)
        self._resume = since is not None
        self._deadline: Optional[float] = None

    @property
    def last_token(self: Self) -> Optional[int]:
        return self._buffer.last

    async def _next_batch(self: Self, feed: AsyncIterator[List[LogEntry]], stop: Optional[asyncio.Event]) -> Any:
        """Next batch from ``feed``, ``_ENDED`` or ``_STOPPED``."""
        if stop is None:
            return await _anext_or_end(feed)

        loop = asyncio.get_running_loop()
        if self._deadline is None and stop.is_set():
            self._deadline = loop.time() + self.tail_grace

        read = asyncio.ensure_future(_anext_or_end(feed))
        try:
            if self._deadline is None:
                waiter = asyncio.ensure_future(stop.wait())
                try:
                    await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    waiter.cancel()
                if read.done():
                    return read.result()
                self._deadline = loop.time() + self.tail_grace

            # Stopping: whatever arrives within the grace period is still delivered
            remaining = max(0.0, self._deadline - loop.time())
            done, _ = await asyncio.wait({read}, timeout=remaining)
            if read in done:
                return read.result()
            return _STOPPED
        finally:
            if not read.done():
                read.cancel()
                # The feed cannot be closed while a read is still unwinding
                await asyncio.wait({read})

    async def stream(self: Self, stop: Optional[asyncio.Event] = None) -> AsyncIterator[LogEntry]:
        """Yield log entries in token order.

        Without ``stop`` the stream never ends on its own. With ``stop`` it
        completes once the event is set, after the grace period and a final
        flush of buffered entries.

        Raises:
            LogStreamUnreachable: Reconnection failed too many times in a row.
        """
        backoff = Backoff(self.policy, self._sleep)
        self._deadline = None

        while True:
            since = self._buffer.last if self._resume else None
            feed = self.api.stream_logs(self.app, since).__aiter__()
            received = False
            try:
                while True:
                    batch = await self._next_batch(feed, stop)
                    if batch is _STOPPED:
                        for entry in self._buffer.flush():
                            yield entry
                        return
                    if batch is _ENDED:
                        break
                    if batch:
                        received = True
                        backoff.reset()
                    for entry in self._buffer.push(batch):
                        yield entry
                        self._resume = True

                if stop is not None and stop.is_set():
                    for entry in self._buffer.flush():
                        yield entry
                    return
                logger.info("Log feed closed by the platform, reconnecting")
                if received:
                    await self._sleep(self.policy.delay(1))
                elif not await backoff.failed():
                    raise LogStreamUnreachable("The log feed keeps closing without sending anything")

            except ResumeRejected as e:
                logger.warning("Cannot resume logs after token %s: %s", since, e)
                yield gap_marker(self._buffer.last, None, str(e))
                self._buffer.rebase()
                self._resume = False
                if not await backoff.failed():
                    raise LogStreamUnreachable(f"Log feed cannot be resumed: {e}")

            except TransportError as e:
                logger.warning("Log feed interrupted after token %s: %s", self._buffer.last, e)
                if not await backoff.failed():
                    raise LogStreamUnreachable(
                        f"Lost the log feed after {self.policy.max_attempts} reconnection attempts: {e}"
                    )

            finally:
                aclose = getattr(feed, "aclose", None)
                if aclose is not None:
                    await aclose()
