"""
Progress reporting for downloads and installs.

Installers push `ProgressEvent` samples into a `ProgressSink`. The consumer owns
the receiving side and decides how to render or throttle the samples: a plain
callback, a thread-safe queue, or an asyncio queue fed across threads.

Sinks are called synchronously from the thread doing the transfer and must not
block for long, or the transfer stalls with them.
"""

import asyncio
import queue
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Protocol

from flashtastic.log_utils import logger


@dataclass(frozen=True)
class ProgressEvent:
    """A transfer progress sample."""

    transferred: int
    """Bytes transferred so far"""

    total: Optional[int] = None
    """Total bytes, when known"""

    done: bool = False
    """True only on the final sample of a completed transfer"""

    @property
    def fraction(self) -> Optional[float]:
        if not self.total:
            return None
        return min(self.transferred / self.total, 1.0)


class ProgressSink(Protocol):
    def report(self, event: ProgressEvent) -> None: ...


class NullProgress:
    """Discards every sample."""

    def report(self, event: ProgressEvent) -> None:
        pass


class CallbackProgress:
    """Forwards each sample to a callable."""

    def __init__(self, callback: Callable[[ProgressEvent], None]) -> None:
        self.callback = callback

    def report(self, event: ProgressEvent) -> None:
        self.callback(event)


class QueueProgress:
    """
    Thread-safe channel of progress samples.

    The installer thread calls `report`; the consumer reads with `get` or drains
    everything queued so far with `drain`.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self.queue: "queue.Queue[ProgressEvent]" = queue.Queue(maxsize=maxsize)

    def report(self, event: ProgressEvent) -> None:
        self.queue.put(event)

    def get(self, timeout: Optional[float] = None) -> ProgressEvent:
        return self.queue.get(timeout=timeout)

    def drain(self) -> Iterator[ProgressEvent]:
        while True:
            try:
                yield self.queue.get_nowait()
            except queue.Empty:
                return


class AsyncQueueProgress:
    """
    Feeds samples produced on a worker thread into an asyncio.Queue.

    Create it on the event loop thread; `report` may then be called from any
    thread.
    """

    def __init__(
        self,
        async_queue: "Optional[asyncio.Queue[ProgressEvent]]" = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.loop = loop or asyncio.get_running_loop()
        self.queue: "asyncio.Queue[ProgressEvent]" = async_queue or asyncio.Queue()

    def report(self, event: ProgressEvent) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, event)


class ProgressTracker:
    """
    Accumulates byte counts for one transfer and reports them to a sink.

    `finish()` emits the single completion sample; it is a no-op when called
    twice.
    """

    def __init__(self, sink: Optional[ProgressSink], total: Optional[int] = None):
        self.sink: ProgressSink = sink if sink is not None else NullProgress()
        self.total = total
        self.transferred = 0
        self.finished = False

    def _emit(self, event: ProgressEvent) -> None:
        try:
            self.sink.report(event)
        except Exception as exc:  # noqa: BLE001
            # Sink failures are logged and ignored; the transfer continues
            logger.debug(f"Progress sink error: {exc}")

    def advance(self, num_bytes: int) -> None:
        self.transferred += num_bytes
        self._emit(ProgressEvent(self.transferred, self.total))

    def finish(self) -> None:
        if self.finished:
            return
        self.finished = True
        total = self.total if self.total is not None else self.transferred
        self._emit(ProgressEvent(self.transferred, total, done=True))
