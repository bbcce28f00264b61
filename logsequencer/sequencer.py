"""
Sequencer: ordered, single-writer, failure-tolerant draining.

The sequencer owns the entry queue and writes it to a sink one entry
at a time. State machine:

    IDLE     --enqueue-------------------> DRAINING
    DRAINING --queue empty---------------> IDLE
    DRAINING --write failed--------------> FAILED   (retry timer armed)
    FAILED   --timer fired, queue pending-> DRAINING
    FAILED   --timer fired, queue empty--> IDLE

All sequencer logic runs on one event loop. Enqueues from other
threads are handed to that loop with call_soon_threadsafe. A call made
where no event loop is running starts a background drain thread with
a loop of its own; a bound loop that has since been closed is replaced
by the caller's loop (or that drain thread).
"""

import asyncio
import threading
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from logsequencer.entry import LogEntry
from logsequencer.sink import WriteSink
from logsequencer.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RETRY_DELAY_MS = 2000
SHUTDOWN_TIMEOUT = 5.0


class SequencerState(str, Enum):
    """Sequencer states."""
    
    IDLE = "idle"
    DRAINING = "draining"
    FAILED = "failed"


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _set_done(waiter: asyncio.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)


class DrainThread:
    """
    Daemon thread running a private event loop.
    
    Used by a sequencer whose callers have no event loop of their own.
    Being a daemon, it never keeps the process alive; entries still
    queued at exit are lost.
    """
    
    def __init__(self, name: str = "logsequencer-drain"):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()
    
    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            pending = asyncio.all_tasks(self.loop)
            for task in pending:
                task.cancel()
            if pending:
                self.loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            self.loop.close()
    
    @property
    def alive(self) -> bool:
        return self._thread.is_alive()
    
    def stop(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Stop the loop and wait for the thread to exit."""
        if self.loop.is_closed():
            return
        
        try:
            self.loop.call_soon_threadsafe(self.loop.stop)
        except RuntimeError:
            return
        
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout)


class Sequencer:
    """
    Drains queued entries to a sink strictly in order.
    
    Invariants:
    - At most one sink write is in flight
    - Entries are written in enqueue order, none skipped
    - An entry leaves the queue only after its write succeeded
    
    A failed write keeps the entry at the head of the queue and retries
    it after a fixed delay, indefinitely.
    """
    
    def __init__(
        self,
        sink: WriteSink,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Initialize sequencer.
        
        Args:
            sink: Destination for entries
            retry_delay_ms: Fixed backoff before retrying a failed write
            loop: Event loop to run on (bound lazily if None)
        """
        self._sink = sink
        self.retry_delay_ms = retry_delay_ms
        self._loop = loop
        self._drain_thread: Optional[DrainThread] = None
        self._bind_lock = threading.Lock()
        
        self._queue: Deque[LogEntry] = deque()
        self._state = SequencerState.IDLE
        
        self._drain_task: Optional[asyncio.Task] = None
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._idle_waiters: List[asyncio.Future] = []
        
        # Statistics
        self._enqueued = 0
        self._written = 0
        self._failed_writes = 0
        self._retries = 0
        self._rebinds = 0
        
        logger.debug(
            "Initialized sequencer",
            retry_delay_ms=retry_delay_ms,
        )
    
    @property
    def state(self) -> SequencerState:
        """Current state."""
        return self._state
    
    @property
    def pending(self) -> int:
        """Number of entries not yet written."""
        return len(self._queue)
    
    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        """Event loop the sequencer runs on, once bound."""
        return self._loop
    
    @property
    def owns_loop(self) -> bool:
        """Whether the sequencer drains on its own background thread."""
        return self._drain_thread is not None and self._loop is self._drain_thread.loop
    
    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """
        Bind to an event loop and drain anything already queued.
        
        A sequencer whose loop has been closed may be bound again.
        
        Args:
            loop: Event loop to run on
        
        Raises:
            RuntimeError: If already bound to a different, open loop
        """
        with self._bind_lock:
            if self._loop is loop:
                return
            
            if self._loop is not None and not self._loop.is_closed():
                raise RuntimeError("Sequencer is already bound to another event loop")
            
            self._rebind(loop)
    
    def _target_loop(
        self,
        running: Optional[asyncio.AbstractEventLoop],
    ) -> asyncio.AbstractEventLoop:
        """Loop that should run sequencer logic, binding one if needed."""
        with self._bind_lock:
            loop = self._loop
            if loop is not None and not loop.is_closed():
                return loop
            
            if running is None:
                if self._drain_thread is None or not self._drain_thread.alive:
                    self._drain_thread = DrainThread()
                    logger.debug("Started background drain thread")
                running = self._drain_thread.loop
            
            self._rebind(running)
            return running
    
    def _rebind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Switch to loop, discarding state that died with the old one."""
        previous, self._loop = self._loop, loop
        
        if previous is not None:
            self._rebinds += 1
            logger.info(
                "Event loop closed, sequencer rebound",
                state=self._state.value,
                pending=len(self._queue),
            )
        
        # A drain or retry timer cut off with its loop never resumes; the
        # entry it was writing is still at the head of the queue.
        self._state = SequencerState.IDLE
        self._drain_task = None
        self._retry_handle = None
        
        if self._queue:
            if _running_loop() is loop:
                self._check()
            else:
                loop.call_soon_threadsafe(self._check)
    
    def enqueue(self, entry: LogEntry) -> None:
        """
        Append an entry and start draining if idle.
        
        Never blocks and never raises. Safe to call from any thread,
        with or without a running event loop.
        
        Args:
            entry: Entry to write
        """
        running = _running_loop()
        
        # A second attempt covers a loop closed between lookup and handoff.
        for _ in range(2):
            loop = self._target_loop(running)
            
            if running is loop:
                self._accept(entry)
                return
            
            try:
                loop.call_soon_threadsafe(self._accept, entry)
                return
            except RuntimeError:
                continue
        
        logger.error("No usable event loop, entry dropped", text=entry.text)
    
    def _accept(self, entry: LogEntry) -> None:
        self._queue.append(entry)
        self._enqueued += 1
        self._check()
    
    def _check(self) -> None:
        """Transition check after an enqueue."""
        if self._state is SequencerState.IDLE:
            if self._queue:
                self._start_drain()
            else:
                self._notify_idle()
        # DRAINING: the running loop picks the entry up.
        # FAILED: the retry timer owns the next transition.
    
    def _start_drain(self) -> None:
        self._state = SequencerState.DRAINING
        self._drain_task = self._loop.create_task(self._drain())
    
    async def _drain(self) -> None:
        """Write queued entries until the queue is empty or a write fails."""
        while self._queue:
            entry = self._queue[0]
            
            try:
                await self._sink.write(entry.text, entry.severity)
            except Exception as e:
                self._on_write_failed(e)
                return
            
            self._queue.popleft()
            self._written += 1
        
        self._state = SequencerState.IDLE
        self._drain_task = None
        self._notify_idle()
    
    def _on_write_failed(self, error: Exception) -> None:
        self._failed_writes += 1
        self._state = SequencerState.FAILED
        self._drain_task = None
        
        logger.error(
            "Write failed, retrying after backoff",
            error=str(error),
            error_type=type(error).__name__,
            retry_delay_ms=self.retry_delay_ms,
            pending=len(self._queue),
        )
        
        self._retry_handle = self._loop.call_later(
            self.retry_delay_ms / 1000.0,
            self._on_retry_timer,
        )
    
    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self._retries += 1
        
        if self._queue:
            logger.info("Retrying write", pending=len(self._queue), retry=self._retries)
            self._start_drain()
        else:
            self._state = SequencerState.IDLE
            self._notify_idle()
    
    def _is_idle(self) -> bool:
        return self._state is SequencerState.IDLE and not self._queue
    
    def _add_waiter(self, waiter: asyncio.Future) -> None:
        if self._is_idle():
            self._resolve(waiter)
        else:
            self._idle_waiters.append(waiter)
    
    def _resolve(self, waiter: asyncio.Future) -> None:
        # Waiters may belong to a loop other than the sequencer's.
        waiter_loop = waiter.get_loop()
        if waiter_loop is _running_loop():
            _set_done(waiter)
            return
        
        try:
            waiter_loop.call_soon_threadsafe(_set_done, waiter)
        except RuntimeError:
            pass  # the waiter's loop is gone
    
    def _notify_idle(self) -> None:
        waiters, self._idle_waiters = self._idle_waiters, []
        for waiter in waiters:
            self._resolve(waiter)
    
    async def wait_idle(self) -> None:
        """
        Wait until the sequencer is IDLE with nothing pending.
        
        May be awaited from any event loop. This only observes the
        sequencer; entries still pending when the process exits are lost
        regardless.
        """
        loop = asyncio.get_running_loop()
        target = self._target_loop(loop)
        
        waiter = loop.create_future()
        if target is loop:
            self._add_waiter(waiter)
        else:
            target.call_soon_threadsafe(self._add_waiter, waiter)
        await waiter
    
    def close(self) -> None:
        """
        Stop the retry timer, the drain task and any drain thread.
        
        Entries still queued are abandoned.
        """
        loop = self._loop
        
        if (
            loop is not None
            and not loop.is_closed()
            and loop.is_running()
            and _running_loop() is not loop
        ):
            done = threading.Event()
            
            def shutdown() -> None:
                try:
                    self._shutdown()
                finally:
                    done.set()
            
            try:
                loop.call_soon_threadsafe(shutdown)
                done.wait(SHUTDOWN_TIMEOUT)
            except RuntimeError:
                self._shutdown()
        else:
            self._shutdown()
        
        if self._drain_thread is not None:
            self._drain_thread.stop()
            if self._loop is self._drain_thread.loop:
                self._loop = None
            self._drain_thread = None
    
    def _shutdown(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        
        if self._drain_task is not None:
            if not self._loop.is_closed():
                self._drain_task.cancel()
            self._drain_task = None
        
        if self._queue:
            logger.warning("Sequencer closed with pending entries", pending=len(self._queue))
            self._queue.clear()
        
        self._state = SequencerState.IDLE
        self._notify_idle()
    
    def get_stats(self) -> Dict[str, Any]:
        """
        Get sequencer statistics.
        
        Returns:
            Statistics dictionary
        """
        return {
            "state": self._state.value,
            "pending": len(self._queue),
            "enqueued": self._enqueued,
            "written": self._written,
            "failed_writes": self._failed_writes,
            "retries": self._retries,
            "retry_delay_ms": self.retry_delay_ms,
            "rebinds": self._rebinds,
            "owns_loop": self.owns_loop,
        }
