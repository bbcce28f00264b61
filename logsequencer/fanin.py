"""
Fan-in of log requests from worker processes.

Workers never format or queue anything. A worker log call becomes a
plain-text LogRequest record sent over a FanInChannel; the
authoritative process receives it, formats it and enqueues it as if
the call had been made locally.

Wire record:

    {"type": "Logger", "message": "<raw template>", "severity": "WARN", "args": ["..."]}

Records sent by one worker arrive in send order. Nothing is promised
about the interleaving of different workers.
"""

import asyncio
import multiprocessing
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from logsequencer.errors import ConfigError, TransportError
from logsequencer.formatter import stringify_arg
from logsequencer.severity import ENTRY_SEVERITIES, Severity
from logsequencer.utils.logging import get_logger

logger = get_logger(__name__)

LOG_REQUEST_TYPE = "Logger"
DEFAULT_FORWARD_ARG_LIMIT = 1


@dataclass(frozen=True)
class LogRequest:
    """
    A log call forwarded from a worker.
    
    Attributes:
        message: Raw, unformatted message template
        severity: Severity of the call
        args: Forwarded substitution arguments, already stringified
    """
    message: str
    severity: Severity
    args: Tuple[str, ...] = ()
    
    @classmethod
    def build(
        cls,
        message: Any,
        severity: Severity,
        args: Sequence[Any] = (),
        arg_limit: int = DEFAULT_FORWARD_ARG_LIMIT,
    ) -> "LogRequest":
        """
        Build a request from a worker log call.
        
        Only the first arg_limit arguments are kept.
        
        Args:
            message: Raw message template
            severity: Severity of the call
            args: Substitution arguments
            arg_limit: Number of arguments to forward
        
        Returns:
            Request ready to send
        """
        kept = tuple(stringify_arg(arg) for arg in list(args)[:max(arg_limit, 0)])
        text = message if isinstance(message, str) else stringify_arg(message)
        return cls(message=text, severity=severity, args=kept)
    
    def to_message(self) -> Dict[str, Any]:
        """Serialize to the wire record."""
        return {
            "type": LOG_REQUEST_TYPE,
            "message": self.message,
            "severity": self.severity.label,
            "args": list(self.args),
        }
    
    @classmethod
    def from_message(cls, record: Any) -> "LogRequest":
        """
        Parse a wire record.
        
        Args:
            record: Received record
        
        Returns:
            Parsed request
        
        Raises:
            TransportError: If the record is not a well-formed LogRequest
        """
        if not isinstance(record, dict):
            raise TransportError(f"Expected dict record, got {type(record).__name__}")
        
        if record.get("type") != LOG_REQUEST_TYPE:
            raise TransportError(f"Unrecognized record type: {record.get('type')!r}")
        
        message = record.get("message")
        if not isinstance(message, str):
            raise TransportError("Record has no message text")
        
        try:
            severity = Severity.parse(record.get("severity"))
        except ConfigError as e:
            raise TransportError(str(e)) from e
        
        if severity not in ENTRY_SEVERITIES:
            raise TransportError(f"Severity {severity.label} cannot be logged")
        
        args = record.get("args", [])
        if not isinstance(args, (list, tuple)):
            raise TransportError("Record args must be a list")
        
        return cls(
            message=message,
            severity=severity,
            args=tuple(stringify_arg(arg) for arg in args),
        )


class FanInChannel(ABC):
    """
    Ordered channel from workers to the authoritative process.
    
    send() is called on the worker side, receive() on the
    authoritative side. receive() returns None once the channel has
    been closed.
    """
    
    @abstractmethod
    def send(self, record: Dict[str, Any]) -> None:
        """
        Send a record without waiting for delivery.
        
        Raises:
            TransportError: If the record cannot be handed to the transport
        """
        pass
    
    @abstractmethod
    async def receive(self) -> Optional[Dict[str, Any]]:
        """Wait for the next record (None at end of stream)."""
        pass
    
    @abstractmethod
    def close(self) -> None:
        """Signal end of stream to the receiver."""
        pass
    
    def release(self) -> None:
        """Free receiver-side resources once receiving has stopped."""
        pass


class LocalChannel(FanInChannel):
    """Channel within one event loop, backed by asyncio.Queue."""
    
    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
    
    def send(self, record: Dict[str, Any]) -> None:
        if self._closed:
            raise TransportError("Channel is closed")
        self._queue.put_nowait(record)
    
    async def receive(self) -> Optional[Dict[str, Any]]:
        return await self._queue.get()
    
    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)


class ProcessChannel(FanInChannel):
    """
    Channel between processes on one host, backed by multiprocessing.Queue.
    
    The channel is picklable, so it can be passed to worker processes
    as a Process argument. The blocking get() runs on a dedicated
    thread on the receiving side.
    """
    
    def __init__(self, queue: Optional[Any] = None):
        """
        Initialize channel.
        
        Args:
            queue: Existing multiprocessing queue (a new one if None)
        """
        self._queue = queue if queue is not None else multiprocessing.Queue()
        self._executor: Optional[ThreadPoolExecutor] = None
    
    def __getstate__(self) -> Dict[str, Any]:
        return {"queue": self._queue}
    
    def __setstate__(self, state: Dict[str, Any]) -> None:
        self._queue = state["queue"]
        self._executor = None
    
    def send(self, record: Dict[str, Any]) -> None:
        try:
            self._queue.put(record)
        except (ValueError, OSError, AssertionError) as e:
            raise TransportError(f"Cannot send record: {e}") from e
    
    async def receive(self) -> Optional[Dict[str, Any]]:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix="logsequencer-fanin",
            )
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._queue.get)
    
    def close(self) -> None:
        try:
            self._queue.put(None)
        except (ValueError, OSError, AssertionError) as e:
            logger.debug("Channel already closed", error=str(e))
    
    def release(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None


class FanInListener:
    """
    Receives records from a channel and hands them to a handler.
    
    The handler returns True if it accepted the record and False if it
    discarded it.
    """
    
    def __init__(
        self,
        channel: FanInChannel,
        handler: Callable[[Any], bool],
    ):
        """
        Initialize listener.
        
        Args:
            channel: Channel to receive from
            handler: Called once per received record
        """
        self.channel = channel
        self._handler = handler
        self._task: Optional[asyncio.Task] = None
        
        # Statistics
        self._received = 0
        self._discarded = 0
    
    def start(self) -> asyncio.Task:
        """
        Start listening on the running event loop.
        
        Returns:
            Listener task
        """
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.debug("Fan-in listener started", channel=type(self.channel).__name__)
        return self._task
    
    @property
    def running(self) -> bool:
        """True while the listener task is alive."""
        return self._task is not None and not self._task.done()
    
    async def _run(self) -> None:
        try:
            while True:
                try:
                    record = await self.channel.receive()
                except (EOFError, OSError) as e:
                    logger.error("Fan-in channel failed", error=str(e))
                    break
                
                if record is None:
                    break
                
                self._received += 1
                if not self._handler(record):
                    self._discarded += 1
        finally:
            self.channel.release()
            logger.debug(
                "Fan-in listener stopped",
                received=self._received,
                discarded=self._discarded,
            )
    
    async def stop(self) -> None:
        """Close the channel and wait for pending records to be handled."""
        self.channel.close()
        if self._task is not None:
            await self._task
    
    def cancel(self) -> None:
        """Stop listening without waiting; undelivered records are dropped."""
        if self._task is None or self._task.done():
            return
        if self._task.get_loop().is_closed():
            return
        
        self._task.cancel()
        # wakes a receiver blocked on the transport
        self.channel.close()
    
    def get_stats(self) -> Dict[str, Any]:
        """
        Get listener statistics.
        
        Returns:
            Statistics dictionary
        """
        return {
            "received": self._received,
            "discarded": self._discarded,
            "running": self.running,
        }
