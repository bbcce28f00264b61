"""
Public logger facade and the process-wide accessor.

In the authoritative process a log call is formatted and handed to the
Sequencer. In a worker process the same call is forwarded over a
FanInChannel instead. Either way the call returns immediately and
never raises.

Example:
    logger = create_logger(LoggerConfig(min_severity="INFO", file_path="app.log"))
    logger.info("user {1} logged in", user_id)
"""

import asyncio
import multiprocessing
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from logsequencer.entry import LogEntry
from logsequencer.errors import ConfigError, TransportError
from logsequencer.fanin import FanInChannel, FanInListener, LogRequest
from logsequencer.formatter import format_line
from logsequencer.sequencer import Sequencer
from logsequencer.severity import Severity
from logsequencer.sink import ConsoleFileSink, WriteSink
from logsequencer.utils.config import LoggerConfig, get_config
from logsequencer.utils.logging import get_logger

logger = get_logger(__name__)

AUTHORITATIVE = "authoritative"
WORKER = "worker"


class Logger(ABC):
    """Severity-filtered log calls shared by both roles."""
    
    role: str = ""
    
    def __init__(self, config: LoggerConfig):
        """
        Initialize logger.
        
        Args:
            config: Resolved logger configuration
        """
        self.config = config
        self._level = config.min_severity
        self._echo = config.echo_to_console
        
        # Statistics
        self._accepted = 0
        self._filtered = 0
    
    @property
    def level(self) -> Severity:
        """Current minimum severity."""
        return self._level
    
    @property
    def echo(self) -> bool:
        """Whether written lines are echoed to the console."""
        return self._echo
    
    def set_level(self, severity: Any) -> None:
        """
        Change the minimum severity for subsequent calls.
        
        Args:
            severity: Severity, name or ordinal (SILENT disables logging)
        """
        self._level = Severity.parse(severity)
    
    def set_echo(self, enabled: bool) -> None:
        """
        Turn console echo on or off for subsequent calls.
        
        Args:
            enabled: Echo written lines to stdout/stderr
        """
        self._echo = bool(enabled)
    
    def is_enabled_for(self, severity: Severity) -> bool:
        return severity >= self._level
    
    def log(self, severity: Severity, msg: Any, *args: Any) -> None:
        """
        Log msg at the given severity.
        
        Args:
            severity: Entry severity (TRACE..ERROR)
            msg: Message template with {1}, {2}, ... placeholders
            *args: Substitution arguments
        """
        if severity >= Severity.SILENT or not self.is_enabled_for(severity):
            self._filtered += 1
            return
        
        self._accepted += 1
        self._dispatch(msg, severity, args)
    
    def trace(self, msg: Any, *args: Any) -> None:
        self.log(Severity.TRACE, msg, *args)
    
    def debug(self, msg: Any, *args: Any) -> None:
        self.log(Severity.DEBUG, msg, *args)
    
    def info(self, msg: Any, *args: Any) -> None:
        self.log(Severity.INFO, msg, *args)
    
    def warn(self, msg: Any, *args: Any) -> None:
        self.log(Severity.WARN, msg, *args)
    
    warning = warn
    
    def error(self, msg: Any, *args: Any) -> None:
        self.log(Severity.ERROR, msg, *args)
    
    @abstractmethod
    def _dispatch(self, msg: Any, severity: Severity, args: Sequence[Any]) -> None:
        """Deliver a call that passed the threshold."""
        pass
    
    def close(self) -> None:
        """Release resources."""
        pass
    
    def get_stats(self) -> Dict[str, Any]:
        """
        Get logger statistics.
        
        Returns:
            Statistics dictionary
        """
        return {
            "role": self.role,
            "level": self._level.label,
            "echo": self._echo,
            "accepted": self._accepted,
            "filtered": self._filtered,
        }


class AuthoritativeLogger(Logger):
    """
    Logger that owns the Sequencer and the destination.
    
    Receives forwarded calls from workers through fan-in listeners.
    """
    
    role = AUTHORITATIVE
    
    def __init__(
        self,
        config: LoggerConfig,
        sink: Optional[WriteSink] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Initialize authoritative logger.
        
        Args:
            config: Resolved logger configuration
            sink: Destination (a ConsoleFileSink built from config if None)
            loop: Event loop for the sequencer (bound on first use if None)
        """
        super().__init__(config)
        
        self.sink = sink or ConsoleFileSink(file_path=config.file_path)
        self.sink.echo = self._echo
        self.sequencer = Sequencer(self.sink, config.retry_delay_ms, loop)
        self._listeners: List[FanInListener] = []
        
        logger.debug(
            "Initialized authoritative logger",
            level=self._level.label,
            file_path=config.file_path,
            echo=self._echo,
        )
    
    def set_echo(self, enabled: bool) -> None:
        super().set_echo(enabled)
        self.sink.echo = self._echo
    
    def _dispatch(self, msg: Any, severity: Severity, args: Sequence[Any]) -> None:
        entry = LogEntry(text=format_line(msg, severity, args), severity=severity)
        self.sequencer.enqueue(entry)
    
    def receive(self, record: Any) -> bool:
        """
        Handle one fan-in record.
        
        Well-formed records are formatted and enqueued like a local call;
        the worker already applied its own threshold. Anything else is
        discarded.
        
        Args:
            record: Received wire record
        
        Returns:
            True if the record was enqueued
        """
        try:
            request = LogRequest.from_message(record)
        except TransportError as e:
            logger.warning("Discarded fan-in record", error=str(e))
            return False
        
        self._dispatch(request.message, request.severity, request.args)
        return True
    
    def listen(self, channel: FanInChannel) -> FanInListener:
        """
        Start receiving worker records from a channel.
        
        Must be called with a running event loop; records are handed to
        the sequencer from that loop.
        
        Args:
            channel: Channel workers send to
        
        Returns:
            Running listener
        """
        listener = FanInListener(channel, self.receive)
        listener.start()
        self._listeners.append(listener)
        return listener
    
    async def stop_listening(self) -> None:
        """Close every channel and wait until their listeners finish."""
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            await listener.stop()
    
    async def wait_idle(self) -> None:
        """Wait until everything enqueued so far has been written."""
        await self.sequencer.wait_idle()
    
    def close(self) -> None:
        """Stop listeners and the sequencer, then release the sink."""
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener.cancel()
        
        self.sequencer.close()
        self.sink.close()
    
    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats["sequencer"] = self.sequencer.get_stats()
        stats["listeners"] = [listener.get_stats() for listener in self._listeners]
        return stats


class WorkerLogger(Logger):
    """
    Logger for non-authoritative processes.
    
    Forwards raw calls over a channel. It has no queue and no
    destination of its own, so echo is decided by the authoritative
    process.
    """
    
    role = WORKER
    
    def __init__(self, config: LoggerConfig, channel: FanInChannel):
        """
        Initialize worker logger.
        
        Args:
            config: Resolved logger configuration
            channel: Channel to the authoritative process
        """
        super().__init__(config)
        self.channel = channel
        self._send_failures = 0
    
    def _dispatch(self, msg: Any, severity: Severity, args: Sequence[Any]) -> None:
        request = LogRequest.build(msg, severity, args, self.config.forward_arg_limit)
        
        try:
            self.channel.send(request.to_message())
        except TransportError as e:
            self._send_failures += 1
            logger.warning(
                "Dropped log call, fan-in channel unavailable",
                error=str(e),
                severity=severity.label,
            )
    
    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats["send_failures"] = self._send_failures
        return stats


def detect_role() -> str:
    """
    Guess this process's role.
    
    A process started by multiprocessing is a worker; anything else is
    authoritative.
    """
    if multiprocessing.parent_process() is not None:
        return WORKER
    return AUTHORITATIVE


# Process-wide instance
_instance: Optional[Logger] = None
_instance_lock = threading.Lock()


def create_logger(
    config: Optional[LoggerConfig] = None,
    *,
    channel: Optional[FanInChannel] = None,
    role: Optional[str] = None,
    sink: Optional[WriteSink] = None,
) -> Logger:
    """
    Get the process-wide logger, creating it on first use.
    
    Later calls return the same instance and ignore their arguments.
    
    Args:
        config: Logger configuration (from get_config() if None)
        channel: Channel to the authoritative process (workers only)
        role: AUTHORITATIVE or WORKER (detected if None)
        sink: Destination override (authoritative only)
    
    Returns:
        Process-wide logger
    
    Raises:
        ConfigError: If the role is unknown or a worker has no channel
    """
    global _instance
    
    with _instance_lock:
        if _instance is not None:
            if config is not None or channel is not None or sink is not None:
                logger.debug(
                    "Logger already created, ignoring new configuration",
                    role=_instance.role,
                )
            return _instance
        
        config = config or get_config().to_logger_config()
        role = role or detect_role()
        
        if role == WORKER:
            if channel is None:
                raise ConfigError("A worker logger needs a fan-in channel")
            _instance = WorkerLogger(config, channel)
        elif role == AUTHORITATIVE:
            _instance = AuthoritativeLogger(config, sink=sink)
        else:
            raise ConfigError(f"Unknown role: {role!r}")
        
        logger.info("Created process logger", role=role, level=config.min_severity.label)
        return _instance


def reset_logger() -> None:
    """Close and drop the process-wide logger (mainly for testing)."""
    global _instance
    with _instance_lock:
        if _instance is not None:
            _instance.close()
        _instance = None


def _forget_instance_in_child() -> None:
    # A forked child must not reuse the parent's queue and destination.
    global _instance, _instance_lock
    _instance = None
    _instance_lock = threading.Lock()


if hasattr(os, "register_at_fork"):
    os.register_at_fork(after_in_child=_forget_instance_in_child)
