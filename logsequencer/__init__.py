"""
logsequencer - ordered, single-writer logging for multi-process programs.

Log calls from any number of producers, including worker processes,
are written to one destination strictly one at a time and in arrival
order. Failed writes are retried after a fixed delay without losing
or reordering entries.
"""

__version__ = "0.1.0"

from logsequencer.entry import LogEntry
from logsequencer.errors import (
    ConfigError,
    FormatError,
    LogSequencerError,
    TransportError,
    WriteError,
)
from logsequencer.fanin import (
    FanInChannel,
    FanInListener,
    LocalChannel,
    LogRequest,
    ProcessChannel,
)
from logsequencer.formatter import format_line
from logsequencer.logger import (
    AUTHORITATIVE,
    WORKER,
    AuthoritativeLogger,
    Logger,
    WorkerLogger,
    create_logger,
    reset_logger,
)
from logsequencer.sequencer import Sequencer, SequencerState
from logsequencer.severity import Severity
from logsequencer.sink import ConsoleFileSink, WriteSink
from logsequencer.utils.config import LoggerConfig

__all__ = [
    "AUTHORITATIVE",
    "WORKER",
    "AuthoritativeLogger",
    "ConfigError",
    "ConsoleFileSink",
    "FanInChannel",
    "FanInListener",
    "FormatError",
    "LocalChannel",
    "LogEntry",
    "LogRequest",
    "LogSequencerError",
    "Logger",
    "LoggerConfig",
    "ProcessChannel",
    "Sequencer",
    "SequencerState",
    "Severity",
    "TransportError",
    "WorkerLogger",
    "WriteError",
    "WriteSink",
    "create_logger",
    "format_line",
    "reset_logger",
]
