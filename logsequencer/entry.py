"""Queued log entry."""

from dataclasses import dataclass

from logsequencer.severity import Severity


@dataclass(frozen=True)
class LogEntry:
    """
    A finished line waiting to be written.
    
    Attributes:
        text: Formatted line, written as-is
        severity: Severity the line was logged at
    """
    text: str
    severity: Severity
