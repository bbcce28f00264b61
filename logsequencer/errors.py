"""Exception hierarchy for logsequencer."""

from typing import Optional


class LogSequencerError(Exception):
    """Base class for all logsequencer errors."""
    pass


class ConfigError(LogSequencerError):
    """Invalid configuration value."""
    pass


class FormatError(LogSequencerError):
    """Argument could not be turned into text."""
    pass


class WriteError(LogSequencerError):
    """
    Persisting a line to the destination failed.
    
    Attributes:
        path: Destination file path
        cause: Underlying OS error, if any
    """
    
    def __init__(self, path: Optional[str], cause: Optional[BaseException] = None):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to append to {path}: {cause}")


class TransportError(LogSequencerError):
    """Fan-in record was malformed or could not be delivered."""
    pass
