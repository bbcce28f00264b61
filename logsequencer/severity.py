"""
Severity labels.

TRACE through ERROR are attached to entries; SILENT only exists as a
threshold that filters everything out.
"""

from enum import IntEnum
from typing import Union

from logsequencer.errors import ConfigError


class Severity(IntEnum):
    """Ordered severity labels."""
    
    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4
    SILENT = 5
    
    @property
    def label(self) -> str:
        """Upper-case label used in formatted lines."""
        return self.name
    
    @classmethod
    def parse(cls, value: Union["Severity", str, int]) -> "Severity":
        """
        Resolve a severity from an enum member, a name or an ordinal.
        
        Names are case-insensitive and WARNING is accepted for WARN.
        
        Args:
            value: Severity, name or ordinal
        
        Returns:
            Matching severity
        
        Raises:
            ConfigError: If value names no severity
        """
        if isinstance(value, cls):
            return value
        
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise ConfigError(f"Unknown severity ordinal: {value}") from None
        
        if isinstance(value, str):
            name = value.strip().upper()
            if name == "WARNING":
                name = "WARN"
            if name.isdigit():
                return cls.parse(int(name))
            try:
                return cls[name]
            except KeyError:
                raise ConfigError(f"Unknown severity: {value!r}") from None
        
        raise ConfigError(f"Unknown severity: {value!r}")


ENTRY_SEVERITIES = (
    Severity.TRACE,
    Severity.DEBUG,
    Severity.INFO,
    Severity.WARN,
    Severity.ERROR,
)
