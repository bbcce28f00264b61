"""
Write sink: persists one finished line.

The console echo is synchronous; the file append runs on a dedicated
disk thread (file I/O is always blocking) and is the only step that
can fail.
"""

import asyncio
import sys
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, TextIO

from logsequencer.errors import WriteError
from logsequencer.severity import Severity
from logsequencer.utils.logging import get_logger

logger = get_logger(__name__)


class WriteSink(ABC):
    """Abstract destination that persists one line per call."""
    
    echo: bool = False
    
    @abstractmethod
    async def write(self, text: str, severity: Severity) -> None:
        """
        Persist one line.
        
        Args:
            text: Finished line (without trailing newline)
            severity: Severity of the line
        
        Raises:
            WriteError: If the line could not be persisted
        """
        pass
    
    def close(self) -> None:
        """Release resources held by the sink."""
        pass


class ConsoleFileSink(WriteSink):
    """
    Sink that echoes to the console and/or appends to a file.
    
    ERROR lines echo to stderr, all others to stdout. Without a file
    path the write succeeds as soon as the echo is done.
    """
    
    def __init__(
        self,
        file_path: Optional[str] = None,
        echo: bool = False,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ):
        """
        Initialize sink.
        
        Args:
            file_path: File to append to (None disables file output)
            echo: Echo lines to the console
            stdout: Stream for non-error lines (default sys.stdout)
            stderr: Stream for error lines (default sys.stderr)
        """
        self.file_path = file_path
        self.echo = echo
        self._stdout = stdout
        self._stderr = stderr
        
        self._disk_executor: Optional[ThreadPoolExecutor] = None
        
        logger.debug(
            "Initialized write sink",
            file_path=file_path,
            echo=echo,
        )
    
    async def write(self, text: str, severity: Severity) -> None:
        if self.echo:
            self._echo(text, severity)
        
        if self.file_path is None:
            return
        
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor(), self._append, text)
    
    def _echo(self, text: str, severity: Severity) -> None:
        if severity >= Severity.ERROR:
            stream = self._stderr or sys.stderr
        else:
            stream = self._stdout or sys.stdout
        print(text, file=stream)
    
    def _append(self, text: str) -> None:
        """Append one line to the file (runs on the disk thread)."""
        try:
            with open(self.file_path, "a", encoding="utf-8") as f:
                f.write(text + "\n")
        except OSError as e:
            raise WriteError(self.file_path, e) from e
    
    def _executor(self) -> ThreadPoolExecutor:
        if self._disk_executor is None:
            self._disk_executor = ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix="logsequencer-disk",
            )
        return self._disk_executor
    
    def close(self) -> None:
        """Shut down the disk thread."""
        if self._disk_executor is not None:
            self._disk_executor.shutdown(wait=True)
            self._disk_executor = None
