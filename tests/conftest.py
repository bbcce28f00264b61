"""Shared fixtures for logsequencer tests."""

import asyncio

import pytest

from logsequencer.errors import WriteError
from logsequencer.logger import reset_logger
from logsequencer.sink import WriteSink
from logsequencer.utils.config import reset_config
from logsequencer.utils.logging import configure_logging


class RecordingSink(WriteSink):
    """
    In-memory sink that records lines and tracks concurrent writes.
    
    Fails the first `fail_times` writes, and the first write of any
    text listed in `fail_once`.
    """
    
    def __init__(self, delay=0.0, fail_times=0, fail_once=()):
        self.delay = delay
        self.fail_times = fail_times
        self.fail_once = set(fail_once)
        self.lines = []
        self.severities = []
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False
    
    async def write(self, text, severity):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            
            if self.fail_times > 0:
                self.fail_times -= 1
                raise WriteError("memory", OSError("injected failure"))
            
            if text in self.fail_once:
                self.fail_once.discard(text)
                raise WriteError("memory", OSError("injected failure"))
            
            self.lines.append(text)
            self.severities.append(severity)
        finally:
            self.in_flight -= 1
    
    def close(self):
        self.closed = True


@pytest.fixture(scope="session", autouse=True)
def diagnostics():
    """Route sequencer diagnostics through stdlib logging at WARNING."""
    configure_logging(log_level="WARNING")


@pytest.fixture
def make_sink():
    """Factory for RecordingSink instances."""
    return RecordingSink


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    """Isolate tests from the environment and the process-wide logger."""
    for name in ("LOGSEQ_LEVEL", "LOGSEQ_FILE", "LOGSEQ_ECHO", "LOGSEQ_RETRY_DELAY_MS"):
        monkeypatch.delenv(name, raising=False)
    
    reset_logger()
    reset_config()
    yield
    reset_logger()
    reset_config()
