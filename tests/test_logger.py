"""Tests for the logger facade and the process-wide accessor."""

import asyncio
import io
import os
import subprocess
import sys
from pathlib import Path

import pytest

from logsequencer.errors import ConfigError
from logsequencer.fanin import LocalChannel
from logsequencer.logger import (
    AUTHORITATIVE,
    WORKER,
    AuthoritativeLogger,
    WorkerLogger,
    create_logger,
    detect_role,
    reset_logger,
)
from logsequencer.severity import Severity
from logsequencer.sink import ConsoleFileSink
from logsequencer.utils.config import LoggerConfig

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def bodies(sink):
    return [line.split(": ", 1)[1] for line in sink.lines]


class TestThreshold:
    """Test severity filtering."""
    
    @pytest.mark.asyncio
    async def test_below_threshold_dropped(self, make_sink):
        """Test calls below the minimum severity produce nothing."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(min_severity=Severity.WARN), sink=sink)
        
        log.trace("t")
        log.debug("d")
        log.info("i")
        log.warn("w")
        log.error("e")
        
        await log.wait_idle()
        
        assert bodies(sink) == ["w", "e"]
        assert sink.severities == [Severity.WARN, Severity.ERROR]
        assert log.get_stats()["filtered"] == 3
        assert log.get_stats()["accepted"] == 2
    
    @pytest.mark.asyncio
    async def test_default_threshold_is_error(self, make_sink):
        """Test only ERROR passes with the default configuration."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(), sink=sink)
        
        log.warn("w")
        log.error("e")
        await log.wait_idle()
        
        assert bodies(sink) == ["e"]
    
    @pytest.mark.asyncio
    async def test_set_level(self, make_sink):
        """Test set_level applies to subsequent calls."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(), sink=sink)
        
        log.info("before")
        log.set_level("trace")
        log.trace("after")
        await log.wait_idle()
        
        assert log.level == Severity.TRACE
        assert bodies(sink) == ["after"]
    
    @pytest.mark.asyncio
    async def test_silent_disables_everything(self, make_sink):
        """Test SILENT filters every severity, ERROR included."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(min_severity="TRACE"), sink=sink)
        
        log.set_level(Severity.SILENT)
        log.error("nothing")
        log.log(Severity.SILENT, "never an entry")
        await log.wait_idle()
        
        assert sink.lines == []
    
    def test_set_level_rejects_unknown(self, make_sink):
        """Test an unknown level name is a configuration error."""
        log = AuthoritativeLogger(LoggerConfig(), sink=make_sink())
        
        with pytest.raises(ConfigError):
            log.set_level("LOUD")
    
    @pytest.mark.asyncio
    async def test_warning_alias(self, make_sink):
        """Test warning() logs at WARN."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(min_severity="WARN"), sink=sink)
        
        log.warning("careful {1}", "now")
        await log.wait_idle()
        
        assert sink.lines[0].endswith(" - WARN: careful now")


class TestAuthoritativeLogger:
    """Test AuthoritativeLogger."""
    
    @pytest.mark.asyncio
    async def test_formats_before_enqueue(self, make_sink):
        """Test entries carry the fully formatted line."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(min_severity="INFO"), sink=sink)
        
        log.info("a={1} b={2}", 5, {"x": 1})
        await log.wait_idle()
        
        assert bodies(sink) == ['a=5 b={"x":1}']
    
    @pytest.mark.asyncio
    async def test_set_echo(self):
        """Test set_echo toggles console output for later lines."""
        out = io.StringIO()
        sink = ConsoleFileSink(stdout=out)
        log = AuthoritativeLogger(LoggerConfig(min_severity="INFO"), sink=sink)
        
        log.info("hidden")
        await log.wait_idle()
        log.set_echo(True)
        log.info("shown")
        await log.wait_idle()
        
        assert log.echo is True
        assert sink.echo is True
        assert "hidden" not in out.getvalue()
        assert out.getvalue().endswith(" - INFO: shown\n")
    
    @pytest.mark.asyncio
    async def test_calls_never_raise_on_write_failure(self, make_sink):
        """Test failing writes are retried without reaching the caller."""
        sink = make_sink(fail_times=2)
        log = AuthoritativeLogger(
            LoggerConfig(min_severity="INFO", retry_delay_ms=5),
            sink=sink,
        )
        
        log.info("one")
        log.info("two")
        await asyncio.wait_for(log.wait_idle(), timeout=2.0)
        
        assert bodies(sink) == ["one", "two"]
    
    @pytest.mark.asyncio
    async def test_oversized_placeholder_never_raises(self, make_sink):
        """Test a placeholder index too long to convert resolves to the missing value."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(min_severity="INFO"), sink=sink)
        
        log.info("{" + "9" * 5000 + "} end", "unused")
        await log.wait_idle()
        
        assert bodies(sink) == ["undefined end"]
    
    @pytest.mark.asyncio
    async def test_writes_file(self, tmp_path):
        """Test the default sink appends formatted lines to the file."""
        path = tmp_path / "app.log"
        log = AuthoritativeLogger(LoggerConfig(min_severity="DEBUG", file_path=str(path)))
        
        for i in range(5):
            log.debug("line {1}", i)
        await log.wait_idle()
        log.close()
        
        lines = path.read_text(encoding="utf-8").splitlines()
        assert [line.split(": ", 1)[1] for line in lines] == [f"line {i}" for i in range(5)]
    
    def test_calls_without_event_loop(self, make_sink):
        """Test calls made with no running loop are written in the background."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(min_severity="INFO"), sink=sink)
        
        log.info("early")
        assert log.sequencer.owns_loop
        
        asyncio.run(asyncio.wait_for(log.wait_idle(), timeout=5.0))
        
        assert bodies(sink) == ["early"]
        log.close()
    
    def test_receive_discards_malformed(self, make_sink):
        """Test receive() reports whether a record was accepted."""
        sink = make_sink()
        log = AuthoritativeLogger(LoggerConfig(), sink=sink)
        
        assert log.receive({"type": "nope"}) is False
        assert log.receive({"type": "Logger", "message": "ok", "severity": "INFO"}) is True
        
        asyncio.run(asyncio.wait_for(log.wait_idle(), timeout=5.0))
        assert bodies(sink) == ["ok"]
        log.close()
    
    def test_stats(self, make_sink):
        """Test statistics include the sequencer."""
        log = AuthoritativeLogger(LoggerConfig(), sink=make_sink())
        
        stats = log.get_stats()
        
        assert stats["role"] == AUTHORITATIVE
        assert stats["level"] == "ERROR"
        assert stats["sequencer"]["state"] == "idle"


class TestWorkerLogger:
    """Test WorkerLogger."""
    
    @pytest.mark.asyncio
    async def test_forwards_raw_template(self):
        """Test a worker sends the unformatted message and no more."""
        channel = LocalChannel()
        log = WorkerLogger(LoggerConfig(min_severity="INFO"), channel)
        
        log.info("user {1} did {2}", "ann", "stuff")
        
        record = await channel.receive()
        assert record == {
            "type": "Logger",
            "message": "user {1} did {2}",
            "severity": "INFO",
            "args": ["ann"],
        }
    
    @pytest.mark.asyncio
    async def test_filters_locally(self):
        """Test calls below the worker threshold are never sent."""
        channel = LocalChannel()
        log = WorkerLogger(LoggerConfig(min_severity="ERROR"), channel)
        
        log.info("dropped")
        log.error("sent")
        channel.close()
        
        records = []
        while (record := await channel.receive()) is not None:
            records.append(record)
        
        assert [r["message"] for r in records] == ["sent"]
    
    @pytest.mark.asyncio
    async def test_send_failure_swallowed(self):
        """Test an unusable channel never raises into the caller."""
        channel = LocalChannel()
        channel.close()
        log = WorkerLogger(LoggerConfig(min_severity="INFO"), channel)
        
        log.error("lost")
        
        assert log.get_stats()["send_failures"] == 1
        assert log.get_stats()["role"] == WORKER


class TestCreateLogger:
    """Test the process-wide accessor."""
    
    def test_idempotent(self, make_sink):
        """Test later calls return the first instance and ignore config."""
        first = create_logger(
            LoggerConfig(min_severity="DEBUG"),
            role=AUTHORITATIVE,
            sink=make_sink(),
        )
        second = create_logger(LoggerConfig(min_severity="ERROR", echo_to_console=True))
        
        assert second is first
        assert second.level == Severity.DEBUG
        assert second.echo is False
    
    def test_worker_requires_channel(self):
        """Test a worker without a channel is rejected."""
        with pytest.raises(ConfigError):
            create_logger(LoggerConfig(), role=WORKER)
    
    @pytest.mark.asyncio
    async def test_worker_role(self):
        """Test the worker role builds a forwarding logger."""
        log = create_logger(LoggerConfig(), channel=LocalChannel(), role=WORKER)
        
        assert isinstance(log, WorkerLogger)
    
    def test_unknown_role(self):
        """Test an unknown role is rejected."""
        with pytest.raises(ConfigError):
            create_logger(LoggerConfig(), role="observer")
    
    def test_default_config_from_environment(self, monkeypatch, make_sink):
        """Test the accessor falls back to the global configuration."""
        monkeypatch.setenv("LOGSEQ_LEVEL", "warn")
        
        log = create_logger(role=AUTHORITATIVE, sink=make_sink())
        
        assert log.level == Severity.WARN
    
    def test_detected_role(self):
        """Test the test runner process is authoritative."""
        assert detect_role() == AUTHORITATIVE
        assert isinstance(create_logger(sink=None), AuthoritativeLogger)
    
    def test_reset(self, make_sink):
        """Test reset_logger closes and forgets the instance."""
        sink = make_sink()
        first = create_logger(LoggerConfig(), role=AUTHORITATIVE, sink=sink)
        
        reset_logger()
        second = create_logger(LoggerConfig(), role=AUTHORITATIVE, sink=make_sink())
        
        assert sink.closed
        assert second is not first


SYNC_HOST_SCRIPT = """
import sys
import time

from logsequencer import LoggerConfig, create_logger

log = create_logger(LoggerConfig(min_severity="INFO", file_path=sys.argv[1]))
log.error("boom {1}", 1)
log.info("second")

deadline = time.monotonic() + 5.0
while log.sequencer.get_stats()["written"] < 2 and time.monotonic() < deadline:
    time.sleep(0.01)
"""


class TestSynchronousHost:
    """Test a program that never runs an event loop."""
    
    def test_plain_script_writes_file(self, tmp_path):
        """Test log calls from synchronous code reach the file."""
        path = tmp_path / "sync.log"
        env = dict(os.environ, PYTHONPATH=str(PROJECT_ROOT))
        
        result = subprocess.run(
            [sys.executable, "-c", SYNC_HOST_SCRIPT, str(path)],
            capture_output=True,
            text=True,
            timeout=30,
            env=env,
        )
        
        assert result.returncode == 0, result.stderr
        lines = path.read_text(encoding="utf-8").splitlines()
        assert [line.split(" - ", 1)[1] for line in lines] == ["ERROR: boom 1", "INFO: second"]
        assert result.stdout == ""
