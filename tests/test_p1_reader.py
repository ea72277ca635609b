"""
Tests for serial telegram acquisition.
"""

import asyncio
import threading
from decimal import Decimal

import pytest

from p1gateway.config import CircuitBreakerConfig, ParserConfig, SerialConfig
from p1gateway.errors import FramingError
from p1gateway.p1_reader import CircuitBreaker, P1Reader, P1Reading, read_telegram


class FakeSerial:
    """Serial stand-in returning canned lines, then timing out."""

    def __init__(self, data: bytes):
        self.lines = data.splitlines(keepends=True)
        self.closed = False

    def readline(self):
        if self.lines:
            return self.lines.pop(0)
        return b""

    def close(self):
        self.closed = True


@pytest.fixture
def reader():
    r = P1Reader(
        SerialConfig(port="loop://", max_retries=2),
        ParserConfig(),
        CircuitBreakerConfig(failure_threshold=3)
    )
    yield r
    r.executor.shutdown(wait=False)


class TestReadTelegram:
    """Test cases for read_telegram."""

    def test_complete_telegram(self, sample_telegram):
        assert read_telegram(FakeSerial(sample_telegram), 8192) == sample_telegram

    def test_skips_partial_telegram(self, sample_telegram):
        tail = sample_telegram[sample_telegram.index(b"1-0:1.7.0"):]
        ser = FakeSerial(tail + sample_telegram)

        assert read_telegram(ser, 8192) == sample_telegram

    def test_garbage_before_marker_on_same_line(self, sample_telegram):
        ser = FakeSerial(b"\x00\xff" + sample_telegram)

        assert read_telegram(ser, 8192) == sample_telegram

    def test_silent_port(self):
        with pytest.raises(TimeoutError):
            read_telegram(FakeSerial(b""), 8192)

    def test_incomplete_telegram(self, sample_telegram):
        with pytest.raises(TimeoutError):
            read_telegram(FakeSerial(sample_telegram[:100]), 8192)

    def test_too_large(self, sample_telegram):
        with pytest.raises(FramingError):
            read_telegram(FakeSerial(sample_telegram), 128)

    def test_no_start_marker(self):
        with pytest.raises(FramingError):
            read_telegram(FakeSerial(b"noise\r\n" * 100), 128)


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, timeout=60)

        breaker.record_failure()
        assert breaker.can_attempt()
        breaker.record_failure()

        assert breaker.state == "open"
        assert not breaker.can_attempt()

    def test_half_open_after_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, timeout=0)
        breaker.record_failure()

        assert breaker.can_attempt()
        assert breaker.state == "half-open"

    def test_success_closes(self):
        breaker = CircuitBreaker(failure_threshold=1, timeout=60)
        breaker.record_failure()
        breaker.record_success()

        assert breaker.state == "closed"
        assert breaker.can_attempt()

    def test_failed_trial_reopens(self):
        breaker = CircuitBreaker(failure_threshold=5, timeout=0)
        for _ in range(5):
            breaker.record_failure()
        assert breaker.can_attempt()
        assert breaker.state == "half-open"

        breaker.timeout = 60
        breaker.record_failure()

        assert breaker.state == "open"
        assert not breaker.can_attempt()


class TestProcessTelegram:
    """Test cases for P1Reader.process_telegram."""

    def test_good_telegram(self, reader, sample_telegram):
        reading = reader.process_telegram(sample_telegram)

        assert isinstance(reading, P1Reading)
        assert reading.values["power_delivered"] == Decimal("2.793")
        assert reading.raw == sample_telegram[:-2]
        assert reader.last_reading is reading
        assert reader.consecutive_failures == 0

    def test_values_survive_next_parse(self, reader, sample_telegram, make_telegram):
        first = reader.process_telegram(sample_telegram)
        reader.process_telegram(make_telegram(b"ISK5ABC\r\n"))

        assert "power_delivered" in first.values

    def test_bad_telegram(self, reader, sample_telegram):
        bad = sample_telegram.replace(b"02.793", b"02.794")

        assert reader.process_telegram(bad) is None
        assert reader.consecutive_failures == 1
        assert reader.circuit_breaker.failures == 1

    def test_field_selection(self, sample_telegram):
        r = P1Reader(SerialConfig(), ParserConfig(fields=["timestamp"]))
        try:
            reading = r.process_telegram(sample_telegram)
        finally:
            r.executor.shutdown(wait=False)

        assert list(reading.values) == ["timestamp"]


class TestReadOnce:
    """Test cases for P1Reader.read_once."""

    def test_reads_and_parses(self, reader, sample_telegram):
        reader._read_sync = lambda: sample_telegram

        reading = asyncio.run(reader.read_once())

        assert reading.values["electricity_tariff"] == "0002"

    def test_timeout_counts_as_failure(self, reader):
        def silent():
            raise TimeoutError("No telegram received")

        reader._read_sync = silent

        assert asyncio.run(reader.read_once()) is None
        assert reader.consecutive_failures == 1

    def test_open_breaker_skips_read(self, reader):
        calls = []
        reader._read_sync = lambda: calls.append(1)
        for _ in range(3):
            reader.circuit_breaker.record_failure()

        assert asyncio.run(reader.read_once()) is None
        assert calls == []

    def test_port_closed_after_retries(self, reader):
        port = FakeSerial(b"")
        reader._serial = port

        for _ in range(2):
            asyncio.run(reader.read_once())

        assert port.closed
        assert reader._serial is None


class TestStop:
    """Test cases for P1Reader.stop."""

    def test_port_closed_after_pending_read(self, reader):
        events = []
        release = threading.Event()

        class BlockingSerial(FakeSerial):
            def readline(self):
                release.wait(2)
                events.append("readline_done")
                return b""

            def close(self):
                events.append("close")
                super().close()

        reader._serial = BlockingSerial(b"")

        async def scenario():
            reader._read_task = asyncio.create_task(reader.read_once())
            await asyncio.sleep(0.05)
            # Only fires if stop() leaves the event loop free
            asyncio.get_running_loop().call_later(0.05, release.set)
            await reader.stop()

        asyncio.run(scenario())

        assert events == ["readline_done", "close"]
        assert reader._serial is None
        with pytest.raises(RuntimeError):
            reader.executor.submit(lambda: None)
