"""
P1 Reader
Async acquisition of P1 telegrams from the meter's serial port.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional
from dataclasses import dataclass, field
from serial import Serial, SerialException, serial_for_url
from concurrent.futures import ThreadPoolExecutor

from p1gateway.config import CircuitBreakerConfig, ParserConfig, SerialConfig
from p1gateway.dsmr_fields import select_fields
from p1gateway.errors import FramingError
from p1gateway.fields import ParsedData
from p1gateway.logger import get_logger
from p1gateway.parser import P1Parser

logger = get_logger(__name__)


@dataclass
class P1Reading:
    """Values of one successfully parsed telegram."""
    values: Dict[str, Any]
    raw: bytes = b""
    received_at: float = field(default_factory=time.time)


class CircuitBreaker:
    """Circuit breaker to stop hammering a port that keeps failing."""

    def __init__(self, failure_threshold: int = 5, timeout: int = 60):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds to wait before trying again
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "closed"  # closed, open, half-open

    def record_success(self) -> None:
        """Record successful operation."""
        self.failures = 0
        self.state = "closed"

    def record_failure(self) -> None:
        """Record failed operation."""
        self.failures += 1
        self.last_failure_time = time.time()

        if self.state == "half-open" or self.failures >= self.failure_threshold:
            self.state = "open"
            logger.warning(
                "circuit_breaker_opened",
                failures=self.failures,
                timeout=self.timeout
            )

    def can_attempt(self) -> bool:
        """Check if operation can be attempted."""
        if self.state == "closed":
            return True

        if self.state == "open":
            if time.time() - self.last_failure_time >= self.timeout:
                self.state = "half-open"
                self.failures = 0
                logger.info("circuit_breaker_half_open")
                return True
            return False

        # half-open state
        return True


def read_telegram(ser: Serial, max_size: int) -> bytes:
    """
    Read one telegram from a serial stream.

    Skips everything up to the next ``/`` and collects lines until the one
    starting with ``!``, which carries the checksum.

    Raises:
        TimeoutError: If the port stays silent
        FramingError: If no complete telegram fits in ``max_size`` bytes
    """
    skipped = 0
    while True:
        line = ser.readline()
        if not line:
            raise TimeoutError("No telegram received")
        start = line.find(b"/")
        if start >= 0:
            line = line[start:]
            buf = bytearray(line)
            break
        skipped += len(line)
        if skipped > max_size:
            raise FramingError("No telegram start found")

    while not line.startswith(b"!"):
        line = ser.readline()
        if not line:
            raise TimeoutError("Incomplete telegram")
        buf += line
        if len(buf) > max_size:
            raise FramingError("Telegram too large", max_size)

    return bytes(buf)


class P1Reader:
    """
    Async P1 port reader.
    Uses a worker thread for the blocking serial I/O.
    """

    def __init__(
        self,
        config: SerialConfig,
        parser_config: Optional[ParserConfig] = None,
        breaker_config: Optional[CircuitBreakerConfig] = None
    ):
        """
        Initialize P1 reader.

        Args:
            config: Serial port configuration
            parser_config: Parser options and field selection
            breaker_config: Circuit breaker thresholds
        """
        parser_config = parser_config or ParserConfig()
        breaker_config = breaker_config or CircuitBreakerConfig()

        self.config = config
        self.parser = P1Parser(
            check_crc=parser_config.check_crc,
            unknown_error=parser_config.unknown_error
        )
        self.data = ParsedData(*select_fields(parser_config.fields))
        self.circuit_breaker = CircuitBreaker(
            breaker_config.failure_threshold,
            breaker_config.timeout
        ) if breaker_config.enabled else None
        self.executor = ThreadPoolExecutor(max_workers=1)
        self.last_reading: Optional[P1Reading] = None
        self.consecutive_failures = 0
        self.on_reading: Optional[Callable[[P1Reading], Awaitable[None]]] = None

        self._serial: Optional[Serial] = None
        self._running = False
        self._read_task: Optional[asyncio.Task] = None

        logger.info(
            "p1_reader_init",
            port=config.port,
            baudrate=config.baudrate,
            fields=len(self.data)
        )

    async def start(self) -> None:
        """Start P1 reader."""
        self._running = True
        self._read_task = asyncio.create_task(self._read_loop())
        logger.info("p1_reader_started")

    async def stop(self) -> None:
        """Stop P1 reader."""
        self._running = False

        if self._read_task:
            self._read_task.cancel()
            try:
                await self._read_task
            except asyncio.CancelledError:
                pass

        # Let a pending readline finish before the port goes away
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.executor.shutdown)
        self._close_port()

        logger.info("p1_reader_stopped")

    async def _read_loop(self) -> None:
        """Background task reading telegrams as the meter pushes them."""
        while self._running:
            try:
                reading = await self.read_once()

                if reading is None:
                    await asyncio.sleep(self.config.retry_delay)
                    continue

                if self.on_reading:
                    await self.on_reading(reading)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("read_loop_error", error=str(e), exc_info=True)
                await asyncio.sleep(10)

    async def read_once(self) -> Optional[P1Reading]:
        """
        Read and parse one telegram.

        Returns:
            The reading, or None if reading or parsing failed
        """
        if self.circuit_breaker and not self.circuit_breaker.can_attempt():
            logger.debug("read_skipped_circuit_breaker")
            return None

        try:
            loop = asyncio.get_running_loop()
            raw = await loop.run_in_executor(self.executor, self._read_sync)
        except (SerialException, TimeoutError, FramingError) as e:
            self._record_failure()
            logger.warning("telegram_read_failed", error=str(e))
            if self.consecutive_failures >= self.config.max_retries:
                logger.warning("reopening_port", failures=self.consecutive_failures)
                self._close_port()
            return None

        return self.process_telegram(raw)

    def process_telegram(self, raw: bytes) -> Optional[P1Reading]:
        """Parse a raw telegram into a reading; parse errors are logged."""
        res = self.parser.parse(self.data, raw)

        if res.failed:
            self._record_failure()
            logger.warning(
                "telegram_parse_failed",
                kind=res.error.kind,
                error=res.error.message,
                offset=res.error.offset
            )
            return None

        reading = P1Reading(values=self.data.as_dict(), raw=raw[:res.next])
        self.last_reading = reading
        self.consecutive_failures = 0
        if self.circuit_breaker:
            self.circuit_breaker.record_success()

        logger.debug("telegram_parsed", fields=len(reading.values))
        return reading

    def _record_failure(self) -> None:
        self.consecutive_failures += 1
        if self.circuit_breaker:
            self.circuit_breaker.record_failure()

    def _read_sync(self) -> bytes:
        """Blocking telegram read (runs in the worker thread)."""
        if self._serial is None:
            self._serial = self._open_port()
        return read_telegram(self._serial, self.config.max_telegram_size)

    def _open_port(self) -> Serial:
        logger.info("opening_port", port=self.config.port)
        return serial_for_url(
            self.config.port,
            self.config.baudrate,
            bytesize=self.config.bytesize,
            parity=self.config.parity,
            stopbits=self.config.stopbits,
            timeout=self.config.timeout
        )

    def _close_port(self) -> None:
        if self._serial is not None:
            try:
                self._serial.close()
            except SerialException as e:
                logger.debug("port_close_error", error=str(e))
            self._serial = None
