"""
Capture session lifecycle: startup, signal handling and shutdown.
"""
from __future__ import annotations

import logging
import signal
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from models.packet import PacketRecord
from models.stats import CaptureDriverStats
from stats.accumulator import TrafficAccumulator
from stats.reporter import DEFAULT_EXTENSION, ReportWriteError, StatsReporter
from utils.filter_expr import compile_record_filter
from utils.packet_format import format_packet
from .capture_loop import CaptureLoop
from .exceptions import CaptureError, ConfigurationError
from .icapture_backend import CaptureConfig, ICaptureBackend, ICaptureHandle

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60
DEFAULT_DRAIN_TIMEOUT = 0.4
DEFAULT_FLUSH_TIMEOUT = 5.0


@dataclass(frozen=True)
class MonitorConfig:
    """Everything the capture core needs, built once by the CLI."""
    capture: CaptureConfig
    window_seconds: int = DEFAULT_WINDOW_SECONDS
    output_dir: Optional[Path] = None
    report_extension: str = DEFAULT_EXTENSION
    dump_packets: bool = False
    dump_ports: bool = False
    match: Optional[str] = None
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    flush_timeout: float = DEFAULT_FLUSH_TIMEOUT
    """Seconds shutdown waits for in-flight window flushes."""


class LifecycleController:
    """
    Owns the capture handle, the accumulator and the capture loop thread.

    The capture loop runs on its own thread; signals (delivered to the main
    thread) only request shutdown. finish() then stops the loop, waits for
    its acknowledgment, logs the driver statistics, flushes the last window
    and closes the handle, in that order.
    """

    def __init__(self,
                 backend: ICaptureBackend,
                 config: MonitorConfig,
                 reporter: Optional[StatsReporter] = None,
                 echo: Callable[[str], None] = print,
                 clock: Callable[[], float] = time.time):
        """
        Raises:
            FilterSyntaxError: config.match is not a valid match expression
        """
        self.backend = backend
        self.config = config
        self.reporter = reporter or StatsReporter.for_output(
            config.window_seconds, config.output_dir, config.report_extension)
        self.match: Optional[Callable[[PacketRecord], bool]] = (
            compile_record_filter(config.match) if config.match else None)
        self.dump: Optional[Callable[[PacketRecord], None]] = None
        if config.dump_packets or config.dump_ports:
            include_ports = config.dump_ports

            def _dump(record: PacketRecord) -> None:
                echo(format_packet(record, include_ports=include_ports))

            self.dump = _dump
        self.clock = clock
        self.handle: Optional[ICaptureHandle] = None
        self.accumulator: Optional[TrafficAccumulator] = None
        self.loop: Optional[CaptureLoop] = None
        self.driver_stats: Optional[CaptureDriverStats] = None
        self.fatal_error: Optional[Exception] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown = threading.Event()
        self._finish_lock = threading.Lock()
        self._finished = False
        self._previous_handlers: Dict[int, object] = {}

    def start(self) -> None:
        capture = self.config.capture
        if not capture.interface:
            raise ConfigurationError("No capture interface selected")
        if not self.backend.has_interface(capture.interface):
            raise ConfigurationError(f"Unknown interface: {capture.interface}")

        logger.info("Capturing on %s (filter=%r, window=%ds)",
                    capture.interface, capture.filter, self.config.window_seconds)
        handle = self.backend.open(capture)
        try:
            handle.set_filter(capture.filter)
            handle.activate()
        except CaptureError:
            handle.close()
            raise
        self.handle = handle

        self.accumulator = TrafficAccumulator(clock=self.clock)
        self.loop = CaptureLoop(
            handle=handle,
            accumulator=self.accumulator,
            publish=self.reporter.publish,
            window_seconds=self.config.window_seconds,
            read_timeout=capture.timeout,
            match=self.match,
            dump=self.dump,
            on_flush_error=self._on_flush_error,
            clock=self.clock,
        )
        self._thread = threading.Thread(target=self.loop.run, name="packetdump-capture", daemon=True)
        self._thread.start()

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to request_shutdown(). Main thread only."""
        def _handler(signum, _frame):
            logger.info("Received %s", signal.Signals(signum).name)
            self.request_shutdown()

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.signal(signum, _handler)

    def restore_signal_handlers(self) -> None:
        while self._previous_handlers:
            signum, handler = self._previous_handlers.popitem()
            signal.signal(signum, handler)

    def request_shutdown(self) -> None:
        self._shutdown.set()
        if self.loop is not None:
            self.loop.request_stop()

    def _on_flush_error(self, error: Exception) -> None:
        if self.fatal_error is None:
            self.fatal_error = error
        self.request_shutdown()

    def wait(self, poll_interval: float = 0.5) -> None:
        """Block until shutdown is requested or the capture thread dies."""
        # Short waits so signal handlers get to run on the main thread
        while not self._shutdown.wait(poll_interval):
            if self._thread is not None and not self._thread.is_alive():
                logger.error("Capture thread exited unexpectedly")
                break

    def run(self) -> Optional[CaptureDriverStats]:
        self.start()
        try:
            self.wait()
        finally:
            stats = self.finish()
        return stats

    def finish(self) -> Optional[CaptureDriverStats]:
        """Stop capture, report driver stats, flush the last window, close."""
        with self._finish_lock:
            if self._finished:
                return self.driver_stats
            self._finished = True

        if self.loop is None or self.handle is None:
            return None

        logger.info("Shutting down...")
        self.loop.request_stop()
        if not self.loop.wait_stopped(self.config.drain_timeout):
            logger.warning("Capture loop did not stop within %.2fs", self.config.drain_timeout)

        # Stats must be read before close() invalidates the handle
        self.driver_stats = self.handle.get_stats()
        logger.info("Packets received: %d", self.driver_stats.received)
        logger.info("Packets dropped: %d", self.driver_stats.dropped)
        logger.info("Packets dropped by interface: %d", self.driver_stats.dropped_by_interface)

        try:
            if not self.loop.join_flushes(self.config.flush_timeout):
                logger.warning("Window flush still running after %.1fs", self.config.flush_timeout)
            final = self.accumulator.snapshot_and_reset()
            self.reporter.publish(final)
        except ReportWriteError as e:
            logger.error("Final flush failed: %s", e)
            if self.fatal_error is None:
                self.fatal_error = e
        finally:
            self.handle.close()
        return self.driver_stats
