"""
Live capture loop: read, decode, accumulate, roll windows over.
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from models.packet import PacketRecord
from models.stats import WindowSnapshot
from stats.accumulator import TrafficAccumulator
from .exceptions import CaptureError, CaptureTimeout
from .icapture_backend import ICaptureHandle
from .packet_decoder import extract_headers

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class CaptureLoop:
    """
    Pulls frames from a capture handle and folds them into the accumulator.

    run() is meant for a dedicated thread. The only place it waits is
    handle.next_packet(timeout), so request_stop() takes effect within one
    read timeout. Window flushes render and write on short-lived threads.
    """

    def __init__(self,
                 handle: ICaptureHandle,
                 accumulator: TrafficAccumulator,
                 publish: Callable[[WindowSnapshot], object],
                 window_seconds: float,
                 read_timeout: float = 0.05,
                 match: Optional[Callable[[PacketRecord], bool]] = None,
                 dump: Optional[Callable[[PacketRecord], None]] = None,
                 on_flush_error: Optional[Callable[[Exception], None]] = None,
                 clock: Callable[[], float] = time.time):
        self.handle = handle
        self.accumulator = accumulator
        self.publish = publish
        self.window_seconds = window_seconds
        self.read_timeout = read_timeout
        self.match = match
        self.dump = dump
        self.on_flush_error = on_flush_error
        self.clock = clock
        self.state = LoopState.IDLE
        self.packets_matched = 0
        self._stop = threading.Event()
        self._stopped = threading.Event()
        self._flush_lock = threading.Lock()
        self._flush_threads: List[threading.Thread] = []

    def run(self) -> None:
        if not self._stop.is_set():
            self.state = LoopState.RUNNING
        logger.debug("Capture loop started")
        try:
            while not self._stop.is_set():
                self.maybe_rollover()
                self.step()
        finally:
            self.state = LoopState.STOPPED
            self._stopped.set()
            logger.debug("Capture loop stopped after %d matched packets", self.packets_matched)

    def step(self) -> Optional[PacketRecord]:
        """One read/decode/record cycle. Returns the recorded packet, if any."""
        try:
            frame = self.handle.next_packet(self.read_timeout)
        except CaptureTimeout:
            return None
        except CaptureError as e:
            # Rare; keep capturing
            logger.warning("Capture read failed: %s", e)
            return None

        record = extract_headers(frame)
        if record is None:
            return None
        if self.match is not None and not self.match(record):
            return None
        if self.dump is not None:
            self.dump(record)
        self.accumulator.record_bytes(record.dst_ip, record.total_length)
        self.packets_matched += 1
        return record

    def maybe_rollover(self) -> Optional[WindowSnapshot]:
        """Flush the window if it has been open for window_seconds."""
        now = self.clock()
        if now - self.accumulator.window_start < self.window_seconds:
            return None
        snapshot = self.accumulator.snapshot_and_reset(now)
        logger.debug("Window rolled over: %d addresses, %d bytes",
                     len(snapshot), snapshot.total_bytes)
        self._dispatch_flush(snapshot)
        return snapshot

    def _dispatch_flush(self, snapshot: WindowSnapshot) -> None:
        thread = threading.Thread(
            target=self._flush,
            args=(snapshot,),
            name="packetdump-flush",
            daemon=True,
        )
        with self._flush_lock:
            self._flush_threads = [t for t in self._flush_threads if t.is_alive()]
            self._flush_threads.append(thread)
            thread.start()

    def _flush(self, snapshot: WindowSnapshot) -> None:
        try:
            self.publish(snapshot)
        except Exception as e:
            logger.error("Window flush failed: %s", e)
            if self.on_flush_error is None:
                raise
            self.on_flush_error(e)

    def request_stop(self) -> None:
        if self.state == LoopState.RUNNING:
            self.state = LoopState.DRAINING
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)

    def join_flushes(self, timeout: Optional[float] = None) -> bool:
        """Wait up to `timeout` seconds in total. True when no flush is left running."""
        with self._flush_lock:
            threads = list(self._flush_threads)
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        return not any(thread.is_alive() for thread in threads)
