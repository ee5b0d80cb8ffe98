"""
Scapy-based live capture backend.

Scapy's AsyncSniffer runs on its own thread and pushes every frame into a
byte-bounded buffer; the capture loop pulls from that buffer with a bounded
wait. Frames arriving while the buffer is full are counted as dropped.
"""
import logging
import threading
import time
from collections import deque
from typing import Deque, List, Optional

from scapy.all import AsyncSniffer, conf, get_if_list

from models.packet import RawFrame
from models.stats import CaptureDriverStats
from .exceptions import CaptureClosedError, CaptureEOFError, CaptureTimeout, ConfigurationError
from .icapture_backend import CaptureConfig, ICaptureBackend, ICaptureHandle
from .packet_decoder import DLT_EN10MB

logger = logging.getLogger(__name__)

START_TIMEOUT = 5.0  # seconds to wait for the sniffer socket to open


def _link_type_of(packet) -> int:
    """libpcap DLT_* number of the outermost scapy layer."""
    try:
        return conf.l2types.layer2num.get(type(packet), DLT_EN10MB)
    except AttributeError:
        return DLT_EN10MB


class ScapyCaptureHandle(ICaptureHandle):
    """Capture handle backed by a scapy AsyncSniffer."""

    def __init__(self, config: CaptureConfig):
        self.config = config
        self._filter: Optional[str] = None
        self._sniffer: Optional[AsyncSniffer] = None
        self._frames: Deque[RawFrame] = deque()
        self._buffered_bytes = 0
        self._cond = threading.Condition()
        self._received = 0
        self._dropped = 0
        self._closed = False

    def set_filter(self, expression: Optional[str]) -> None:
        self._filter = expression or None
        logger.debug("Filter on %s: %r", self.config.interface, self._filter)
        if self._sniffer_alive():
            # AsyncSniffer cannot swap its BPF program, restart it
            self._stop_sniffer()
            self._start_sniffer()

    def activate(self) -> None:
        """
        Start the sniffer and wait until its socket is open.

        Raises:
            ConfigurationError: the sniffer failed to start (bad filter,
                no libpcap, no permission to open the interface)
        """
        if self._closed:
            raise CaptureClosedError("Capture handle already closed")
        if self._sniffer_alive():
            return
        self._start_sniffer()

    def _start_sniffer(self) -> None:
        logger.debug("Starting sniffer on %s (promisc=%s, snaplen=%d, buffer=%d)",
                     self.config.interface, self.config.promisc,
                     self.config.snaplen, self.config.buffer_size)
        started = threading.Event()
        self._sniffer = AsyncSniffer(
            iface=self.config.interface,
            prn=self._on_packet,
            filter=self._filter,
            store=False,  # Frames go to our buffer, not scapy's list
            promisc=self.config.promisc,
            started_callback=started.set,
        )
        self._sniffer.start()

        # Socket setup runs on the sniffer thread, failures land in .exception
        deadline = time.monotonic() + START_TIMEOUT
        while not started.wait(0.05):
            error = self._sniffer_error()
            if error is not None:
                raise ConfigurationError(
                    f"Capture on {self.config.interface} failed to start: {error}")
            if time.monotonic() >= deadline:
                self._stop_sniffer()
                raise ConfigurationError(
                    f"Capture on {self.config.interface} did not start within {START_TIMEOUT:.0f}s")

    def _sniffer_error(self) -> Optional[str]:
        """Why the sniffer thread is gone, or None while it is alive."""
        sniffer = self._sniffer
        if sniffer is None:
            return "sniffer not started"
        exception = getattr(sniffer, "exception", None)
        if exception is not None:
            return str(exception)
        thread = getattr(sniffer, "thread", None)
        if thread is None or not thread.is_alive():
            return "sniffer thread exited"
        return None

    def _sniffer_alive(self) -> bool:
        return self._sniffer is not None and self._sniffer_error() is None

    def _stop_sniffer(self) -> None:
        sniffer = self._sniffer
        # A thread that died during setup has nothing to stop
        if sniffer is not None and sniffer.running and self._sniffer_alive():
            sniffer.stop()

    def _on_packet(self, packet) -> None:
        """Callback for each captured packet (runs on the sniffer thread)."""
        data = bytes(packet)
        captured = data[:self.config.snaplen]
        frame = RawFrame(
            timestamp_us=int(float(packet.time) * 1_000_000),
            captured_length=len(captured),
            original_length=len(data),
            link_type=_link_type_of(packet),
            data=captured,
            interface=self.config.interface,
        )
        with self._cond:
            self._received += 1
            if self._buffered_bytes + frame.captured_length > self.config.buffer_size:
                self._dropped += 1
                return
            self._frames.append(frame)
            self._buffered_bytes += frame.captured_length
            self._cond.notify()

    def next_packet(self, timeout: float) -> RawFrame:
        with self._cond:
            if self._closed:
                raise CaptureClosedError("Capture handle already closed")
            if not self._frames:
                self._cond.wait(timeout)
            if self._frames:
                frame = self._frames.popleft()
                self._buffered_bytes -= frame.captured_length
                return frame
        error = self._sniffer_error()
        if error is not None:
            raise CaptureEOFError(f"Sniffer on {self.config.interface} stopped: {error}")
        raise CaptureTimeout()

    def get_stats(self) -> CaptureDriverStats:
        if self._closed:
            raise CaptureClosedError("Capture handle already closed")
        with self._cond:
            # Scapy exposes no interface-level drop counter
            return CaptureDriverStats(received=self._received, dropped=self._dropped)

    def close(self) -> None:
        if self._closed:
            return
        self._stop_sniffer()
        with self._cond:
            self._closed = True
            self._frames.clear()
            self._buffered_bytes = 0
            self._cond.notify_all()


class ScapyBackend(ICaptureBackend):
    """Scapy-based capture backend."""

    def list_interfaces(self) -> List[str]:
        return sorted(get_if_list())

    def open(self, config: CaptureConfig) -> ScapyCaptureHandle:
        # Scapy reads this when it builds the listening socket
        conf.sniff_promisc = config.promisc
        return ScapyCaptureHandle(config)
