"""Frame builders and an in-memory capture backend for tests."""
import struct
import threading
import time
from collections import deque

from capture.exceptions import CaptureClosedError, CaptureTimeout
from capture.icapture_backend import ICaptureBackend, ICaptureHandle
from capture.packet_decoder import DLT_EN10MB
from models.packet import RawFrame
from models.stats import CaptureDriverStats


def ip4(text: str) -> bytes:
    return bytes(int(part) for part in text.split("."))


def build_ipv4(proto: int, src: str, dst: str, payload: bytes, frag_offset: int = 0) -> bytes:
    version_ihl = (4 << 4) | 5
    total_length = 20 + len(payload)
    header = struct.pack(
        '!BBHHHBBH4s4s',
        version_ihl,
        0,              # tos
        total_length,
        0,              # identification
        frag_offset,    # flags + fragment offset
        64,             # ttl
        proto,
        0,              # checksum
        ip4(src),
        ip4(dst),
    )
    return header + payload


def build_ipv6(next_header: int, src: bytes, dst: bytes, payload: bytes) -> bytes:
    header = struct.pack('!IHBB16s16s', 6 << 28, len(payload), next_header, 64, src, dst)
    return header + payload


def build_udp(src_port: int, dst_port: int, app_payload: bytes) -> bytes:
    length = 8 + len(app_payload)
    return struct.pack('!HHH', src_port, dst_port, length) + b'\x00\x00' + app_payload


def build_tcp(src_port: int, dst_port: int, app_payload: bytes) -> bytes:
    offset_flags = (5 << 12) | 0x18  # 20-byte header, PSH+ACK
    header = struct.pack('!HHIIHHHH', src_port, dst_port, 1, 1, offset_flags, 65535, 0, 0)
    return header + app_payload


def build_ether(payload: bytes, ethertype: int = 0x0800, vlan_ids=()) -> bytes:
    header = b'\xaa\xbb\xcc\xdd\xee\xff' + b'\x11\x22\x33\x44\x55\x66'
    tags = b''
    types = [0x8100] * len(vlan_ids) + [ethertype]
    header += struct.pack('!H', types[0])
    for i, vid in enumerate(vlan_ids):
        tags += struct.pack('!HH', vid, types[i + 1])
    return header + tags + payload


def build_sll(payload: bytes, ethertype: int = 0x0800) -> bytes:
    return struct.pack('!HHH8sH', 0, 1, 6, b'\x00' * 8, ethertype) + payload


def build_null(payload: bytes, family: int = 2) -> bytes:
    return struct.pack('<I', family) + payload


def make_frame(data: bytes, link_type: int = DLT_EN10MB, original_length: int = None,
               timestamp_us: int = 0) -> RawFrame:
    return RawFrame(
        timestamp_us=timestamp_us,
        captured_length=len(data),
        original_length=len(data) if original_length is None else original_length,
        link_type=link_type,
        data=data,
        interface="eth0",
    )


def tcp_frame(dst: str, length: int, src: str = "192.168.1.10",
              sport: int = 50000, dport: int = 443) -> RawFrame:
    """Ethernet/IPv4/TCP frame whose wire length is `length`."""
    data = build_ether(build_ipv4(6, src, dst, build_tcp(sport, dport, b'x' * 10)))
    return make_frame(data, original_length=length)


class FakeHandle(ICaptureHandle):
    """Scripted capture handle. Items may be frames or exceptions to raise."""

    def __init__(self, items=(), stats=None, on_exhausted=None, activate_error=None):
        self._items = deque(items)
        self._lock = threading.Lock()
        self.stats = stats or CaptureDriverStats(received=7, dropped=1, dropped_by_interface=0)
        self.on_exhausted = on_exhausted
        self.activate_error = activate_error
        self.calls = []
        self.filter = None
        self.closed = False

    def push(self, item) -> None:
        with self._lock:
            self._items.append(item)

    def set_filter(self, expression):
        self.calls.append("set_filter")
        self.filter = expression

    def activate(self):
        self.calls.append("activate")
        if self.activate_error is not None:
            raise self.activate_error

    def next_packet(self, timeout):
        with self._lock:
            if self.closed:
                raise CaptureClosedError("closed")
            item = self._items.popleft() if self._items else None
            callback = None
            if item is None and self.on_exhausted is not None:
                callback, self.on_exhausted = self.on_exhausted, None
        if isinstance(item, Exception):
            raise item
        if item is not None:
            return item
        if callback is not None:
            callback()
        time.sleep(min(timeout, 0.01))
        raise CaptureTimeout()

    def get_stats(self):
        self.calls.append("get_stats")
        if self.closed:
            raise CaptureClosedError("closed")
        return self.stats

    def close(self):
        self.calls.append("close")
        self.closed = True


class FakeBackend(ICaptureBackend):
    def __init__(self, handle=None, interfaces=("eth0", "lo")):
        self.handle = handle or FakeHandle()
        self.interfaces = list(interfaces)
        self.opened_with = None

    def open(self, config):
        self.opened_with = config
        return self.handle

    def list_interfaces(self):
        return list(self.interfaces)


class ListSink:
    """Report sink that keeps reports in memory."""

    def __init__(self):
        self.reports = []

    def write(self, report):
        self.reports.append(report)


class FailingSink:
    def write(self, report):
        from stats.reporter import ReportWriteError
        raise ReportWriteError("/nowhere/report.stats", OSError(28, "No space left on device"))

