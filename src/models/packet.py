# Packet data model
"""
Packet data models for packetdump.

THESE MODELS ARE IMMUTABLE. A frame is handed from the capture thread to the
decoder and the record is folded into the traffic window; nothing downstream
is allowed to modify either one.
"""

from dataclasses import dataclass
from typing import Optional, Dict, Any


@dataclass(frozen=True)  # IMMUTABLE: shared between capture and decoder
class RawFrame:
    """
    Raw frame as delivered by a live capture handle.

    All timestamps are normalized to microseconds.
    """
    timestamp_us: int
    """Microseconds since Unix epoch (1970-01-01)."""

    captured_length: int
    """Bytes actually captured (may be less than original due to snaplen)"""

    original_length: int
    """Bytes on the wire (original frame size)"""

    link_type: int
    """libpcap DLT_* constant (e.g., 1 = DLT_EN10MB for Ethernet)"""

    data: bytes
    """Raw frame bytes."""

    interface: str = ""
    """Interface the frame was captured on."""

    @property
    def is_truncated(self) -> bool:
        """True if captured length < original length (snaplen limited)."""
        return self.captured_length < self.original_length


@dataclass(frozen=True)
class PacketRecord:
    """
    Network/transport header fields of one matched frame.

    Never stored: it is folded into the current traffic window or
    formatted into a dump line right away.
    """
    src_ip: str
    dst_ip: str

    total_length: int
    """Frame length on the wire. This is what traffic windows add up."""

    payload_length: int
    """Transport payload bytes (IP payload when the transport is unknown)."""

    ip_version: int = 4
    ip_protocol: int = 0
    """IP protocol number (e.g., 6=TCP, 17=UDP)."""

    l4_protocol: Optional[str] = None
    """TCP, UDP, ICMP, ICMP6 or None."""

    src_port: Optional[int] = None
    dst_port: Optional[int] = None
    timestamp_us: int = 0

    @property
    def has_ports(self) -> bool:
        return self.src_port is not None and self.dst_port is not None

    def to_dict(self) -> Dict[str, Any]:
        """Field view used by match expressions."""
        return {
            "src": self.src_ip,
            "dst": self.dst_ip,
            "sport": self.src_port,
            "dport": self.dst_port,
            "port": [p for p in (self.src_port, self.dst_port) if p is not None],
            "proto": self.l4_protocol,
            "ip_proto": self.ip_protocol,
            "ip_version": self.ip_version,
            "length": self.total_length,
            "payload": self.payload_length,
        }
