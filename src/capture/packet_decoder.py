"""
Header extraction for captured frames (L2 -> L3/L4 addressing only).

This module is deterministic and best-effort:
- It never throws on malformed/truncated frames
- Frames without an IP network layer yield None
- It only reads headers, payload bytes are counted but never parsed
"""
from __future__ import annotations

import ipaddress
import struct
from typing import Optional, Tuple

from models.packet import RawFrame, PacketRecord

# Link type constants (libpcap DLT_*)
DLT_NULL = 0
DLT_EN10MB = 1
DLT_RAW = 12
DLT_LINUX_SLL = 113

# EtherType constants
ETH_TYPE_IPV4 = 0x0800
ETH_TYPE_IPV6 = 0x86DD
ETH_TYPE_VLAN = 0x8100
ETH_TYPE_QINQ = 0x88A8

# IP protocol numbers
IP_PROTO_ICMP = 1
IP_PROTO_TCP = 6
IP_PROTO_UDP = 17
IP_PROTO_ICMPV6 = 58

# BSD loopback address families (AF_INET, then the AF_INET6 values of the BSDs)
_NULL_FAMILY_IPV4 = 2
_NULL_FAMILY_IPV6 = (24, 28, 30)

_L4_NAMES = {
    IP_PROTO_TCP: "TCP",
    IP_PROTO_UDP: "UDP",
    IP_PROTO_ICMP: "ICMP",
    IP_PROTO_ICMPV6: "ICMP6",
}

# (version, src, dst, ip_protocol, header_end, l3_end, is_fragment)
_L3 = Tuple[int, str, str, int, int, int, bool]


def extract_headers(frame: RawFrame) -> Optional[PacketRecord]:
    """Return the addressing fields of `frame`, or None if it carries no IP packet."""
    data = frame.data or b""
    l3_offset = _locate_l3(data, frame.link_type)
    if l3_offset is None:
        return None

    l3 = _parse_ip(data, l3_offset)
    if l3 is None:
        return None
    version, src_ip, dst_ip, ip_protocol, header_end, l3_end, is_fragment = l3

    src_port = None
    dst_port = None
    payload_length = max(0, l3_end - header_end)
    if not is_fragment:
        ports = _parse_ports(data, header_end, l3_end, ip_protocol)
        if ports is not None:
            src_port, dst_port, payload_length = ports

    return PacketRecord(
        src_ip=src_ip,
        dst_ip=dst_ip,
        total_length=frame.original_length or len(data),
        payload_length=payload_length,
        ip_version=version,
        ip_protocol=ip_protocol,
        l4_protocol=_L4_NAMES.get(ip_protocol),
        src_port=src_port,
        dst_port=dst_port,
        timestamp_us=frame.timestamp_us,
    )


def _locate_l3(data: bytes, link_type: int) -> Optional[int]:
    """Offset of the IP header for the given link type, None if not IP."""
    cap_len = len(data)

    if link_type == DLT_EN10MB:
        if cap_len < 14:
            return None
        ethertype = struct.unpack_from("!H", data, 12)[0]
        offset = 14
        # VLAN tags (single or double)
        for _ in range(2):
            if ethertype not in (ETH_TYPE_VLAN, ETH_TYPE_QINQ):
                break
            if cap_len < offset + 4:
                return None
            ethertype = struct.unpack_from("!H", data, offset + 2)[0]
            offset += 4
        if ethertype in (ETH_TYPE_IPV4, ETH_TYPE_IPV6):
            return offset
        return None

    if link_type == DLT_RAW:
        return 0 if cap_len >= 1 else None

    if link_type == DLT_LINUX_SLL:
        if cap_len < 16:
            return None
        ethertype = struct.unpack_from("!H", data, 14)[0]
        return 16 if ethertype in (ETH_TYPE_IPV4, ETH_TYPE_IPV6) else None

    if link_type == DLT_NULL:
        if cap_len < 4:
            return None
        family_le = struct.unpack_from("<I", data, 0)[0]
        family_be = struct.unpack_from(">I", data, 0)[0]
        for family in (family_le, family_be):
            if family == _NULL_FAMILY_IPV4 or family in _NULL_FAMILY_IPV6:
                return 4
        return None

    return None


def _parse_ip(data: bytes, offset: int) -> Optional[_L3]:
    if offset >= len(data):
        return None
    version = data[offset] >> 4
    if version == 4:
        return _parse_ipv4(data, offset)
    if version == 6:
        return _parse_ipv6(data, offset)
    return None


def _parse_ipv4(data: bytes, offset: int) -> Optional[_L3]:
    cap_len = len(data)
    if offset + 20 > cap_len:
        return None
    ihl = (data[offset] & 0x0F) * 4
    if ihl < 20 or offset + ihl > cap_len:
        return None

    total_length = struct.unpack_from("!H", data, offset + 2)[0]
    ip_proto = data[offset + 9]
    src_ip = _format_ipv4(data[offset + 12:offset + 16])
    dst_ip = _format_ipv4(data[offset + 16:offset + 20])

    # Header lengths still hold when snaplen cut the capture short
    l3_end = offset + total_length if total_length >= ihl else cap_len

    # Only the first fragment carries the transport header
    frag_offset = struct.unpack_from("!H", data, offset + 6)[0] & 0x1FFF
    return 4, src_ip, dst_ip, ip_proto, offset + ihl, l3_end, frag_offset != 0


def _parse_ipv6(data: bytes, offset: int) -> Optional[_L3]:
    cap_len = len(data)
    if offset + 40 > cap_len:
        return None

    payload_len = struct.unpack_from("!H", data, offset + 4)[0]
    next_header = data[offset + 6]
    src_ip = _format_ipv6(data[offset + 8:offset + 24])
    dst_ip = _format_ipv6(data[offset + 24:offset + 40])
    if src_ip is None or dst_ip is None:
        return None

    l3_end = offset + 40 + payload_len
    # Extension headers are not walked, a fragment header hides the ports
    return 6, src_ip, dst_ip, next_header, offset + 40, l3_end, next_header == 44


def _parse_ports(data: bytes, offset: int, l3_end: int,
                 ip_protocol: int) -> Optional[Tuple[int, int, int]]:
    """(src_port, dst_port, payload_length) for TCP/UDP, None otherwise."""
    if ip_protocol == IP_PROTO_TCP:
        if offset + 20 > len(data):
            return None
        src_port, dst_port = struct.unpack_from("!HH", data, offset)
        data_offset = (data[offset + 12] >> 4) * 4
        if data_offset < 20:
            return None
        return src_port, dst_port, max(0, l3_end - offset - data_offset)

    if ip_protocol == IP_PROTO_UDP:
        if offset + 8 > len(data):
            return None
        src_port, dst_port, udp_len = struct.unpack_from("!HHH", data, offset)
        if udp_len < 8:
            udp_len = l3_end - offset
        return src_port, dst_port, max(0, udp_len - 8)

    return None


def _format_ipv4(addr: bytes) -> str:
    return "{}.{}.{}.{}".format(addr[0], addr[1], addr[2], addr[3])


def _format_ipv6(addr: bytes) -> Optional[str]:
    if len(addr) != 16:
        return None
    try:
        return str(ipaddress.IPv6Address(addr))
    except ValueError:
        return None
