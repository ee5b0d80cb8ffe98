"""Packet formatting for the dump mode."""
from __future__ import annotations

from typing import Optional

from models.packet import PacketRecord


def _endpoint(address: str, port: Optional[int], include_ports: bool) -> str:
    if not include_ports or port is None:
        return address
    if ":" in address:
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def format_packet(record: PacketRecord, include_ports: bool = False) -> str:
    """`<src>[:<port>] > <dst>[:<port>]`; IPv6 addresses are bracketed with a port."""
    return "{} > {}".format(
        _endpoint(record.src_ip, record.src_port, include_ports),
        _endpoint(record.dst_ip, record.dst_port, include_ports),
    )
