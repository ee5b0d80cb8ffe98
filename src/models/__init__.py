"""
Packet capture data models.
"""

from .packet import RawFrame, PacketRecord
from .stats import WindowSnapshot, CaptureDriverStats

__all__ = [
    'RawFrame',
    'PacketRecord',
    'WindowSnapshot',
    'CaptureDriverStats',
]
