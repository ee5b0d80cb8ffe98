"""
Capture backend interface definition.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, List

from models.packet import RawFrame
from models.stats import CaptureDriverStats

DEFAULT_BUFFER_SIZE = 2 * 1024 * 1024  # bytes
DEFAULT_SNAPLEN = 65536
DEFAULT_TIMEOUT_MS = 50
DEFAULT_FILTER = "tcp port 443"


@dataclass(frozen=True)
class CaptureConfig:
    """Capture configuration."""
    interface: str
    buffer_size: int = DEFAULT_BUFFER_SIZE
    snaplen: int = DEFAULT_SNAPLEN
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    promisc: bool = True
    filter: Optional[str] = DEFAULT_FILTER

    @property
    def timeout(self) -> float:
        """Read timeout in seconds."""
        return self.timeout_ms / 1000.0


class ICaptureHandle(ABC):
    """A live capture handle on one interface."""

    @abstractmethod
    def set_filter(self, expression: Optional[str]) -> None:
        """Install a BPF filter expression (None clears it)."""
        pass

    @abstractmethod
    def activate(self) -> None:
        """Start delivering frames."""
        pass

    @abstractmethod
    def next_packet(self, timeout: float) -> RawFrame:
        """
        Return the next frame, waiting at most `timeout` seconds.

        Raises:
            CaptureTimeout: nothing arrived in time
            CaptureEOFError: the source stopped delivering frames
            CaptureClosedError: the handle was closed
        """
        pass

    @abstractmethod
    def get_stats(self) -> CaptureDriverStats:
        """Driver-level counters. Only valid before close()."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class ICaptureBackend(ABC):
    """Capture backend interface."""

    @abstractmethod
    def open(self, config: CaptureConfig) -> ICaptureHandle:
        """Open a handle for config.interface (not yet activated)."""
        pass

    @abstractmethod
    def list_interfaces(self) -> List[str]:
        """List available network interfaces."""
        pass

    def has_interface(self, name: str) -> bool:
        return name in self.list_interfaces()
