"""
Live packet capture subsystem.
"""

from .icapture_backend import ICaptureBackend, ICaptureHandle, CaptureConfig
from .exceptions import (
    CaptureError,
    CaptureTimeout,
    CaptureEOFError,
    CaptureClosedError,
    ConfigurationError,
)
from .packet_decoder import extract_headers
from .capture_loop import CaptureLoop, LoopState
from .lifecycle import LifecycleController, MonitorConfig

__all__ = [
    'ICaptureBackend',
    'ICaptureHandle',
    'CaptureConfig',
    'CaptureError',
    'CaptureTimeout',
    'CaptureEOFError',
    'CaptureClosedError',
    'ConfigurationError',
    'extract_headers',
    'CaptureLoop',
    'LoopState',
    'LifecycleController',
    'MonitorConfig',
]
