# Custom exceptions

"""
Custom exceptions for live capture.
"""

class CaptureError(Exception):
    """Base exception for all capture-related errors."""
    pass

class CaptureTimeout(CaptureError):
    """Raised when no frame arrived within the read timeout. Not a failure."""
    pass

class CaptureEOFError(CaptureError):
    """Raised when the capture source stopped delivering frames."""
    pass

class CaptureClosedError(CaptureError):
    """Raised when reading from a handle that was already closed."""
    pass

class ConfigurationError(CaptureError):
    """Raised when the capture cannot be set up (e.g. unknown interface)."""
    pass
