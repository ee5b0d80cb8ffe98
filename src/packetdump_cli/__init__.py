"""
packetdump command line entry points.
"""

__all__ = ['cli']


def __getattr__(name):
    # Imported on first use
    if name == 'cli':
        from .main import cli
        return cli
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
