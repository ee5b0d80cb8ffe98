"""
Traffic window accumulation and reporting.
"""

from .accumulator import TrafficAccumulator
from .reporter import (
    DirectorySink,
    LogSink,
    ReportLine,
    ReportWriteError,
    StatsReporter,
    TrafficReport,
    render,
    report_filename,
)

__all__ = [
    'TrafficAccumulator',
    'DirectorySink',
    'LogSink',
    'ReportLine',
    'ReportWriteError',
    'StatsReporter',
    'TrafficReport',
    'render',
    'report_filename',
]
