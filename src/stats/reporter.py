"""Traffic window reports: rendering and output sinks."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from models.stats import WindowSnapshot

logger = logging.getLogger(__name__)

_TIMESTAMP_FORMAT = "%y-%m-%d-%H-%M-%S"
DEFAULT_EXTENSION = "stats"


class ReportWriteError(Exception):
    """Raised when a report file cannot be created or written."""

    def __init__(self, path: Path, cause: OSError):
        super().__init__(f"Failed to write report {path}: {cause}")
        self.path = path
        self.cause = cause


@dataclass(frozen=True)
class ReportLine:
    address: str
    bytes: int
    percent: float

    def format(self) -> str:
        return f"{self.address}: {self.bytes} ({self.percent:.2f}%)"


@dataclass(frozen=True)
class TrafficReport:
    window_start: float
    window_seconds: int
    total_bytes: int
    lines: Tuple[ReportLine, ...] = ()

    def to_text(self) -> str:
        return "".join(line.format() + "\n" for line in self.lines)


def render(snapshot: WindowSnapshot, window_seconds: int) -> TrafficReport:
    """Sort a window by bytes (descending, ties keep first-seen order)."""
    total = snapshot.total_bytes
    items = sorted(snapshot.totals.items(), key=lambda item: -item[1])
    lines = tuple(
        ReportLine(
            address=address,
            bytes=count,
            percent=(count / total) * 100.0 if total else 0.0,
        )
        for address, count in items
    )
    return TrafficReport(
        window_start=snapshot.window_start,
        window_seconds=window_seconds,
        total_bytes=total,
        lines=lines,
    )


def report_filename(window_start: float, window_seconds: int,
                    extension: str = DEFAULT_EXTENSION) -> str:
    when = datetime.fromtimestamp(window_start).strftime(_TIMESTAMP_FORMAT)
    return f"stats{window_seconds}_{when}.{extension.lstrip('.')}"


class LogSink:
    """Writes reports to the log stream."""

    def write(self, report: TrafficReport) -> None:
        started = datetime.fromtimestamp(report.window_start).strftime(_TIMESTAMP_FORMAT)
        if not report.lines:
            logger.info("Window %s (%ds): no traffic", started, report.window_seconds)
            return
        logger.info("Window %s (%ds), %d bytes:\n%s", started, report.window_seconds,
                    report.total_bytes, report.to_text().rstrip("\n"))


class DirectorySink:
    """Writes each report to a new file inside `directory`."""

    def __init__(self, directory: Path, extension: str = DEFAULT_EXTENSION):
        self.directory = Path(directory)
        self.extension = extension

    def _open_new(self, name: str):
        path = self.directory / name
        stem, dot, ext = name.rpartition(".")
        suffix = 0
        while True:
            try:
                return path, open(path, "x", encoding="utf-8")
            except FileExistsError:
                # Two flushes inside the same second
                suffix += 1
                path = self.directory / f"{stem}-{suffix}{dot}{ext}"

    def write(self, report: TrafficReport) -> Path:
        name = report_filename(report.window_start, report.window_seconds, self.extension)
        path = self.directory / name
        try:
            path, fh = self._open_new(name)
            with fh:
                fh.write(report.to_text())
                fh.flush()
        except OSError as e:
            raise ReportWriteError(path, e) from e
        logger.info("Stats dumped to %s", path.resolve())
        return path


class StatsReporter:
    """Turns window snapshots into reports and hands them to a sink."""

    def __init__(self, window_seconds: int, sink=None):
        self.window_seconds = window_seconds
        self.sink = sink if sink is not None else LogSink()

    @classmethod
    def for_output(cls, window_seconds: int, output_dir: Optional[Path],
                   extension: str = DEFAULT_EXTENSION) -> "StatsReporter":
        if output_dir is None:
            return cls(window_seconds)
        return cls(window_seconds, DirectorySink(output_dir, extension))

    def publish(self, snapshot: WindowSnapshot) -> TrafficReport:
        report = render(snapshot, self.window_seconds)
        self.sink.write(report)
        return report
