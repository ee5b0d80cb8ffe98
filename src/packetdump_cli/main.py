"""packetdump command line interface."""
import logging
from pathlib import Path
from typing import Optional

import click

from capture.exceptions import ConfigurationError
from capture.icapture_backend import (
    CaptureConfig,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_FILTER,
    DEFAULT_SNAPLEN,
    DEFAULT_TIMEOUT_MS,
)
from capture.lifecycle import DEFAULT_WINDOW_SECONDS, LifecycleController, MonitorConfig
from stats.reporter import DEFAULT_EXTENSION
from utils.filter_expr import FilterSyntaxError

logger = logging.getLogger("packetdump")

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

EXIT_CONFIG = 1
EXIT_OUTPUT_PATH = 2
EXIT_REPORT_IO = 3


class ConfigFailure(click.ClickException):
    exit_code = EXIT_CONFIG


class OutputPathFailure(click.ClickException):
    exit_code = EXIT_OUTPUT_PATH


class ReportFailure(click.ClickException):
    exit_code = EXIT_REPORT_IO


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=_LOG_FORMAT,
        force=True,
    )
    # scapy is chatty at DEBUG
    logging.getLogger("scapy").setLevel(logging.WARNING)


def _make_backend():
    from capture.scapy_backend import ScapyBackend
    return ScapyBackend()


def _backend(ctx: click.Context):
    obj = ctx.ensure_object(dict)
    if "backend" not in obj:
        obj["backend"] = _make_backend()
    return obj["backend"]


def _choose_interface(backend) -> str:
    names = backend.list_interfaces()
    if not names:
        raise ConfigFailure("No capture interfaces available")
    for idx, name in enumerate(names, start=1):
        click.echo(f"{idx:>3}: {name}")
    choice = click.prompt("Select an interface", type=click.IntRange(1, len(names)))
    return names[choice - 1]


def _prepare_output_dir(out: Optional[str]) -> Optional[Path]:
    if out is None:
        return None
    path = Path(out)
    if path.exists() and not path.is_dir():
        raise OutputPathFailure(f"Output path is not a directory: {path}")
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OutputPathFailure(f"Failed to create output directory {path}: {e}")
    return path


@click.group(context_settings={"auto_envvar_prefix": "PACKETDUMP"})
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool):
    """Capture live traffic and report bytes per destination address."""
    ctx.ensure_object(dict)
    _configure_logging(verbose)


@cli.command()
@click.pass_context
def interfaces(ctx: click.Context):
    """List interfaces available for capture."""
    for name in _backend(ctx).list_interfaces():
        click.echo(name)


@cli.command()
@click.option("-i", "--interface", "interface", help="Interface to capture on")
@click.option("-c", "--choose-interface", "choose_interface", is_flag=True,
              help="Pick an interface from a list")
@click.option("-o", "--out", "out", type=click.Path(file_okay=False),
              help="Directory for stats files. Without it stats go to the log.")
@click.option("-b", "--buffer-size", "buffer_size", type=click.IntRange(min=1),
              default=DEFAULT_BUFFER_SIZE, show_default=True, help="Capture buffer size in bytes")
@click.option("-f", "--filter", "bpf_filter", default=DEFAULT_FILTER, show_default=True,
              help="BPF capture filter")
@click.option("-w", "--stats-window", "stats_window", type=click.IntRange(min=1),
              default=DEFAULT_WINDOW_SECONDS, show_default=True,
              help="Seconds before a new stats dump is created")
@click.option("--snaplen", "snaplen", type=click.IntRange(min=1), default=DEFAULT_SNAPLEN,
              show_default=True, help="Bytes captured per frame")
@click.option("--timeout-ms", "timeout_ms", type=click.IntRange(min=1), default=DEFAULT_TIMEOUT_MS,
              show_default=True, help="Read timeout in milliseconds")
@click.option("--promisc/--no-promisc", "promisc", default=True, show_default=True,
              help="Promiscuous mode")
@click.option("--dump/--no-dump", "dump", default=False, show_default=True,
              help="Print one line per matched packet")
@click.option("--dump-ports", "dump_ports", is_flag=True,
              help="Include ports in dump lines (implies --dump)")
@click.option("-m", "--match", "match_expr",
              help="Match expression on decoded fields, e.g. 'dport = 443 and dst in 10.0.0.0/8'")
@click.option("--extension", "extension", default=DEFAULT_EXTENSION, show_default=True,
              help="Stats file extension")
@click.pass_context
def capture(ctx: click.Context,
            interface: Optional[str],
            choose_interface: bool,
            out: Optional[str],
            buffer_size: int,
            bpf_filter: str,
            stats_window: int,
            snaplen: int,
            timeout_ms: int,
            promisc: bool,
            dump: bool,
            dump_ports: bool,
            match_expr: Optional[str],
            extension: str):
    """
    Capture packets and write windowed per-destination traffic stats.

    Example:
      packetdump capture -i eth0 -w 10 -o ./stats --dump-ports
    """
    if interface is None and not choose_interface:
        raise ConfigFailure("Interface name not supplied and choose option disabled")

    backend = _backend(ctx)
    if choose_interface:
        interface = _choose_interface(backend)
    logger.info("You chose: %s", interface)

    output_dir = _prepare_output_dir(out)

    config = MonitorConfig(
        capture=CaptureConfig(
            interface=interface,
            buffer_size=buffer_size,
            snaplen=snaplen,
            timeout_ms=timeout_ms,
            promisc=promisc,
            filter=bpf_filter or None,
        ),
        window_seconds=stats_window,
        output_dir=output_dir,
        report_extension=extension,
        dump_packets=dump or dump_ports,
        dump_ports=dump_ports,
        match=match_expr or None,
    )

    try:
        controller = LifecycleController(backend, config, echo=click.echo)
    except FilterSyntaxError as e:
        raise click.BadParameter(str(e), param_hint="--match")
    controller.install_signal_handlers()
    try:
        controller.run()
    except ConfigurationError as e:
        raise ConfigFailure(str(e))
    finally:
        controller.restore_signal_handlers()

    if controller.fatal_error is not None:
        raise ReportFailure(str(controller.fatal_error))


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
