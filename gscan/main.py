import argparse
import asyncio
import logging
import sys

from rich.logging import RichHandler
from rich.markup import escape

from .ui import ScannerUI, console
from .scheduler import ScanScheduler
from .targets import MAX_SCAN_ADDRESSES, address_count, expand
from .utils import parse_port_range
from .config import ScanConfig, load_config_file, merge_settings
from .errors import InvalidTarget, ScanError
from .output import write_report

logger = logging.getLogger(__name__)

DEFAULTS = {
    "start_port": 1,
    "end_port": 1024,
    "concurrency": 64,
    "timeout_ms": 200,
    "rate": 0,
    "banner": False,
    "ipv6": False,
    "output": "text",
    "output_file": None,
}

EPILOG = """
examples:
  gscan 192.168.1.1
  gscan 10.0.0.1-10.0.0.10 -s 20 -e 1024 --output json
  gscan 192.168.1.0/24 -p 22 --rate 100
  gscan 2001:db8::1 --ipv6 --banner
"""


def build_parser() -> argparse.ArgumentParser:
    # Defaults stay None so a config file can fill in whatever was not given
    parser = argparse.ArgumentParser(
        prog="gscan",
        description="gscan - asynchronous TCP connect scanner",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("target", nargs="?", help="Target IP, CIDR or range (e.g. 192.168.1.1, 192.168.1.0/24, 192.168.1.1-192.168.1.10)")
    parser.add_argument("-s", "--start-port", type=int, help="Start port (Default: 1)")
    parser.add_argument("-e", "--end-port", type=int, help="End port (Default: 1024)")
    parser.add_argument("-p", "--ports", help="Port or port range, e.g. 22 or 20-1024 (overrides -s/-e)")
    parser.add_argument("-c", "--concurrency", type=int, help="Parallel probes (Default: 64)")
    parser.add_argument("--timeout-ms", type=int, help="Timeout per port in milliseconds (Default: 200)")
    parser.add_argument("--rate", type=int, help="Rate limit in connections/sec, 0 = unlimited (Default: 0)")
    parser.add_argument("--banner", action="store_true", default=None, help="Enable banner grabbing")
    parser.add_argument("--ipv6", action="store_true", default=None, help="Target is IPv6")
    parser.add_argument("-o", "--output", choices=["text", "json", "csv"], help="Output format (Default: text)")
    parser.add_argument("--output-file", help="Write the report to this file instead of stdout")
    parser.add_argument("--config", help="JSON or TOML config file")
    parser.add_argument("-i", "--interactive", action="store_true", help="Prompt for target, ports and speed")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for per-probe diagnostics")
    parser.add_argument("-q", "--quiet", action="store_true", help="No banner, progress bar or summary")
    return parser


def setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )


def resolve_settings(args, ui: ScannerUI) -> dict:
    """CLI flags, config file and interactive answers folded into one settings dict"""
    file_settings = load_config_file(args.config) if args.config else {}

    cli = {
        "target": args.target,
        "start_port": args.start_port,
        "end_port": args.end_port,
        "concurrency": args.concurrency,
        "timeout_ms": args.timeout_ms,
        "rate": args.rate,
        "banner": args.banner,
        "ipv6": args.ipv6,
        "output": args.output,
        "output_file": args.output_file,
    }

    interactive = args.interactive or not args.target
    if interactive:
        ui.display_welcome()
        if not cli["target"]:
            cli["target"] = ui.get_target()

    ports_str = args.ports
    ports_given = (
        args.start_port is not None or args.end_port is not None
        or "start_port" in file_settings or "end_port" in file_settings
    )
    if interactive and ports_str is None and not ports_given:
        ports_str = ui.get_ports()
    if ports_str is not None:
        try:
            cli["start_port"], cli["end_port"] = parse_port_range(ports_str)
        except ValueError:
            raise ScanError(f"Invalid port range '{ports_str}'") from None

    if interactive and args.concurrency is None:
        cli["concurrency"] = ui.get_speed()

    return merge_settings(DEFAULTS, file_settings, cli)


async def run_scan(config: ScanConfig, ui: ScannerUI):
    addresses = expand(config.target, config.ipv6)
    count = address_count(addresses)
    if count > MAX_SCAN_ADDRESSES:
        raise InvalidTarget(
            f"'{config.target}' covers {count} addresses, more than the {MAX_SCAN_ADDRESSES} a scan allows"
        )
    ui.display_start(config.target, count, config.ports)

    with ui.create_progress() as progress:
        total = count * config.ports.count
        task_id = progress.add_task(f"[cyan]Probing {total} endpoint(s)...", total=total)

        def on_progress(current, total):
            progress.update(task_id, completed=current)

        scheduler = ScanScheduler(config.engine, on_progress=on_progress)
        return await scheduler.run(addresses, config.ports)


def main(argv=None):
    # 1. CLI Argument Parsing
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    ui = ScannerUI(quiet=args.quiet)

    try:
        # 2. Settings Resolution (defaults < config file < CLI/interactive)
        settings = resolve_settings(args, ui)

        # 3. Validate with Pydantic
        config = ScanConfig.from_settings(settings)
        logger.debug("Resolved config: %s", config.model_dump())

        # 4. Run & Report
        report = asyncio.run(run_scan(config, ui))
        write_report(report, config.output, config.output_file)
        if config.output_file:
            ui.show_saved(config.output_file)
        ui.display_summary(report)

    except ScanError as e:
        ui.show_message(f"Error: {escape(str(e))}")
        sys.exit(2)
    except KeyboardInterrupt:
        ui.show_message("\nScan interrupted by user.", style="yellow")
        sys.exit(130)
    except OSError as e:
        ui.show_message(f"Error: {escape(str(e))}")
        sys.exit(1)


if __name__ == "__main__":
    main()
