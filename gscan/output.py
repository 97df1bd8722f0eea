"""
Report rendering: text, JSON and CSV, to stdout or a file.
"""
import csv
import io
import json
import sys
from typing import Optional

from rich.console import Console

from .models import ScanReport

# Well-known ports for the terse text report
SERVICE_NAMES = {
    21: "ftp",
    22: "ssh",
    23: "telnet",
    25: "smtp",
    53: "dns",
    80: "http",
    110: "pop3",
    143: "imap",
    443: "https",
    3306: "mysql",
    5432: "postgres",
    6379: "redis",
    8080: "http-alt",
}

NO_OPEN_PORTS = "No open ports found."


def service_name(port: int) -> str:
    return SERVICE_NAMES.get(port, "?")


def render_json(report: ScanReport) -> str:
    return json.dumps([r.to_dict() for r in report.results], indent=4)


def render_csv(report: ScanReport) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["ip", "port", "state", "banner"])
    for r in report.results:
        writer.writerow([r.ip, r.port, r.state.value, r.banner if r.banner is not None else ""])
    return buf.getvalue()


def render_text(report: ScanReport, color: bool = False) -> str:
    """
    One line per open port: "ip:port open service".
    With color the lines carry rich markup.
    """
    if not report.open_ports:
        return f"[yellow]{NO_OPEN_PORTS}[/yellow]\n" if color else f"{NO_OPEN_PORTS}\n"

    state = "[green]open[/green]" if color else "open"
    lines = [f"{ip}:{port} {state} {service_name(port)}" for ip, port in report.open_ports]
    return "\n".join(lines) + "\n"


RENDERERS = {
    "json": render_json,
    "csv": render_csv,
    "text": render_text,
}


def write_report(report: ScanReport, fmt: str = "text", output_file: Optional[str] = None,
                 console: Optional[Console] = None) -> None:
    """
    Renders the report and writes it to output_file, or to stdout.
    Text on stdout goes through the rich console so "open" is colored.
    """
    if fmt not in RENDERERS:
        raise ValueError(f"Unknown output format '{fmt}'")

    if output_file:
        with open(output_file, "w", encoding="utf-8", newline="") as f:
            f.write(RENDERERS[fmt](report))
        return

    if fmt == "text":
        console = console or Console()
        console.print(render_text(report, color=True), end="", highlight=False, soft_wrap=True)
    else:
        sys.stdout.write(RENDERERS[fmt](report))
        if fmt == "json":
            sys.stdout.write("\n")
        sys.stdout.flush()
