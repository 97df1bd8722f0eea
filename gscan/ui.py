from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt, IntPrompt
from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn, MofNCompleteColumn, TimeElapsedColumn, TimeRemainingColumn

from .models import PortState, ScanReport

# Everything except the report itself goes to stderr, so stdout stays pipeable
console = Console(stderr=True)


class ScannerUI:
    def __init__(self, quiet: bool = False):
        self.console = console
        self.quiet = quiet

    def display_welcome(self):
        self.console.rule("[bold red]GSCAN - TCP Connect Scanner[/bold red]")

    def get_target(self):
        return Prompt.ask("[bold blue]Enter Target (IP, CIDR or range)[/bold blue]", console=self.console)

    def get_ports(self):
        return Prompt.ask("[bold blue]Enter Port Range (e.g. 80 or 1-1024)[/bold blue]", default="1-1024", console=self.console)

    def get_speed(self):
        self.console.print("\n[bold cyan]Select Scan Speed:[/bold cyan]")
        self.console.print("1. [green]Stealthy[/green] (50 concurrent)")
        self.console.print("2. [blue]Moderate[/blue] (200 concurrent)")
        self.console.print("3. [yellow]Normal[/yellow]   (500 concurrent)")
        self.console.print("4. [magenta]Fast[/magenta]     (1000 concurrent)")
        self.console.print("5. [red]Insane[/red]   (2000 concurrent)")

        speed_map = {1: 50, 2: 200, 3: 500, 4: 1000, 5: 2000}
        choice = IntPrompt.ask("[bold blue]Enter Speed Level (1-5)[/bold blue]", default=3, choices=["1", "2", "3", "4", "5"], console=self.console)
        return speed_map[choice]

    def display_start(self, target, address_count, ports):
        if self.quiet:
            return
        self.console.print(Panel.fit(
            f"[bold green]Scanning {target}[/bold green] ({address_count} address(es), ports {ports})",
            border_style="blue"
        ))

    def create_progress(self):
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=self.console,
            transient=True,
            disable=self.quiet,
        )

    def display_summary(self, report: ScanReport):
        if self.quiet:
            return
        counts = report.counts()
        self.console.print(f"\n[bold]Scan completed in {report.duration:.2f} seconds.[/bold]")
        self.console.print(f"[bold]Open ports found: {counts[PortState.OPEN]}[/bold]")
        not_open = report.completed - counts[PortState.OPEN]
        if not_open > 0:
            self.console.print(
                f"[dim]Not shown: {counts[PortState.CLOSED]} closed, "
                f"{counts[PortState.TIMEOUT]} timeout, {counts[PortState.ERROR]} error[/dim]"
            )

    def show_message(self, msg, style="bold red"):
        self.console.print(f"[{style}]{msg}[/{style}]")

    def show_saved(self, filename):
        if not self.quiet:
            self.console.print(f"[dim]Results saved to {filename}[/dim]")
