from typing import TYPE_CHECKING, Iterable

import pyfiglet
from rich.console import Console
from rich.table import Table

from arch_setup.report import RunReport, StepStatus

if TYPE_CHECKING:
    from arch_setup.provision import Step

# Nord palette: nord7 #8FBCBB, nord8 #88C0D0, nord9 #81A1C1, nord10 #5E81AC,
# nord11 #BF616A, nord13 #EBCB8B
console = Console()

STATUS_ICONS = {
    StepStatus.SUCCESS: "✓",
    StepStatus.WARNING: "⚠",
    StepStatus.FAILED: "✗",
    StepStatus.SKIPPED: "⏭",
}
STATUS_COLORS = {
    StepStatus.SUCCESS: "#8FBCBB",
    StepStatus.WARNING: "#EBCB8B",
    StepStatus.FAILED: "#BF616A",
    StepStatus.SKIPPED: "#81A1C1",
}


def print_header(text: str) -> None:
    """Print a striking ASCII art header using pyfiglet."""
    ascii_art = pyfiglet.figlet_format(text, font="slant")
    console.print(ascii_art, style="bold #88C0D0")


def print_section(text: str) -> None:
    console.print(f"\n[bold #88C0D0]{text}[/bold #88C0D0]")


def print_step(text: str) -> None:
    console.print(f"[#88C0D0]• {text}[/#88C0D0]")


def print_success(text: str) -> None:
    console.print(f"[bold #8FBCBB]✓ {text}[/bold #8FBCBB]")


def print_warning(text: str) -> None:
    console.print(f"[bold #EBCB8B]⚠ {text}[/bold #EBCB8B]")


def print_error(text: str) -> None:
    console.print(f"[bold #BF616A]✗ {text}[/bold #BF616A]")


def print_status_report(report: RunReport, title: str = "Setup Status Report") -> None:
    """Display a table of every recorded step and its outcome."""
    table = Table(title=title, header_style="bold #81A1C1", border_style="#5E81AC")
    table.add_column("", width=2)
    table.add_column("Step", style="#D8DEE9")
    table.add_column("Status")
    table.add_column("Message", overflow="fold")
    for result in report:
        color = STATUS_COLORS[result.status]
        table.add_row(
            f"[{color}]{STATUS_ICONS[result.status]}[/{color}]",
            result.name,
            f"[bold {color}]{result.status.value.upper()}[/bold {color}]",
            result.message,
        )
    console.print(table)


def print_plan(steps: Iterable["Step"]) -> None:
    """Display the ordered step list with preconditions and toggles."""
    table = Table(title="Provisioning Plan", header_style="bold #81A1C1", border_style="#5E81AC")
    table.add_column("Step", style="#88C0D0", no_wrap=True)
    table.add_column("Requires")
    table.add_column("Toggle", no_wrap=True)
    table.add_column("Description")
    for step in steps:
        description = f"{step.description} [bold #BF616A](fatal)[/bold #BF616A]" if step.fatal else step.description
        table.add_row(
            step.name,
            ", ".join(step.requires) or "-",
            step.toggle or "-",
            description,
        )
    console.print(table)
