# display.py
# All terminal output for the compliance probe.
#
# This module owns presentation entirely. The engine never prints; it calls
# named functions here. Swap this file to change the entire UI.
#
# Colour language:
#   cyan    — run scaffolding / section routing
#   green   — passing assertions, completed artifacts
#   red     — failing assertions, halts, invalid playbooks
#   yellow  — pre/post command warnings

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from compliance_probe.models import ReportStats

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return value[:max_len] + "…"
    return value


# ---------------------------------------------------------------------------
# Run entry
# ---------------------------------------------------------------------------


def banner(title: str, playbook_path: str, stamp: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]{title}[/bold cyan]\n"
            "[dim]Compliance probe — assertion execution & scoring[/dim]\n\n"
            f"[dim]Playbook :[/dim] [white]{playbook_path}[/white]\n"
            f"[dim]Run      :[/dim] [white]{stamp}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def section_start(title: str) -> None:
    console.print()
    console.print(Rule(f"[cyan]SECTION — {title}[/cyan]", style="cyan"))


def assertion_result(title: str, passed: bool, score: int, threshold: int) -> None:
    status = "[bold green]✓ PASS[/bold green]" if passed else "[bold red]✗ FAIL[/bold red]"
    console.print(f"  {status}  [white]{title}[/white]  [dim](score {score}/{threshold})[/dim]")


def exec_warning(stage: str, code: str, message: str) -> None:
    console.print(
        f"  [yellow]⚠ {stage} error[/yellow] [dim]({code})[/dim] [yellow]{_mono(message)}[/yellow]"
    )


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


def generation_complete(stats: ReportStats, paths: dict[str, str]) -> None:
    console.print()
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 1))
    table.add_column("Artifact", style="bold dim", width=10)
    table.add_column("Path", style="white")
    for kind, path in paths.items():
        table.add_row(kind, path)

    console.print(
        Panel(
            f"[bold green]PASS: {stats.passed}[/bold green]   "
            f"[bold red]FAIL: {stats.failed}[/bold red]",
            title=_label("GENERATION COMPLETE", "green"),
            border_style="green",
            padding=(0, 2),
        )
    )
    console.print(table)


def preprocess_complete(output_path: str) -> None:
    console.print()
    console.print(
        _label("PREPROCESS", "cyan"),
        f"[cyan] Baked playbook saved to[/cyan] [white]{output_path}[/white]",
    )


def schema(text: str) -> None:
    console.print_json(text)


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{reason}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
