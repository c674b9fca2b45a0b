"""Shared formatting and file utilities for commands."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from nebulaflow_toolkit.activities.models import CachedEntry
from nebulaflow_toolkit.data.eligibility import (
    CheckInEligibility,
    progress_label,
)
from nebulaflow_toolkit.utils.activity_utils import categorize, status_label

# Shared console instance
console = Console()


def format_address(address: Optional[str], length: int = 10) -> str:
    """
    Format an Ethereum address to show first and last characters.

    Args:
        address: Ethereum address
        length: Total visible characters (default: 10)

    Returns:
        Formatted address like "0x1234...5678"
    """
    if not address:
        return "N/A"
    if len(address) <= length:
        return address
    return f"{address[:6]}...{address[-4:]}"


def format_timestamp(
    timestamp: int, format_str: str = "%Y-%m-%d %H:%M"
) -> str:
    """Format a Unix timestamp to a readable date string."""
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime(format_str)


def save_json_output(
    data: Dict[str, Any],
    filename: str,
    output_dir: str = "output",
    print_path: bool = True,
) -> str:
    """
    Save data to a JSON file with automatic directory creation.

    Returns:
        Full path to saved file
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    filepath = output_path / filename

    with open(filepath, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    if print_path:
        console.print(f"[cyan]Data saved to:[/cyan] {filepath}")

    return str(filepath)


def generate_timestamped_filename(prefix: str, extension: str = "json") -> str:
    """Filename like "prefix_20240315_123456.json"."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{prefix}_{timestamp}.{extension}"


def create_activities_table() -> Table:
    """Rich table with the standard activity columns."""
    table = Table(
        show_header=True,
        header_style="bold cyan",
        show_lines=False,
        pad_edge=False,
        box=None,
    )
    table.add_column("ID", width=4, justify="right")
    table.add_column("Title", width=24)
    table.add_column("Contract", width=14)
    table.add_column("Category", width=13)
    table.add_column("Status", width=8, justify="center")
    table.add_column("Round", width=8, justify="center")
    table.add_column("Joined", width=6, justify="center")
    table.add_column("Created", width=16)
    return table


def add_entry_to_table(table: Table, entry: CachedEntry) -> None:
    activity = entry.activity
    progress = progress_label(entry.round_counters)
    participation = entry.participation
    if participation is None:
        joined = "-"
    elif participation.eliminated:
        joined = "[red]out[/red]"
    else:
        joined = "[green]yes[/green]" if participation.joined else "no"
    pending = " [yellow]*[/yellow]" if entry.local_flags else ""

    table.add_row(
        str(activity.id) if activity.id is not None else "-",
        (activity.title or "")[:24] + pending,
        format_address(activity.contract_address),
        categorize(activity).value,
        status_label(entry.status),
        f"{progress[0]}/{progress[1]}" if progress else "-",
        joined,
        format_timestamp(activity.created_at),
    )


def print_entries(entries: List[CachedEntry], title: str) -> None:
    console.print(f"[bold]{title}[/bold] ({len(entries)})")
    if not entries:
        console.print("[dim]No activities[/dim]")
        return
    table = create_activities_table()
    for entry in entries:
        add_entry_to_table(table, entry)
    console.print(table)


def format_eligibility(eligibility: CheckInEligibility) -> str:
    if eligibility.can_check_in:
        verdict = "[green]can check in[/green]"
    else:
        verdict = f"[red]cannot check in[/red] ({eligibility.reason.value})"
    lines = [
        f"Check-in: {verdict}",
        f"Checked in this round: {'yes' if eligibility.is_today_checked_in else 'no'}",
        f"Consecutive days: {eligibility.consecutive_days}",
    ]
    if eligibility.message:
        lines.append(f"[dim]{eligibility.message}[/dim]")
    return "\n".join(lines)
