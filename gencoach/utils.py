"""Shared utility functions for GenCoach.

Provides JSON file I/O, name/id helpers, timestamps, and Rich-based console
reporting. Everything that prints goes through the shared ``console`` so
tests can capture or silence output in one place.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Stage display names
# ---------------------------------------------------------------------------


STAGE_NAMES: dict[int, str] = {
    1: "Idea Management",
    2: "Concept Validation",
    3: "Specification",
    4: "CLI Configuration",
    5: "Code Generation",
    6: "Automation",
}

STAGE_COLORS: dict[int, str] = {
    1: "bright_cyan",
    2: "bright_green",
    3: "bright_yellow",
    4: "bright_magenta",
    5: "bright_red",
    6: "bright_blue",
}


# ---------------------------------------------------------------------------
# String / id helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary project name to a URL/path-safe slug.

    Examples::

        sanitize_name("Habit Tracker") -> "habit-tracker"
        sanitize_name("  Budget (v2)  ") -> "budget-v2"
    """
    result = re.sub(r"[^a-zA-Z0-9_-]", "-", name.strip().lower())
    result = re.sub(r"-+", "-", result)
    return result.strip("-")


def generate_id() -> str:
    """Return a short random identifier for features, stories and nodes."""
    return uuid.uuid4().hex[:12]


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load a JSON object from *path*.

    Returns an empty dict when the file is missing, unreadable, or does not
    contain a JSON object. Callers treat all of these as "no data".
    """
    file_path = Path(path)
    if not file_path.exists():
        return {}
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def write_json(data: dict[str, Any] | list[Any], path: str | Path) -> None:
    """Write *data* as pretty-printed JSON, creating parent directories.

    The content goes to a temporary file beside *path* which then replaces
    it, so readers see either the old file or the new one, never a partial
    write.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=file_path.parent,
        prefix=f".{file_path.name}.",
        suffix=".tmp",
        delete=False,
    ) as tmp:
        tmp.write(content)
    try:
        os.replace(tmp.name, file_path)
    except OSError:
        Path(tmp.name).unlink(missing_ok=True)
        raise


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
    """
    if seconds < 0:
        return "0.0s"

    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes > 0:
        return f"{minutes}m {int(secs)}s"
    return f"{secs:.1f}s"


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


def print_stage_header(stage_id: int) -> None:
    """Print a full-width rule announcing a stage run."""
    color = STAGE_COLORS.get(stage_id, "white")
    name = STAGE_NAMES.get(stage_id, "UNKNOWN")
    console.print()
    console.print(
        Rule(
            f"[bold {color}] Stage {stage_id}: {name.upper()} [/bold {color}]",
            style=color,
        )
    )
    console.print()


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{escape(message)}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{escape(message)}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{escape(message)}[/bold yellow]")
