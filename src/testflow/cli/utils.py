"""
CLI utility helpers — loading definitions and rendering output.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from testflow.orchestration.workflow_yaml import AnsibleTest

console = Console()
err_console = Console(stderr=True)


# ── Loading ──────────────────────────────────────────────────────────────


def load_test(path: Path) -> AnsibleTest:
    """Load an AnsibleTest definition or exit with code 1."""
    try:
        return AnsibleTest.from_yaml_file(path)
    except FileNotFoundError:
        err_console.print(f"[bold red]Error[/bold red]: file not found: {path}")
        raise typer.Exit(code=1) from None
    except ValidationError as exc:
        err_console.print(f"[bold red]Invalid AnsibleTest[/bold red] ({path}):")
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            err_console.print(f"  {location}: {error['msg']}")
        raise typer.Exit(code=1) from None
    except ValueError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
        raise typer.Exit(code=1) from None


# ── Output helpers ───────────────────────────────────────────────────────


def output_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def output_table(title: str, columns: list[str], rows: list[list[Any]]) -> None:
    """Render rows as a rich table."""
    table = Table(title=title, show_lines=False)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row))
    console.print(table)
