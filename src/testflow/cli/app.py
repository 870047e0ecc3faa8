"""
Root Typer application for the testflow CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from testflow.core.logging import configure_logging

app = Typer(
    name="testflow",
    help="testflow — run AnsibleTest workflows one step at a time.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        from testflow import __version__

        try:
            v = pkg_version("testflow-operator")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"testflow {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show controller logs."),
) -> None:
    """testflow CLI — validate, plan and simulate AnsibleTest workflows."""
    configure_logging(level="DEBUG" if verbose else "CRITICAL", json_format=False)


# ── Sub-command registration ─────────────────────────────────────────────

from testflow.cli.workflow import app as wf_app  # noqa: E402

app.add_typer(wf_app, name="workflow", help="Workflow validation, planning and simulation.")
