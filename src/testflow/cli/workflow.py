"""
CLI: ``testflow workflow`` — validate, plan and simulate AnsibleTest workflows.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from testflow.cli.utils import console, err_console, load_test, output_json, output_table
from testflow.core.errors import ImageResolutionError
from testflow.core.settings import get_settings
from testflow.execution.cluster import InMemoryCluster
from testflow.execution.runtimes import WorkerPhase
from testflow.orchestration.next_action import step_count
from testflow.orchestration.overrides import overridden_fields, resolve_step
from testflow.orchestration.playground import WorkflowPlayground
from testflow.orchestration.toolkit import ClusterToolkit

app = typer.Typer(no_args_is_help=True)


@app.command("validate")
def validate_workflow(
    path: Path = typer.Argument(..., help="AnsibleTest YAML file"),
) -> None:
    """Check that a file is a valid AnsibleTest definition."""
    test = load_test(path)
    steps = test.spec.workflow_length
    console.print(
        f"[green]✓[/green] {test.metadata.namespace}/{test.metadata.name}: "
        f"{steps} step{'s' if steps != 1 else ''}"
        + (" (runs one implicit step)" if steps == 0 else "")
    )


@app.command("plan")
def plan_workflow(
    path: Path = typer.Argument(..., help="AnsibleTest YAML file"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the effective parameters of every step."""
    test = load_test(path)
    settings = get_settings()
    toolkit = ClusterToolkit(InMemoryCluster(), settings)

    plan = []
    for step in range(step_count(test.spec.workflow_length)):
        params = resolve_step(test.spec, step)
        try:
            image = toolkit.resolve_image(params.container_image, settings.service_name)
        except ImageResolutionError as exc:
            err_console.print(f"[bold red]Error[/bold red]: step {step}: {exc.message}")
            raise typer.Exit(code=1) from None
        entry = params.to_dict()
        entry["image"] = image
        entry["overridden"] = [f.value for f in overridden_fields(test.spec, step)]
        plan.append(entry)

    if json_out:
        output_json(plan)
        return

    output_table(
        f"Plan: {test.metadata.name}",
        ["Step", "Name", "Image", "Playbook", "Privileged", "Debug", "Overridden"],
        [
            [
                e["step"],
                e["step_name"],
                e["image"],
                e["ansible_playbook_path"],
                e["privileged"],
                e["debug"],
                ", ".join(e["overridden"]) or "-",
            ]
            for e in plan
        ],
    )


@app.command("simulate")
def simulate_workflow(
    path: Path = typer.Argument(..., help="AnsibleTest YAML file"),
    fail_step: int | None = typer.Option(None, "--fail-step", help="Step whose worker fails"),
    ca_bundle: bool = typer.Option(False, "--ca-bundle", help="Pretend the CA bundle secret exists"),
    max_cycles: int = typer.Option(50, "--max-cycles", min=1),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run the workflow against an in-memory cluster."""
    test = load_test(path)
    outcomes = {fail_step: WorkerPhase.FAILED} if fail_step is not None else {}

    playground = WorkflowPlayground()
    playground.load(test, outcomes=outcomes, with_ca_bundle=ca_bundle)
    report = asyncio.run(playground.run(max_cycles=max_cycles))

    if json_out:
        output_json(report.to_dict())
    else:
        output_table(
            f"Simulation: {report.namespace}/{report.name}",
            ["Cycle", "Action", "Step", "Workers", "Ready", "DeploymentReady", "Error"],
            [
                [
                    c.cycle,
                    c.action or "-",
                    c.step,
                    ", ".join(f"{n}={p}" for n, p in c.workers.items()) or "-",
                    c.conditions.get("Ready"),
                    c.conditions.get("DeploymentReady"),
                    c.error,
                ]
                for c in report.cycles
            ],
        )
        if report.completed:
            console.print(f"[green]✓[/green] completed, workers: {', '.join(report.created_workers)}")
        elif report.failed:
            err_console.print(f"[bold red]✗[/bold red] failed: {report.cycles[-1].error}")
        else:
            err_console.print(f"[yellow]…[/yellow] not finished after {max_cycles} cycles")

    if not report.completed:
        raise typer.Exit(code=1)
