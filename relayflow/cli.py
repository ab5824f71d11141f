"""Command line interface for running relayflow workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Coroutine, List, Optional, TypeVar

import typer

from relayflow.config import load_config
from relayflow.definitions import DefinitionStore
from relayflow.engine import WorkflowEngine
from relayflow.errors import RelayflowError
from relayflow.files import Upload
from relayflow.metrics import IndustryAverage
from relayflow.models import ClientContext, StepInput
from relayflow.persistence import get_repository
from relayflow.predefined import PREDEFINED

T = TypeVar("T")

app = typer.Typer(help="CLI for relayflow workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for managing workflow definitions")
instance_app = typer.Typer(help="Commands for running workflow instances")
validation_app = typer.Typer(help="Commands for client validations")

app.add_typer(workflow_app, name="workflow")
app.add_typer(instance_app, name="instance")
app.add_typer(validation_app, name="validation")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Relayflow CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=logging.DEBUG if verbose else config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _engine() -> WorkflowEngine:
    return WorkflowEngine.from_config(load_config(), repository=get_repository())


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` and turn relayflow errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except RelayflowError as exc:
        typer.secho(f"{type(exc).__name__}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _fmt_ms(ms: int) -> str:
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = seconds / 60
    if minutes < 60:
        return f"{minutes:.1f}m"
    return f"{minutes / 60:.1f}h"


# ----------------------------------------------------------------------
# Workflows


@workflow_app.command("list")
def workflow_list() -> None:
    """List registered workflow definitions."""
    store = DefinitionStore(get_repository())
    definitions = _run(store.list_definitions())
    if not definitions:
        typer.echo("No workflows found")
        return
    for definition in definitions:
        typer.echo(
            f"{definition.id}\t{definition.title}\tv{definition.version}\t{len(definition.steps)} steps"
        )


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show a workflow definition and its ordered steps."""
    store = DefinitionStore(get_repository())
    definition = _run(store.get(workflow_id))
    typer.echo(f"Workflow {definition.id}: {definition.title} (v{definition.version})")
    if definition.description:
        typer.echo(definition.description)
    for step in definition.steps:
        typer.echo(f"  {step.order_index}. [{step.kind}] {step.label}")


@workflow_app.command("seed")
def workflow_seed(
    name: str = typer.Argument(..., help=f"One of: {', '.join(PREDEFINED)}"),
    author: Optional[str] = typer.Option(None, help="Author id recorded on the workflow"),
) -> None:
    """
    Register one of the predefined workflows.

    Example:
        relayflow workflow seed service-catalog --author alice
    """
    factory = PREDEFINED.get(name)
    if factory is None:
        typer.secho(f"Unknown workflow '{name}'", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    store = DefinitionStore(get_repository())
    definition = _run(store.register(factory(author_id=author)))
    typer.echo(f"Registered {definition.title}: {definition.id}")


# ----------------------------------------------------------------------
# Instances


@instance_app.command("start")
def instance_start(
    workflow_id: str,
    started_by: str = typer.Option(..., "--by", help="User starting the instance"),
    client_id: Optional[str] = typer.Option(None),
    client_name: Optional[str] = typer.Option(None),
    client_email: Optional[str] = typer.Option(
        None, help="Default contact for client validation steps"
    ),
) -> None:
    """Start a new instance of a workflow and print its id."""
    context = ClientContext(
        client_id=client_id, client_name=client_name, client_email=client_email
    )
    instance = _run(_engine().start_instance(workflow_id, started_by, context))
    typer.echo(f"Started instance {instance.id}")


@instance_app.command("list")
def instance_list(workflow_id: Optional[str] = typer.Option(None, "--workflow")) -> None:
    """List instances with status and step progress."""
    instances = _run(_engine().list_instances(workflow_id))
    if not instances:
        typer.echo("No instances found")
        return
    for instance in instances:
        typer.echo(
            f"{instance.id}\t{instance.status.value}\t{instance.current_step_index}/{len(instance.steps)}\t{instance.title}"
        )


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """
    Show an instance, its step history and any pending client validation.

    Example:
        relayflow instance show 5b0c...
        # Output: Instance 5b0c...: in_progress (step 2/3)
        #         - Draft outline [human]: completed (1.5s)
    """
    engine = _engine()
    details = _run(engine.get_instance_details(instance_id))
    instance = details.instance
    typer.echo(
        f"Instance {instance.id}: {instance.status.value} (step {instance.current_step_index}/{len(instance.steps)})"
    )
    if instance.failure_reason:
        typer.echo(f"Failure reason: {instance.failure_reason}")
    labels = {step.id: step.label for step in instance.steps}
    for execution in details.executions:
        line = f"- {labels.get(execution.step_id, execution.step_id)} [{execution.kind.value}]: {execution.status.value}"
        if execution.execution_time_ms is not None:
            line += f" ({_fmt_ms(execution.execution_time_ms)})"
        if execution.error:
            line += f" error={execution.error}"
        typer.echo(line)
    if details.open_validation is not None:
        validation = details.open_validation
        link = engine.broker.secure_link(validation) or validation.secure_token
        typer.echo(
            f"Waiting on client validation ({validation.status.value}) until {validation.expires_at.isoformat()}: {link}"
        )


@instance_app.command("step")
def instance_step(
    instance_id: str,
    output: Optional[str] = typer.Option(None, help="Output of a human step"),
    time_ms: int = typer.Option(0, "--time-ms", help="Time the human spent, in ms"),
    variables: Optional[str] = typer.Option(
        None, "--vars", help="JSON object of prompt variables"
    ),
    client_email: Optional[str] = typer.Option(None),
) -> None:
    """Execute the current step of an instance."""
    try:
        parsed = json.loads(variables) if variables else {}
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid --vars JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(parsed, dict):
        typer.secho("--vars must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    step_input = StepInput(
        output=output,
        execution_time_ms=time_ms,
        variables=parsed,
        client_email=client_email,
    )
    engine = _engine()
    result = _run(engine.execute_current_step(instance_id, step_input))
    if result.validation is not None:
        link = engine.broker.secure_link(result.validation) or result.validation.secure_token
        typer.echo(f"Client validation pending for {result.validation.client_email}")
        typer.echo(f"Secure link: {link}")
        typer.echo(f"Expires: {result.validation.expires_at.isoformat()}")
        return
    if result.execution.output is not None:
        typer.echo(str(result.execution.output))
    instance = result.instance
    typer.echo(
        f"Instance {instance.id}: {instance.status.value} (step {instance.current_step_index}/{len(instance.steps)})"
    )


@instance_app.command("fail")
def instance_fail(instance_id: str, reason: str) -> None:
    """Mark an in-progress instance as failed."""
    instance = _run(_engine().fail_instance(instance_id, reason))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


@instance_app.command("rate")
def instance_rate(instance_id: str, score: float) -> None:
    """Record an output quality score between 0 and 5."""
    instance = _run(_engine().rate_instance(instance_id, score))
    typer.echo(f"Instance {instance.id} rated {instance.output_quality_score}")


@instance_app.command("metrics")
def instance_metrics(
    instance_id: str,
    avg_time_ms: Optional[float] = typer.Option(
        None, help="Industry average execution time in ms"
    ),
    avg_cost: Optional[float] = typer.Option(None, help="Industry average cost"),
) -> None:
    """Show time split, cost and savings against an industry average."""
    industry_average = None
    if avg_time_ms is not None and avg_cost is not None:
        industry_average = IndustryAverage(
            total_execution_time_ms=avg_time_ms, total_cost=avg_cost
        )
    summary = _run(_engine().get_metrics(instance_id, industry_average))
    typer.echo(f"Status: {summary.status.value} ({summary.steps_completed}/{summary.steps_total} steps)")
    typer.echo(f"Total time: {_fmt_ms(summary.total_execution_time_ms)}")
    typer.echo(f"Human: {_fmt_ms(summary.human_time_spent_ms)} ({summary.human_share:.0%})")
    typer.echo(f"AI: {_fmt_ms(summary.ai_processing_time_ms)} ({summary.ai_share:.0%})")
    typer.echo(f"Client: {_fmt_ms(summary.client_wait_time_ms)} ({summary.client_share:.0%})")
    typer.echo(f"Cost: ${summary.total_cost:.4f}")
    if summary.output_quality_score is not None:
        typer.echo(f"Quality: {summary.output_quality_score}/5")
    if summary.time_savings_pct is not None:
        typer.echo(f"Time savings: {summary.time_savings_pct:.0f}%")
    if summary.cost_savings_pct is not None:
        typer.echo(f"Cost savings: {summary.cost_savings_pct:.0f}%")


# ----------------------------------------------------------------------
# Client validations


@validation_app.command("show")
def validation_show(token: str) -> None:
    """Show the validation behind a secure token."""
    validation = _run(_engine().get_validation_for_client(token))
    typer.echo(f"Validation {validation.id}: {validation.status.value}")
    typer.echo(f"Expires: {validation.expires_at.isoformat()}")
    for ref in validation.uploaded_file_refs:
        typer.echo(f"- {ref}")


@validation_app.command("resolve")
def validation_resolve(
    token: str,
    files: List[Path] = typer.Argument(None, help="Files to upload"),
) -> None:
    """Upload files for a client validation and complete it."""
    uploads = []
    for path in files or []:
        if not path.is_file():
            typer.secho(f"File not found: {path}", fg=typer.colors.RED)
            raise typer.Exit(code=1)
        uploads.append(Upload(filename=path.name, content=path.read_bytes()))
    receipt = _run(_engine().submit_client_files(token, uploads))
    typer.echo(
        f"Client validation completed after {_fmt_ms(receipt.wait_time_ms)}; "
        f"instance {receipt.instance.id} is {receipt.instance.status.value}"
    )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
