"""Command line interface for genflow workflows."""

from __future__ import annotations

import asyncio
import json
import os
import sys
from importlib import import_module
from importlib.util import module_from_spec, spec_from_file_location
from pathlib import Path
from typing import Any, Optional

import typer

from genflow.config import configure_logging, load_config
from genflow.engine import WorkflowEngine
from genflow.errors import GenflowError
from genflow.persistence import get_repository

app = typer.Typer(help="CLI for genflow workflows")

workflow_app = typer.Typer(help="Commands for starting and inspecting workflows")
app.add_typer(workflow_app, name="workflow")

DefinitionsOption = typer.Option(
    None,
    "--definitions",
    "-d",
    envvar="GENFLOW_DEFINITIONS",
    help="Module name or .py file that registers workflow definitions",
)


@app.callback()
def main(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a genflow YAML config file"
    ),
    log_level: Optional[str] = typer.Option(None, help="Logging level"),
) -> None:
    """Genflow CLI entry point."""
    cfg = load_config(str(config) if config else None)
    configure_logging((log_level or cfg.log_level).upper())
    if config is not None:
        get_repository(config=cfg)


def _load_definitions(definitions: Optional[str]) -> None:
    """Import the module that registers workflows with the registry."""
    if not definitions:
        return
    if definitions.endswith(".py") or os.path.sep in definitions:
        path = Path(definitions).expanduser().resolve()
        if not path.exists():
            raise typer.BadParameter(f"definitions file not found: {path}")
        loaded = sys.modules.get(path.stem)
        if loaded is not None and getattr(loaded, "__file__", None) == str(path):
            return
        spec = spec_from_file_location(path.stem, path)
        if spec is None or spec.loader is None:
            raise typer.BadParameter(f"cannot load definitions from {path}")
        module = module_from_spec(spec)
        sys.modules[path.stem] = module
        try:
            spec.loader.exec_module(module)
        except GenflowError as exc:
            sys.modules.pop(path.stem, None)
            _fail(exc)
    else:
        try:
            import_module(definitions)
        except GenflowError as exc:
            _fail(exc)


def _fail(exc: GenflowError) -> None:
    typer.secho(str(exc), fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except GenflowError as exc:
        _fail(exc)


def _engine() -> WorkflowEngine:
    return WorkflowEngine(repository=get_repository())


@workflow_app.command("types")
def workflow_types(definitions: Optional[str] = DefinitionsOption) -> None:
    """
    List the workflow types that can be started.

    Example:
        genflow workflow types -d myapp.workflows
        # Output: script_and_characters - Script + characters (2 steps)
        #           0. script -> script
        #           1. character_extract -> character
    """
    _load_definitions(definitions)
    workflows = _engine().available_workflows()
    if not workflows:
        typer.echo("No workflows registered")
        return
    for wf in workflows:
        typer.echo(f"{wf['type']} - {wf['name']} ({wf['total_steps']} steps)")
        for step in wf["steps"]:
            typer.echo(
                f"  {step['index']}. {step['task_type']} -> {step['target_type'] or '-'}"
            )


@workflow_app.command("list")
def workflow_list(
    user_id: Optional[int] = typer.Option(None, help="Only jobs owned by this user"),
    project_id: Optional[int] = typer.Option(None, help="Only jobs of this project"),
    workflow_type: Optional[str] = typer.Option(None, "--type", help="Workflow type"),
    status: Optional[str] = typer.Option(
        None, help="Comma separated statuses, e.g. running,failed"
    ),
    limit: int = typer.Option(50, help="Maximum number of jobs"),
    offset: int = typer.Option(0, help="Number of jobs to skip"),
) -> None:
    """
    List jobs, newest first.

    Example:
        genflow workflow list --user-id 7 --status running,failed
        # Output: 12    comic_generation    running    2024-01-01 10:00:00+00:00
    """
    jobs = _run(
        _engine().list_jobs(user_id, project_id, workflow_type, status, limit, offset)
    )
    if not jobs:
        typer.echo("No jobs found")
        return
    for job in jobs:
        typer.echo(f"{job.id}\t{job.workflow_type}\t{job.status}\t{job.created_at}")


@workflow_app.command("show")
def workflow_show(job_id: int) -> None:
    """
    Show a job with the status of each of its steps.

    Example:
        genflow workflow show 12
        # Output: Job 12 (Comic generation): failed
        #         Error: step 1 (image) failed: rate limited
        #         - [0] script: completed 100%
        #         - [1] image: failed 30% - rate limited
    """
    job = _run(_engine().get_job_status(job_id))
    typer.echo(f"Job {job.id} ({job.workflow_name}): {job.status}")
    if job.error_message:
        typer.echo(f"Error: {job.error_message}")
    if job.input_params:
        typer.echo(f"Params: {json.dumps(job.input_params, ensure_ascii=False)}")
    for task in job.tasks or []:
        line = f"- [{task.step_index}] {task.task_type}: {task.status} {task.progress}%"
        if task.error_message:
            line += f" - {task.error_message}"
        typer.echo(line)


@workflow_app.command("start")
def workflow_start(
    workflow_type: str,
    user_id: Optional[int] = typer.Option(None, help="Owner of the job"),
    project_id: Optional[int] = typer.Option(None, help="Project of the job"),
    params: Optional[str] = typer.Option(None, help="Job parameters as JSON object"),
    definitions: Optional[str] = DefinitionsOption,
) -> None:
    """
    Start a workflow and run it until it completes or fails.

    Example:
        genflow workflow start script_only -d myapp.workflows \\
            --user-id 7 --params '{"title": "Night train"}'
        # Output: Job 13 started with 1 steps
        #         Job 13: completed
    """
    _load_definitions(definitions)
    try:
        job_params = json.loads(params) if params else {}
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"--params is not valid JSON: {exc}")
    if not isinstance(job_params, dict):
        raise typer.BadParameter("--params must be a JSON object")

    async def _start() -> None:
        engine = _engine()
        started = await engine.start_workflow(
            workflow_type, user_id=user_id, project_id=project_id, job_params=job_params
        )
        typer.echo(f"Job {started.job_id} started with {len(started.tasks)} steps")
        await _finish(engine, started.job_id)

    _run(_start())


@workflow_app.command("resume")
def workflow_resume(
    job_id: int,
    force: bool = typer.Option(
        False, "--force", help="Rerun a step left processing by a crashed run"
    ),
    definitions: Optional[str] = DefinitionsOption,
) -> None:
    """
    Resume a failed job from its failed step.

    Example:
        genflow workflow resume 12 -d myapp.workflows
        genflow workflow resume 12 -d myapp.workflows --force
    """
    _load_definitions(definitions)

    async def _resume() -> None:
        engine = _engine()
        result = await engine.resume_workflow(job_id, force=force)
        typer.echo(f"Job {result.job_id}: {result.status}")
        await _finish(engine, job_id)

    _run(_resume())


@workflow_app.command("cancel")
def workflow_cancel(
    job_id: int,
    user_id: int = typer.Option(..., help="Owner of the job"),
) -> None:
    """
    Cancel a job. Steps already running are not interrupted.

    Example:
        genflow workflow cancel 12 --user-id 7
    """
    result = _run(_engine().cancel_workflow(job_id, user_id))
    typer.echo(f"Job {result.job_id}: {result.status}")


async def _finish(engine: WorkflowEngine, job_id: int) -> None:
    # Background steps are cancelled when the event loop closes.
    await engine.join()
    job = await engine.get_job_status(job_id)
    color = typer.colors.RED if job.status == "failed" else None
    typer.secho(f"Job {job.id}: {job.status}", fg=color)
    if job.error_message:
        typer.secho(f"Error: {job.error_message}", fg=color)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
