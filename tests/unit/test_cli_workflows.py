from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from typer.testing import CliRunner

from genflow import persistence
from genflow.cli import app
from genflow.persistence import InMemoryJobRepository, Job, Task

BASE_DIR = Path(__file__).resolve().parents[1]
DEFINITIONS = str(BASE_DIR / "fixtures" / "workflow_definitions.py")

runner = CliRunner()


@pytest.fixture
def repo(monkeypatch):
    monkeypatch.delenv("GENFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    repository = InMemoryJobRepository()
    persistence._repository_instance = repository
    yield repository
    persistence._repository_instance = None


def _start(*extra: str):
    return runner.invoke(
        app,
        [
            "workflow",
            "start",
            "cli_story",
            "-d",
            DEFINITIONS,
            "--user-id",
            "7",
            "--params",
            '{"title": "Night train", "textModel": "gpt"}',
            *extra,
        ],
    )


def test_types_lists_registered_workflows(repo):
    result = runner.invoke(app, ["workflow", "types", "-d", DEFINITIONS])

    assert result.exit_code == 0, result.output
    assert "cli_story - CLI story (2 steps)" in result.output
    assert "  0. script -> script" in result.output
    assert "  1. word_count -> -" in result.output


def test_start_runs_workflow_to_completion(repo):
    result = _start()

    assert result.exit_code == 0, result.output
    assert "Job 1 started with 2 steps" in result.output
    assert "Job 1: completed" in result.output

    tasks = asyncio.run(repo.list_tasks(1))
    assert [t.status for t in tasks] == ["completed", "completed"]
    assert tasks[0].result_data == {"content": "A story called Night train"}
    assert tasks[0].input_params == {"title": "Night train", "textModel": "gpt"}
    assert tasks[0].model_name == "gpt"
    assert tasks[1].result_data == {"words": 5}


def test_show_and_list_completed_job(repo):
    assert _start().exit_code == 0

    shown = runner.invoke(app, ["workflow", "show", "1"])
    assert shown.exit_code == 0, shown.output
    assert "Job 1 (CLI story): completed" in shown.output
    assert "- [0] script: completed 100%" in shown.output
    assert "- [1] word_count: completed 100%" in shown.output
    assert '"title": "Night train"' in shown.output

    listed = runner.invoke(app, ["workflow", "list", "--user-id", "7"])
    assert listed.exit_code == 0, listed.output
    assert "1\tcli_story\tcompleted" in listed.output

    empty = runner.invoke(app, ["workflow", "list", "--user-id", "8"])
    assert "No jobs found" in empty.output


def test_cancel_of_completed_job_fails(repo):
    assert _start().exit_code == 0

    result = runner.invoke(app, ["workflow", "cancel", "1", "--user-id", "7"])

    assert result.exit_code == 1
    assert "already completed" in result.output


def test_cancel_pending_job(repo):
    job, _ = asyncio.run(
        repo.create_job(
            Job(workflow_type="cli_story", total_steps=1, user_id=7),
            [Task(step_index=0, task_type="script")],
        )
    )

    result = runner.invoke(app, ["workflow", "cancel", str(job.id), "--user-id", "7"])

    assert result.exit_code == 0, result.output
    assert f"Job {job.id}: cancelled" in result.output
    assert asyncio.run(repo.get_job(job.id)).status == "cancelled"


def test_resume_runs_failed_job_again(repo):
    job, tasks = asyncio.run(
        repo.create_job(
            Job(
                workflow_type="cli_story",
                total_steps=2,
                user_id=7,
                input_params={"title": "Night train"},
            ),
            [
                Task(step_index=0, task_type="script"),
                Task(step_index=1, task_type="word_count"),
            ],
        )
    )
    asyncio.run(repo.update_task(tasks[0].id, status="failed", error_message="boom"))
    asyncio.run(repo.update_job(job.id, status="failed", error_message="step 0 failed"))

    result = runner.invoke(app, ["workflow", "resume", str(job.id), "-d", DEFINITIONS])

    assert result.exit_code == 0, result.output
    assert f"Job {job.id}: resuming" in result.output
    assert f"Job {job.id}: completed" in result.output


def test_missing_job_is_reported(repo):
    result = runner.invoke(app, ["workflow", "show", "404"])

    assert result.exit_code == 1
    assert "job not found" in result.output


def test_unknown_workflow_type_is_reported(repo):
    result = runner.invoke(app, ["workflow", "start", "nope", "-d", DEFINITIONS])

    assert result.exit_code == 1
    assert "workflow definition not found: nope" in result.output


def test_params_must_be_a_json_object(repo):
    result = _start("--params", "[1, 2]")
    assert result.exit_code != 0

    result = runner.invoke(
        app, ["workflow", "start", "cli_story", "-d", DEFINITIONS, "--params", "{"]
    )
    assert result.exit_code != 0


def test_resume_force_recovers_step_left_processing(repo):
    job, tasks = asyncio.run(
        repo.create_job(
            Job(
                workflow_type="cli_story",
                total_steps=2,
                user_id=7,
                status="running",
                input_params={"title": "Night train"},
            ),
            [
                Task(step_index=0, task_type="script"),
                Task(step_index=1, task_type="word_count"),
            ],
        )
    )
    asyncio.run(repo.update_task(tasks[0].id, status="processing"))

    refused = runner.invoke(app, ["workflow", "resume", str(job.id), "-d", DEFINITIONS])
    assert refused.exit_code == 1
    assert "still running step 0" in refused.output

    result = runner.invoke(
        app, ["workflow", "resume", str(job.id), "-d", DEFINITIONS, "--force"]
    )
    assert result.exit_code == 0, result.output
    assert f"Job {job.id}: completed" in result.output
