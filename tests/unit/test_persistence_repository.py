import asyncio
from datetime import timedelta

import pytest

from genflow.persistence import (
    InMemoryJobRepository,
    Job,
    JobFilter,
    SQLiteJobRepository,
    Task,
)
from genflow.persistence.models import utc_now


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "memory":
        yield InMemoryJobRepository()
    else:
        repository = SQLiteJobRepository(tmp_path / "jobs.db")
        yield repository
        repository.close()


async def _create(repo, workflow_type="comic", steps=3, user_id=1, project_id=10, **job_fields):
    job = Job(
        workflow_type=workflow_type,
        total_steps=steps,
        input_params={"title": "Night train", "tags": ["a", "b"]},
        user_id=user_id,
        project_id=project_id,
        **job_fields,
    )
    tasks = [
        Task(step_index=i, task_type=f"step{i}", target_type="asset", user_id=user_id)
        for i in range(steps)
    ]
    return await repo.create_job(job, tasks)


@pytest.mark.asyncio
async def test_create_job_assigns_ids_and_persists_all_tasks(repo):
    job, tasks = await _create(repo)

    assert job.id is not None
    assert [t.job_id for t in tasks] == [job.id] * 3
    assert len({t.id for t in tasks}) == 3

    stored = await repo.get_job(job.id)
    assert stored.status == "pending"
    assert stored.total_steps == 3
    assert stored.input_params == {"title": "Night train", "tags": ["a", "b"]}
    assert stored.created_at.tzinfo is not None

    listed = await repo.list_tasks(job.id)
    assert [t.step_index for t in listed] == [0, 1, 2]
    assert {t.status for t in listed} == {"pending"}


@pytest.mark.asyncio
async def test_missing_rows_are_none(repo):
    assert await repo.get_job(404) is None
    assert await repo.get_task(404) is None
    assert await repo.first_task(404, "pending") is None


@pytest.mark.asyncio
async def test_first_task_and_status_filter(repo):
    job, tasks = await _create(repo)
    await repo.update_task(tasks[0].id, status="completed", result_data={"content": "x"})

    first = await repo.first_task(job.id, "pending")
    assert first.step_index == 1

    completed = await repo.list_tasks(job.id, ["completed"])
    assert [t.step_index for t in completed] == [0]
    assert completed[0].result_data == {"content": "x"}
    assert await repo.list_tasks(job.id, []) == []


@pytest.mark.asyncio
async def test_update_task_round_trips_documents_and_times(repo):
    job, tasks = await _create(repo)
    now = utc_now()
    trace = {"task_id": tasks[1].id, "steps": [{"seq": 1, "name": "task started"}]}

    await repo.update_task(
        tasks[1].id,
        status="processing",
        progress=10,
        input_params={"imageModel": "flux", "size": [1024, 576]},
        model_name="flux",
        started_at=now,
        trace_data=trace,
    )

    task = await repo.get_task(tasks[1].id)
    assert task.status == "processing"
    assert task.progress == 10
    assert task.input_params == {"imageModel": "flux", "size": [1024, 576]}
    assert task.model_name == "flux"
    assert task.trace_data == trace
    assert task.started_at == now

    await repo.update_task(tasks[1].id, error_message=None, started_at=None)
    task = await repo.get_task(tasks[1].id)
    assert task.started_at is None


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(repo):
    job, tasks = await _create(repo)

    with pytest.raises(ValueError):
        await repo.update_job(job.id, workflow_type="other")
    with pytest.raises(ValueError):
        await repo.update_task(tasks[0].id, step_index=5)


@pytest.mark.asyncio
async def test_mark_job_started_stamps_start_once(repo):
    job, _ = await _create(repo)

    await repo.mark_job_started(job.id, 0)
    first = await repo.get_job(job.id)
    await asyncio.sleep(0.01)
    await repo.mark_job_started(job.id, 1)
    second = await repo.get_job(job.id)

    assert first.status == second.status == "running"
    assert second.current_step_index == 1
    assert first.started_at is not None
    assert second.started_at == first.started_at


@pytest.mark.asyncio
async def test_update_tasks_is_bulk_and_scoped_to_statuses(repo):
    job, tasks = await _create(repo)
    other_job, other_tasks = await _create(repo)
    await repo.update_task(tasks[0].id, status="completed")
    await repo.update_task(tasks[1].id, status="processing")

    count = await repo.update_tasks(
        job.id, ["pending", "processing"], status="failed", error_message="cancelled"
    )

    assert count == 2
    statuses = [(t.status, t.error_message) for t in await repo.list_tasks(job.id)]
    assert statuses == [("completed", None), ("failed", "cancelled"), ("failed", "cancelled")]
    assert {t.status for t in await repo.list_tasks(other_job.id)} == {"pending"}


@pytest.mark.asyncio
async def test_list_jobs_filters_orders_and_paginates(repo):
    base = utc_now()
    a, _ = await _create(repo, "comic", user_id=1, project_id=10, created_at=base)
    b, _ = await _create(
        repo, "script_only", user_id=1, project_id=11, created_at=base + timedelta(seconds=1)
    )
    c, _ = await _create(repo, "comic", user_id=1, project_id=10, created_at=base + timedelta(seconds=2))
    await _create(repo, "comic", user_id=2, created_at=base + timedelta(seconds=3))
    await repo.update_job(b.id, status="failed", error_message="boom")
    await repo.update_job(c.id, status="completed")

    mine = await repo.list_jobs(JobFilter(user_id=1))
    assert [j.id for j in mine] == [c.id, b.id, a.id]

    comic = await repo.list_jobs(JobFilter(user_id=1, workflow_type="comic"))
    assert [j.id for j in comic] == [c.id, a.id]

    project = await repo.list_jobs(JobFilter(user_id=1, project_id=11))
    assert [j.id for j in project] == [b.id]

    finished = await repo.list_jobs(JobFilter(user_id=1, statuses=["completed", "failed"]))
    assert [j.id for j in finished] == [c.id, b.id]

    page = await repo.list_jobs(JobFilter(user_id=1, limit=1, offset=1))
    assert [j.id for j in page] == [b.id]


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    repo = InMemoryJobRepository()
    job, tasks = await _create(repo)

    fetched = await repo.get_job(job.id)
    fetched.input_params["title"] = "changed"

    assert (await repo.get_job(job.id)).input_params["title"] == "Night train"


@pytest.mark.asyncio
async def test_sqlite_rows_survive_reopen(tmp_path):
    path = tmp_path / "jobs.db"
    repo = SQLiteJobRepository(path)
    job, tasks = await _create(repo)
    await repo.update_task(tasks[0].id, status="completed", result_data=["x", 1])
    repo.close()

    reopened = SQLiteJobRepository(path)
    task = await reopened.get_task(tasks[0].id)
    reopened.close()

    assert task.status == "completed"
    assert task.result_data == ["x", 1]
