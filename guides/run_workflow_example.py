"""Run the comic poster workflow from Python and resume it if a step fails."""

import asyncio

from genflow import WorkflowEngine, configure_logging, get_repository, load_config

import comic_workflow  # noqa: F401  registers "comic_poster"


async def main():
    config = load_config()
    configure_logging(config.log_level)
    engine = WorkflowEngine(repository=get_repository(config=config))

    started = await engine.start_workflow(
        "comic_poster",
        user_id=1,
        job_params={"title": "Night train", "style": "noir"},
    )
    print(f"🚀 Job {started.job_id} started with {len(started.tasks)} steps")
    await engine.join()

    job = await engine.get_job_status(started.job_id)
    if job.status == "failed":
        print(f"❌ {job.error_message}, resuming once")
        await engine.resume_workflow(job.id, user_id=1)
        await engine.join()
        job = await engine.get_job_status(job.id)

    print(f"✅ Job {job.id}: {job.status}")
    for task in job.tasks:
        print(f"  [{task.step_index}] {task.task_type}: {task.status} {task.result_data}")


if __name__ == "__main__":
    asyncio.run(main())
