import json
import logging

import httpx
import pytest

from genflow.engine import WorkflowEngine
from genflow.persistence import InMemoryJobRepository
from genflow.providers import HttpProviderClient, PollOptions, ProviderConfig, ProviderPoller
from genflow.registry import (
    StepDefinition,
    WorkflowDefinition,
    WorkflowRegistry,
    create_build_input,
)
from genflow.tracing import traced

logger = logging.getLogger("tests.provider_workflow")

IMAGE_PROVIDER = ProviderConfig(
    name="imagegen",
    provider="acme",
    api_key="sk-test",
    url_template="https://api.acme.test/v1/images",
    headers_template={"Authorization": "Bearer {{apiKey}}"},
    body_template={"model": "{{imageModel}}", "prompt": "{{prompt}}"},
    response_mapping={"taskId": "data.task_id"},
    query_url_template="https://api.acme.test/v1/images/{{taskId}}",
    query_response_mapping={"status": "data.status", "error": "data.error"},
    query_success_condition='status == "succeed"',
    query_fail_condition='status == "failed"',
    query_success_mapping={"image_url": "data.images[0].url"},
)


class VirtualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeImageApi:
    """Acme image API: accepts a job, reports it running twice, then done."""

    def __init__(self, final=None) -> None:
        self.prompts = []
        self._replies = [
            {"data": {"status": "running"}},
            {"data": {"status": "running"}},
            final or {"data": {"status": "succeed", "images": [{"url": "http://cdn/1.png"}]}},
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            self.prompts.append(json.loads(request.content)["prompt"])
            return httpx.Response(200, json={"data": {"task_id": "img-1"}})
        return httpx.Response(200, json=self._replies.pop(0))


def _engine(api: FakeImageApi):
    repo = InMemoryJobRepository()
    clock = VirtualClock()
    client = HttpProviderClient(
        {"imagegen": IMAGE_PROVIDER},
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
    )
    poller = ProviderPoller(client, clock=clock, sleep=clock.sleep)

    @traced("build prompt", extract_input=lambda params: {"title": params["title"]})
    def build_prompt(params):
        return f"{params['style']} poster for {params['title']}"

    async def generate_image(input_params, on_progress):
        prompt = build_prompt(input_params)
        logger.info(f"Generating poster with {input_params['imageModel']}")
        result = await poller.submit_and_poll(
            "imagegen",
            {"prompt": prompt, "imageModel": input_params["imageModel"]},
            PollOptions(interval_ms=1000, max_duration_ms=10_000, on_progress=on_progress),
        )
        return {"imageUrl": result.data["image_url"], "polls": result.polls}

    def describe(input_params, on_progress):
        return {"caption": f"Poster at {input_params['imageUrl']}"}

    registry = WorkflowRegistry()
    registry.register(
        "poster",
        WorkflowDefinition(
            name="Poster",
            steps=[
                StepDefinition(
                    task_type="image",
                    target_type="poster",
                    build_input=create_build_input(
                        ["title", "style", {"key": "imageModel", "default": "flux"}]
                    ),
                    handler=generate_image,
                ),
                StepDefinition(
                    task_type="caption",
                    build_input=create_build_input(
                        [{"key": "imageUrl", "from": lambda ctx: ctx.previous_results[0]["imageUrl"]}]
                    ),
                    handler=describe,
                ),
            ],
        ),
    )
    return WorkflowEngine(repository=repo, registry=registry), repo


@pytest.mark.asyncio
async def test_provider_step_result_feeds_next_step(caplog):
    caplog.set_level(logging.INFO)
    api = FakeImageApi()
    engine, repo = _engine(api)

    started = await engine.start_workflow(
        "poster", user_id=1, job_params={"title": "Night train", "style": "noir"}
    )
    await engine.join()

    assert api.prompts == ["noir poster for Night train"]
    job = await repo.get_job(started.job_id)
    assert job.status == "completed"

    image, caption = await repo.list_tasks(started.job_id)
    assert image.result_data == {"imageUrl": "http://cdn/1.png", "polls": 3}
    assert image.model_name == "flux"
    assert caption.result_data == {"caption": "Poster at http://cdn/1.png"}

    names = [s["name"] for s in image.trace_data["steps"]]
    assert names[0] == "task started"
    assert names[1] == "build prompt started"
    assert names[2] == "build prompt finished"
    assert names[-1] == "task finished"
    messages = [s.get("message", "") for s in image.trace_data["steps"]]
    assert "Generating poster with flux" in messages
    assert any("query 3 for task_id=img-1: success" in m for m in messages)
    # The second step only sees its own log lines.
    assert not any("img-1" in s.get("message", "") for s in caption.trace_data["steps"])


@pytest.mark.asyncio
async def test_provider_failure_fails_job_with_provider_message(caplog):
    caplog.set_level(logging.INFO)
    api = FakeImageApi(final={"data": {"status": "failed", "error": "nsfw prompt"}})
    engine, repo = _engine(api)

    started = await engine.start_workflow(
        "poster", user_id=1, job_params={"title": "Night train", "style": "noir"}
    )
    await engine.join()

    job = await repo.get_job(started.job_id)
    assert job.status == "failed"
    assert job.error_message == "step 0 (image) failed: nsfw prompt (task_id: img-1)"

    image, caption = await repo.list_tasks(started.job_id)
    assert image.status == "failed"
    assert caption.status == "pending"
    names = [s["name"] for s in image.trace_data["steps"]]
    assert names[-1] == "task failed"
    assert any(
        "query 2 for task_id=img-1: pending" in s.get("message", "")
        for s in image.trace_data["steps"]
    )
