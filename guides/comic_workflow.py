"""Example workflow definitions: a script followed by a poster image.

Load it from the CLI with ``-d``::

    genflow -c guides/config.example.yaml workflow types -d guides/comic_workflow.py
    genflow -c guides/config.example.yaml workflow start comic_poster \
        -d guides/comic_workflow.py --user-id 1 \
        --params '{"title": "Night train", "style": "noir"}'
"""

from functools import lru_cache

from genflow import (
    HttpProviderClient,
    PollOptions,
    ProviderPoller,
    StepDefinition,
    WorkflowDefinition,
    create_build_input,
    load_config,
    register_workflow,
    trace,
    traced,
)


@lru_cache(maxsize=1)
def _poller() -> tuple[ProviderPoller, PollOptions]:
    config = load_config()
    client = HttpProviderClient(config.providers)
    return ProviderPoller(client), PollOptions(**config.poll.model_dump())


@traced("script prompt", extract_input=lambda params: {"title": params.get("title")})
def script_prompt(params):
    return (
        f"Write a one page {params['style'] or 'drama'} script titled "
        f"{params['title']!r}."
    )


async def write_script(input_params, on_progress):
    poller, options = _poller()
    result = await poller.submit_and_poll(
        "scriptwriter",
        {"prompt": script_prompt(input_params), "textModel": input_params["textModel"]},
        options,
    )
    await on_progress(90)
    content = result.data.get("content", "")
    trace("script written", {"characters": len(content)})
    return {"content": content}


async def draw_poster(input_params, on_progress):
    poller, options = _poller()
    options = options.model_copy(update={"on_progress": on_progress, "log_tag": "poster"})
    result = await poller.submit_and_poll(
        "imagegen",
        {
            "prompt": f"Movie poster. {input_params['scriptContent'][:500]}",
            "imageModel": input_params["imageModel"],
            "aspectRatio": input_params["aspectRatio"],
        },
        options,
    )
    return {"imageUrl": result.data["image_url"]}


register_workflow(
    "comic_poster",
    WorkflowDefinition(
        name="Script and poster",
        description="Write a short script, then draw a poster for it",
        steps=[
            StepDefinition(
                task_type="script",
                target_type="script",
                build_input=create_build_input(
                    ["title", "style", {"key": "textModel", "default": "gpt-4o-mini"}]
                ),
                handler=write_script,
            ),
            StepDefinition(
                task_type="image",
                target_type="poster",
                build_input=create_build_input(
                    [
                        "imageModel",
                        {"key": "aspectRatio", "default": "2:3"},
                        {
                            "key": "scriptContent",
                            "from": lambda ctx: ctx.previous_results[0]["content"],
                        },
                    ]
                ),
                handler=draw_poster,
            ),
        ],
    ),
    replace=True,
)
