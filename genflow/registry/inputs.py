"""Declarative step input builders backed by a shared field table.

Every field a step handler receives must be named in :data:`FIELD_REGISTRY`
so the same concept never travels under two spellings. Field lists are
checked when the workflow is defined, not when it runs::

    build_input = create_build_input(
        [
            "textModel",
            "style",
            {"key": "width", "default": 1024},
            {"key": "content", "from": lambda ctx: ctx.previous_results[0]["content"]},
        ]
    )
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel

from ..errors import ConfigurationError, InputBuildError
from .models import ExecutionContext

Resolver = Callable[[ExecutionContext], Any]


class FieldSpec(BaseModel):
    """Where a step input field comes from."""

    source: Optional[str] = None
    default: Any = None
    resolver: Optional[Resolver] = None
    description: str = ""
    category: str = "general"


def _field(source: str, category: str, description: str, default: Any = None) -> FieldSpec:
    return FieldSpec(
        source=source, default=default, description=description, category=category
    )


FIELD_REGISTRY: Dict[str, FieldSpec] = {
    # models, one key per modality
    "textModel": _field("textModel", "model", "Text generation model"),
    "imageModel": _field("imageModel", "model", "Image generation model"),
    "videoModel": _field("videoModel", "model", "Video generation model"),
    "audioModel": _field("audioModel", "model", "Audio generation model"),
    # identifiers
    "projectId": _field("projectId", "id", "Project id"),
    "scriptId": _field("scriptId", "id", "Script id"),
    "sceneId": _field("sceneId", "id", "Scene id"),
    "characterId": _field("characterId", "id", "Character id"),
    "storyboardId": _field("storyboardId", "id", "Storyboard id"),
    "userId": FieldSpec(
        resolver=lambda ctx: ctx.user_id,
        description="Owner of the job, taken from the context",
        category="id",
    ),
    # script
    "title": _field("title", "script", "Script or project title"),
    "description": _field("description", "script", "Free text description"),
    "style": _field("style", "script", "Visual or narrative style"),
    "length": _field("length", "script", "Script length"),
    "episodeNumber": _field("episodeNumber", "script", "Episode number"),
    "scriptContent": _field("scriptContent", "script", "Script body"),
    "scriptTitle": _field("scriptTitle", "script", "Script title"),
    # scene
    "sceneName": _field("sceneName", "scene", "Scene name"),
    "environment": _field("environment", "scene", "Environment description"),
    "lighting": _field("lighting", "scene", "Lighting description"),
    "mood": _field("mood", "scene", "Mood description"),
    "scenes": _field("scenes", "scene", "Scene list"),
    # character
    "characterName": _field("characterName", "character", "Character name"),
    "appearance": _field("appearance", "character", "Appearance description"),
    "personality": _field("personality", "character", "Personality description"),
    # batch control
    "overwriteFrames": _field("overwriteFrames", "batch", "Regenerate existing frames", False),
    "overwriteVideos": _field("overwriteVideos", "batch", "Regenerate existing videos", False),
    "maxConcurrency": _field("maxConcurrency", "batch", "Parallel provider calls", 20),
    # generation parameters
    "prompt": _field("prompt", "generation", "Prompt text"),
    "imageUrl": _field("imageUrl", "generation", "Reference image URL"),
    "imageUrls": _field("imageUrls", "generation", "Reference image URLs"),
    "startFrame": _field("startFrame", "generation", "First frame image URL"),
    "endFrame": _field("endFrame", "generation", "Last frame image URL"),
    "width": _field("width", "generation", "Output width in pixels", 1024),
    "height": _field("height", "generation", "Output height in pixels", 1024),
    "duration": _field("duration", "generation", "Clip duration in seconds", 5),
    "aspectRatio": _field("aspectRatio", "generation", "Output aspect ratio"),
    # misc
    "apiDoc": _field("apiDoc", "misc", "Provider API documentation to parse"),
    "customPrompt": _field("customPrompt", "misc", "User supplied prompt override"),
}

FieldRef = Union[str, Dict[str, Any]]


class _CompiledField(BaseModel):
    key: str
    source: Optional[str] = None
    default: Any = None
    resolver: Optional[Resolver] = None


def _compile(field: FieldRef, registry: Dict[str, FieldSpec]) -> _CompiledField:
    if isinstance(field, str):
        spec = registry.get(field)
        if spec is None:
            raise ConfigurationError(
                f"unregistered input field {field!r}; add it to FIELD_REGISTRY first"
            )
        return _CompiledField(
            key=field, source=spec.source, default=spec.default, resolver=spec.resolver
        )

    key = field.get("key")
    if not key:
        raise ConfigurationError(f"input field config is missing 'key': {field!r}")
    source = field.get("from")
    spec = registry.get(key)

    if callable(source):
        return _CompiledField(key=key, resolver=source, default=field.get("default"))
    if spec is None and not source:
        raise ConfigurationError(
            f"unregistered input field {key!r}; register it or provide 'from'"
        )
    return _CompiledField(
        key=key,
        source=source or (spec.source if spec else None),
        default=field["default"] if "default" in field else (spec.default if spec else None),
        resolver=spec.resolver if spec and not source else None,
    )


def create_build_input(
    fields: Sequence[FieldRef],
    registry: Optional[Dict[str, FieldSpec]] = None,
) -> Callable[[ExecutionContext], Dict[str, Any]]:
    """Compile ``fields`` into a ``build_input(context)`` function.

    Each entry is a registered field name, or a dict with ``key`` and
    optional ``from`` (a job parameter name or a ``(context) -> value``
    callable) and ``default``. Unknown names raise
    :class:`~genflow.errors.ConfigurationError` immediately. At run time a
    resolver that raises is reported as :class:`~genflow.errors.InputBuildError`.
    """
    compiled: List[_CompiledField] = [
        _compile(field, registry if registry is not None else FIELD_REGISTRY)
        for field in fields
    ]

    def build_input(context: ExecutionContext) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for field in compiled:
            if field.resolver is not None:
                try:
                    value = field.resolver(context)
                except (KeyError, IndexError, TypeError, AttributeError) as exc:
                    raise InputBuildError(
                        f"cannot resolve input field {field.key!r}: {exc!r}"
                    ) from exc
            else:
                value = context.job_params.get(field.source) if field.source else None
            result[field.key] = field.default if value is None else value
        return result

    return build_input
