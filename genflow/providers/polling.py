"""Submit a request to a generation provider and poll until it settles.

Providers either answer synchronously (the submit response is the result)
or hand back a task identifier that must be polled. Poll responses are
classified with the provider's configured success/fail conditions, so
status vocabularies ("succeed", "COMPLETED", 2) live in configuration.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
from pydantic import BaseModel, Field

from ..constants import TASK_ID_KEYS
from ..errors import (
    PollTimeoutError,
    ProviderConfigurationError,
    ProviderFailedError,
    ProviderNetworkError,
    TooManyNetworkErrorsError,
)
from .base import ProviderClient, ProviderQueryConfig, ProviderResponse
from .conditions import evaluate_condition
from .mapping import extract_by_path, map_fields

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Union[None, Awaitable[None]]]

# Failures that count against ``max_network_errors`` instead of aborting.
NETWORK_ERRORS = (
    ProviderNetworkError,
    httpx.TransportError,
    OSError,
    asyncio.TimeoutError,
)

_FALLBACK_ERROR_PATHS = ("message", "data.message", "data.fail_reason")


class PollOptions(BaseModel):
    """Tuning for a single submit-and-poll call."""

    interval_ms: int = 3000
    max_duration_ms: int = 300_000
    max_network_errors: int = 5
    on_progress: Optional[ProgressCallback] = None
    progress_start: int = 30
    progress_end: int = 90
    log_tag: str = "poll"


class PollResult(BaseModel):
    """Outcome of a successful submit-and-poll call."""

    data: dict[str, Any] = Field(default_factory=dict)
    task_id: Optional[str] = None
    polls: int = 0
    submit: ProviderResponse


def _find_task_id(fields: dict[str, Any]) -> Optional[str]:
    for key in TASK_ID_KEYS:
        value = fields.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _error_text(
    flat: dict[str, Any], raw: Any, fail_mapping: Optional[dict[str, str]]
) -> str:
    if fail_mapping:
        info = map_fields(raw, fail_mapping)
        message = info.get("error") or info.get("message") or info.get("fail_reason")
    else:
        message = flat.get("error") or flat.get("message")
        for path in _FALLBACK_ERROR_PATHS:
            if message:
                break
            value = extract_by_path(raw, path)
            message = value if isinstance(value, str) else None
    return str(message) if message else "unknown error"


class ProviderPoller:
    """Runs the submit-and-poll protocol against a :class:`ProviderClient`.

    ``clock`` returns seconds and ``sleep`` awaits seconds; both can be
    replaced to drive the loop on a virtual clock.
    """

    def __init__(
        self,
        client: ProviderClient,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._clock = clock
        self._sleep = sleep

    async def submit_and_poll(
        self,
        provider_id: str,
        submit_params: dict[str, Any],
        options: Optional[PollOptions] = None,
    ) -> PollResult:
        options = options or PollOptions()
        tag = options.log_tag

        submitted = await self._client.submit(provider_id, submit_params)
        query_config = await self._client.get_query_config(provider_id)

        task_id = _find_task_id(submitted.fields)
        if task_id is None:
            # Synchronous provider: the submit response is already final.
            if query_config.success_mapping and submitted.raw is not None:
                data = map_fields(submitted.raw, query_config.success_mapping)
            else:
                data = dict(submitted.fields)
            logger.info(f"[{tag}] {provider_id} answered synchronously")
            return PollResult(data=data, polls=0, submit=submitted)

        if not query_config.success_condition and not query_config.fail_condition:
            raise ProviderConfigurationError(
                f"Provider {provider_id!r} has neither a success nor a fail "
                "condition configured; cannot classify async task status"
            )

        return await self._poll(provider_id, task_id, submitted, query_config, options)

    async def _poll(
        self,
        provider_id: str,
        task_id: str,
        submitted: ProviderResponse,
        query_config: ProviderQueryConfig,
        options: PollOptions,
    ) -> PollResult:
        tag = options.log_tag
        query_fields = dict(submitted.fields)
        started = self._clock()
        network_errors = 0
        polls = 0

        logger.info(f"[{tag}] {provider_id} accepted task_id={task_id}, polling")

        while True:
            await self._sleep(options.interval_ms / 1000)
            elapsed_ms = (self._clock() - started) * 1000

            if elapsed_ms > options.max_duration_ms:
                raise PollTimeoutError(task_id, elapsed_ms / 1000)

            if options.on_progress is not None:
                await self._report(options, elapsed_ms)

            polls += 1
            try:
                response = await self._client.query(provider_id, query_fields)
            except NETWORK_ERRORS as exc:
                network_errors += 1
                logger.warning(
                    f"[{tag}] query {polls} for task_id={task_id} failed "
                    f"({network_errors}/{options.max_network_errors}): {exc}"
                )
                if network_errors >= options.max_network_errors:
                    raise TooManyNetworkErrorsError(network_errors, exc) from exc
                continue
            network_errors = 0

            flat = dict(response.fields)
            if not flat and isinstance(response.raw, dict):
                flat = dict(response.raw)
            raw = response.raw if response.raw is not None else flat

            succeeded = evaluate_condition(flat, query_config.success_condition)
            failed = not succeeded and evaluate_condition(
                flat, query_config.fail_condition
            )
            state = "success" if succeeded else "failed" if failed else "pending"
            logger.info(
                f"[{tag}] query {polls} for task_id={task_id}: {state}, "
                f"elapsed={round(elapsed_ms / 1000)}s"
            )

            if succeeded:
                if query_config.success_mapping:
                    data = map_fields(raw, query_config.success_mapping)
                else:
                    data = flat
                return PollResult(
                    data=data, task_id=task_id, polls=polls, submit=submitted
                )
            if failed:
                raise ProviderFailedError(
                    _error_text(flat, raw, query_config.fail_mapping), task_id
                )

    async def _report(self, options: PollOptions, elapsed_ms: float) -> None:
        ratio = min(elapsed_ms / options.max_duration_ms, 1) if options.max_duration_ms else 1
        span = options.progress_end - options.progress_start
        progress = min(round(options.progress_start + ratio * span), options.progress_end)
        outcome = options.on_progress(progress)
        if inspect.isawaitable(outcome):
            await outcome


async def submit_and_poll(
    client: ProviderClient,
    provider_id: str,
    submit_params: dict[str, Any],
    options: Optional[PollOptions] = None,
) -> PollResult:
    """Submit ``submit_params`` to ``provider_id`` and wait for the result.

    Raises:
        ProviderFailedError: the provider reported failure.
        PollTimeoutError: ``max_duration_ms`` elapsed first.
        TooManyNetworkErrorsError: ``max_network_errors`` consecutive
            transport failures while polling.
        ProviderConfigurationError: async provider without conditions.
    """
    return await ProviderPoller(client).submit_and_poll(
        provider_id, submit_params, options
    )
