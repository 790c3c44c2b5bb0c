"""HTTP provider client driven by request templates in configuration."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Mapping, Optional
from urllib.parse import urlencode

import httpx

from ..errors import ProviderConfigurationError, ProviderError, ProviderNetworkError
from .base import ProviderClient, ProviderConfig, ProviderQueryConfig, ProviderResponse
from .mapping import extract_by_path, map_fields
from .templates import render_json_template, render_template

logger = logging.getLogger(__name__)

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class HttpProviderClient(ProviderClient):
    """Call providers described by :class:`ProviderConfig` over HTTP.

    Each call merges the provider's ``default_params`` with the call
    parameters and an ``apiKey`` (from config, else ``<PROVIDER>_API_KEY``),
    renders URL/header/body templates, sends the request and maps the JSON
    reply with the configured response mapping.
    """

    def __init__(
        self,
        providers: Mapping[str, ProviderConfig],
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ) -> None:
        self._providers = dict(providers)
        self._http = http_client
        self._timeout = timeout

    def _config(self, provider_id: str) -> ProviderConfig:
        config = self._providers.get(provider_id)
        if config is None:
            raise ProviderConfigurationError(f"Provider {provider_id!r} is not configured")
        return config

    def _params(self, config: ProviderConfig, params: Mapping[str, Any]) -> dict[str, Any]:
        merged = {**config.default_params, **params}
        api_key = config.api_key or os.getenv(f"{config.provider.upper()}_API_KEY")
        if not api_key:
            raise ProviderConfigurationError(
                f"No API key for provider {config.name!r}: set api_key or "
                f"{config.provider.upper()}_API_KEY"
            )
        merged["apiKey"] = api_key
        return merged

    async def submit(self, provider_id: str, params: dict[str, Any]) -> ProviderResponse:
        config = self._config(provider_id)
        merged = self._params(config, params)
        raw = await self._send(
            config.name,
            config.request_method,
            render_template(config.url_template, merged),
            render_json_template(config.headers_template, merged),
            render_json_template(config.body_template, merged)
            if config.body_template is not None
            else None,
        )
        return ProviderResponse(
            fields=map_fields(raw, config.response_mapping),
            raw=raw,
            provider=config.provider,
        )

    async def query(self, provider_id: str, fields: dict[str, Any]) -> ProviderResponse:
        config = self._config(provider_id)
        if not config.query_url_template:
            raise ProviderConfigurationError(
                f"Provider {provider_id!r} has no query_url_template"
            )
        merged = self._params(config, fields)
        headers_template = (
            config.query_headers_template
            if config.query_headers_template is not None
            else config.headers_template
        )
        raw = await self._send(
            config.name,
            config.query_method,
            render_template(config.query_url_template, merged),
            render_json_template(headers_template, merged),
            render_json_template(config.query_body_template, merged)
            if config.query_body_template is not None
            else None,
        )
        return ProviderResponse(
            fields=map_fields(raw, config.query_response_mapping),
            raw=raw,
            provider=config.provider,
        )

    async def get_query_config(self, provider_id: str) -> ProviderQueryConfig:
        return self._config(provider_id).query_config()

    async def _send(
        self,
        name: str,
        method: str,
        url: str,
        headers: dict[str, Any],
        body: Any,
    ) -> Any:
        method = method.upper()
        headers = {str(k): str(v) for k, v in (headers or {}).items()}
        content: Optional[str] = None
        if body is not None and method in ("POST", "PUT", "PATCH"):
            content_type = headers.get("Content-Type") or headers.get("content-type") or ""
            if _FORM_CONTENT_TYPE in content_type:
                content = urlencode({k: str(v) for k, v in body.items()})
            else:
                content = json.dumps(body)
                headers.setdefault("Content-Type", "application/json")

        logger.info(f"Calling provider {name}: {method} {url}")
        try:
            if self._http is not None:
                response = await self._http.request(
                    method, url, headers=headers, content=content, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(
                        method, url, headers=headers, content=content
                    )
        except httpx.TransportError as exc:
            raise ProviderNetworkError(f"{name}: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {"message": response.text}

        if response.status_code >= 500:
            raise ProviderNetworkError(
                f"{name}: HTTP {response.status_code} {_message(data)}".rstrip()
            )
        if response.is_error:
            raise ProviderError(
                _message(data) or f"{name}: API call failed with HTTP {response.status_code}"
            )
        return data


def _message(data: Any) -> str:
    for path in ("error.message", "error", "message"):
        value = extract_by_path(data, path)
        if isinstance(value, str) and value:
            return value
    return ""
