"""Provider client interface and configuration models."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, Field


class ProviderQueryConfig(BaseModel):
    """How to classify and map a provider's status-query responses.

    Conditions are boolean expressions over the mapped query fields, e.g.
    ``status == "succeed" || status == "completed"``. Mappings take a flat
    output name to a dotted path into the raw response.
    """

    success_condition: Optional[str] = None
    fail_condition: Optional[str] = None
    success_mapping: Optional[Dict[str, str]] = None
    fail_mapping: Optional[Dict[str, str]] = None


class ProviderConfig(BaseModel):
    """Request templates and mappings for one HTTP generation provider."""

    name: str
    provider: str = "custom"
    category: Optional[str] = None
    url_template: str
    request_method: str = "POST"
    headers_template: Dict[str, Any] = Field(default_factory=dict)
    body_template: Optional[Any] = None
    default_params: Dict[str, Any] = Field(default_factory=dict)
    response_mapping: Dict[str, str] = Field(default_factory=dict)
    api_key: Optional[str] = None

    query_url_template: Optional[str] = None
    query_method: str = "GET"
    query_headers_template: Optional[Dict[str, Any]] = None
    query_body_template: Optional[Any] = None
    query_response_mapping: Dict[str, str] = Field(default_factory=dict)

    query_success_condition: Optional[str] = None
    query_fail_condition: Optional[str] = None
    query_success_mapping: Optional[Dict[str, str]] = None
    query_fail_mapping: Optional[Dict[str, str]] = None

    def query_config(self) -> ProviderQueryConfig:
        return ProviderQueryConfig(
            success_condition=self.query_success_condition,
            fail_condition=self.query_fail_condition,
            success_mapping=self.query_success_mapping,
            fail_mapping=self.query_fail_mapping,
        )


class ProviderResponse(BaseModel):
    """A provider reply: fields mapped by the provider's response mapping plus
    the raw decoded body."""

    fields: Dict[str, Any] = Field(default_factory=dict)
    raw: Any = None
    provider: Optional[str] = None


class ProviderClient(Protocol):
    """Protocol for talking to external generation providers."""

    async def submit(self, provider_id: str, params: dict[str, Any]) -> ProviderResponse:
        """Send a generation request."""

    async def query(
        self, provider_id: str, fields: dict[str, Any]
    ) -> ProviderResponse:
        """Ask for the status of a previously submitted request."""

    async def get_query_config(self, provider_id: str) -> ProviderQueryConfig:
        """Return the provider's status classification config."""
