"""External generation provider access."""

from __future__ import annotations

from .base import ProviderClient, ProviderConfig, ProviderQueryConfig, ProviderResponse
from .conditions import ExpressionError, compile_expression, evaluate_condition
from .http import HttpProviderClient
from .mapping import UNDEFINED, extract_by_path, map_fields
from .polling import PollOptions, PollResult, ProviderPoller, submit_and_poll

__all__ = [
    "ProviderClient",
    "ProviderConfig",
    "ProviderQueryConfig",
    "ProviderResponse",
    "HttpProviderClient",
    "ExpressionError",
    "compile_expression",
    "evaluate_condition",
    "UNDEFINED",
    "extract_by_path",
    "map_fields",
    "PollOptions",
    "PollResult",
    "ProviderPoller",
    "submit_and_poll",
]
