"""Persistence layer for genflow jobs and tasks."""

from __future__ import annotations

import os
from typing import Optional

from ..config import GenflowConfig, load_config
from .inmemory import InMemoryJobRepository
from .models import Job, JobFilter, Task
from .repository import JobRepository
from .sqlite import SQLiteJobRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresJobRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresJobRepository = None  # type: ignore

_repository_instance: JobRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[GenflowConfig] = None
) -> JobRepository:
    """Factory function to obtain a job repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``GENFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("GENFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryJobRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteJobRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresJobRepository is None:
            raise RuntimeError("Postgres support not available (install asyncpg)")
        _repository_instance = PostgresJobRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "Job",
    "JobFilter",
    "Task",
    "JobRepository",
    "InMemoryJobRepository",
    "SQLiteJobRepository",
    "PostgresJobRepository",
    "get_repository",
]
