"""Persistence layer for onboarding workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import OnboardflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .models import (
    STAGE_ORDER,
    TERMINAL_STATUSES,
    DocumentRecord,
    DocumentStatus,
    ExceptionRecord,
    ExceptionType,
    ResolutionStatus,
    Severity,
    Stage,
    StepRecord,
    StepStatus,
    WorkflowInstance,
    WorkflowStatus,
)
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

_repository_instance: WorkflowRepository | None = None


def create_repository(
    database_url: Optional[str] = None, config: Optional[OnboardflowConfig] = None
) -> WorkflowRepository:
    """Build a new workflow repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``ONBOARDFLOW_DATABASE_URL``
    or ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("ONBOARDFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        return InMemoryWorkflowRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteWorkflowRepository(path)
    if database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available")
        return PostgresWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[OnboardflowConfig] = None
) -> WorkflowRepository:
    """Return the process-wide repository, creating it on first use.

    With ``database_url`` or ``config`` a separate repository is built and the
    shared one is left alone.
    """

    global _repository_instance
    if database_url is not None or config is not None:
        return create_repository(database_url, config)
    if _repository_instance is None:
        _repository_instance = create_repository()
    return _repository_instance


__all__ = [
    "STAGE_ORDER",
    "TERMINAL_STATUSES",
    "DocumentRecord",
    "DocumentStatus",
    "ExceptionRecord",
    "ExceptionType",
    "ResolutionStatus",
    "Severity",
    "Stage",
    "StepRecord",
    "StepStatus",
    "WorkflowInstance",
    "WorkflowStatus",
    "WorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "InMemoryWorkflowRepository",
    "create_repository",
    "get_repository",
]
