"""Base interface for external systems touched by onboarding steps."""

from __future__ import annotations

import abc
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class IntegrationError(Exception):
    """An automated integration action failed."""


class IntegrationRequest(BaseModel):
    """Context handed to a provider when a step triggers it."""

    workflow_id: str
    step_id: str
    employee_id: str
    integration_type: str
    idempotency_key: str = Field(
        description="Stable per trigger attempt; providers must not act twice for one key"
    )
    parameters: Dict[str, Any] = Field(default_factory=dict)


class IntegrationDocument(BaseModel):
    """Document produced or located by a provider."""

    document_name: str
    document_type: str
    file_type: str = "pdf"
    file_size_bytes: int = Field(default=0, ge=0)


class IntegrationResult(BaseModel):
    """Provider response.

    ``completed`` tells the engine whether the step is done or still waiting
    on the external system.
    """

    external_id: Optional[str] = None
    completed: bool = True
    documents: List[IntegrationDocument] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)


class BaseIntegration(metaclass=abc.ABCMeta):
    """Abstract provider for one ``integration_type``."""

    integration_type: str

    @abc.abstractmethod
    async def execute(self, request: IntegrationRequest) -> IntegrationResult:
        """Run the integration action.

        Raises:
            IntegrationError: If the external system rejected or failed the call.
        """
        raise NotImplementedError
