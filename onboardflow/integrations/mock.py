"""Mock providers that simulate the external onboarding systems."""

from __future__ import annotations

import abc
import uuid
from typing import Dict, Optional

from .base import (
    BaseIntegration,
    IntegrationDocument,
    IntegrationError,
    IntegrationRequest,
    IntegrationResult,
)


class MockIntegration(BaseIntegration):
    """Shared behaviour: optional forced failure and a log of performed actions.

    A request repeating an ``idempotency_key`` that already succeeded gets the
    stored result back without acting again, like the real providers.
    """

    def __init__(self, fail_with: Optional[str] = None) -> None:
        self.fail_with = fail_with
        self.calls: list[IntegrationRequest] = []
        self._results: Dict[str, IntegrationResult] = {}

    async def execute(self, request: IntegrationRequest) -> IntegrationResult:
        previous = self._results.get(request.idempotency_key)
        if previous is not None:
            return previous
        self.calls.append(request)
        if self.fail_with:
            raise IntegrationError(self.fail_with)
        result = self._respond(request)
        self._results[request.idempotency_key] = result
        return result

    @abc.abstractmethod
    def _respond(self, request: IntegrationRequest) -> IntegrationResult:
        """Build the provider response for a new request."""


class MockDocuSignIntegration(MockIntegration):
    """Sends an envelope and reports the generated document."""

    integration_type = "docusign"

    def _respond(self, request: IntegrationRequest) -> IntegrationResult:
        document_type = request.parameters.get("document_type", "offer-letter")
        envelope_id = f"env-{uuid.uuid4().hex[:12]}"
        return IntegrationResult(
            external_id=envelope_id,
            documents=[
                IntegrationDocument(
                    document_name=f"{document_type}.pdf",
                    document_type=document_type,
                    file_type="pdf",
                    file_size_bytes=48_000,
                )
            ],
            details={"envelope_id": envelope_id, "status": "sent"},
        )


class MockBackgroundCheckIntegration(MockIntegration):
    """Initiates a check; results arrive later, so the step stays open."""

    integration_type = "background-check"

    def _respond(self, request: IntegrationRequest) -> IntegrationResult:
        check_id = f"chk-{uuid.uuid4().hex[:12]}"
        return IntegrationResult(
            external_id=check_id,
            completed=False,
            details={
                "check_id": check_id,
                "status": "pending",
                "check_types": request.parameters.get(
                    "check_types", ["criminal", "employment"]
                ),
            },
        )


class MockDocSearchIntegration(MockIntegration):
    """Finds the standard onboarding documents."""

    integration_type = "doc-search"

    def _respond(self, request: IntegrationRequest) -> IntegrationResult:
        documents = [
            IntegrationDocument(
                document_name="Employee Handbook",
                document_type="handbook",
                file_size_bytes=1_200_000,
            ),
            IntegrationDocument(
                document_name="Code of Conduct",
                document_type="policy",
                file_size_bytes=250_000,
            ),
        ]
        return IntegrationResult(
            documents=documents,
            details={
                "query": request.parameters.get("query", "onboarding"),
                "total_count": len(documents),
            },
        )
