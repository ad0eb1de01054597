"""Integration providers keyed by ``integration_type``."""

from __future__ import annotations

from typing import Dict

from .base import (
    BaseIntegration,
    IntegrationDocument,
    IntegrationError,
    IntegrationRequest,
    IntegrationResult,
)
from .mock import (
    MockBackgroundCheckIntegration,
    MockDocSearchIntegration,
    MockDocuSignIntegration,
)


def get_integrations(*providers: BaseIntegration) -> Dict[str, BaseIntegration]:
    """Return providers keyed by type.

    The mock providers are registered by default; any ``providers`` passed in
    replace the default for their type.
    """

    registry: Dict[str, BaseIntegration] = {
        p.integration_type: p
        for p in (
            MockDocuSignIntegration(),
            MockBackgroundCheckIntegration(),
            MockDocSearchIntegration(),
        )
    }
    for provider in providers:
        registry[provider.integration_type] = provider
    return registry


__all__ = [
    "BaseIntegration",
    "IntegrationDocument",
    "IntegrationError",
    "IntegrationRequest",
    "IntegrationResult",
    "MockBackgroundCheckIntegration",
    "MockDocSearchIntegration",
    "MockDocuSignIntegration",
    "get_integrations",
]
