"""Onboardflow: staged onboarding workflows with progress tracking."""

from .config import OnboardflowConfig, load_config
from .contracts import ProgressSnapshot, StepCommandResult, WorkflowDetails
from .engine import WorkflowEngine
from .errors import (
    DuplicateWorkflow,
    InvalidTransition,
    NotFound,
    OnboardingError,
    PersistenceError,
    TemplateNotFound,
    ValidationError,
)
from .persistence import create_repository, get_repository
from .progress import ProgressCalculator
from .state_machine import StepStateMachine
from .templates import TemplateRegistry, get_template_registry

__version__ = "0.1.0"
__all__ = [
    "DuplicateWorkflow",
    "InvalidTransition",
    "NotFound",
    "OnboardflowConfig",
    "OnboardingError",
    "PersistenceError",
    "ProgressCalculator",
    "ProgressSnapshot",
    "StepCommandResult",
    "StepStateMachine",
    "TemplateNotFound",
    "TemplateRegistry",
    "ValidationError",
    "WorkflowDetails",
    "WorkflowEngine",
    "create_repository",
    "get_repository",
    "get_template_registry",
    "load_config",
]
