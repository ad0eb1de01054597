"""Workflow templates: which steps exist per stage, in what order."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from .config import OnboardflowConfig, load_config
from .errors import TemplateNotFound
from .persistence.models import Stage, StepRecord

logger = logging.getLogger(__name__)


class StepTemplate(BaseModel):
    """Blueprint for one step, copied into every new workflow."""

    key: str
    name: str
    stage: Stage
    description: str = ""
    integration_type: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    due_offset_days: Optional[int] = Field(
        default=None, description="Due date relative to the workflow start"
    )


class WorkflowTemplate(BaseModel):
    """Named, ordered list of step blueprints."""

    name: str
    description: str = ""
    expected_days: Optional[int] = Field(default=None, ge=0)
    steps: List[StepTemplate] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_keys(self) -> "WorkflowTemplate":
        seen: set[str] = set()
        for step in self.steps:
            if step.key in seen:
                raise ValueError(f"Duplicate step key '{step.key}' in template {self.name}")
            unknown = [dep for dep in step.depends_on if dep not in seen]
            if unknown:
                raise ValueError(
                    f"Step '{step.key}' depends on unknown or later steps: {unknown}"
                )
            seen.add(step.key)
        return self

    def instantiate(self, workflow_id: str, started_at: datetime) -> list[StepRecord]:
        """Create fresh step records for ``workflow_id``, keeping template order."""
        records: list[StepRecord] = []
        ids_by_key: Dict[str, str] = {}
        for order, blueprint in enumerate(self.steps):
            due_date = (
                started_at + timedelta(days=blueprint.due_offset_days)
                if blueprint.due_offset_days is not None
                else None
            )
            record = StepRecord(
                workflow_id=workflow_id,
                step_order=order,
                stage=blueprint.stage,
                name=blueprint.name,
                description=blueprint.description,
                integration_type=blueprint.integration_type,
                depends_on=[ids_by_key[dep] for dep in blueprint.depends_on],
                due_date=due_date,
            )
            ids_by_key[blueprint.key] = record.id
            records.append(record)
        return records


def _generic_steps() -> list[StepTemplate]:
    return [
        StepTemplate(
            key="offer-letter",
            name="Send Offer Letter",
            stage=Stage.PRE_BOARDING,
            description="Send offer letter for signature",
            integration_type="docusign",
            due_offset_days=2,
        ),
        StepTemplate(
            key="i9-form",
            name="Send I-9 Form",
            stage=Stage.PRE_BOARDING,
            description="Send I-9 Employment Eligibility form for signature",
            integration_type="docusign",
            due_offset_days=4,
        ),
        StepTemplate(
            key="welcome-email",
            name="Welcome Email",
            stage=Stage.DAY_1,
            description="Send welcome email",
            due_offset_days=7,
        ),
        StepTemplate(
            key="office-tour",
            name="Office Tour",
            stage=Stage.DAY_1,
            description="Conduct office tour",
            due_offset_days=7,
        ),
    ]


SOFTWARE_ENGINEER = WorkflowTemplate(
    name="software-engineer",
    description="Onboarding for engineering hires",
    steps=[
        StepTemplate(
            key="offer-letter",
            name="Send Offer Letter",
            stage=Stage.PRE_BOARDING,
            description="Send offer letter for signature",
            integration_type="docusign",
            due_offset_days=1,
        ),
        StepTemplate(
            key="i9-form",
            name="Send I-9 Form",
            stage=Stage.PRE_BOARDING,
            description="Send I-9 Employment Eligibility form for signature",
            integration_type="docusign",
            depends_on=["offer-letter"],
            due_offset_days=3,
        ),
        StepTemplate(
            key="w4-form",
            name="Send W-4 Form",
            stage=Stage.PRE_BOARDING,
            description="Send W-4 tax withholding form for signature",
            integration_type="docusign",
            depends_on=["offer-letter"],
            due_offset_days=3,
        ),
        StepTemplate(
            key="background-check",
            name="Initiate Background Check",
            stage=Stage.PRE_BOARDING,
            description="Start criminal and employment background check",
            integration_type="background-check",
            depends_on=["offer-letter"],
            due_offset_days=2,
        ),
        StepTemplate(
            key="order-equipment",
            name="Order Equipment",
            stage=Stage.PRE_BOARDING,
            description="Order laptop, monitor, keyboard, mouse",
            due_offset_days=3,
        ),
        StepTemplate(
            key="onboarding-documents",
            name="Fetch Onboarding Documents",
            stage=Stage.PRE_BOARDING,
            description="Retrieve employee handbook and policies",
            integration_type="doc-search",
            due_offset_days=4,
        ),
        StepTemplate(
            key="email-account",
            name="Create Email Account",
            stage=Stage.PRE_BOARDING,
            description="Setup company email and calendar access",
            due_offset_days=5,
        ),
        StepTemplate(
            key="dev-access",
            name="Setup Development Environment Access",
            stage=Stage.PRE_BOARDING,
            description="Create source control, issue tracker and wiki accounts",
            depends_on=["email-account"],
            due_offset_days=6,
        ),
        StepTemplate(
            key="welcome-email",
            name="Send Welcome Email",
            stage=Stage.DAY_1,
            description="Send welcome email with first day instructions",
            due_offset_days=7,
        ),
        StepTemplate(
            key="office-tour",
            name="Office Tour",
            stage=Stage.DAY_1,
            description="Conduct office tour and introductions",
            due_offset_days=7,
        ),
        StepTemplate(
            key="laptop-setup",
            name="IT Setup - Laptop Configuration",
            stage=Stage.DAY_1,
            description="Setup laptop with required software and tools",
            depends_on=["order-equipment"],
            due_offset_days=7,
        ),
        StepTemplate(
            key="access-card",
            name="Building Access Card",
            stage=Stage.DAY_1,
            description="Issue building access card and parking pass",
            due_offset_days=7,
        ),
        StepTemplate(
            key="benefits-enrollment",
            name="Benefits Enrollment",
            stage=Stage.WEEK_1,
            description="Complete benefits enrollment forms",
            integration_type="docusign",
            due_offset_days=10,
        ),
        StepTemplate(
            key="codebase-onboarding",
            name="Codebase Onboarding",
            stage=Stage.WEEK_1,
            description="Review codebase architecture and setup local environment",
            depends_on=["laptop-setup", "dev-access"],
            due_offset_days=11,
        ),
        StepTemplate(
            key="first-review",
            name="First Code Review",
            stage=Stage.WEEK_1,
            description="Submit first pull request and participate in code review",
            depends_on=["codebase-onboarding"],
            due_offset_days=12,
        ),
        StepTemplate(
            key="thirty-day-check-in",
            name="30-Day Check-in",
            stage=Stage.MONTH_1,
            description="Conduct 30-day check-in meeting with manager",
            due_offset_days=30,
        ),
        StepTemplate(
            key="goal-setting",
            name="Goal Setting Session",
            stage=Stage.MONTH_1,
            description="Set quarterly goals and expectations",
            due_offset_days=30,
        ),
    ],
)

GENERIC = WorkflowTemplate(
    name="generic",
    description="Baseline onboarding for any role",
    steps=_generic_steps(),
)

SALES_REPRESENTATIVE = WorkflowTemplate(
    name="sales-representative",
    description="Onboarding for sales hires",
    steps=_generic_steps()
    + [
        StepTemplate(
            key="crm-access",
            name="Provision CRM Access",
            stage=Stage.WEEK_1,
            description="Create CRM account and assign territory",
            due_offset_days=10,
        ),
    ],
)

MANAGER = WorkflowTemplate(
    name="manager",
    description="Onboarding for people managers",
    steps=_generic_steps()
    + [
        StepTemplate(
            key="team-introductions",
            name="Team Introductions",
            stage=Stage.WEEK_1,
            description="Meet direct reports one on one",
            due_offset_days=12,
        ),
        StepTemplate(
            key="thirty-day-check-in",
            name="30-Day Check-in",
            stage=Stage.MONTH_1,
            description="Conduct 30-day check-in meeting with skip-level manager",
            due_offset_days=30,
        ),
    ],
)

BUILTIN_TEMPLATES = (SOFTWARE_ENGINEER, GENERIC, SALES_REPRESENTATIVE, MANAGER)


class TemplateRegistry:
    """Lookup of workflow templates by name."""

    def __init__(self, templates: Optional[List[WorkflowTemplate]] = None) -> None:
        self._templates: Dict[str, WorkflowTemplate] = {}
        for template in templates or []:
            self.register(template)

    def register(self, template: WorkflowTemplate) -> None:
        if template.name in self._templates:
            logger.info(f"Replacing workflow template {template.name}")
        self._templates[template.name] = template

    def get(self, name: str) -> WorkflowTemplate:
        try:
            return self._templates[name]
        except KeyError:
            raise TemplateNotFound(
                f"Unknown workflow template: {name}", template=name
            ) from None

    def names(self) -> list[str]:
        return sorted(self._templates)

    def load_yaml(self, path: str | Path) -> list[str]:
        """Register every template defined in a YAML file.

        The file holds a ``templates`` list whose entries follow the
        :class:`WorkflowTemplate` schema.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        loaded = []
        for raw in data.get("templates", []):
            template = WorkflowTemplate.model_validate(raw)
            self.register(template)
            loaded.append(template.name)
        logger.debug(f"Loaded templates {loaded} from {path}")
        return loaded


def get_template_registry(config: Optional[OnboardflowConfig] = None) -> TemplateRegistry:
    """Registry with the built-in templates plus any configured YAML file."""

    config = config or load_config()
    registry = TemplateRegistry(list(BUILTIN_TEMPLATES))
    if config.templates_path:
        registry.load_yaml(config.templates_path)
    return registry


__all__ = [
    "BUILTIN_TEMPLATES",
    "StepTemplate",
    "TemplateRegistry",
    "WorkflowTemplate",
    "get_template_registry",
]
