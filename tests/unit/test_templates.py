from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from onboardflow.config import OnboardflowConfig
from onboardflow.errors import TemplateNotFound
from onboardflow.persistence.models import Stage, StepStatus
from onboardflow.templates import (
    BUILTIN_TEMPLATES,
    StepTemplate,
    TemplateRegistry,
    WorkflowTemplate,
    get_template_registry,
)

START = datetime(2024, 3, 1, tzinfo=timezone.utc)


def test_builtin_registry_names():
    registry = get_template_registry(OnboardflowConfig())
    assert registry.names() == ["generic", "manager", "sales-representative", "software-engineer"]
    assert len(BUILTIN_TEMPLATES) == 4


def test_unknown_template_raises():
    registry = TemplateRegistry(list(BUILTIN_TEMPLATES))
    with pytest.raises(TemplateNotFound) as exc_info:
        registry.get("astronaut")
    assert exc_info.value.code == "template_not_found"


def test_instantiate_keeps_order_and_resolves_dependencies():
    template = TemplateRegistry(list(BUILTIN_TEMPLATES)).get("software-engineer")
    steps = template.instantiate("wf-1", START)

    assert [s.step_order for s in steps] == list(range(len(template.steps)))
    assert all(s.workflow_id == "wf-1" and s.status == StepStatus.PENDING for s in steps)
    assert len({s.id for s in steps}) == len(steps)

    by_name = {s.name: s for s in steps}
    offer = by_name["Send Offer Letter"]
    assert offer.integration_type == "docusign"
    assert offer.due_date == START + timedelta(days=1)
    assert by_name["Send I-9 Form"].depends_on == [offer.id]
    assert {s.stage for s in steps} == set(Stage)


def test_instantiate_twice_gives_fresh_ids():
    template = TemplateRegistry(list(BUILTIN_TEMPLATES)).get("generic")
    first = template.instantiate("wf-1", START)
    second = template.instantiate("wf-2", START)
    assert not {s.id for s in first} & {s.id for s in second}


def test_template_rejects_forward_dependencies():
    with pytest.raises(PydanticValidationError):
        WorkflowTemplate(
            name="broken",
            steps=[
                StepTemplate(key="a", name="A", stage=Stage.DAY_1, depends_on=["b"]),
                StepTemplate(key="b", name="B", stage=Stage.DAY_1),
            ],
        )


def test_template_rejects_duplicate_keys():
    with pytest.raises(PydanticValidationError):
        WorkflowTemplate(
            name="broken",
            steps=[
                StepTemplate(key="a", name="A", stage=Stage.DAY_1),
                StepTemplate(key="a", name="A again", stage=Stage.WEEK_1),
            ],
        )


def test_load_yaml_registers_templates(tmp_path):
    path = tmp_path / "templates.yaml"
    path.write_text(
        """
templates:
  - name: intern
    description: Summer interns
    expected_days: 14
    steps:
      - key: laptop
        name: Loan Laptop
        stage: day-1
        due_offset_days: 1
      - key: mentor
        name: Assign Mentor
        stage: week-1
        depends_on: [laptop]
"""
    )
    config = OnboardflowConfig(templates_path=str(path))

    registry = get_template_registry(config)

    assert "intern" in registry.names()
    intern = registry.get("intern")
    assert intern.expected_days == 14
    assert [s.stage for s in intern.steps] == [Stage.DAY_1, Stage.WEEK_1]
