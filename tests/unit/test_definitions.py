import pytest

from delivery_workflow.db_models.enums import (
    REVIEW_ACTIONS,
    ApproverType,
    DynamicApproverType,
    Role,
    WorkflowActionType,
)
from delivery_workflow.definitions import build_definition, normalize_steps
from delivery_workflow.errors import EmptyDefinition, InvalidDefinition
from delivery_workflow.models import StepDefinitionInput, WorkflowDefinitionCreateRequest


def test_build_definition_normalizes_steps(definition_request):
    definition = build_definition(definition_request)

    assert definition.version == 1
    assert definition.is_active is True
    assert [s.order for s in definition.steps] == [1, 2, 3]
    pm, pjm, eng = definition.steps
    assert pm.assignee_role == Role.PM
    assert pjm.assignee_role == Role.PM
    assert pjm.approver_role is None
    assert eng.assignee_role == Role.ENGINEER
    assert list(pm.allowed_actions) == list(REVIEW_ACTIONS)
    assert WorkflowActionType.REJECT not in eng.allowed_actions


def test_empty_definition_is_rejected():
    with pytest.raises(EmptyDefinition):
        build_definition(WorkflowDefinitionCreateRequest(name="Nothing", steps=[]))


def test_blank_name_is_rejected(definition_request):
    with pytest.raises(InvalidDefinition, match="name"):
        build_definition(definition_request.model_copy(update={"name": "   "}))


def test_steps_are_sorted_by_explicit_order():
    steps = normalize_steps([
        StepDefinitionInput(name="Second", order=20, approver_role=Role.ENGINEER),
        StepDefinitionInput(name="First", order=10, approver_role=Role.PM),
    ])

    assert [s.name for s in steps] == ["First", "Second"]


def test_duplicate_orders_are_rejected():
    with pytest.raises(InvalidDefinition, match="unique"):
        normalize_steps([
            StepDefinitionInput(name="A", order=1, approver_role=Role.PM),
            StepDefinitionInput(name="B", order=1, approver_role=Role.PM),
        ])


def test_approver_type_is_inferred_from_dynamic_type():
    (step,) = normalize_steps([
        StepDefinitionInput(name="Dev check", dynamic_approver_type=DynamicApproverType.TASK_ASSIGNED_DEVELOPER),
    ])

    assert step.approver_type == ApproverType.DYNAMIC
    assert step.assignee_role == Role.DEVELOPER


def test_role_step_accepts_assignee_role_as_approver():
    (step,) = normalize_steps([StepDefinitionInput(name="VP sign-off", assignee_role=Role.VP)])

    assert step.approver_type == ApproverType.ROLE
    assert step.approver_role == Role.VP


@pytest.mark.parametrize("step", [
    StepDefinitionInput(name="No approver", approver_type=ApproverType.ROLE),
    StepDefinitionInput(name="No tag", approver_type=ApproverType.DYNAMIC),
    StepDefinitionInput(name="Both", approver_type=ApproverType.DYNAMIC, approver_role=Role.PM,
                        dynamic_approver_type=DynamicApproverType.ENGINEERING_TEAM),
    StepDefinitionInput(name="Mixed", approver_type=ApproverType.ROLE, approver_role=Role.PM,
                        dynamic_approver_type=DynamicApproverType.ENGINEERING_TEAM),
    StepDefinitionInput(name="   ", approver_role=Role.PM),
])
def test_malformed_steps_are_rejected(step):
    with pytest.raises(InvalidDefinition):
        normalize_steps([step])


def test_lifecycle_actions_cannot_be_allowed():
    with pytest.raises(InvalidDefinition, match="unsupported"):
        normalize_steps([
            StepDefinitionInput(name="Odd", approver_role=Role.PM, allowed_actions=[WorkflowActionType.START]),
        ])
