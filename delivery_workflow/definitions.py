"""Validation and normalisation of workflow definitions.

Definitions are immutable once stored. Editing one produces a new
definition carrying the next version number, so instances that already copied
the old steps keep running against their own snapshot.
"""

from typing import List, Optional

from delivery_workflow.approvers import DYNAMIC_ASSIGNEE_ROLES
from delivery_workflow.db_models.enums import REVIEW_ACTIONS, ApproverType
from delivery_workflow.errors import EmptyDefinition, InvalidDefinition
from delivery_workflow.models import (
    StepDefinition,
    StepDefinitionInput,
    WorkflowDefinition,
    WorkflowDefinitionCreateRequest,
)


def _normalize_actions(step: StepDefinitionInput):
    if step.allowed_actions is None:
        return list(REVIEW_ACTIONS)
    actions = []
    for action in step.allowed_actions:
        if action not in REVIEW_ACTIONS:
            raise InvalidDefinition(f"Step '{step.name}' lists unsupported action {action.value}.")
        if action not in actions:
            actions.append(action)
    if not actions:
        raise InvalidDefinition(f"Step '{step.name}' requires at least one supported action.")
    return actions


def _normalize_step(step: StepDefinitionInput, position: int) -> StepDefinition:
    name = (step.name or "").strip()
    if not name:
        raise InvalidDefinition("Workflow step requires a name.")

    approver_type = step.approver_type
    if approver_type is None:
        approver_type = ApproverType.DYNAMIC if step.dynamic_approver_type else ApproverType.ROLE

    if approver_type == ApproverType.ROLE:
        approver_role = step.approver_role or step.assignee_role
        if approver_role is None:
            raise InvalidDefinition(f"Step '{name}' requires an approver role.")
        if step.dynamic_approver_type is not None:
            raise InvalidDefinition(f"Step '{name}' is role-bound and cannot name a dynamic approver.")
        assignee_role = step.assignee_role or approver_role
        dynamic_approver_type = None
    else:
        if step.dynamic_approver_type is None:
            raise InvalidDefinition(f"Step '{name}' requires a dynamic approver type.")
        if step.approver_role is not None:
            raise InvalidDefinition(f"Step '{name}' is dynamic and cannot name an approver role.")
        approver_role = None
        dynamic_approver_type = step.dynamic_approver_type
        assignee_role = step.assignee_role or DYNAMIC_ASSIGNEE_ROLES[dynamic_approver_type]

    values = dict(
        name=name,
        description=step.description.strip() if step.description else None,
        order=step.order if step.order is not None else position + 1,
        assignee_role=assignee_role,
        approver_type=approver_type,
        approver_role=approver_role,
        dynamic_approver_type=dynamic_approver_type,
        requires_comment_on_reject=step.requires_comment_on_reject,
        requires_comment_on_send_back=step.requires_comment_on_send_back,
        allowed_actions=_normalize_actions(step),
    )
    if step.id:
        values["id"] = step.id
    return StepDefinition(**values)


def normalize_steps(step_inputs: List[StepDefinitionInput]) -> List[StepDefinition]:
    if not step_inputs:
        raise EmptyDefinition("Workflow definition requires at least one step.")

    steps = [_normalize_step(step, index) for index, step in enumerate(step_inputs)]
    steps.sort(key=lambda s: s.order)

    orders = [s.order for s in steps]
    if len(set(orders)) != len(orders):
        raise InvalidDefinition("Step orders must be unique within a definition.")
    ids = [s.id for s in steps]
    if len(set(ids)) != len(ids):
        raise InvalidDefinition("Step ids must be unique within a definition.")
    return steps


def build_definition(
    request: WorkflowDefinitionCreateRequest,
    *,
    version: int = 1,
    previous_version_id: Optional[str] = None,
) -> WorkflowDefinition:
    """Validate a definition request into a storable definition.

    Raises:
        EmptyDefinition: no steps were given
        InvalidDefinition: any other shape problem
    """
    name = (request.name or "").strip()
    if not name:
        raise InvalidDefinition("Definition name cannot be empty.")

    return WorkflowDefinition(
        name=name,
        description=request.description or "",
        entity_type=request.entity_type,
        is_active=request.is_active,
        version=version,
        previous_version_id=previous_version_id,
        steps=normalize_steps(request.steps),
    )
