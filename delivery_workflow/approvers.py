"""Approver resolution.

A step is bound either to a role or to a dynamic approver computed from the
instance context. Resolution is a pure function of (step, context) and is
repeated on every action attempt, because facts such as the assigned
developer can change after the instance was created.
"""

from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import BaseModel

from delivery_workflow.db_models.enums import ApproverType, DynamicApproverType, Role
from delivery_workflow.errors import UnresolvableApprover
from delivery_workflow.models import StepDefinition

PROJECT_MANAGER_KEY = "project_manager_id"
ASSIGNED_DEVELOPER_KEY = "assigned_developer_id"

# Role label shown to users for dynamic steps when the definition omits one.
DYNAMIC_ASSIGNEE_ROLES: Dict[DynamicApproverType, Role] = {
    DynamicApproverType.ENGINEERING_TEAM: Role.ENGINEER,
    DynamicApproverType.TASK_PROJECT_MANAGER: Role.PROJECT_MANAGER,
    DynamicApproverType.TASK_PM: Role.PM,
    DynamicApproverType.TASK_ASSIGNED_DEVELOPER: Role.DEVELOPER,
}


class ApproverKind(str, Enum):
    ROLE = "ROLE"
    IDENTITY = "IDENTITY"


class ApproverSpec(BaseModel):
    kind: ApproverKind
    role: Optional[Role] = None
    user_id: Optional[str] = None

    @classmethod
    def for_role(cls, role: Role) -> "ApproverSpec":
        return cls(kind=ApproverKind.ROLE, role=role)

    @classmethod
    def for_user(cls, user_id: str) -> "ApproverSpec":
        return cls(kind=ApproverKind.IDENTITY, user_id=user_id)

    def describe(self) -> str:
        if self.kind == ApproverKind.ROLE:
            return f"role {self.role.value}"
        return f"user {self.user_id}"


def _context_identity(context: Mapping[str, Any], key: str, step: StepDefinition) -> ApproverSpec:
    value = context.get(key)
    if value is None or not str(value).strip():
        raise UnresolvableApprover(
            f"Step '{step.name}' needs '{key}' in the workflow context before it can be actioned."
        )
    return ApproverSpec.for_user(str(value))


def _engineering_team(step: StepDefinition, context: Mapping[str, Any]) -> ApproverSpec:
    return ApproverSpec.for_role(Role.ENGINEER)


def _task_project_manager(step: StepDefinition, context: Mapping[str, Any]) -> ApproverSpec:
    return _context_identity(context, PROJECT_MANAGER_KEY, step)


def _task_assigned_developer(step: StepDefinition, context: Mapping[str, Any]) -> ApproverSpec:
    return _context_identity(context, ASSIGNED_DEVELOPER_KEY, step)


DYNAMIC_RESOLVERS: Dict[DynamicApproverType, Callable[[StepDefinition, Mapping[str, Any]], ApproverSpec]] = {
    DynamicApproverType.ENGINEERING_TEAM: _engineering_team,
    DynamicApproverType.TASK_PROJECT_MANAGER: _task_project_manager,
    DynamicApproverType.TASK_PM: _task_project_manager,
    DynamicApproverType.TASK_ASSIGNED_DEVELOPER: _task_assigned_developer,
}


def resolve(step: StepDefinition, context: Optional[Mapping[str, Any]] = None) -> ApproverSpec:
    """Resolve who may act on ``step`` given the instance context.

    Raises:
        UnresolvableApprover: a dynamic lookup's context field is missing, or
            the step is misconfigured.
    """
    context = context or {}
    if step.approver_type == ApproverType.ROLE:
        if step.approver_role is None:
            raise UnresolvableApprover(f"Step '{step.name}' has no approver role.")
        return ApproverSpec.for_role(step.approver_role)

    resolver = DYNAMIC_RESOLVERS.get(step.dynamic_approver_type)
    if resolver is None:
        raise UnresolvableApprover(f"Step '{step.name}' has no dynamic approver type.")
    return resolver(step, context)


def is_actor_eligible(spec: ApproverSpec, actor_id: str, actor_role: Optional[Role]) -> bool:
    if spec.kind == ApproverKind.ROLE:
        return actor_role is not None and Role(actor_role) == spec.role
    return actor_id == spec.user_id
