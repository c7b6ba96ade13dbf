"""Transition engine for workflow instances.

All functions here are pure: they take an instance snapshot and return a new
one, never mutating the input. The step list is rebuilt copy-on-write and
only the active index (plus, for a send-back, the rewound range) changes, so
"exactly one ACTIVE step while IN_PROGRESS" holds by construction.

Persistence, version checks and the completion hook live in the service
layer; ``replay`` reuses the same transitions to rebuild an instance from
its audit log.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from delivery_workflow import approvers
from delivery_workflow.db_models.enums import (
    REVIEW_ACTIONS,
    EntityType,
    InstanceStatus,
    Role,
    StepStatus,
    WorkflowActionType,
)
from delivery_workflow.errors import (
    ActionNotAllowed,
    CommentRequired,
    Forbidden,
    InstanceTerminal,
    InvalidSendBackTarget,
    NoActiveStep,
    StepAlreadyActed,
    UnresolvableApprover,
)
from delivery_workflow.models import (
    StepInstance,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowInstance,
    utcnow,
)

logger = logging.getLogger(__name__)

_CLEARED = dict(acted_by_id=None, acted_at=None, action=None, comment=None)

# Step states that mean someone already acted on the step in the current cycle.
ACTED_STEP_STATES = {
    StepStatus.APPROVED,
    StepStatus.REJECTED,
    StepStatus.CHANGES_REQUESTED,
    StepStatus.SENT_BACK,
}


def create_step_instances(definition: WorkflowDefinition) -> List[StepInstance]:
    """Deep-copy the definition steps into pending step instances."""
    return [
        StepInstance(**step.model_dump(), status=StepStatus.PENDING)
        for step in sorted(definition.steps, key=lambda s: s.order)
    ]


def new_instance(
    definition: WorkflowDefinition,
    entity_id: str,
    entity_type: EntityType,
    context: Optional[Dict[str, Any]] = None,
) -> WorkflowInstance:
    return WorkflowInstance(
        definition_id=definition.id,
        entity_id=entity_id,
        entity_type=entity_type,
        status=InstanceStatus.NOT_STARTED,
        context=dict(context or {}),
        steps=create_step_instances(definition),
    )


def initial_snapshot(instance: WorkflowInstance) -> WorkflowInstance:
    """The instance as it looked right after creation, for replay."""
    return instance.model_copy(update={
        "status": InstanceStatus.NOT_STARTED,
        "current_step_id": None,
        "steps": [step.model_copy(update=dict(status=StepStatus.PENDING, **_CLEARED))
                  for step in instance.steps],
        "updated_at": instance.created_at,
    })


def active_index(instance: WorkflowInstance) -> Optional[int]:
    for index, step in enumerate(instance.steps):
        if step.status == StepStatus.ACTIVE:
            return index
    return None


def active_step(instance: WorkflowInstance) -> Optional[StepInstance]:
    index = active_index(instance)
    return instance.steps[index] if index is not None else None


def step_index(instance: WorkflowInstance, step_id: str) -> Optional[int]:
    for index, step in enumerate(instance.steps):
        if step.id == step_id:
            return index
    return None


def _replace_step(steps: List[StepInstance], index: int, **changes) -> None:
    steps[index] = steps[index].model_copy(update=changes)


def _record(
    instance: WorkflowInstance,
    step: StepInstance,
    actor_id: str,
    action: WorkflowActionType,
    comment: Optional[str],
    now: datetime,
    metadata: Optional[Dict[str, Any]] = None,
) -> WorkflowAction:
    return WorkflowAction(
        instance_id=instance.id,
        step_id=step.id,
        actor_id=actor_id,
        action=action,
        comment=comment,
        metadata=metadata or {},
        created_at=now,
    )


def start(
    instance: WorkflowInstance, actor_id: str, now: Optional[datetime] = None
) -> Tuple[WorkflowInstance, Optional[WorkflowAction]]:
    """Activate the first step. Already-started instances come back unchanged."""
    if instance.status != InstanceStatus.NOT_STARTED:
        return instance, None
    if not instance.steps:
        raise NoActiveStep(f"Workflow instance {instance.id} has no steps to start.")

    now = now or utcnow()
    steps = list(instance.steps)
    _replace_step(steps, 0, status=StepStatus.ACTIVE, **_CLEARED)
    updated = instance.model_copy(update={
        "steps": steps,
        "status": InstanceStatus.IN_PROGRESS,
        "current_step_id": steps[0].id,
        "updated_at": now,
    })
    return updated, _record(updated, steps[0], actor_id, WorkflowActionType.START, None, now)


def ensure_step_not_acted(instance: WorkflowInstance, step_id: Optional[str]) -> None:
    """Fail distinctly when the step the caller was looking at has been handled."""
    if not step_id:
        return
    index = step_index(instance, step_id)
    if index is None:
        return
    step = instance.steps[index]
    if step.status in ACTED_STEP_STATES and step.acted_by_id:
        raise StepAlreadyActed(
            f"Step '{step.name}' was already handled by {step.acted_by_id}."
        )


def validate_action(
    instance: WorkflowInstance,
    actor_id: str,
    actor_role: Optional[Role],
    action: WorkflowActionType,
    comment: Optional[str] = None,
) -> int:
    """Run the checks that gate ``apply`` and return the active step index.

    Order matters: terminal state, active step, approver, allowed action,
    comment guard.
    """
    if instance.status != InstanceStatus.IN_PROGRESS:
        raise InstanceTerminal(
            f"Workflow instance {instance.id} is {instance.status.value} and cannot be actioned."
        )

    index = active_index(instance)
    if index is None:
        raise NoActiveStep(f"Workflow instance {instance.id} has no active step.")
    step = instance.steps[index]

    spec = approvers.resolve(step, instance.context)
    if not approvers.is_actor_eligible(spec, actor_id, actor_role):
        logger.warning(
            "Forbidden workflow action %s on instance %s step %s by %s (%s); approver is %s",
            action.value, instance.id, step.id, actor_id,
            actor_role.value if actor_role else None, spec.describe(),
        )
        raise Forbidden(f"You are not the approver for step '{step.name}'.")

    if action not in REVIEW_ACTIONS or action not in step.allowed_actions:
        raise ActionNotAllowed(f"Action {action.value} is not allowed on step '{step.name}'.")

    needs_comment = (
        (action == WorkflowActionType.REJECT and step.requires_comment_on_reject)
        or (action == WorkflowActionType.SEND_BACK and step.requires_comment_on_send_back)
    )
    if needs_comment and not (comment or "").strip():
        raise CommentRequired(f"A comment is required to {action.value.lower().replace('_', ' ')} this step.")

    return index


def transition(
    instance: WorkflowInstance,
    *,
    actor_id: str,
    action: WorkflowActionType,
    comment: Optional[str] = None,
    target_step_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[WorkflowInstance, WorkflowAction]:
    """Apply a review action to the active step without authorization checks."""
    index = active_index(instance)
    if index is None:
        raise NoActiveStep(f"Workflow instance {instance.id} has no active step.")

    now = now or utcnow()
    comment = comment.strip() if comment and comment.strip() else None
    steps = list(instance.steps)
    current = steps[index]
    acted = dict(acted_by_id=actor_id, acted_at=now, action=action, comment=comment)
    update: Dict[str, Any] = {"updated_at": now}
    metadata: Dict[str, Any] = {}

    if action == WorkflowActionType.APPROVE:
        _replace_step(steps, index, status=StepStatus.APPROVED, **acted)
        next_index = index + 1
        if next_index >= len(steps):
            update.update(status=InstanceStatus.COMPLETED, current_step_id=None)
        else:
            _replace_step(steps, next_index, status=StepStatus.ACTIVE, **_CLEARED)
            update.update(status=InstanceStatus.IN_PROGRESS, current_step_id=steps[next_index].id)

    elif action == WorkflowActionType.REJECT:
        _replace_step(steps, index, status=StepStatus.REJECTED, **acted)
        update.update(status=InstanceStatus.REJECTED, current_step_id=None)

    elif action == WorkflowActionType.SEND_BACK:
        if target_step_id is None and index == 0:
            # Nothing earlier to rewind to: the author has to rework the entity.
            return _request_change(instance, steps, index, actor_id, comment, now,
                                   {"requested_via": WorkflowActionType.SEND_BACK.value})

        target = index - 1 if target_step_id is None else step_index(instance, target_step_id)
        if target is None:
            raise InvalidSendBackTarget(f"Unknown send-back target step {target_step_id}.")
        if target >= index:
            raise InvalidSendBackTarget("A step can only be sent back to an earlier step.")

        for position in range(target + 1, len(steps)):
            if position == index:
                _replace_step(steps, position, status=StepStatus.SENT_BACK, **acted)
            else:
                _replace_step(steps, position, status=StepStatus.PENDING, **_CLEARED)
        _replace_step(steps, target, status=StepStatus.ACTIVE, **_CLEARED)
        update.update(status=InstanceStatus.IN_PROGRESS, current_step_id=steps[target].id)
        metadata["target_step_id"] = steps[target].id

    elif action == WorkflowActionType.REQUEST_CHANGE:
        return _request_change(instance, steps, index, actor_id, comment, now, metadata)

    else:
        raise ActionNotAllowed(f"Action {action.value} cannot be applied to a step.")

    update["steps"] = steps
    updated = instance.model_copy(update=update)
    return updated, _record(updated, current, actor_id, action, comment, now, metadata)


def _request_change(instance, steps, index, actor_id, comment, now, metadata):
    current = steps[index]
    _replace_step(steps, index, status=StepStatus.CHANGES_REQUESTED, acted_by_id=actor_id,
                  acted_at=now, action=WorkflowActionType.REQUEST_CHANGE, comment=comment)
    updated = instance.model_copy(update={
        "steps": steps,
        "status": InstanceStatus.CHANGES_REQUESTED,
        "current_step_id": current.id,
        "updated_at": now,
    })
    return updated, _record(updated, current, actor_id, WorkflowActionType.REQUEST_CHANGE,
                            comment, now, metadata)


def resubmit(
    instance: WorkflowInstance, actor_id: str, now: Optional[datetime] = None
) -> Tuple[WorkflowInstance, WorkflowAction]:
    """Re-activate the step that requested changes, leaving earlier steps alone."""
    if instance.status != InstanceStatus.CHANGES_REQUESTED:
        raise InstanceTerminal(
            f"Workflow instance {instance.id} is {instance.status.value}; only instances "
            f"with requested changes can be resubmitted."
        )
    index = step_index(instance, instance.current_step_id) if instance.current_step_id else None
    if index is None:
        raise NoActiveStep(f"Workflow instance {instance.id} has no step awaiting resubmission.")

    now = now or utcnow()
    steps = list(instance.steps)
    _replace_step(steps, index, status=StepStatus.ACTIVE, **_CLEARED)
    updated = instance.model_copy(update={
        "steps": steps,
        "status": InstanceStatus.IN_PROGRESS,
        "updated_at": now,
    })
    return updated, _record(updated, steps[index], actor_id, WorkflowActionType.RESUBMIT, None, now)


def available_actions(
    instance: WorkflowInstance, actor_id: str, actor_role: Optional[Role]
) -> List[WorkflowActionType]:
    """Actions the given actor could submit right now; empty when none."""
    if instance.status != InstanceStatus.IN_PROGRESS:
        return []
    step = active_step(instance)
    if step is None:
        return []
    try:
        spec = approvers.resolve(step, instance.context)
    except UnresolvableApprover:
        return []
    if not approvers.is_actor_eligible(spec, actor_id, actor_role):
        return []
    return [action for action in step.allowed_actions if action in REVIEW_ACTIONS]


def replay(instance: WorkflowInstance, actions: Iterable[WorkflowAction]) -> WorkflowInstance:
    """Rebuild an instance by folding its audit log over a NOT_STARTED snapshot."""
    current = instance
    for entry in sorted(actions, key=lambda a: a.sequence):
        if entry.action == WorkflowActionType.START:
            current, _ = start(current, entry.actor_id, now=entry.created_at)
        elif entry.action == WorkflowActionType.RESUBMIT:
            current, _ = resubmit(current, entry.actor_id, now=entry.created_at)
        else:
            current, _ = transition(
                current,
                actor_id=entry.actor_id,
                action=entry.action,
                comment=entry.comment,
                target_step_id=entry.metadata.get("target_step_id"),
                now=entry.created_at,
            )
    return current
