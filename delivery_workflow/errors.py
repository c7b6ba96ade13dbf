"""Failure taxonomy surfaced by the workflow engine and package pipeline.

Every error carries the HTTP status the API should answer with and a stable
``code`` that clients can switch on. Nothing here is retried by the engine.
"""

from typing import Optional


class WorkflowError(Exception):
    status_code = 400
    code = "workflow_error"

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


# Validation: rejected synchronously, nothing persisted.

class InvalidDefinition(WorkflowError):
    code = "invalid_definition"


class EmptyDefinition(InvalidDefinition):
    code = "empty_definition"


class CommentRequired(WorkflowError):
    code = "comment_required"


class InvalidSendBackTarget(WorkflowError):
    code = "invalid_send_back_target"


# Authorization

class Forbidden(WorkflowError):
    status_code = 403
    code = "forbidden"


# Lookup

class NotFoundError(WorkflowError):
    status_code = 404
    code = "not_found"


class InstanceNotFound(NotFoundError):
    code = "instance_not_found"


class DefinitionNotFound(NotFoundError):
    code = "definition_not_found"


class ProjectNotFound(NotFoundError):
    code = "project_not_found"


# State: caller/UI desync

class StateError(WorkflowError):
    status_code = 409
    code = "invalid_state"


class InstanceTerminal(StateError):
    code = "instance_terminal"


class NoActiveStep(StateError):
    code = "no_active_step"


class ActionNotAllowed(StateError):
    code = "action_not_allowed"


class InstanceExists(StateError):
    code = "instance_exists"


class DefinitionInUse(StateError):
    code = "definition_in_use"


class DefinitionInactive(StateError):
    code = "definition_inactive"


class PackageActive(StateError):
    code = "package_active"


# Concurrency: the caller must refetch

class ConcurrentModification(WorkflowError):
    status_code = 409
    code = "concurrent_modification"


class StepAlreadyActed(ConcurrentModification):
    code = "step_already_acted"


# Resolution: missing domain context

class UnresolvableApprover(WorkflowError):
    status_code = 422
    code = "unresolvable_approver"
