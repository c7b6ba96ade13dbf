from delivery_workflow.db_models.base import Base
from delivery_workflow.db_models.workflow import (
    WorkflowAction,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStepDefinition,
)
from delivery_workflow.db_models.project import Project, ProjectPackageEvent

__all__ = [
    "Base",
    "WorkflowDefinition",
    "WorkflowStepDefinition",
    "WorkflowInstance",
    "WorkflowAction",
    "Project",
    "ProjectPackageEvent",
]
