from typing import Tuple

from fastapi import Depends

from delivery_workflow import hooks
from delivery_workflow.database import get_db
from delivery_workflow.repository import (
    PostgreSQLWorkflowRepository,
    ProjectRepository,
    WorkflowDefinitionRepository,
    WorkflowInstanceRepository,
)
from delivery_workflow.services import ProjectPackageService, WorkflowService


# --- Dependencies ---
def get_workflow_repository(db=Depends(get_db)) -> Tuple[
    WorkflowDefinitionRepository, WorkflowInstanceRepository, ProjectRepository]:
    """Provides instances of the repository interfaces."""
    repo = PostgreSQLWorkflowRepository(db)
    return repo, repo, repo


def get_workflow_service(
        repos: Tuple[WorkflowDefinitionRepository, WorkflowInstanceRepository, ProjectRepository] = Depends(
            get_workflow_repository)
) -> WorkflowService:
    """Provides an instance of the WorkflowService, injecting the repositories."""
    definition_repo, instance_repo, _ = repos
    return WorkflowService(definition_repo=definition_repo, instance_repo=instance_repo,
                           on_complete=hooks.workflow_completed)


def get_project_package_service(
        repos: Tuple[WorkflowDefinitionRepository, WorkflowInstanceRepository, ProjectRepository] = Depends(
            get_workflow_repository)
) -> ProjectPackageService:
    _, _, project_repo = repos
    return ProjectPackageService(project_repo=project_repo, on_activate=hooks.package_activated)
