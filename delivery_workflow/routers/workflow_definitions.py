from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status

from delivery_workflow.core.security import AuthenticatedUser, get_current_active_user, require_roles
from delivery_workflow.db_models.enums import EntityType, Role
from delivery_workflow.dependencies import get_workflow_service
from delivery_workflow.models import WorkflowDefinition, WorkflowDefinitionCreateRequest
from delivery_workflow.services import WorkflowService

router = APIRouter(prefix="/api/workflow-definitions", tags=["workflow_definitions"])

definition_admin = require_roles(Role.PM, Role.SUPER_ADMIN)


@router.get("", response_model=List[WorkflowDefinition])
async def list_workflow_definitions(
        entity_type: Optional[EntityType] = None,
        active_only: bool = False,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to list workflow definitions, optionally by entity type."""
    return await service.list_definitions(entity_type=entity_type, active_only=active_only)


@router.post("", response_model=WorkflowDefinition, status_code=status.HTTP_201_CREATED)
async def create_workflow_definition(
        request: WorkflowDefinitionCreateRequest,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(definition_admin)
):
    """API endpoint to create a new workflow definition."""
    return await service.create_definition(request)


@router.get("/{definition_id}", response_model=WorkflowDefinition)
async def get_workflow_definition(
        definition_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to get a single workflow definition."""
    return await service.get_definition(definition_id)


@router.put("/{definition_id}", response_model=WorkflowDefinition)
async def update_workflow_definition(
        definition_id: str,
        request: WorkflowDefinitionCreateRequest,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(definition_admin)
):
    """API endpoint to publish a new version of a workflow definition."""
    return await service.update_definition(definition_id, request)


@router.post("/{definition_id}/deactivate", response_model=WorkflowDefinition)
async def deactivate_workflow_definition(
        definition_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(definition_admin)
):
    """API endpoint to stop new instances from using a definition."""
    return await service.deactivate_definition(definition_id)


@router.delete("/{definition_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow_definition(
        definition_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(definition_admin)
):
    """API endpoint to delete a workflow definition."""
    await service.delete_definition(definition_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
