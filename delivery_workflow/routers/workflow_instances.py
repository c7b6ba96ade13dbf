from typing import List

from fastapi import APIRouter, Depends, status

from delivery_workflow.core.security import AuthenticatedUser, get_current_active_user
from delivery_workflow.db_models.enums import EntityType, WorkflowActionType
from delivery_workflow.dependencies import get_workflow_service
from delivery_workflow.errors import InstanceNotFound
from delivery_workflow.models import (
    ActionResult,
    ContextUpdateRequest,
    WorkflowAction,
    WorkflowActionRequest,
    WorkflowInstance,
    WorkflowInstanceCreateRequest,
)
from delivery_workflow.services import WorkflowService

router = APIRouter(prefix="/api/workflow-instances", tags=["workflow_instances"])


@router.post("", response_model=WorkflowInstance, status_code=status.HTTP_201_CREATED)
async def create_workflow_instance(
        request: WorkflowInstanceCreateRequest,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to attach a workflow instance to an entity."""
    return await service.create_instance(
        definition_id=request.definition_id,
        entity_id=request.entity_id,
        entity_type=request.entity_type,
        context=request.context,
    )


@router.get("", response_model=WorkflowInstance)
async def get_workflow_instance_for_entity(
        entity_type: EntityType,
        entity_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to look up the workflow instance gating an entity."""
    instance = await service.get_instance_for_entity(entity_type, entity_id)
    if not instance:
        raise InstanceNotFound(f"No workflow instance for {entity_type.value} {entity_id}.")
    return instance


@router.get("/{instance_id}", response_model=WorkflowInstance)
async def get_workflow_instance(
        instance_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to get a workflow instance with its steps."""
    return await service.get_instance(instance_id)


@router.post("/{instance_id}/start", response_model=WorkflowInstance)
async def start_workflow_instance(
        instance_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to activate the first step of an instance."""
    return await service.start_instance(instance_id, current_user.user_id)


@router.post("/{instance_id}/actions", response_model=ActionResult)
async def apply_workflow_action(
        instance_id: str,
        request: WorkflowActionRequest,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to approve, reject, send back or request changes on the active step."""
    return await service.apply(
        instance_id,
        actor_id=current_user.user_id,
        actor_role=current_user.role,
        action=request.action,
        comment=request.comment,
        target_step_id=request.target_step_id,
        step_id=request.step_id,
    )


@router.get("/{instance_id}/actions", response_model=List[WorkflowAction])
async def list_workflow_actions(
        instance_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to read the audit trail of an instance."""
    return await service.list_actions(instance_id)


@router.get("/{instance_id}/available-actions", response_model=List[WorkflowActionType])
async def list_available_actions(
        instance_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to list what the current user may do on the active step."""
    return await service.available_actions(instance_id, current_user.user_id, current_user.role)


@router.post("/{instance_id}/resubmit", response_model=WorkflowInstance)
async def resubmit_workflow_instance(
        instance_id: str,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to reopen a step after requested changes were made."""
    return await service.resubmit(instance_id, current_user.user_id)


@router.put("/{instance_id}/context", response_model=WorkflowInstance)
async def refresh_workflow_context(
        instance_id: str,
        request: ContextUpdateRequest,
        service: WorkflowService = Depends(get_workflow_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to replace the approver-resolution context of an instance."""
    return await service.refresh_context(instance_id, request.context)
