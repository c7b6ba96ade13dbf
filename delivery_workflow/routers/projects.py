from typing import List

from fastapi import APIRouter, Depends, status

from delivery_workflow.core.security import AuthenticatedUser, get_current_active_user
from delivery_workflow.dependencies import get_project_package_service
from delivery_workflow.models import (
    PackageSendBackRequest,
    PackageView,
    Project,
    ProjectCreateRequest,
    ProjectPackageEvent,
)
from delivery_workflow.services import ProjectPackageService

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.post("", response_model=Project, status_code=status.HTTP_201_CREATED)
async def create_project(
        request: ProjectCreateRequest,
        service: ProjectPackageService = Depends(get_project_package_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to create a project with its package in PM_DRAFT."""
    return await service.create_project(request, current_user.user_id)


@router.get("/{project_id}/package", response_model=PackageView)
async def get_project_package(
        project_id: str,
        service: ProjectPackageService = Depends(get_project_package_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to get the package state and stage timeline."""
    return await service.get_package(project_id)


@router.post("/{project_id}/package/advance", response_model=PackageView)
async def advance_project_package(
        project_id: str,
        service: ProjectPackageService = Depends(get_project_package_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to hand the package to the next stage."""
    return await service.advance_package(
        project_id, current_user.user_id, current_user.role, current_user.company_id,
    )


@router.post("/{project_id}/package/send-back", response_model=PackageView)
async def send_back_project_package(
        project_id: str,
        request: PackageSendBackRequest,
        service: ProjectPackageService = Depends(get_project_package_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to return the package to an earlier stage."""
    return await service.send_back_package(
        project_id, request.target_stage, request.reason,
        current_user.user_id, current_user.role, current_user.company_id,
    )


@router.get("/{project_id}/package/events", response_model=List[ProjectPackageEvent])
async def list_project_package_events(
        project_id: str,
        service: ProjectPackageService = Depends(get_project_package_service),
        current_user: AuthenticatedUser = Depends(get_current_active_user)
):
    """API endpoint to read the package history."""
    return await service.list_package_events(project_id)
