from unittest.mock import AsyncMock, MagicMock

import pytest

from delivery_workflow.db_models.enums import PackageEventType, PackageStage, PackageStatus, Role
from delivery_workflow.errors import (
    ConcurrentModification,
    Forbidden,
    InvalidDefinition,
    PackageActive,
    ProjectNotFound,
)
from delivery_workflow.models import ProjectCreateRequest
from delivery_workflow.services import ProjectPackageService


@pytest.fixture
def activation_hook():
    return MagicMock()


@pytest.fixture
def package_service(memory_repo, activation_hook):
    return ProjectPackageService(memory_repo, on_activate=activation_hook)


async def new_project(service):
    return await service.create_project(
        ProjectCreateRequest(name="Billing revamp", delivery_manager_id="pjm-1", vendor_company_ids=["vendor-a"]),
        actor_id="pm-1",
    )


@pytest.mark.asyncio
async def test_create_project_defaults_owner_to_actor(package_service):
    project = await new_project(package_service)

    assert project.owner_id == "pm-1"
    assert project.package_status == PackageStatus.PM_DRAFT


@pytest.mark.asyncio
async def test_create_project_requires_name(package_service):
    with pytest.raises(InvalidDefinition):
        await package_service.create_project(ProjectCreateRequest(name=" "), actor_id="pm-1")


@pytest.mark.asyncio
async def test_package_scenario_through_send_back_to_active(package_service, activation_hook):
    # Arrange
    project = await new_project(package_service)

    # Act
    await package_service.advance_package(project.id, "pm-1", Role.PM)
    await package_service.advance_package(project.id, "pjm-1", Role.PROJECT_MANAGER)
    view = await package_service.send_back_package(project.id, PackageStage.PJM, "Budget missing",
                                                   "eng-3", Role.ENGINEER)
    assert view.project.package_status == PackageStatus.SENT_BACK
    assert view.active_stage == PackageStatus.PJM_REVIEW

    await package_service.advance_package(project.id, "pjm-7", Role.PROJECT_MANAGER, "vendor-a")
    await package_service.advance_package(project.id, "eng-3", Role.ENGINEER)
    view = await package_service.advance_package(project.id, "pm-1", Role.PM)

    # Assert
    assert view.project.package_status == PackageStatus.ACTIVE
    assert view.active_stage is None
    activation_hook.assert_called_once()

    events = await package_service.list_package_events(project.id)
    assert [e.event for e in events] == [
        PackageEventType.ADVANCE,
        PackageEventType.ADVANCE,
        PackageEventType.SEND_BACK,
        PackageEventType.ADVANCE,
        PackageEventType.ADVANCE,
        PackageEventType.ACTIVATE,
    ]
    assert events[2].reason == "Budget missing"

    with pytest.raises(PackageActive):
        await package_service.send_back_package(project.id, PackageStage.PM, "too late", "root", Role.SUPER_ADMIN)
    with pytest.raises(PackageActive):
        await package_service.advance_package(project.id, "pm-1", Role.PM)
    activation_hook.assert_called_once()


@pytest.mark.asyncio
async def test_rejected_advance_writes_nothing(package_service):
    project = await new_project(package_service)

    with pytest.raises(Forbidden):
        await package_service.advance_package(project.id, "pm-2", Role.PM)

    assert await package_service.list_package_events(project.id) == []
    assert (await package_service.get_project(project.id)).version == project.version


@pytest.mark.asyncio
async def test_unknown_project(package_service):
    with pytest.raises(ProjectNotFound):
        await package_service.get_package("prj_missing")


@pytest.mark.asyncio
async def test_lost_race_surfaces_concurrent_modification(project):
    project_repo = MagicMock()
    project_repo.get_project_by_id = AsyncMock(return_value=project)
    project_repo.save_project = AsyncMock(side_effect=ConcurrentModification("stale"))
    service = ProjectPackageService(project_repo)

    with pytest.raises(ConcurrentModification):
        await service.advance_package(project.id, "pm-1", Role.PM)


@pytest.mark.asyncio
async def test_get_package_includes_timeline(package_service):
    project = await new_project(package_service)

    view = await package_service.get_package(project.id)

    assert view.active_stage == PackageStatus.PM_DRAFT
    assert [entry.status for entry in view.timeline] == ["active", "upcoming", "upcoming", "upcoming"]
