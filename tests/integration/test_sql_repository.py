from datetime import datetime

import pytest

from delivery_workflow import engine, package_pipeline
from delivery_workflow.db_models import WorkflowAction as WorkflowActionORM
from delivery_workflow.db_models.enums import (
    EntityType,
    InstanceStatus,
    PackageStatus,
    Role,
    StepStatus,
    WorkflowActionType,
)
from delivery_workflow.definitions import build_definition
from delivery_workflow.errors import (
    ConcurrentModification,
    DefinitionInUse,
    DefinitionNotFound,
    InstanceExists,
    InstanceNotFound,
)
from delivery_workflow.repository import PostgreSQLWorkflowRepository


@pytest.fixture
def repo(db_session):
    return PostgreSQLWorkflowRepository(db_session)


async def stored_running_instance(repo, definition, task_context, entity_id="task-1"):
    await repo.create_workflow_definition(definition)
    instance = await repo.create_workflow_instance(
        engine.new_instance(definition, entity_id, EntityType.TASK, task_context))
    started, entry = engine.start(instance, "pm-1")
    return await repo.save_workflow_instance(started, instance.version, entry)


@pytest.mark.asyncio
async def test_definition_round_trips_steps(repo, definition):
    # Act
    await repo.create_workflow_definition(definition)
    fetched = await repo.get_workflow_definition_by_id(definition.id)

    # Assert
    assert fetched.name == definition.name
    assert [s.id for s in fetched.steps] == ["step_pm", "step_pjm", "step_eng"]
    assert fetched.steps[2].allowed_actions == definition.steps[2].allowed_actions
    assert fetched.steps[0].requires_comment_on_reject is True


@pytest.mark.asyncio
async def test_list_definitions_filters(repo, definition, definition_request):
    other = build_definition(definition_request.model_copy(update={"entity_type": EntityType.PROJECT,
                                                                   "is_active": False}))
    await repo.create_workflow_definition(definition)
    await repo.create_workflow_definition(other)

    assert {d.id for d in await repo.list_workflow_definitions()} == {definition.id, other.id}
    assert [d.id for d in await repo.list_workflow_definitions(entity_type=EntityType.PROJECT)] == [other.id]
    assert [d.id for d in await repo.list_workflow_definitions(active_only=True)] == [definition.id]


@pytest.mark.asyncio
async def test_replace_definition_deactivates_previous(repo, definition, definition_request):
    await repo.create_workflow_definition(definition)
    successor = build_definition(definition_request, version=2, previous_version_id=definition.id)

    stored = await repo.replace_workflow_definition(definition.id, successor)

    assert stored.previous_version_id == definition.id
    assert (await repo.get_workflow_definition_by_id(definition.id)).is_active is False


@pytest.mark.asyncio
async def test_delete_definition_guards(repo, definition, task_context):
    with pytest.raises(DefinitionNotFound, match="Workflow Definition with ID 'non_existent_id' not found."):
        await repo.delete_workflow_definition("non_existent_id")

    await stored_running_instance(repo, definition, task_context)
    with pytest.raises(DefinitionInUse):
        await repo.delete_workflow_definition(definition.id)

    await repo.delete_entity_instances(EntityType.TASK, "task-1")
    await repo.delete_workflow_definition(definition.id)
    assert await repo.get_workflow_definition_by_id(definition.id) is None


@pytest.mark.asyncio
async def test_instance_is_unique_per_entity(repo, definition, task_context):
    await stored_running_instance(repo, definition, task_context)

    with pytest.raises(InstanceExists):
        await repo.create_workflow_instance(engine.new_instance(definition, "task-1", EntityType.TASK, {}))


@pytest.mark.asyncio
async def test_save_appends_audit_with_version_sequence(repo, definition, task_context):
    instance = await stored_running_instance(repo, definition, task_context)

    engine.validate_action(instance, "pm-9", Role.PM, WorkflowActionType.APPROVE)
    updated, entry = engine.transition(instance, actor_id="pm-9", action=WorkflowActionType.APPROVE)
    saved = await repo.save_workflow_instance(updated, instance.version, entry)

    assert saved.version == instance.version + 1
    assert saved.current_step_id == "step_pjm"
    assert saved.steps[0].status == StepStatus.APPROVED
    assert isinstance(saved.steps[0].acted_at, datetime)
    actions = await repo.list_workflow_actions(instance.id)
    assert [(a.action, a.sequence) for a in actions] == [
        (WorkflowActionType.START, 2),
        (WorkflowActionType.APPROVE, 3),
    ]


@pytest.mark.asyncio
async def test_stale_version_is_rejected_without_writing(repo, definition, task_context, db_session):
    instance = await stored_running_instance(repo, definition, task_context)
    first, first_entry = engine.transition(instance, actor_id="pm-9", action=WorkflowActionType.APPROVE)
    second, second_entry = engine.transition(instance, actor_id="pm-8", action=WorkflowActionType.REJECT,
                                             comment="No")

    await repo.save_workflow_instance(first, instance.version, first_entry)
    with pytest.raises(ConcurrentModification):
        await repo.save_workflow_instance(second, instance.version, second_entry)

    current = await repo.get_workflow_instance_by_id(instance.id)
    assert current.status == InstanceStatus.IN_PROGRESS
    assert db_session.query(WorkflowActionORM).filter(WorkflowActionORM.id == second_entry.id).count() == 0


@pytest.mark.asyncio
async def test_completion_claim_is_granted_once(repo, definition, task_context):
    instance = await stored_running_instance(repo, definition, task_context)
    assert await repo.claim_completion(instance.id, datetime(2026, 1, 1)) is False

    for actor, role in (("pm-9", Role.PM), ("pjm-1", None), ("eng-1", Role.ENGINEER)):
        updated, entry = engine.transition(instance, actor_id=actor, action=WorkflowActionType.APPROVE)
        instance = await repo.save_workflow_instance(updated, instance.version, entry)

    assert instance.status == InstanceStatus.COMPLETED
    assert await repo.claim_completion(instance.id, datetime(2026, 1, 1)) is True
    assert await repo.claim_completion(instance.id, datetime(2026, 1, 2)) is False


@pytest.mark.asyncio
async def test_delete_entity_instances_cascades_audit(repo, definition, task_context, db_session):
    instance = await stored_running_instance(repo, definition, task_context)

    deleted = await repo.delete_entity_instances(EntityType.TASK, "task-1")

    assert deleted == 1
    assert await repo.get_workflow_instance_by_id(instance.id) is None
    assert db_session.query(WorkflowActionORM).count() == 0


@pytest.mark.asyncio
async def test_project_package_round_trip(repo, project):
    created = await repo.create_project(project)
    updated, event = package_pipeline.advance(created, "pm-1", Role.PM)

    saved = await repo.save_project(updated, created.version, event)

    assert saved.package_status == PackageStatus.PJM_REVIEW
    assert saved.vendor_company_ids == ["vendor-a"]
    events = await repo.list_package_events(project.id)
    assert [(e.event.value, e.sequence) for e in events] == [("ADVANCE", 2)]

    with pytest.raises(ConcurrentModification):
        await repo.save_project(updated, created.version, event.model_copy(update={"id": "pev_other"}))


@pytest.mark.asyncio
async def test_activation_claim_requires_active_package(repo, project):
    created = await repo.create_project(project)
    assert await repo.claim_activation(created.id, datetime(2026, 1, 1)) is False

    active, event = package_pipeline.advance(
        created.model_copy(update={"package_status": PackageStatus.PM_ACTIVATE}), "pm-1", Role.PM)
    await repo.save_project(active, created.version, event)

    assert await repo.claim_activation(created.id, datetime(2026, 1, 1)) is True
    assert await repo.claim_activation(created.id, datetime(2026, 1, 1)) is False


@pytest.mark.asyncio
async def test_save_after_delete_reports_missing_instance(repo, definition, task_context):
    instance = await stored_running_instance(repo, definition, task_context)
    updated, entry = engine.transition(instance, actor_id="pm-9", action=WorkflowActionType.APPROVE)
    await repo.delete_entity_instances(EntityType.TASK, "task-1")

    with pytest.raises(InstanceNotFound):
        await repo.save_workflow_instance(updated, instance.version, entry)
