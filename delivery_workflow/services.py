# services.py
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from delivery_workflow import engine, package_pipeline
from delivery_workflow.db_models.enums import (
    EntityType,
    InstanceStatus,
    PackageStage,
    PackageStatus,
    Role,
    WorkflowActionType,
)
from delivery_workflow.definitions import build_definition
from delivery_workflow.errors import (
    ConcurrentModification,
    DefinitionInactive,
    DefinitionNotFound,
    InstanceNotFound,
    InvalidDefinition,
    ProjectNotFound,
)
from delivery_workflow.models import (
    ActionResult,
    PackageView,
    Project,
    ProjectCreateRequest,
    ProjectPackageEvent,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowDefinitionCreateRequest,
    WorkflowInstance,
    utcnow,
)
from delivery_workflow.repository import (
    ProjectRepository,
    WorkflowDefinitionRepository,
    WorkflowInstanceRepository,
)

logger = logging.getLogger(__name__)

CompletionHook = Callable[[WorkflowInstance], Any]
ActivationHook = Callable[[Project], Any]


async def _run_hook(hook: Callable, subject, description: str) -> None:
    # The state change is already committed; a failing hook must not undo it.
    try:
        result = hook(subject)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("%s hook failed for %s", description, subject.id)


class WorkflowService:
    def __init__(self, definition_repo: WorkflowDefinitionRepository, instance_repo: WorkflowInstanceRepository,
                 on_complete: Optional[CompletionHook] = None):
        self.definition_repo = definition_repo
        self.instance_repo = instance_repo
        self.on_complete = on_complete

    # --- definitions ---

    async def create_definition(self, request: WorkflowDefinitionCreateRequest) -> WorkflowDefinition:
        definition = build_definition(request)
        created = await self.definition_repo.create_workflow_definition(definition)
        logger.info("Created workflow definition %s '%s' with %d step(s)",
                    created.id, created.name, len(created.steps))
        return created

    async def update_definition(self, definition_id: str,
                                request: WorkflowDefinitionCreateRequest) -> WorkflowDefinition:
        """Store the edit as a new version and deactivate the one it replaces.

        Running instances keep their own copy of the old steps.
        """
        existing = await self.get_definition(definition_id)
        definition = build_definition(request, version=existing.version + 1, previous_version_id=existing.id)
        replaced = await self.definition_repo.replace_workflow_definition(existing.id, definition)
        logger.info("Workflow definition %s superseded by %s (version %d)",
                    existing.id, replaced.id, replaced.version)
        return replaced

    async def deactivate_definition(self, definition_id: str) -> WorkflowDefinition:
        definition = await self.definition_repo.set_workflow_definition_active(definition_id, False)
        if not definition:
            raise DefinitionNotFound(f"Workflow Definition with ID '{definition_id}' not found.")
        return definition

    async def delete_definition(self, definition_id: str) -> None:
        await self.definition_repo.delete_workflow_definition(definition_id)
        logger.info("Deleted workflow definition %s", definition_id)

    async def list_definitions(self, entity_type: Optional[EntityType] = None,
                               active_only: bool = False) -> List[WorkflowDefinition]:
        return await self.definition_repo.list_workflow_definitions(entity_type=entity_type, active_only=active_only)

    async def get_definition(self, definition_id: str) -> WorkflowDefinition:
        definition = await self.definition_repo.get_workflow_definition_by_id(definition_id)
        if not definition:
            raise DefinitionNotFound(f"Workflow Definition with ID '{definition_id}' not found.")
        return definition

    # --- instances ---

    async def create_instance(self, definition_id: str, entity_id: str,
                              entity_type: Optional[EntityType] = None,
                              context: Optional[Dict[str, Any]] = None) -> WorkflowInstance:
        definition = await self.get_definition(definition_id)
        if not definition.is_active:
            raise DefinitionInactive(f"Workflow definition '{definition.name}' is no longer active.")
        entity_type = entity_type or definition.entity_type
        if entity_type != definition.entity_type:
            raise InvalidDefinition(
                f"Workflow definition '{definition.name}' gates {definition.entity_type.value} "
                f"entities, not {entity_type.value}."
            )

        instance = engine.new_instance(definition, entity_id, entity_type, context)
        created = await self.instance_repo.create_workflow_instance(instance)
        logger.info("Created workflow instance %s for %s %s from definition %s",
                    created.id, entity_type.value, entity_id, definition.id)
        return created

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self.instance_repo.get_workflow_instance_by_id(instance_id)
        if not instance:
            raise InstanceNotFound(f"Workflow instance with ID '{instance_id}' not found.")
        return instance

    async def get_instance_for_entity(self, entity_type: EntityType, entity_id: str) -> Optional[WorkflowInstance]:
        return await self.instance_repo.get_workflow_instance_for_entity(entity_type, entity_id)

    async def start_instance(self, instance_id: str, actor_id: str) -> WorkflowInstance:
        instance = await self.get_instance(instance_id)
        started, entry = engine.start(instance, actor_id)
        if entry is None:
            return instance
        try:
            saved = await self.instance_repo.save_workflow_instance(started, instance.version, entry)
        except ConcurrentModification:
            # Another request started it between our read and write.
            latest = await self.instance_repo.get_workflow_instance_by_id(instance_id)
            if latest and latest.status != InstanceStatus.NOT_STARTED:
                return latest
            raise
        logger.info("Workflow instance %s started by %s; active step %s",
                    saved.id, actor_id, saved.current_step_id)
        return saved

    async def apply(self, instance_id: str, actor_id: str, actor_role: Optional[Role],
                    action: WorkflowActionType, comment: Optional[str] = None,
                    target_step_id: Optional[str] = None, step_id: Optional[str] = None) -> ActionResult:
        """Validate and apply a review action to the active step.

        ``step_id`` is the step the caller was looking at. When it has already
        been handled the call fails with StepAlreadyActed instead of a generic
        state error.
        """
        instance = await self.get_instance(instance_id)
        engine.ensure_step_not_acted(instance, step_id)
        engine.validate_action(instance, actor_id, actor_role, action, comment)
        updated, entry = engine.transition(
            instance, actor_id=actor_id, action=action, comment=comment, target_step_id=target_step_id,
        )

        try:
            saved = await self.instance_repo.save_workflow_instance(updated, instance.version, entry)
        except ConcurrentModification:
            latest = await self.instance_repo.get_workflow_instance_by_id(instance_id)
            if latest:
                engine.ensure_step_not_acted(latest, step_id or instance.current_step_id)
            raise

        entry = entry.model_copy(update={"sequence": saved.version})
        logger.info("Workflow instance %s: %s on step %s by %s -> %s",
                    saved.id, action.value, entry.step_id, actor_id, saved.status.value)

        if saved.status == InstanceStatus.COMPLETED:
            await self._notify_completion(saved)
        return ActionResult(instance=saved, action=entry)

    async def resubmit(self, instance_id: str, actor_id: str) -> WorkflowInstance:
        instance = await self.get_instance(instance_id)
        updated, entry = engine.resubmit(instance, actor_id)
        saved = await self.instance_repo.save_workflow_instance(updated, instance.version, entry)
        logger.info("Workflow instance %s resubmitted by %s; step %s active again",
                    saved.id, actor_id, saved.current_step_id)
        return saved

    async def refresh_context(self, instance_id: str, context: Dict[str, Any]) -> WorkflowInstance:
        instance = await self.get_instance(instance_id)
        updated = instance.model_copy(update={"context": dict(context), "updated_at": utcnow()})
        return await self.instance_repo.save_workflow_instance(updated, instance.version)

    async def list_actions(self, instance_id: str) -> List[WorkflowAction]:
        await self.get_instance(instance_id)
        return await self.instance_repo.list_workflow_actions(instance_id)

    async def available_actions(self, instance_id: str, actor_id: str,
                                actor_role: Optional[Role]) -> List[WorkflowActionType]:
        instance = await self.get_instance(instance_id)
        return engine.available_actions(instance, actor_id, actor_role)

    async def replay_instance(self, instance_id: str) -> WorkflowInstance:
        """Rebuild the instance from its audit log without touching storage."""
        instance = await self.get_instance(instance_id)
        actions = await self.instance_repo.list_workflow_actions(instance_id)
        return engine.replay(engine.initial_snapshot(instance), actions)

    async def delete_entity_instances(self, entity_type: EntityType, entity_id: str) -> int:
        deleted = await self.instance_repo.delete_entity_instances(entity_type, entity_id)
        if deleted:
            logger.info("Deleted %d workflow instance(s) for %s %s", deleted, entity_type.value, entity_id)
        return deleted

    async def _notify_completion(self, instance: WorkflowInstance) -> None:
        if self.on_complete is None:
            return
        if not await self.instance_repo.claim_completion(instance.id, utcnow()):
            return
        await _run_hook(self.on_complete, instance, "Completion")


class ProjectPackageService:
    def __init__(self, project_repo: ProjectRepository, on_activate: Optional[ActivationHook] = None):
        self.project_repo = project_repo
        self.on_activate = on_activate

    async def create_project(self, request: ProjectCreateRequest, actor_id: str) -> Project:
        name = (request.name or "").strip()
        if not name:
            raise InvalidDefinition("Project name cannot be empty.")
        project = Project(
            name=name,
            owner_id=request.owner_id or actor_id,
            delivery_manager_id=request.delivery_manager_id,
            vendor_company_ids=list(request.vendor_company_ids),
        )
        created = await self.project_repo.create_project(project)
        logger.info("Created project %s owned by %s", created.id, created.owner_id)
        return created

    async def get_project(self, project_id: str) -> Project:
        project = await self.project_repo.get_project_by_id(project_id)
        if not project:
            raise ProjectNotFound(f"Project with ID '{project_id}' not found.")
        return project

    async def get_package(self, project_id: str) -> PackageView:
        return self.package_view(await self.get_project(project_id))

    @staticmethod
    def package_view(project: Project) -> PackageView:
        stage = package_pipeline.resolve_active_stage(project)
        return PackageView(
            project=project,
            active_stage=stage.status if stage else None,
            timeline=package_pipeline.build_timeline(project),
        )

    async def advance_package(self, project_id: str, actor_id: str, actor_role: Optional[Role],
                              actor_company_id: Optional[str] = None) -> PackageView:
        project = await self.get_project(project_id)
        updated, event = package_pipeline.advance(project, actor_id, actor_role, actor_company_id)
        saved = await self.project_repo.save_project(updated, project.version, event)
        logger.info("Project %s package %s -> %s by %s",
                    saved.id, event.from_status.value, event.to_status.value, actor_id)

        if saved.package_status == PackageStatus.ACTIVE and self.on_activate is not None:
            if await self.project_repo.claim_activation(saved.id, utcnow()):
                await _run_hook(self.on_activate, saved, "Activation")
        return self.package_view(saved)

    async def send_back_package(self, project_id: str, target_stage: PackageStage, reason: Optional[str],
                                actor_id: str, actor_role: Optional[Role],
                                actor_company_id: Optional[str] = None) -> PackageView:
        project = await self.get_project(project_id)
        updated, event = package_pipeline.send_back(
            project, target_stage, reason, actor_id, actor_role, actor_company_id,
        )
        saved = await self.project_repo.save_project(updated, project.version, event)
        logger.info("Project %s package sent back to %s by %s",
                    saved.id, target_stage.value, actor_id)
        return self.package_view(saved)

    async def list_package_events(self, project_id: str) -> List[ProjectPackageEvent]:
        await self.get_project(project_id)
        return await self.project_repo.list_package_events(project_id)
