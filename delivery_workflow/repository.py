# repository.py
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from delivery_workflow.db_models import (
    Project as ProjectORM,
    ProjectPackageEvent as ProjectPackageEventORM,
    WorkflowAction as WorkflowActionORM,
    WorkflowDefinition as WorkflowDefinitionORM,
    WorkflowInstance as WorkflowInstanceORM,
    WorkflowStepDefinition as WorkflowStepDefinitionORM,
)
from delivery_workflow.db_models.enums import EntityType, InstanceStatus, PackageStatus
from delivery_workflow.errors import (
    ConcurrentModification,
    DefinitionInUse,
    DefinitionNotFound,
    InstanceExists,
    InstanceNotFound,
    ProjectNotFound,
)
from delivery_workflow.models import (
    Project,
    ProjectPackageEvent,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowInstance,
)


class WorkflowDefinitionRepository(ABC):
    @abstractmethod
    async def create_workflow_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        pass

    @abstractmethod
    async def get_workflow_definition_by_id(self, definition_id: str) -> Optional[WorkflowDefinition]:
        pass

    @abstractmethod
    async def list_workflow_definitions(self, entity_type: Optional[EntityType] = None,
                                        active_only: bool = False) -> List[WorkflowDefinition]:
        pass

    @abstractmethod
    async def replace_workflow_definition(self, previous_id: str,
                                          definition: WorkflowDefinition) -> WorkflowDefinition:
        """Store ``definition`` and deactivate ``previous_id`` in one transaction."""
        pass

    @abstractmethod
    async def set_workflow_definition_active(self, definition_id: str,
                                             is_active: bool) -> Optional[WorkflowDefinition]:
        pass

    @abstractmethod
    async def delete_workflow_definition(self, definition_id: str) -> None:
        pass


class WorkflowInstanceRepository(ABC):
    @abstractmethod
    async def create_workflow_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        pass

    @abstractmethod
    async def get_workflow_instance_by_id(self, instance_id: str) -> Optional[WorkflowInstance]:
        pass

    @abstractmethod
    async def get_workflow_instance_for_entity(self, entity_type: EntityType,
                                               entity_id: str) -> Optional[WorkflowInstance]:
        pass

    @abstractmethod
    async def save_workflow_instance(self, instance: WorkflowInstance, expected_version: int,
                                     action: Optional[WorkflowAction] = None) -> WorkflowInstance:
        """Write the new state and append ``action`` if ``version`` still equals ``expected_version``.

        Raises:
            ConcurrentModification: another writer got there first
            InstanceNotFound: the instance was deleted
        """
        pass

    @abstractmethod
    async def list_workflow_actions(self, instance_id: str) -> List[WorkflowAction]:
        pass

    @abstractmethod
    async def claim_completion(self, instance_id: str, now: datetime) -> bool:
        pass

    @abstractmethod
    async def delete_entity_instances(self, entity_type: EntityType, entity_id: str) -> int:
        pass


class ProjectRepository(ABC):
    @abstractmethod
    async def create_project(self, project: Project) -> Project:
        pass

    @abstractmethod
    async def get_project_by_id(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def save_project(self, project: Project, expected_version: int,
                           event: ProjectPackageEvent) -> Project:
        pass

    @abstractmethod
    async def list_package_events(self, project_id: str) -> List[ProjectPackageEvent]:
        pass

    @abstractmethod
    async def claim_activation(self, project_id: str, now: datetime) -> bool:
        pass


def _step_to_orm(definition_id: str, step) -> WorkflowStepDefinitionORM:
    return WorkflowStepDefinitionORM(
        id=step.id,
        workflow_definition_id=definition_id,
        name=step.name,
        description=step.description,
        order=step.order,
        assignee_role=step.assignee_role,
        approver_type=step.approver_type,
        approver_role=step.approver_role,
        dynamic_approver_type=step.dynamic_approver_type,
        requires_comment_on_reject=step.requires_comment_on_reject,
        requires_comment_on_send_back=step.requires_comment_on_send_back,
        allowed_actions=[action.value for action in step.allowed_actions],
    )


def _instance_values(instance: WorkflowInstance) -> dict:
    return dict(
        status=instance.status,
        current_step_id=instance.current_step_id,
        context=dict(instance.context),
        steps=[step.model_dump(mode="json") for step in instance.steps],
        updated_at=instance.updated_at,
    )


def _action_from_orm(row: WorkflowActionORM) -> WorkflowAction:
    return WorkflowAction(
        id=row.id,
        instance_id=row.instance_id,
        sequence=row.sequence,
        step_id=row.step_id,
        actor_id=row.actor_id,
        action=row.action,
        comment=row.comment,
        metadata=row.extra_data or {},
        created_at=row.created_at,
    )


def _project_values(project: Project) -> dict:
    return dict(
        name=project.name,
        delivery_manager_id=project.delivery_manager_id,
        vendor_company_ids=list(project.vendor_company_ids),
        package_status=project.package_status,
        package_sent_back_to=project.package_sent_back_to,
        package_sent_back_reason=project.package_sent_back_reason,
        package_sent_back_by_id=project.package_sent_back_by_id,
        package_sent_back_at=project.package_sent_back_at,
        updated_at=project.updated_at,
    )


class PostgreSQLWorkflowRepository(WorkflowDefinitionRepository, WorkflowInstanceRepository, ProjectRepository):
    """SQLAlchemy-backed store.

    Each mutating method is a single transaction. Version-guarded writes use a
    conditional UPDATE so the loser of a race sees rowcount 0 and nothing of
    its attempt is persisted.
    """

    def __init__(self, db_session):
        self.db_session = db_session

    # --- definitions ---

    async def create_workflow_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        self.db_session.add(self._definition_to_orm(definition))
        self.db_session.commit()
        return await self.get_workflow_definition_by_id(definition.id)

    async def get_workflow_definition_by_id(self, definition_id: str) -> Optional[WorkflowDefinition]:
        row = self.db_session.query(WorkflowDefinitionORM).filter(WorkflowDefinitionORM.id == definition_id).first()
        if row:
            return WorkflowDefinition.model_validate(row)
        return None

    async def list_workflow_definitions(self, entity_type: Optional[EntityType] = None,
                                        active_only: bool = False) -> List[WorkflowDefinition]:
        query = self.db_session.query(WorkflowDefinitionORM)
        if entity_type:
            query = query.filter(WorkflowDefinitionORM.entity_type == entity_type)
        if active_only:
            query = query.filter(WorkflowDefinitionORM.is_active.is_(True))
        rows = query.order_by(WorkflowDefinitionORM.created_at, WorkflowDefinitionORM.version).all()
        return [WorkflowDefinition.model_validate(row) for row in rows]

    async def replace_workflow_definition(self, previous_id: str,
                                          definition: WorkflowDefinition) -> WorkflowDefinition:
        previous = self.db_session.query(WorkflowDefinitionORM).filter(WorkflowDefinitionORM.id == previous_id).first()
        if not previous:
            raise DefinitionNotFound(f"Workflow Definition with ID '{previous_id}' not found.")
        previous.is_active = False
        self.db_session.add(self._definition_to_orm(definition))
        self.db_session.commit()
        return await self.get_workflow_definition_by_id(definition.id)

    async def set_workflow_definition_active(self, definition_id: str,
                                             is_active: bool) -> Optional[WorkflowDefinition]:
        row = self.db_session.query(WorkflowDefinitionORM).filter(WorkflowDefinitionORM.id == definition_id).first()
        if not row:
            return None
        row.is_active = is_active
        self.db_session.commit()
        return WorkflowDefinition.model_validate(row)

    async def delete_workflow_definition(self, definition_id: str) -> None:
        row = self.db_session.query(WorkflowDefinitionORM).filter(WorkflowDefinitionORM.id == definition_id).first()
        if not row:
            raise DefinitionNotFound(f"Workflow Definition with ID '{definition_id}' not found.")

        in_use = self.db_session.query(WorkflowInstanceORM).filter(
            WorkflowInstanceORM.definition_id == definition_id).count()
        if in_use:
            raise DefinitionInUse(
                f"Cannot delete definition '{row.name}' as it is currently used by {in_use} workflow instance(s)."
            )

        # Later versions keep their history pointer only while the row exists.
        self.db_session.query(WorkflowDefinitionORM).filter(
            WorkflowDefinitionORM.previous_version_id == definition_id
        ).update({WorkflowDefinitionORM.previous_version_id: None}, synchronize_session=False)
        self.db_session.delete(row)
        self.db_session.commit()

    def _definition_to_orm(self, definition: WorkflowDefinition) -> WorkflowDefinitionORM:
        row = WorkflowDefinitionORM(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            entity_type=definition.entity_type,
            is_active=definition.is_active,
            version=definition.version,
            previous_version_id=definition.previous_version_id,
            created_at=definition.created_at,
        )
        row.steps = [_step_to_orm(definition.id, step) for step in definition.steps]
        return row

    # --- instances ---

    async def create_workflow_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        existing = await self.get_workflow_instance_for_entity(instance.entity_type, instance.entity_id)
        if existing:
            raise InstanceExists(
                f"{instance.entity_type.value} {instance.entity_id} already has workflow instance {existing.id}."
            )
        row = WorkflowInstanceORM(
            id=instance.id,
            definition_id=instance.definition_id,
            entity_id=instance.entity_id,
            entity_type=instance.entity_type,
            version=instance.version,
            created_at=instance.created_at,
            **_instance_values(instance),
        )
        self.db_session.add(row)
        try:
            self.db_session.commit()
        except IntegrityError as e:
            self.db_session.rollback()
            raise InstanceExists(
                f"{instance.entity_type.value} {instance.entity_id} already has a workflow instance."
            ) from e
        return await self.get_workflow_instance_by_id(instance.id)

    async def get_workflow_instance_by_id(self, instance_id: str) -> Optional[WorkflowInstance]:
        row = self.db_session.query(WorkflowInstanceORM).filter(WorkflowInstanceORM.id == instance_id).first()
        if row:
            self.db_session.refresh(row)
            return WorkflowInstance.model_validate(row)
        return None

    async def get_workflow_instance_for_entity(self, entity_type: EntityType,
                                               entity_id: str) -> Optional[WorkflowInstance]:
        row = self.db_session.query(WorkflowInstanceORM).filter(
            WorkflowInstanceORM.entity_type == entity_type,
            WorkflowInstanceORM.entity_id == entity_id,
        ).first()
        if row:
            return WorkflowInstance.model_validate(row)
        return None

    async def save_workflow_instance(self, instance: WorkflowInstance, expected_version: int,
                                     action: Optional[WorkflowAction] = None) -> WorkflowInstance:
        new_version = expected_version + 1
        result = self.db_session.execute(
            update(WorkflowInstanceORM)
            .where(WorkflowInstanceORM.id == instance.id, WorkflowInstanceORM.version == expected_version)
            .values(version=new_version, **_instance_values(instance))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db_session.rollback()
            if not self.db_session.query(WorkflowInstanceORM).filter(WorkflowInstanceORM.id == instance.id).count():
                raise InstanceNotFound(f"Workflow instance with ID '{instance.id}' not found.")
            raise ConcurrentModification(
                f"Workflow instance {instance.id} was modified by another request; reload and retry."
            )

        if action is not None:
            self.db_session.add(WorkflowActionORM(
                id=action.id,
                instance_id=instance.id,
                sequence=new_version,
                step_id=action.step_id,
                actor_id=action.actor_id,
                action=action.action,
                comment=action.comment,
                extra_data=dict(action.metadata),
                created_at=action.created_at,
            ))
        try:
            self.db_session.commit()
        except IntegrityError as e:
            self.db_session.rollback()
            raise ConcurrentModification(
                f"Workflow instance {instance.id} was modified by another request; reload and retry."
            ) from e
        return await self.get_workflow_instance_by_id(instance.id)

    async def list_workflow_actions(self, instance_id: str) -> List[WorkflowAction]:
        rows = self.db_session.query(WorkflowActionORM).filter(
            WorkflowActionORM.instance_id == instance_id
        ).order_by(WorkflowActionORM.sequence).all()
        return [_action_from_orm(row) for row in rows]

    async def claim_completion(self, instance_id: str, now: datetime) -> bool:
        result = self.db_session.execute(
            update(WorkflowInstanceORM)
            .where(
                WorkflowInstanceORM.id == instance_id,
                WorkflowInstanceORM.status == InstanceStatus.COMPLETED,
                WorkflowInstanceORM.completion_notified_at.is_(None),
            )
            .values(completion_notified_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db_session.commit()
        return result.rowcount == 1

    async def delete_entity_instances(self, entity_type: EntityType, entity_id: str) -> int:
        rows = self.db_session.query(WorkflowInstanceORM).filter(
            WorkflowInstanceORM.entity_type == entity_type,
            WorkflowInstanceORM.entity_id == entity_id,
        ).all()
        for row in rows:
            self.db_session.delete(row)
        self.db_session.commit()
        return len(rows)

    # --- projects ---

    async def create_project(self, project: Project) -> Project:
        row = ProjectORM(
            id=project.id,
            owner_id=project.owner_id,
            version=project.version,
            created_at=project.created_at,
            **_project_values(project),
        )
        self.db_session.add(row)
        self.db_session.commit()
        return await self.get_project_by_id(project.id)

    async def get_project_by_id(self, project_id: str) -> Optional[Project]:
        row = self.db_session.query(ProjectORM).filter(ProjectORM.id == project_id).first()
        if row:
            self.db_session.refresh(row)
            return Project.model_validate(row)
        return None

    async def save_project(self, project: Project, expected_version: int,
                           event: ProjectPackageEvent) -> Project:
        new_version = expected_version + 1
        result = self.db_session.execute(
            update(ProjectORM)
            .where(ProjectORM.id == project.id, ProjectORM.version == expected_version)
            .values(version=new_version, **_project_values(project))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db_session.rollback()
            if not self.db_session.query(ProjectORM).filter(ProjectORM.id == project.id).count():
                raise ProjectNotFound(f"Project with ID '{project.id}' not found.")
            raise ConcurrentModification(
                f"Project {project.id} package was modified by another request; reload and retry."
            )

        self.db_session.add(ProjectPackageEventORM(
            id=event.id,
            project_id=project.id,
            sequence=new_version,
            actor_id=event.actor_id,
            event=event.event,
            from_status=event.from_status,
            to_status=event.to_status,
            target_stage=event.target_stage,
            reason=event.reason,
            created_at=event.created_at,
        ))
        try:
            self.db_session.commit()
        except IntegrityError as e:
            self.db_session.rollback()
            raise ConcurrentModification(
                f"Project {project.id} package was modified by another request; reload and retry."
            ) from e
        return await self.get_project_by_id(project.id)

    async def list_package_events(self, project_id: str) -> List[ProjectPackageEvent]:
        rows = self.db_session.query(ProjectPackageEventORM).filter(
            ProjectPackageEventORM.project_id == project_id
        ).order_by(ProjectPackageEventORM.sequence).all()
        return [ProjectPackageEvent.model_validate(row, from_attributes=True) for row in rows]

    async def claim_activation(self, project_id: str, now: datetime) -> bool:
        result = self.db_session.execute(
            update(ProjectORM)
            .where(
                ProjectORM.id == project_id,
                ProjectORM.package_status == PackageStatus.ACTIVE,
                ProjectORM.activation_notified_at.is_(None),
            )
            .values(activation_notified_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db_session.commit()
        return result.rowcount == 1


class InMemoryWorkflowRepository(WorkflowDefinitionRepository, WorkflowInstanceRepository, ProjectRepository):
    """Process-local store with the same transactional contract, for tests and demos."""

    def __init__(self):
        self._lock = threading.Lock()
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._actions: Dict[str, List[WorkflowAction]] = {}
        self._projects: Dict[str, Project] = {}
        self._package_events: Dict[str, List[ProjectPackageEvent]] = {}

    async def create_workflow_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        with self._lock:
            self._definitions[definition.id] = definition.model_copy(deep=True)
        return definition.model_copy(deep=True)

    async def get_workflow_definition_by_id(self, definition_id: str) -> Optional[WorkflowDefinition]:
        definition = self._definitions.get(definition_id)
        return definition.model_copy(deep=True) if definition else None

    async def list_workflow_definitions(self, entity_type: Optional[EntityType] = None,
                                        active_only: bool = False) -> List[WorkflowDefinition]:
        definitions = [
            d for d in self._definitions.values()
            if (entity_type is None or d.entity_type == entity_type) and (not active_only or d.is_active)
        ]
        return [d.model_copy(deep=True) for d in definitions]

    async def replace_workflow_definition(self, previous_id: str,
                                          definition: WorkflowDefinition) -> WorkflowDefinition:
        with self._lock:
            previous = self._definitions.get(previous_id)
            if not previous:
                raise DefinitionNotFound(f"Workflow Definition with ID '{previous_id}' not found.")
            self._definitions[previous_id] = previous.model_copy(update={"is_active": False})
            self._definitions[definition.id] = definition.model_copy(deep=True)
        return definition.model_copy(deep=True)

    async def set_workflow_definition_active(self, definition_id: str,
                                             is_active: bool) -> Optional[WorkflowDefinition]:
        with self._lock:
            definition = self._definitions.get(definition_id)
            if not definition:
                return None
            definition = definition.model_copy(update={"is_active": is_active})
            self._definitions[definition_id] = definition
        return definition.model_copy(deep=True)

    async def delete_workflow_definition(self, definition_id: str) -> None:
        with self._lock:
            definition = self._definitions.get(definition_id)
            if not definition:
                raise DefinitionNotFound(f"Workflow Definition with ID '{definition_id}' not found.")
            in_use = sum(1 for i in self._instances.values() if i.definition_id == definition_id)
            if in_use:
                raise DefinitionInUse(
                    f"Cannot delete definition '{definition.name}' as it is currently used by "
                    f"{in_use} workflow instance(s)."
                )
            del self._definitions[definition_id]

    async def create_workflow_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        with self._lock:
            for existing in self._instances.values():
                if existing.entity_type == instance.entity_type and existing.entity_id == instance.entity_id:
                    raise InstanceExists(
                        f"{instance.entity_type.value} {instance.entity_id} already has workflow instance "
                        f"{existing.id}."
                    )
            self._instances[instance.id] = instance.model_copy(deep=True)
            self._actions[instance.id] = []
        return instance.model_copy(deep=True)

    async def get_workflow_instance_by_id(self, instance_id: str) -> Optional[WorkflowInstance]:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def get_workflow_instance_for_entity(self, entity_type: EntityType,
                                               entity_id: str) -> Optional[WorkflowInstance]:
        for instance in self._instances.values():
            if instance.entity_type == entity_type and instance.entity_id == entity_id:
                return instance.model_copy(deep=True)
        return None

    async def save_workflow_instance(self, instance: WorkflowInstance, expected_version: int,
                                     action: Optional[WorkflowAction] = None) -> WorkflowInstance:
        with self._lock:
            stored = self._instances.get(instance.id)
            if stored is None:
                raise InstanceNotFound(f"Workflow instance with ID '{instance.id}' not found.")
            if stored.version != expected_version:
                raise ConcurrentModification(
                    f"Workflow instance {instance.id} was modified by another request; reload and retry."
                )
            new_version = expected_version + 1
            saved = instance.model_copy(update={
                "version": new_version,
                "completion_notified_at": stored.completion_notified_at,
            }, deep=True)
            self._instances[instance.id] = saved
            if action is not None:
                self._actions[instance.id].append(action.model_copy(update={"sequence": new_version}, deep=True))
        return saved.model_copy(deep=True)

    async def list_workflow_actions(self, instance_id: str) -> List[WorkflowAction]:
        return [a.model_copy(deep=True) for a in self._actions.get(instance_id, [])]

    async def claim_completion(self, instance_id: str, now: datetime) -> bool:
        with self._lock:
            instance = self._instances.get(instance_id)
            if (instance is None or instance.status != InstanceStatus.COMPLETED
                    or instance.completion_notified_at is not None):
                return False
            self._instances[instance_id] = instance.model_copy(update={"completion_notified_at": now})
            return True

    async def delete_entity_instances(self, entity_type: EntityType, entity_id: str) -> int:
        with self._lock:
            doomed = [
                i.id for i in self._instances.values()
                if i.entity_type == entity_type and i.entity_id == entity_id
            ]
            for instance_id in doomed:
                del self._instances[instance_id]
                self._actions.pop(instance_id, None)
        return len(doomed)

    async def create_project(self, project: Project) -> Project:
        with self._lock:
            self._projects[project.id] = project.model_copy(deep=True)
            self._package_events[project.id] = []
        return project.model_copy(deep=True)

    async def get_project_by_id(self, project_id: str) -> Optional[Project]:
        project = self._projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def save_project(self, project: Project, expected_version: int,
                           event: ProjectPackageEvent) -> Project:
        with self._lock:
            stored = self._projects.get(project.id)
            if stored is None:
                raise ProjectNotFound(f"Project with ID '{project.id}' not found.")
            if stored.version != expected_version:
                raise ConcurrentModification(
                    f"Project {project.id} package was modified by another request; reload and retry."
                )
            new_version = expected_version + 1
            saved = project.model_copy(update={
                "version": new_version,
                "activation_notified_at": stored.activation_notified_at,
            }, deep=True)
            self._projects[project.id] = saved
            self._package_events[project.id].append(
                event.model_copy(update={"sequence": new_version}, deep=True)
            )
        return saved.model_copy(deep=True)

    async def list_package_events(self, project_id: str) -> List[ProjectPackageEvent]:
        return [e.model_copy(deep=True) for e in self._package_events.get(project_id, [])]

    async def claim_activation(self, project_id: str, now: datetime) -> bool:
        with self._lock:
            project = self._projects.get(project_id)
            if (project is None or project.package_status != PackageStatus.ACTIVE
                    or project.activation_notified_at is not None):
                return False
            self._projects[project_id] = project.model_copy(update={"activation_notified_at": now})
            return True
