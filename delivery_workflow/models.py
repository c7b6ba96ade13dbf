import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from delivery_workflow.db_models.enums import (
    ApproverType,
    DynamicApproverType,
    EntityType,
    InstanceStatus,
    PackageEventType,
    PackageStage,
    PackageStatus,
    Role,
    StepStatus,
    WorkflowActionType,
)


def utcnow() -> datetime:
    """Naive UTC timestamp; stored columns are timezone-less."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StepDefinitionInput(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., description="Name of the review step", title="Step Name",
                      examples=["Delivery manager review", "Engineering review"])
    description: Optional[str] = None
    order: Optional[int] = Field(None, description="Position of the step; defaults to list position + 1")
    assignee_role: Optional[Role] = None
    approver_type: Optional[ApproverType] = None
    approver_role: Optional[Role] = None
    dynamic_approver_type: Optional[DynamicApproverType] = None
    requires_comment_on_reject: bool = False
    requires_comment_on_send_back: bool = False
    allowed_actions: Optional[List[WorkflowActionType]] = None


class WorkflowDefinitionCreateRequest(BaseModel):
    name: str
    description: Optional[str] = ""
    entity_type: EntityType = EntityType.TASK
    is_active: bool = True
    steps: List[StepDefinitionInput] = Field(default_factory=list)


class StepDefinition(BaseModel):
    id: str = Field(default_factory=lambda: "step_" + str(uuid.uuid4())[:8])
    name: str
    description: Optional[str] = None
    order: int
    assignee_role: Role
    approver_type: ApproverType
    approver_role: Optional[Role] = None
    dynamic_approver_type: Optional[DynamicApproverType] = None
    requires_comment_on_reject: bool = False
    requires_comment_on_send_back: bool = False
    allowed_actions: List[WorkflowActionType] = Field(default_factory=list)

    class Config:
        from_attributes = True


class WorkflowDefinition(BaseModel):
    id: str = Field(default_factory=lambda: "def_" + str(uuid.uuid4())[:8])
    name: str
    description: Optional[str] = ""
    entity_type: EntityType = EntityType.TASK
    is_active: bool = True
    version: int = 1
    previous_version_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    steps: List[StepDefinition] = Field(default_factory=list)

    class Config:
        from_attributes = True


class StepInstance(StepDefinition):
    """A definition step copied into an instance, plus its run state."""

    status: StepStatus = StepStatus.PENDING
    acted_by_id: Optional[str] = None
    acted_at: Optional[datetime] = None
    action: Optional[WorkflowActionType] = None
    comment: Optional[str] = None


class WorkflowInstance(BaseModel):
    id: str = Field(default_factory=lambda: "wf_" + str(uuid.uuid4())[:8])
    definition_id: str
    entity_id: str
    entity_type: EntityType = EntityType.TASK
    status: InstanceStatus = InstanceStatus.NOT_STARTED
    current_step_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    steps: List[StepInstance] = Field(default_factory=list)
    version: int = 1
    completion_notified_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True


class WorkflowAction(BaseModel):
    id: str = Field(default_factory=lambda: "act_" + str(uuid.uuid4())[:8])
    instance_id: str
    sequence: int = 0
    step_id: str
    actor_id: str
    action: WorkflowActionType
    comment: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class WorkflowInstanceCreateRequest(BaseModel):
    definition_id: str
    entity_id: str
    entity_type: Optional[EntityType] = Field(None, description="Defaults to the definition's entity type")
    context: Dict[str, Any] = Field(default_factory=dict)


class WorkflowActionRequest(BaseModel):
    action: WorkflowActionType
    comment: Optional[str] = Field(None, max_length=1024)
    target_step_id: Optional[str] = Field(None, description="Explicit earlier step for SEND_BACK")
    step_id: Optional[str] = Field(None, description="Step the caller believes is active")


class ContextUpdateRequest(BaseModel):
    context: Dict[str, Any]


class ActionResult(BaseModel):
    instance: WorkflowInstance
    action: WorkflowAction


class Project(BaseModel):
    id: str = Field(default_factory=lambda: "prj_" + str(uuid.uuid4())[:8])
    name: str
    owner_id: str
    delivery_manager_id: Optional[str] = None
    vendor_company_ids: List[str] = Field(default_factory=list)
    package_status: PackageStatus = PackageStatus.PM_DRAFT
    package_sent_back_to: Optional[PackageStage] = None
    package_sent_back_reason: Optional[str] = None
    package_sent_back_by_id: Optional[str] = None
    package_sent_back_at: Optional[datetime] = None
    version: int = 1
    activation_notified_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True


class ProjectCreateRequest(BaseModel):
    name: str
    owner_id: Optional[str] = None
    delivery_manager_id: Optional[str] = None
    vendor_company_ids: List[str] = Field(default_factory=list)


class PackageSendBackRequest(BaseModel):
    target_stage: PackageStage
    reason: str


class ProjectPackageEvent(BaseModel):
    id: str = Field(default_factory=lambda: "pev_" + str(uuid.uuid4())[:8])
    project_id: str
    sequence: int = 0
    actor_id: str
    event: PackageEventType
    from_status: PackageStatus
    to_status: PackageStatus
    target_stage: Optional[PackageStage] = None
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class PackageTimelineEntry(BaseModel):
    stage: PackageStatus
    label: str
    status: str  # done | active | upcoming
    is_current: bool = False
    is_sent_back: bool = False


class PackageView(BaseModel):
    project: Project
    active_stage: Optional[PackageStatus] = None
    timeline: List[PackageTimelineEntry] = Field(default_factory=list)
