import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SQLAlchemyEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from delivery_workflow.db_models.base import Base
from delivery_workflow.db_models.enums import (
    ApproverType,
    DynamicApproverType,
    EntityType,
    InstanceStatus,
    Role,
    WorkflowActionType,
)


class WorkflowDefinition(Base):
    __tablename__ = "workflow_definitions"

    id = Column(String, primary_key=True, index=True, default=lambda: "def_" + str(uuid.uuid4())[:8])
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True, default="")
    entity_type = Column(SQLAlchemyEnum(EntityType), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    previous_version_id = Column(String, ForeignKey("workflow_definitions.id"), nullable=True)
    created_at = Column(DateTime, nullable=False)

    steps = relationship(
        "WorkflowStepDefinition",
        back_populates="workflow_definition",
        order_by="WorkflowStepDefinition.order",
        cascade="all, delete-orphan",
    )
    instances = relationship("WorkflowInstance", back_populates="definition")


class WorkflowStepDefinition(Base):
    __tablename__ = "workflow_step_definitions"
    __table_args__ = (UniqueConstraint("workflow_definition_id", "order", name="uq_step_definition_order"),)

    # Step ids are only unique within a definition; new versions reuse them.
    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, index=True)
    workflow_definition_id = Column(String, ForeignKey("workflow_definitions.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    order = Column(Integer, nullable=False)
    assignee_role = Column(SQLAlchemyEnum(Role), nullable=False)
    approver_type = Column(SQLAlchemyEnum(ApproverType), nullable=False)
    approver_role = Column(SQLAlchemyEnum(Role), nullable=True)
    dynamic_approver_type = Column(SQLAlchemyEnum(DynamicApproverType), nullable=True)
    requires_comment_on_reject = Column(Boolean, nullable=False, default=False)
    requires_comment_on_send_back = Column(Boolean, nullable=False, default=False)
    allowed_actions = Column(JSON, nullable=False, default=list)

    workflow_definition = relationship("WorkflowDefinition", back_populates="steps")


class WorkflowInstance(Base):
    __tablename__ = "workflow_instances"
    __table_args__ = (UniqueConstraint("entity_type", "entity_id", name="uq_instance_entity"),)

    id = Column(String, primary_key=True, index=True, default=lambda: "wf_" + str(uuid.uuid4())[:8])
    definition_id = Column(String, ForeignKey("workflow_definitions.id"), nullable=False, index=True)
    entity_id = Column(String, nullable=False, index=True)
    entity_type = Column(SQLAlchemyEnum(EntityType), nullable=False)
    status = Column(SQLAlchemyEnum(InstanceStatus), nullable=False, default=InstanceStatus.NOT_STARTED)
    current_step_id = Column(String, nullable=True)
    context = Column(JSON, nullable=False, default=dict)
    steps = Column(JSON, nullable=False, default=list)  # snapshot of the definition steps plus run state
    version = Column(Integer, nullable=False, default=1)
    completion_notified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    definition = relationship("WorkflowDefinition", back_populates="instances")
    actions = relationship(
        "WorkflowAction",
        back_populates="instance",
        order_by="WorkflowAction.sequence",
        cascade="all, delete-orphan",
    )


class WorkflowAction(Base):
    __tablename__ = "workflow_actions"
    __table_args__ = (UniqueConstraint("instance_id", "sequence", name="uq_action_sequence"),)

    id = Column(String, primary_key=True, index=True, default=lambda: "act_" + str(uuid.uuid4())[:8])
    instance_id = Column(String, ForeignKey("workflow_instances.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    step_id = Column(String, nullable=False)
    actor_id = Column(String, nullable=False)
    action = Column(SQLAlchemyEnum(WorkflowActionType), nullable=False)
    comment = Column(Text, nullable=True)
    extra_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False)

    instance = relationship("WorkflowInstance", back_populates="actions")
