import uuid

from sqlalchemy import (
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
from delivery_workflow.db_models.enums import PackageEventType, PackageStage, PackageStatus


class Project(Base):
    """Gated project; the package pipeline state lives directly on this row."""

    __tablename__ = "projects"

    id = Column(String, primary_key=True, index=True, default=lambda: "prj_" + str(uuid.uuid4())[:8])
    name = Column(String, nullable=False)
    owner_id = Column(String, nullable=False, index=True)
    delivery_manager_id = Column(String, nullable=True, index=True)
    vendor_company_ids = Column(JSON, nullable=False, default=list)

    package_status = Column(SQLAlchemyEnum(PackageStatus), nullable=False, default=PackageStatus.PM_DRAFT)
    package_sent_back_to = Column(SQLAlchemyEnum(PackageStage), nullable=True)
    package_sent_back_reason = Column(Text, nullable=True)
    package_sent_back_by_id = Column(String, nullable=True)
    package_sent_back_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    activation_notified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)

    package_events = relationship(
        "ProjectPackageEvent",
        back_populates="project",
        order_by="ProjectPackageEvent.sequence",
        cascade="all, delete-orphan",
    )


class ProjectPackageEvent(Base):
    __tablename__ = "project_package_events"
    __table_args__ = (UniqueConstraint("project_id", "sequence", name="uq_package_event_sequence"),)

    id = Column(String, primary_key=True, index=True, default=lambda: "pev_" + str(uuid.uuid4())[:8])
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    actor_id = Column(String, nullable=False)
    event = Column(SQLAlchemyEnum(PackageEventType), nullable=False)
    from_status = Column(SQLAlchemyEnum(PackageStatus), nullable=False)
    to_status = Column(SQLAlchemyEnum(PackageStatus), nullable=False)
    target_stage = Column(SQLAlchemyEnum(PackageStage), nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)

    project = relationship("Project", back_populates="package_events")
