from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    VP = "VP"
    PM = "PM"
    ENGINEER = "ENGINEER"
    PROJECT_MANAGER = "PROJECT_MANAGER"
    DEVELOPER = "DEVELOPER"
    VIEWER = "VIEWER"


class EntityType(str, Enum):
    TASK = "TASK"
    PROJECT = "PROJECT"


class ApproverType(str, Enum):
    ROLE = "ROLE"
    DYNAMIC = "DYNAMIC"


class DynamicApproverType(str, Enum):
    ENGINEERING_TEAM = "ENGINEERING_TEAM"
    TASK_PROJECT_MANAGER = "TASK_PROJECT_MANAGER"
    TASK_PM = "TASK_PM"
    TASK_ASSIGNED_DEVELOPER = "TASK_ASSIGNED_DEVELOPER"


class WorkflowActionType(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SEND_BACK = "SEND_BACK"
    REQUEST_CHANGE = "REQUEST_CHANGE"
    # Lifecycle entries, audited but never submitted through apply
    START = "START"
    RESUBMIT = "RESUBMIT"


REVIEW_ACTIONS = (
    WorkflowActionType.APPROVE,
    WorkflowActionType.REJECT,
    WorkflowActionType.SEND_BACK,
    WorkflowActionType.REQUEST_CHANGE,
)


class InstanceStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"


class StepStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    SENT_BACK = "SENT_BACK"


class PackageStatus(str, Enum):
    PM_DRAFT = "PM_DRAFT"
    PJM_REVIEW = "PJM_REVIEW"
    ENG_REVIEW = "ENG_REVIEW"
    PM_ACTIVATE = "PM_ACTIVATE"
    SENT_BACK = "SENT_BACK"
    ACTIVE = "ACTIVE"


class PackageStage(str, Enum):
    PM = "PM"
    PJM = "PJM"
    ENG = "ENG"


class PackageEventType(str, Enum):
    ADVANCE = "ADVANCE"
    SEND_BACK = "SEND_BACK"
    ACTIVATE = "ACTIVATE"
