"""Project package pipeline.

Fixed four-stage approval that gates project activation::

    PM_DRAFT ──► PJM_REVIEW ──► ENG_REVIEW ──► PM_ACTIVATE ──► ACTIVE
        ▲             ▲              ▲              │
        └─────────────┴──── SENT_BACK ◄─────────────┘ (any stage, named target)

SENT_BACK is not a stage of its own: it parks the package at the stage named
by ``package_sent_back_to`` until that stage's owner advances again. ACTIVE is
terminal; nothing in this module moves a project out of it.
"""

from datetime import datetime
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Tuple

from delivery_workflow.db_models.enums import (
    PackageEventType,
    PackageStage,
    PackageStatus,
    Role,
)
from delivery_workflow.errors import (
    CommentRequired,
    Forbidden,
    InvalidSendBackTarget,
    PackageActive,
)
from delivery_workflow.models import (
    PackageTimelineEntry,
    Project,
    ProjectPackageEvent,
    utcnow,
)


class StageRule(NamedTuple):
    """One forward stage of the pipeline and who may act on it."""
    status: PackageStatus
    stage: PackageStage
    label: str
    next_status: PackageStatus
    roles: FrozenSet[Role]
    owner_only: bool = False
    delivery_manager_only: bool = False


STAGE_FLOW: List[StageRule] = [
    StageRule(PackageStatus.PM_DRAFT, PackageStage.PM, "Product Manager Prep",
              PackageStatus.PJM_REVIEW, frozenset({Role.PM}), owner_only=True),
    StageRule(PackageStatus.PJM_REVIEW, PackageStage.PJM, "Project Manager Review",
              PackageStatus.ENG_REVIEW, frozenset({Role.PROJECT_MANAGER}), delivery_manager_only=True),
    StageRule(PackageStatus.ENG_REVIEW, PackageStage.ENG, "Engineering Review",
              PackageStatus.PM_ACTIVATE, frozenset({Role.ENGINEER})),
    StageRule(PackageStatus.PM_ACTIVATE, PackageStage.PM, "Product Manager Activation",
              PackageStatus.ACTIVE, frozenset({Role.PM}), owner_only=True),
]

STAGE_BY_STATUS: Dict[PackageStatus, StageRule] = {rule.status: rule for rule in STAGE_FLOW}

RETURN_TARGETS: Dict[PackageStage, StageRule] = {
    PackageStage.PM: STAGE_FLOW[0],
    PackageStage.PJM: STAGE_FLOW[1],
    PackageStage.ENG: STAGE_FLOW[2],
}

SUPERVISOR_ROLES = frozenset({Role.SUPER_ADMIN})


def stage_position(rule: StageRule) -> int:
    return STAGE_FLOW.index(rule)


def resolve_active_stage(project: Project) -> Optional[StageRule]:
    """Stage whose owner currently holds the package, or None once ACTIVE."""
    status = project.package_status or PackageStatus.PM_DRAFT
    if status == PackageStatus.ACTIVE:
        return None
    if status == PackageStatus.SENT_BACK:
        return RETURN_TARGETS.get(project.package_sent_back_to, STAGE_FLOW[0])
    return STAGE_BY_STATUS.get(status, STAGE_FLOW[0])


def can_act(
    rule: StageRule,
    project: Project,
    actor_id: str,
    actor_role: Optional[Role],
    actor_company_id: Optional[str] = None,
) -> bool:
    if actor_role in SUPERVISOR_ROLES:
        return True
    if actor_role not in rule.roles:
        return False
    if rule.owner_only and project.owner_id != actor_id:
        return False
    if rule.delivery_manager_only:
        is_assigned = project.delivery_manager_id == actor_id
        is_vendor_colleague = bool(actor_company_id) and actor_company_id in project.vendor_company_ids
        if not (is_assigned or is_vendor_colleague):
            return False
    return True


def ensure_stage_access(
    rule: StageRule,
    project: Project,
    actor_id: str,
    actor_role: Optional[Role],
    actor_company_id: Optional[str] = None,
) -> None:
    if not can_act(rule, project, actor_id, actor_role, actor_company_id):
        raise Forbidden(f"You cannot act on the '{rule.label}' stage of project {project.id}.")


def _active_stage_or_raise(project: Project) -> StageRule:
    rule = resolve_active_stage(project)
    if rule is None:
        raise PackageActive(f"Project {project.id} package is already active.")
    return rule


def advance(
    project: Project,
    actor_id: str,
    actor_role: Optional[Role],
    actor_company_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Project, ProjectPackageEvent]:
    """Move the package one stage forward; from PM_ACTIVATE this activates it."""
    rule = _active_stage_or_raise(project)
    ensure_stage_access(rule, project, actor_id, actor_role, actor_company_id)

    now = now or utcnow()
    next_status = rule.next_status
    updated = project.model_copy(update={
        "package_status": next_status,
        "package_sent_back_to": None,
        "package_sent_back_reason": None,
        "package_sent_back_by_id": None,
        "package_sent_back_at": None,
        "updated_at": now,
    })
    event = ProjectPackageEvent(
        project_id=project.id,
        actor_id=actor_id,
        event=PackageEventType.ACTIVATE if next_status == PackageStatus.ACTIVE else PackageEventType.ADVANCE,
        from_status=project.package_status,
        to_status=next_status,
        created_at=now,
    )
    return updated, event


def send_back(
    project: Project,
    target_stage: PackageStage,
    reason: Optional[str],
    actor_id: str,
    actor_role: Optional[Role],
    actor_company_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Project, ProjectPackageEvent]:
    """Return the package to ``target_stage`` with a mandatory reason."""
    rule = _active_stage_or_raise(project)
    ensure_stage_access(rule, project, actor_id, actor_role, actor_company_id)

    target = RETURN_TARGETS.get(target_stage)
    if target is None:
        raise InvalidSendBackTarget(f"Invalid send-back target {target_stage}.")
    if stage_position(target) > stage_position(rule):
        raise InvalidSendBackTarget(
            f"Cannot send the package forward from '{rule.label}' to '{target.label}'."
        )
    reason = (reason or "").strip()
    if not reason:
        raise CommentRequired("A reason is required to send the package back.")

    now = now or utcnow()
    updated = project.model_copy(update={
        "package_status": PackageStatus.SENT_BACK,
        "package_sent_back_to": target.stage,
        "package_sent_back_reason": reason,
        "package_sent_back_by_id": actor_id,
        "package_sent_back_at": now,
        "updated_at": now,
    })
    event = ProjectPackageEvent(
        project_id=project.id,
        actor_id=actor_id,
        event=PackageEventType.SEND_BACK,
        from_status=project.package_status,
        to_status=PackageStatus.SENT_BACK,
        target_stage=target.stage,
        reason=reason,
        created_at=now,
    )
    return updated, event


def build_timeline(project: Project) -> List[PackageTimelineEntry]:
    """Per-stage done/active/upcoming markers for display."""
    rule = resolve_active_stage(project)
    current = stage_position(rule) if rule is not None else len(STAGE_FLOW)
    sent_back = project.package_status == PackageStatus.SENT_BACK
    entries = []
    for position, entry in enumerate(STAGE_FLOW):
        if position < current:
            entries.append(PackageTimelineEntry(stage=entry.status, label=entry.label, status="done"))
        elif position == current:
            entries.append(PackageTimelineEntry(
                stage=entry.status, label=entry.label, status="active",
                is_current=True, is_sent_back=sent_back,
            ))
        else:
            entries.append(PackageTimelineEntry(stage=entry.status, label=entry.label, status="upcoming"))
    return entries


def status_label(project: Project) -> str:
    status = project.package_status or PackageStatus.PM_DRAFT
    if status == PackageStatus.SENT_BACK:
        target = RETURN_TARGETS.get(project.package_sent_back_to, STAGE_FLOW[0])
        return f"Sent back to {target.label}"
    if status == PackageStatus.ACTIVE:
        return "Activated"
    rule = STAGE_BY_STATUS.get(status)
    return rule.label if rule else "Unknown"
