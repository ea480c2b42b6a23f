"""Equipment issue reports: triage, assignment and resolution."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Query, Session, joinedload

from .. import audit, models, notify, schemas
from ..models import IssuePriority, IssueStatus
from ..rbac import (
    IssueOperation,
    STAFF_ROLES,
    authorize,
    can_modify_issue,
    can_view_issue,
    is_scoped_to_self,
)
from .checkouts import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

# purpose: let trainers report equipment faults and staff take charge of and resolve them
# status: active
# depends_on: backend.app.models.Issue, backend.app.rbac

logger = logging.getLogger(__name__)

_NON_NULLABLE_FIELDS = ("title", "description", "equipment_id", "priority", "status")
_STAFF_FIELDS = ("status", "assigned_to", "resolution_notes")


class IssueError(RuntimeError):
    """Base error for issue operations."""


class IssueValidationError(IssueError):
    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        super().__init__(
            "; ".join(f"{field}: {message}" for field, messages in errors.items() for message in messages)
        )


class IssueAuthorizationError(IssueError):
    pass


class IssueNotFound(IssueError):
    pass


class IssueConflict(IssueError):
    """Raised when the issue's status forbids the requested step."""


@dataclass
class IssueFilters:
    status: IssueStatus | None = None
    priority: IssuePriority | None = None
    equipment_id: UUID | None = None
    reported_by: UUID | None = None
    assigned_to: UUID | None = None
    search: str | None = None
    page: int = 1
    per_page: int = DEFAULT_PAGE_SIZE


def statuses() -> list[str]:
    return [status.value for status in IssueStatus]


def priorities() -> list[str]:
    return [priority.value for priority in IssuePriority]


def _require(actor: models.User, operation: IssueOperation) -> None:
    if not authorize(actor.role, operation):
        logger.warning(
            "issue %s denied for user %s with role %s",
            operation.value,
            actor.id,
            actor.role.value,
        )
        raise IssueAuthorizationError("Not authorized")


def _with_relations(query: Query) -> Query:
    return query.options(
        joinedload(models.Issue.equipment),
        joinedload(models.Issue.reporter),
        joinedload(models.Issue.assignee),
    )


def _load(db: Session, issue_id: UUID) -> models.Issue:
    issue = db.get(models.Issue, issue_id)
    if issue is None:
        raise IssueNotFound(f"issue {issue_id} not found")
    return issue


def _ensure_modifiable(actor: models.User, issue: models.Issue, verb: str) -> None:
    if can_modify_issue(actor, issue):
        return
    if issue.reported_by == actor.id:
        raise IssueAuthorizationError(f"Cannot {verb} an assigned issue")
    raise IssueAuthorizationError("Not authorized")


def _audit_value(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, (IssueStatus, IssuePriority)):
        return value.value
    return str(value)


def _notify_reporter(db: Session, issue: models.Issue, title: str, message: str) -> None:
    notify.notify_user(
        db,
        issue.reporter,
        title,
        message,
        category="Problème",
        related_type="Issue",
        related_id=issue.id,
    )


def create_issue(
    db: Session,
    payload: schemas.IssueCreate,
    *,
    actor: models.User,
    today: date | None = None,
) -> models.Issue:
    _require(actor, IssueOperation.REPORT)
    errors: dict[str, list[str]] = {}
    if not payload.title.strip():
        errors["title"] = ["The title field is required."]
    if not payload.description.strip():
        errors["description"] = ["The description field is required."]
    equipment = db.get(models.Equipment, payload.equipment_id)
    if equipment is None:
        errors["equipment_id"] = ["The selected equipment does not exist."]
    if errors:
        raise IssueValidationError(errors)

    issue = models.Issue(
        title=payload.title,
        description=payload.description,
        equipment=equipment,
        priority=payload.priority,
        status=IssueStatus.OPEN,
        reported_by=actor.id,
        reported_date=today or date.today(),
    )
    db.add(issue)
    db.flush()
    audit.log_action(
        db,
        actor.id,
        "issue_report",
        "issue",
        issue.id,
        {"equipment_id": str(equipment.id), "priority": payload.priority.value},
        commit=False,
    )
    logger.info("issue %s reported on equipment %s by %s", issue.id, equipment.id, actor.id)
    return issue


def update_issue(
    db: Session,
    issue_id: UUID,
    patch: schemas.IssueUpdate,
    *,
    actor: models.User,
    today: date | None = None,
) -> models.Issue:
    """Apply a partial update.

    Moving to Résolu stamps ``resolved_date``; moving back to Ouvert or
    En cours clears it so resolution statistics only count settled issues.
    """

    _require(actor, IssueOperation.UPDATE)
    issue = _load(db, issue_id)
    _ensure_modifiable(actor, issue, "update")

    changes = patch.model_dump(exclude_unset=True)
    if actor.role not in STAFF_ROLES and any(field in changes for field in _STAFF_FIELDS):
        raise IssueAuthorizationError("Only staff can change status, assignment or resolution notes")

    errors: dict[str, list[str]] = {}
    for field in _NON_NULLABLE_FIELDS:
        if field in changes and changes[field] is None:
            errors[field] = [f"The {field} field is required."]
    for field in ("title", "description"):
        if changes.get(field) is not None and not changes[field].strip():
            errors[field] = [f"The {field} field is required."]
    equipment = None
    if changes.get("equipment_id") is not None:
        equipment = db.get(models.Equipment, changes["equipment_id"])
        if equipment is None:
            errors["equipment_id"] = ["The selected equipment does not exist."]
    assignee = None
    if changes.get("assigned_to") is not None:
        assignee = db.get(models.User, changes["assigned_to"])
        if assignee is None:
            errors["assigned_to"] = ["The selected user does not exist."]
        elif assignee.role not in STAFF_ROLES:
            errors["assigned_to"] = ["Issues can only be assigned to an administrator or a manager."]
    if errors:
        raise IssueValidationError(errors)

    old_status = issue.status
    for field in ("title", "description", "priority", "resolution_notes"):
        if field in changes:
            setattr(issue, field, changes[field])
    if equipment is not None:
        issue.equipment = equipment
    if "assigned_to" in changes:
        issue.assignee = assignee
    if "status" in changes:
        new_status = changes["status"]
        if new_status is IssueStatus.RESOLVED and old_status is not IssueStatus.RESOLVED:
            issue.resolved_date = today or date.today()
        elif not new_status.is_settled:
            issue.resolved_date = None
        issue.status = new_status
    db.flush()

    audit.log_action(
        db,
        actor.id,
        "issue_update",
        "issue",
        issue.id,
        {key: _audit_value(value) for key, value in changes.items()},
        commit=False,
    )
    if issue.status is not old_status:
        logger.info("issue %s moved to %s by %s", issue.id, issue.status.value, actor.id)
    return issue


def delete_issue(db: Session, issue_id: UUID, *, actor: models.User) -> None:
    _require(actor, IssueOperation.DELETE)
    issue = _load(db, issue_id)
    _ensure_modifiable(actor, issue, "delete")
    audit.log_action(
        db,
        actor.id,
        "issue_delete",
        "issue",
        issue.id,
        {"status": issue.status.value, "equipment_id": str(issue.equipment_id)},
        commit=False,
    )
    db.delete(issue)
    db.flush()
    logger.info("issue %s deleted by %s", issue_id, actor.id)


def take_charge(db: Session, issue_id: UUID, *, actor: models.User) -> models.Issue:
    """Assign the issue to ``actor`` and move it to En cours."""

    _require(actor, IssueOperation.TAKE_CHARGE)
    issue = _load(db, issue_id)
    if issue.status.is_settled:
        raise IssueConflict("A resolved or closed issue cannot be taken in charge.")
    issue.assigned_to = actor.id
    issue.status = IssueStatus.IN_PROGRESS
    db.flush()
    audit.log_action(db, actor.id, "issue_take_charge", "issue", issue.id, commit=False)
    _notify_reporter(
        db,
        issue,
        "Signalement pris en charge",
        f"Votre signalement « {issue.title} » est en cours de traitement.",
    )
    logger.info("issue %s taken in charge by %s", issue.id, actor.id)
    return issue


def mark_resolved(
    db: Session,
    issue_id: UUID,
    payload: schemas.IssueResolve,
    *,
    actor: models.User,
    today: date | None = None,
) -> models.Issue:
    _require(actor, IssueOperation.RESOLVE)
    if not payload.resolution_notes.strip():
        raise IssueValidationError({"resolution_notes": ["The resolution notes field is required."]})
    issue = _load(db, issue_id)
    if issue.status is IssueStatus.CLOSED:
        raise IssueConflict("A closed issue cannot be resolved again.")
    issue.status = IssueStatus.RESOLVED
    issue.resolved_date = today or date.today()
    issue.resolution_notes = payload.resolution_notes
    db.flush()
    audit.log_action(db, actor.id, "issue_resolve", "issue", issue.id, commit=False)
    _notify_reporter(
        db,
        issue,
        "Signalement résolu",
        f"Votre signalement « {issue.title} » a été résolu.",
    )
    logger.info("issue %s resolved by %s", issue.id, actor.id)
    return issue


def get_issue(db: Session, issue_id: UUID, *, actor: models.User) -> models.Issue:
    _require(actor, IssueOperation.SHOW)
    issue = (
        _with_relations(db.query(models.Issue))
        .filter(models.Issue.id == issue_id)
        .one_or_none()
    )
    if issue is None:
        raise IssueNotFound(f"issue {issue_id} not found")
    if not can_view_issue(actor, issue):
        raise IssueAuthorizationError("Not authorized")
    return issue


def _scoped_query(db: Session, actor: models.User) -> Query:
    query = db.query(models.Issue)
    if is_scoped_to_self(actor):
        query = query.filter(models.Issue.reported_by == actor.id)
    return query


def list_issues(
    db: Session,
    *,
    actor: models.User,
    filters: IssueFilters | None = None,
) -> schemas.IssuePage:
    _require(actor, IssueOperation.LIST)
    filters = filters or IssueFilters()

    query = _scoped_query(db, actor)
    if filters.reported_by and not is_scoped_to_self(actor):
        query = query.filter(models.Issue.reported_by == filters.reported_by)
    if filters.status:
        query = query.filter(models.Issue.status == filters.status)
    if filters.priority:
        query = query.filter(models.Issue.priority == filters.priority)
    if filters.equipment_id:
        query = query.filter(models.Issue.equipment_id == filters.equipment_id)
    if filters.assigned_to:
        query = query.filter(models.Issue.assigned_to == filters.assigned_to)
    search = (filters.search or "").strip()
    if search:
        term = f"%{search}%"
        query = query.filter(
            sa.or_(models.Issue.title.ilike(term), models.Issue.description.ilike(term))
        )

    per_page = min(max(1, filters.per_page), MAX_PAGE_SIZE)
    page = max(1, filters.page)
    total = query.count()
    rows = (
        _with_relations(query)
        .order_by(models.Issue.reported_date.desc(), models.Issue.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return schemas.IssuePage(
        data=[schemas.IssueOut.model_validate(row) for row in rows],
        current_page=page,
        last_page=max(1, math.ceil(total / per_page)),
        per_page=per_page,
        total=total,
    )


def issue_stats(db: Session, *, actor: models.User) -> schemas.IssueStats:
    """Counts per stage plus the mean days from report to resolution, e.g. ``"3j"``."""

    _require(actor, IssueOperation.STATS)
    base = _scoped_query(db, actor)
    Issue = models.Issue

    spans = [
        (resolved - reported).days
        for reported, resolved in base.filter(Issue.resolved_date.isnot(None))
        .with_entities(Issue.reported_date, Issue.resolved_date)
        .all()
    ]
    average = sum(spans) / len(spans) if spans else 0
    return schemas.IssueStats(
        pending=base.filter(Issue.status == IssueStatus.OPEN).count(),
        inProgress=base.filter(Issue.status == IssueStatus.IN_PROGRESS).count(),
        resolved=base.filter(Issue.status.in_([IssueStatus.RESOLVED, IssueStatus.CLOSED])).count(),
        avgResolutionTime=f"{math.floor(average + 0.5)}j",
    )
