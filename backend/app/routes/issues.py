"""Equipment issue reporting API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..models import IssuePriority, IssueStatus
from ..services import issues

# purpose: expose issue reporting, take-charge and resolution to trainers and staff
# status: active
# depends_on: backend.app.services.issues

router = APIRouter(prefix="/api/issues", tags=["issues"])


def _translate(db: Session, exc: issues.IssueError) -> HTTPException:
    db.rollback()
    if isinstance(exc, issues.IssueValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"errors": exc.errors},
        )
    if isinstance(exc, issues.IssueAuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, issues.IssueNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Issue not found")
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@router.get("/priorities", response_model=list[str])
def list_priorities(user: models.User = Depends(get_current_user)):
    return issues.priorities()


@router.get("/statuses", response_model=list[str])
def list_statuses(user: models.User = Depends(get_current_user)):
    return issues.statuses()


@router.get("/stats", response_model=schemas.IssueStats)
def get_stats(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return issues.issue_stats(db, actor=user)
    except issues.IssueError as exc:
        raise _translate(db, exc) from exc


@router.get("", response_model=schemas.IssuePage)
def list_issues(
    status_filter: IssueStatus | None = Query(None, alias="status"),
    priority: IssuePriority | None = None,
    equipment_id: UUID | None = None,
    reported_by: UUID | None = None,
    assigned_to: UUID | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(issues.DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    filters = issues.IssueFilters(
        status=status_filter,
        priority=priority,
        equipment_id=equipment_id,
        reported_by=reported_by,
        assigned_to=assigned_to,
        search=search,
        page=page,
        per_page=per_page,
    )
    try:
        return issues.list_issues(db, actor=user, filters=filters)
    except issues.IssueError as exc:
        raise _translate(db, exc) from exc


@router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.IssueOut)
def create_issue(
    payload: schemas.IssueCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        issue = issues.create_issue(db, payload, actor=user)
        db.commit()
    except issues.IssueError as exc:
        raise _translate(db, exc) from exc
    db.refresh(issue)
    return issue


@router.get("/{issue_id}", response_model=schemas.IssueOut)
def get_issue(
    issue_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return issues.get_issue(db, issue_id, actor=user)
    except issues.IssueError as exc:
        raise _translate(db, exc) from exc


@router.put("/{issue_id}", response_model=schemas.IssueOut)
def update_issue(
    issue_id: UUID,
    payload: schemas.IssueUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        issue = issues.update_issue(db, issue_id, payload, actor=user)
        db.commit()
    except issues.IssueError as exc:
        raise _translate(db, exc) from exc
    db.refresh(issue)
    return issue


@router.delete("/{issue_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_issue(
    issue_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        issues.delete_issue(db, issue_id, actor=user)
        db.commit()
    except issues.IssueError as exc:
        raise _translate(db, exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{issue_id}/take-charge", response_model=schemas.IssueOut)
def take_charge(
    issue_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        issue = issues.take_charge(db, issue_id, actor=user)
        db.commit()
    except issues.IssueError as exc:
        raise _translate(db, exc) from exc
    db.refresh(issue)
    return issue


@router.post("/{issue_id}/mark-as-resolved", response_model=schemas.IssueOut)
def mark_as_resolved(
    issue_id: UUID,
    payload: schemas.IssueResolve,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        issue = issues.mark_resolved(db, issue_id, payload, actor=user)
        db.commit()
    except issues.IssueError as exc:
        raise _translate(db, exc) from exc
    db.refresh(issue)
    return issue
