"""Checkout lifecycle API routes."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..models import CheckoutStatus
from ..rbac import CheckoutOperation, authorize
from ..services import checkouts

# purpose: expose equipment lending, returns, overdue sweep and dashboard stats
# status: active
# depends_on: backend.app.services.checkouts

router = APIRouter(prefix="/api/checkouts", tags=["checkouts"])


def _translate(db: Session, exc: checkouts.CheckoutError) -> HTTPException:
    db.rollback()
    if isinstance(exc, checkouts.CheckoutValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"errors": exc.errors},
        )
    if isinstance(exc, checkouts.CheckoutAuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, checkouts.CheckoutNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checkout not found")
    # unavailable equipment is reported as unprocessable, not as a 409
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))


@router.get("/statuses", response_model=list[str])
def list_statuses(user: models.User = Depends(get_current_user)):
    return checkouts.statuses()


@router.get("/stats", response_model=schemas.CheckoutStats)
def get_stats(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return checkouts.checkout_stats(db, actor=user)
    except checkouts.CheckoutError as exc:
        raise _translate(db, exc) from exc


@router.post("/update-overdue", response_model=schemas.OverdueSweepResult)
def update_overdue(
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    if not authorize(user.role, CheckoutOperation.OVERDUE_SWEEP):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    updated = checkouts.run_overdue_sweep(db)
    db.commit()
    return schemas.OverdueSweepResult(
        message=f"{updated} checkout(s) marked as overdue",
        updated_count=updated,
    )


@router.get("", response_model=schemas.CheckoutPage)
def list_checkouts(
    status_filter: CheckoutStatus | None = Query(None, alias="status"),
    equipment_id: UUID | None = None,
    user_id: UUID | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(checkouts.DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    filters = checkouts.CheckoutFilters(
        status=status_filter,
        equipment_id=equipment_id,
        user_id=user_id,
        search=search,
        page=page,
        per_page=per_page,
    )
    try:
        return checkouts.list_checkouts(db, actor=user, filters=filters)
    except checkouts.CheckoutError as exc:
        raise _translate(db, exc) from exc


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.CheckoutOut,
)
def create_checkout(
    payload: schemas.CheckoutCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        checkout = checkouts.create_checkout(db, payload, actor=user)
        db.commit()
    except checkouts.CheckoutError as exc:
        raise _translate(db, exc) from exc
    db.refresh(checkout)
    return checkout


@router.get("/{checkout_id}", response_model=schemas.CheckoutOut)
def get_checkout(
    checkout_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return checkouts.get_checkout(db, checkout_id, actor=user)
    except checkouts.CheckoutError as exc:
        raise _translate(db, exc) from exc


@router.put("/{checkout_id}", response_model=schemas.CheckoutOut)
def update_checkout(
    checkout_id: UUID,
    payload: schemas.CheckoutUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        checkout = checkouts.update_checkout(db, checkout_id, payload, actor=user)
        db.commit()
    except checkouts.CheckoutError as exc:
        raise _translate(db, exc) from exc
    db.refresh(checkout)
    return checkout


@router.delete("/{checkout_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_checkout(
    checkout_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        checkouts.delete_checkout(db, checkout_id, actor=user)
        db.commit()
    except checkouts.CheckoutError as exc:
        raise _translate(db, exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
