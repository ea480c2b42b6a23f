from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..rbac import require_role, require_staff
from .. import audit, models, schemas, auth

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/me", response_model=schemas.UserOut)
async def read_profile(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


@router.get("", response_model=list[schemas.UserOut])
async def list_users(
    role: models.Role | None = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    require_staff(current_user)
    q = db.query(models.User).filter(models.User.is_active == True)
    if role:
        q = q.filter(models.User.role == role)
    return q.order_by(models.User.email.asc()).all()


@router.put("/{user_id}/role", response_model=schemas.UserOut)
async def update_role(
    user_id: UUID,
    update: schemas.UserRoleUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    require_role(current_user, (models.Role.ADMINISTRATOR,))
    target = db.get(models.User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    previous = target.role
    target.role = update.role
    audit.log_action(
        db,
        current_user.id,
        "user_role_update",
        "user",
        target.id,
        {"from": previous.value, "to": update.role.value},
        commit=False,
    )
    db.commit()
    db.refresh(target)
    return target
