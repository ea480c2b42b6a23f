from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user
from ..rbac import require_staff
from ..services import checkouts
from .. import audit, models, schemas

router = APIRouter(prefix="/api/equipment", tags=["equipment"])


@router.get("/statuses", response_model=list[str])
def list_statuses(user: models.User = Depends(get_current_user)):
    return [s.value for s in models.EquipmentStatus]


@router.get("/types", response_model=list[str])
def list_types(user: models.User = Depends(get_current_user)):
    return list(models.EQUIPMENT_TYPES)


@router.post("", response_model=schemas.EquipmentOut, status_code=status.HTTP_201_CREATED)
def create_equipment(
    equipment: schemas.EquipmentCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    require_staff(user)
    try:
        checkouts.ensure_equipment_status_writable(None, equipment.status)
    except checkouts.CheckoutConflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    db_eq = models.Equipment(**equipment.model_dump())
    db.add(db_eq)
    db.commit()
    db.refresh(db_eq)
    return db_eq


@router.get("", response_model=list[schemas.EquipmentOut])
def list_equipment(
    status_filter: models.EquipmentStatus | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    q = db.query(models.Equipment)
    if status_filter:
        q = q.filter(models.Equipment.status == status_filter)
    return q.order_by(models.Equipment.name.asc()).all()


@router.get("/{equipment_id}", response_model=schemas.EquipmentOut)
def get_equipment(
    equipment_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    eq = db.get(models.Equipment, equipment_id)
    if not eq:
        raise HTTPException(status_code=404, detail="Equipment not found")
    return eq


@router.put("/{equipment_id}", response_model=schemas.EquipmentOut)
def update_equipment(
    equipment_id: UUID,
    data: schemas.EquipmentUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    require_staff(user)
    eq = db.get(models.Equipment, equipment_id)
    if not eq:
        raise HTTPException(status_code=404, detail="Equipment not found")
    changes = data.model_dump(exclude_unset=True)
    if changes.get("status") is not None:
        try:
            checkouts.ensure_equipment_status_writable(eq, changes["status"])
        except checkouts.CheckoutConflict as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    for k, v in changes.items():
        if v is None and k in ("name", "type", "status"):
            continue
        setattr(eq, k, v)
    db.commit()
    db.refresh(eq)
    return eq


@router.delete("/{equipment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_equipment(
    equipment_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    require_staff(user)
    eq = (
        db.query(models.Equipment)
        .filter(models.Equipment.id == equipment_id)
        .with_for_update()
        .one_or_none()
    )
    if not eq:
        raise HTTPException(status_code=404, detail="Equipment not found")
    try:
        checkouts.ensure_equipment_removable(eq)
    except checkouts.CheckoutConflict as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    audit.log_action(
        db,
        user.id,
        "equipment_delete",
        "equipment",
        eq.id,
        {"name": eq.name, "serial_number": eq.serial_number},
        commit=False,
    )
    db.delete(eq)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
