"""Equipment checkout lifecycle: lending, returns and overdue detection."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Query, Session, joinedload

from .. import audit, models, notify, schemas
from ..models import CheckoutStatus, EquipmentStatus
from ..rbac import CheckoutOperation, authorize, can_view_checkout, is_scoped_to_self

# purpose: own every checkout transition together with the equipment availability it implies
# status: active
# depends_on: backend.app.models.Checkout, backend.app.models.Equipment, backend.app.rbac

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "Cet équipement n'est pas disponible pour le prêt."
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
UPCOMING_WINDOW_DAYS = 3

_TRANSITIONS: dict[CheckoutStatus, frozenset[CheckoutStatus]] = {
    CheckoutStatus.OPEN: frozenset({CheckoutStatus.RETURNED, CheckoutStatus.OVERDUE}),
    CheckoutStatus.OVERDUE: frozenset({CheckoutStatus.RETURNED}),
    CheckoutStatus.RETURNED: frozenset(),
}

# fields that may be omitted from a patch but never cleared
_NON_NULLABLE_FIELDS = (
    "equipment_id",
    "user_id",
    "checkout_date",
    "expected_return_date",
    "purpose",
    "status",
)


class CheckoutError(RuntimeError):
    """Base error for checkout lifecycle operations."""


class CheckoutValidationError(CheckoutError):
    """Raised when input fields are missing, unknown or out of order."""

    def __init__(self, errors: dict[str, list[str]]):
        self.errors = errors
        super().__init__(
            "; ".join(f"{field}: {message}" for field, messages in errors.items() for message in messages)
        )


class CheckoutAuthorizationError(CheckoutError):
    """Raised when the actor's role does not allow the operation."""


class CheckoutNotFound(CheckoutError):
    """Raised when a checkout cannot be located."""


class CheckoutConflict(CheckoutError):
    """Raised when equipment availability or the status machine blocks a change."""


@dataclass
class CheckoutFilters:
    status: CheckoutStatus | None = None
    equipment_id: UUID | None = None
    user_id: UUID | None = None
    search: str | None = None
    page: int = 1
    per_page: int = DEFAULT_PAGE_SIZE


def statuses() -> list[str]:
    return [status.value for status in CheckoutStatus]


def can_transition(current: CheckoutStatus, target: CheckoutStatus) -> bool:
    return current is target or target in _TRANSITIONS[current]


def ensure_equipment_status_writable(
    equipment: models.Equipment | None,
    new_status: EquipmentStatus,
) -> None:
    """Guard equipment-management writes against the checkout-owned Reserved state."""

    current = equipment.status if equipment is not None else None
    if new_status is EquipmentStatus.RESERVED and current is not EquipmentStatus.RESERVED:
        raise CheckoutConflict("Equipment can only be reserved by checking it out.")
    if current is EquipmentStatus.RESERVED and new_status is not EquipmentStatus.RESERVED:
        raise CheckoutConflict("Equipment is out on loan; return the checkout first.")


def ensure_equipment_removable(equipment: models.Equipment) -> None:
    if equipment.status is EquipmentStatus.RESERVED:
        raise CheckoutConflict("Equipment is out on loan; return the checkout first.")


def _require(actor: models.User, operation: CheckoutOperation) -> None:
    if not authorize(actor.role, operation):
        logger.warning(
            "checkout %s denied for user %s with role %s",
            operation.value,
            actor.id,
            actor.role.value,
        )
        raise CheckoutAuthorizationError("Not authorized")


def _with_relations(query: Query) -> Query:
    return query.options(
        joinedload(models.Checkout.equipment),
        joinedload(models.Checkout.user),
        joinedload(models.Checkout.checked_out_by_user),
        joinedload(models.Checkout.checked_in_by_user),
    )


def _lock_equipment(db: Session, equipment_id: UUID) -> models.Equipment | None:
    # row lock serialises concurrent checkouts of the same equipment
    return (
        db.query(models.Equipment)
        .filter(models.Equipment.id == equipment_id)
        .populate_existing()
        .with_for_update()
        .one_or_none()
    )


def _reserve(equipment: models.Equipment) -> None:
    if equipment.status is not EquipmentStatus.FUNCTIONAL:
        raise CheckoutConflict(UNAVAILABLE_MESSAGE)
    equipment.status = EquipmentStatus.RESERVED


def _release(equipment: models.Equipment) -> None:
    equipment.status = EquipmentStatus.FUNCTIONAL


def _audit_value(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, CheckoutStatus):
        return value.value
    return str(value)


def _date_order_errors(checkout_date: date, expected_return_date: date) -> dict[str, list[str]]:
    if expected_return_date <= checkout_date:
        return {"expected_return_date": ["The expected return date must be a date after the checkout date."]}
    return {}


def create_checkout(
    db: Session,
    payload: schemas.CheckoutCreate,
    *,
    actor: models.User,
) -> models.Checkout:
    """Lend Functional equipment to a borrower and mark it Reserved."""

    _require(actor, CheckoutOperation.CREATE)

    errors = _date_order_errors(payload.checkout_date, payload.expected_return_date)
    if not payload.purpose.strip():
        errors["purpose"] = ["The purpose field is required."]
    borrower = db.get(models.User, payload.user_id)
    if borrower is None:
        errors["user_id"] = ["The selected user does not exist."]
    equipment = _lock_equipment(db, payload.equipment_id)
    if equipment is None:
        errors["equipment_id"] = ["The selected equipment does not exist."]
    if errors:
        raise CheckoutValidationError(errors)

    _reserve(equipment)
    checkout = models.Checkout(
        equipment=equipment,
        user=borrower,
        checkout_date=payload.checkout_date,
        expected_return_date=payload.expected_return_date,
        purpose=payload.purpose,
        notes=payload.notes,
        status=CheckoutStatus.OPEN,
        checked_out_by=actor.id,
    )
    db.add(checkout)
    db.flush()

    audit.log_action(
        db,
        actor.id,
        "checkout_create",
        "checkout",
        checkout.id,
        {"equipment_id": str(equipment.id), "user_id": str(borrower.id)},
        commit=False,
    )
    notify.notify_user(
        db,
        borrower,
        "Nouveau prêt",
        f"{equipment.name} vous est prêté jusqu'au {payload.expected_return_date:%d/%m/%Y}.",
        category="Prêt",
        related_type="Checkout",
        related_id=checkout.id,
    )
    logger.info(
        "checkout %s opened: equipment %s lent to %s by %s",
        checkout.id,
        equipment.id,
        borrower.id,
        actor.id,
    )
    return checkout


def update_checkout(
    db: Session,
    checkout_id: UUID,
    patch: schemas.CheckoutUpdate,
    *,
    actor: models.User,
    today: date | None = None,
) -> models.Checkout:
    """Apply a partial update, including returns and equipment reassignment."""

    _require(actor, CheckoutOperation.UPDATE)
    today = today or date.today()

    checkout = db.get(models.Checkout, checkout_id)
    if checkout is None:
        raise CheckoutNotFound(f"checkout {checkout_id} not found")

    changes = patch.model_dump(exclude_unset=True)
    errors: dict[str, list[str]] = {}
    for field in _NON_NULLABLE_FIELDS:
        if field in changes and changes[field] is None:
            errors[field] = [f"The {field} field is required."]
    if errors:
        raise CheckoutValidationError(errors)

    old_status = checkout.status
    new_status = changes.get("status", old_status)
    if not can_transition(old_status, new_status):
        raise CheckoutConflict(
            f"A checkout cannot move from '{old_status.value}' to '{new_status.value}'."
        )
    returning = old_status.is_open and new_status is CheckoutStatus.RETURNED

    checkout_date = changes.get("checkout_date", checkout.checkout_date)
    expected_return_date = changes.get("expected_return_date", checkout.expected_return_date)
    errors.update(_date_order_errors(checkout_date, expected_return_date))

    if new_status is CheckoutStatus.OVERDUE and expected_return_date >= today:
        if old_status is CheckoutStatus.OVERDUE:
            errors.setdefault("expected_return_date", []).append(
                "An overdue checkout must be returned before its return date can be extended."
            )
        else:
            errors["status"] = ["Only checkouts past their expected return date can be marked overdue."]

    if "actual_return_date" in changes:
        actual = changes["actual_return_date"]
        if new_status is not CheckoutStatus.RETURNED:
            if actual is not None:
                errors["actual_return_date"] = ["Only returned checkouts carry an actual return date."]
        elif actual is None and not returning:
            errors["actual_return_date"] = ["A returned checkout must keep its actual return date."]

    # merged value the record will carry, checked even when the client sent none
    actual_return_date = changes.get("actual_return_date") or (
        today if returning else checkout.actual_return_date
    )
    if (
        new_status is CheckoutStatus.RETURNED
        and "actual_return_date" not in errors
        and actual_return_date is not None
        and actual_return_date < checkout_date
    ):
        errors["actual_return_date"] = ["The actual return date cannot precede the checkout date."]

    borrower = None
    if "user_id" in changes and changes["user_id"] != checkout.user_id:
        borrower = db.get(models.User, changes["user_id"])
        if borrower is None:
            errors["user_id"] = ["The selected user does not exist."]

    target_equipment = None
    if "equipment_id" in changes and changes["equipment_id"] != checkout.equipment_id:
        target_equipment = _lock_equipment(db, changes["equipment_id"])
        if target_equipment is None:
            errors["equipment_id"] = ["The selected equipment does not exist."]

    if errors:
        raise CheckoutValidationError(errors)

    if old_status.is_open:
        current_equipment = _lock_equipment(db, checkout.equipment_id)
        if new_status.is_open:
            if target_equipment is not None:
                _reserve(target_equipment)
                if current_equipment is not None:
                    _release(current_equipment)
        elif current_equipment is not None:
            _release(current_equipment)

    if target_equipment is not None:
        checkout.equipment = target_equipment
    if borrower is not None:
        checkout.user = borrower
    for field in ("checkout_date", "expected_return_date", "purpose", "notes"):
        if field in changes:
            setattr(checkout, field, changes[field])

    if returning:
        checkout.actual_return_date = actual_return_date
        checkout.checked_in_by = actor.id
    elif "actual_return_date" in changes:
        checkout.actual_return_date = changes["actual_return_date"]
    checkout.status = new_status
    db.flush()

    audit.log_action(
        db,
        actor.id,
        "checkout_return" if returning else "checkout_update",
        "checkout",
        checkout.id,
        {key: _audit_value(value) for key, value in changes.items()},
        commit=False,
    )
    if returning:
        logger.info("checkout %s returned, checked in by %s", checkout.id, actor.id)
    elif new_status is not old_status:
        logger.info("checkout %s moved to %s by %s", checkout.id, new_status.value, actor.id)
    return checkout


def delete_checkout(
    db: Session,
    checkout_id: UUID,
    *,
    actor: models.User,
) -> None:
    """Remove a checkout, freeing its equipment when the loan was still running."""

    _require(actor, CheckoutOperation.DELETE)
    checkout = db.get(models.Checkout, checkout_id)
    if checkout is None:
        raise CheckoutNotFound(f"checkout {checkout_id} not found")

    if checkout.status.is_open:
        equipment = _lock_equipment(db, checkout.equipment_id)
        if equipment is not None:
            _release(equipment)

    audit.log_action(
        db,
        actor.id,
        "checkout_delete",
        "checkout",
        checkout.id,
        {"status": checkout.status.value, "equipment_id": str(checkout.equipment_id)},
        commit=False,
    )
    db.delete(checkout)
    db.flush()
    logger.info("checkout %s deleted by %s", checkout_id, actor.id)


def get_checkout(
    db: Session,
    checkout_id: UUID,
    *,
    actor: models.User,
) -> models.Checkout:
    _require(actor, CheckoutOperation.SHOW)
    checkout = (
        _with_relations(db.query(models.Checkout))
        .filter(models.Checkout.id == checkout_id)
        .one_or_none()
    )
    if checkout is None:
        raise CheckoutNotFound(f"checkout {checkout_id} not found")
    if not can_view_checkout(actor, checkout):
        raise CheckoutAuthorizationError("Not authorized")
    return checkout


def _scoped_query(db: Session, actor: models.User) -> Query:
    query = db.query(models.Checkout)
    if is_scoped_to_self(actor):
        query = query.filter(models.Checkout.user_id == actor.id)
    return query


def list_checkouts(
    db: Session,
    *,
    actor: models.User,
    filters: CheckoutFilters | None = None,
) -> schemas.CheckoutPage:
    """Return one page of checkouts visible to ``actor``, newest loans first."""

    _require(actor, CheckoutOperation.LIST)
    filters = filters or CheckoutFilters()

    query = _scoped_query(db, actor)
    if filters.user_id and not is_scoped_to_self(actor):
        query = query.filter(models.Checkout.user_id == filters.user_id)
    if filters.status:
        query = query.filter(models.Checkout.status == filters.status)
    if filters.equipment_id:
        query = query.filter(models.Checkout.equipment_id == filters.equipment_id)
    search = (filters.search or "").strip()
    if search:
        term = f"%{search}%"
        query = (
            query.join(models.Checkout.equipment)
            .join(models.Checkout.user)
            .filter(
                sa.or_(
                    models.Equipment.name.ilike(term),
                    models.User.name.ilike(term),
                    models.User.email.ilike(term),
                    models.Checkout.purpose.ilike(term),
                )
            )
        )

    per_page = min(max(1, filters.per_page), MAX_PAGE_SIZE)
    page = max(1, filters.page)
    total = query.count()
    rows = (
        _with_relations(query)
        .order_by(models.Checkout.checkout_date.desc(), models.Checkout.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return schemas.CheckoutPage(
        data=[schemas.CheckoutOut.model_validate(row) for row in rows],
        current_page=page,
        last_page=max(1, math.ceil(total / per_page)),
        per_page=per_page,
        total=total,
    )


def checkout_stats(
    db: Session,
    *,
    actor: models.User,
    today: date | None = None,
) -> schemas.CheckoutStats:
    _require(actor, CheckoutOperation.STATS)
    today = today or date.today()
    base = _scoped_query(db, actor)
    Checkout = models.Checkout

    return schemas.CheckoutStats(
        active=base.filter(Checkout.status == CheckoutStatus.OPEN).count(),
        late=base.filter(Checkout.status == CheckoutStatus.OVERDUE).count(),
        returnedToday=base.filter(
            Checkout.status == CheckoutStatus.RETURNED,
            Checkout.actual_return_date == today,
        ).count(),
        upcoming=base.filter(
            Checkout.status == CheckoutStatus.OPEN,
            Checkout.expected_return_date >= today,
            Checkout.expected_return_date <= today + timedelta(days=UPCOMING_WINDOW_DAYS),
        ).count(),
    )


def run_overdue_sweep(db: Session, *, today: date | None = None) -> int:
    """Mark open checkouts whose expected return date has passed as overdue.

    Equipment stays Reserved since the item is still out. Returns the number
    of checkouts updated; a second run on the same day updates none.
    """

    today = today or date.today()
    overdue = (
        db.query(models.Checkout)
        .options(joinedload(models.Checkout.equipment), joinedload(models.Checkout.user))
        .filter(
            models.Checkout.status == CheckoutStatus.OPEN,
            models.Checkout.expected_return_date < today,
        )
        .all()
    )
    for checkout in overdue:
        checkout.status = CheckoutStatus.OVERDUE
        notify.notify_user(
            db,
            checkout.user,
            "Prêt en retard",
            (
                f"Le retour de {checkout.equipment.name} était prévu le "
                f"{checkout.expected_return_date:%d/%m/%Y}."
            ),
            category="Retard",
            related_type="Checkout",
            related_id=checkout.id,
            email=True,
        )
    db.flush()
    logger.info("overdue sweep for %s marked %d checkout(s) overdue", today.isoformat(), len(overdue))
    return len(overdue)
