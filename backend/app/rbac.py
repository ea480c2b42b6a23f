from __future__ import annotations

import enum

from fastapi import HTTPException

from . import models

# purpose: role predicates gating checkout lifecycle operations
# status: active


class CheckoutOperation(str, enum.Enum):
    LIST = "list"
    SHOW = "show"
    STATS = "stats"
    STATUSES = "statuses"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    OVERDUE_SWEEP = "overdue_sweep"


class IssueOperation(str, enum.Enum):
    LIST = "issue_list"
    SHOW = "issue_show"
    STATS = "issue_stats"
    REPORT = "issue_report"
    UPDATE = "issue_update"
    DELETE = "issue_delete"
    TAKE_CHARGE = "issue_take_charge"
    RESOLVE = "issue_resolve"


STAFF_ROLES = frozenset({models.Role.ADMINISTRATOR, models.Role.MANAGER})

_OPERATION_ROLES: dict[CheckoutOperation | IssueOperation, frozenset[models.Role]] = {
    CheckoutOperation.LIST: frozenset(models.Role),
    CheckoutOperation.SHOW: frozenset(models.Role),
    CheckoutOperation.STATS: frozenset(models.Role),
    CheckoutOperation.STATUSES: frozenset(models.Role),
    CheckoutOperation.CREATE: STAFF_ROLES,
    CheckoutOperation.UPDATE: STAFF_ROLES,
    CheckoutOperation.DELETE: STAFF_ROLES,
    CheckoutOperation.OVERDUE_SWEEP: STAFF_ROLES,
    # trainers report, edit and withdraw their own unassigned issues
    IssueOperation.LIST: frozenset(models.Role),
    IssueOperation.SHOW: frozenset(models.Role),
    IssueOperation.STATS: frozenset(models.Role),
    IssueOperation.REPORT: frozenset(models.Role),
    IssueOperation.UPDATE: frozenset(models.Role),
    IssueOperation.DELETE: frozenset(models.Role),
    IssueOperation.TAKE_CHARGE: STAFF_ROLES,
    IssueOperation.RESOLVE: STAFF_ROLES,
}


def authorize(role: models.Role, operation: CheckoutOperation | IssueOperation) -> bool:
    """Return whether ``role`` may invoke ``operation`` at all.

    Record-level scoping (trainers only see their own checkouts) is applied
    separately by :func:`is_scoped_to_self` and :func:`can_view_checkout`.
    """

    return role in _OPERATION_ROLES[operation]


def is_staff(user: models.User) -> bool:
    return user.role in STAFF_ROLES


def is_scoped_to_self(user: models.User) -> bool:
    """Trainers only ever see checkouts they borrowed."""
    return not is_staff(user)


def can_view_checkout(user: models.User, checkout: models.Checkout) -> bool:
    if not authorize(user.role, CheckoutOperation.SHOW):
        return False
    return is_staff(user) or checkout.user_id == user.id


def can_view_issue(user: models.User, issue: models.Issue) -> bool:
    return is_staff(user) or issue.reported_by == user.id


def can_modify_issue(user: models.User, issue: models.Issue) -> bool:
    """Staff may edit any issue; a reporter only until someone takes charge of it."""
    if is_staff(user):
        return True
    return issue.reported_by == user.id and issue.assigned_to is None


def require_staff(user: models.User) -> None:
    if not is_staff(user):
        raise HTTPException(status_code=403, detail="Not authorized")


def require_role(user: models.User, roles: list[models.Role] | tuple[models.Role, ...]) -> None:
    if user.role not in roles:
        raise HTTPException(status_code=403, detail="Not authorized")
