from datetime import date, datetime
from typing import Optional, Any, Dict, List
from pydantic import BaseModel, EmailStr, ConfigDict, Field
from uuid import UUID

from .models import CheckoutStatus, EquipmentStatus, IssuePriority, IssueStatus, Role


class UserCreate(BaseModel):
    email: EmailStr
    password: str
    name: Optional[str] = None
    phone: Optional[str] = None


class UserOut(BaseModel):
    id: UUID
    email: EmailStr
    name: Optional[str] = None
    phone: Optional[str] = None
    role: Role
    is_active: bool = True
    model_config = ConfigDict(from_attributes=True)


class UserSummary(BaseModel):
    id: UUID
    name: Optional[str] = None
    email: EmailStr
    model_config = ConfigDict(from_attributes=True)


class UserRoleUpdate(BaseModel):
    role: Role


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


class EquipmentCreate(BaseModel):
    name: str
    type: str
    status: EquipmentStatus = EquipmentStatus.FUNCTIONAL
    serial_number: Optional[str] = None
    description: Optional[str] = None
    purchase_date: Optional[date] = None
    last_maintenance: Optional[date] = None
    next_maintenance: Optional[date] = None


class EquipmentUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    status: Optional[EquipmentStatus] = None
    serial_number: Optional[str] = None
    description: Optional[str] = None
    purchase_date: Optional[date] = None
    last_maintenance: Optional[date] = None
    next_maintenance: Optional[date] = None


class EquipmentOut(BaseModel):
    id: UUID
    name: str
    type: str
    status: EquipmentStatus
    serial_number: Optional[str] = None
    description: Optional[str] = None
    purchase_date: Optional[date] = None
    last_maintenance: Optional[date] = None
    next_maintenance: Optional[date] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class EquipmentSummary(BaseModel):
    id: UUID
    name: str
    status: EquipmentStatus
    serial_number: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class CheckoutCreate(BaseModel):
    equipment_id: UUID
    user_id: UUID
    checkout_date: date
    expected_return_date: date
    purpose: str = Field(min_length=1)
    notes: Optional[str] = None


class CheckoutUpdate(BaseModel):
    """Partial update; only the fields present in the request body are applied."""

    equipment_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    checkout_date: Optional[date] = None
    expected_return_date: Optional[date] = None
    actual_return_date: Optional[date] = None
    purpose: Optional[str] = Field(default=None, min_length=1)
    status: Optional[CheckoutStatus] = None
    notes: Optional[str] = None


class CheckoutOut(BaseModel):
    id: UUID
    equipment_id: UUID
    user_id: UUID
    checkout_date: date
    expected_return_date: date
    actual_return_date: Optional[date] = None
    purpose: str
    status: CheckoutStatus
    notes: Optional[str] = None
    checked_out_by: UUID
    checked_in_by: Optional[UUID] = None
    equipment: Optional[EquipmentSummary] = None
    user: Optional[UserSummary] = None
    checked_out_by_user: Optional[UserSummary] = None
    checked_in_by_user: Optional[UserSummary] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class CheckoutPage(BaseModel):
    data: List[CheckoutOut]
    current_page: int
    last_page: int
    per_page: int
    total: int


class CheckoutStats(BaseModel):
    active: int
    late: int
    returnedToday: int
    upcoming: int


class OverdueSweepResult(BaseModel):
    message: str
    updated_count: int


class IssueCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str = Field(min_length=1)
    equipment_id: UUID
    priority: IssuePriority


class IssueUpdate(BaseModel):
    """Partial update; status, assignment and resolution notes are staff-only."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, min_length=1)
    equipment_id: Optional[UUID] = None
    priority: Optional[IssuePriority] = None
    status: Optional[IssueStatus] = None
    assigned_to: Optional[UUID] = None
    resolution_notes: Optional[str] = None


class IssueResolve(BaseModel):
    resolution_notes: str = Field(min_length=1)


class IssueOut(BaseModel):
    id: UUID
    title: str
    description: str
    equipment_id: UUID
    priority: IssuePriority
    status: IssueStatus
    reported_by: UUID
    assigned_to: Optional[UUID] = None
    reported_date: date
    resolved_date: Optional[date] = None
    resolution_notes: Optional[str] = None
    equipment: Optional[EquipmentSummary] = None
    reporter: Optional[UserSummary] = None
    assignee: Optional[UserSummary] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class IssuePage(BaseModel):
    data: List[IssueOut]
    current_page: int
    last_page: int
    per_page: int
    total: int


class IssueStats(BaseModel):
    pending: int
    inProgress: int
    resolved: int
    avgResolutionTime: str


class NotificationOut(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    message: str
    category: Optional[str] = None
    is_read: bool
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditLogOut(BaseModel):
    id: UUID
    user_id: Optional[UUID] = None
    action: str
    target_type: Optional[str] = None
    target_id: Optional[UUID] = None
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditReportItem(BaseModel):
    action: str
    count: int
