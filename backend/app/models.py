import enum
import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    JSON,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, enum.Enum):
    ADMINISTRATOR = "administrateur"
    MANAGER = "gestionnaire"
    TRAINER = "formateur"


class EquipmentStatus(str, enum.Enum):
    FUNCTIONAL = "Fonctionnel"
    BROKEN = "En panne"
    UNDER_MAINTENANCE = "En maintenance"
    RESERVED = "Réservé"


class CheckoutStatus(str, enum.Enum):
    OPEN = "En cours"
    RETURNED = "Retourné"
    OVERDUE = "En retard"

    @property
    def is_open(self) -> bool:
        """True while the equipment is still out with the borrower."""
        return self is not CheckoutStatus.RETURNED


class IssuePriority(str, enum.Enum):
    LOW = "Basse"
    MEDIUM = "Moyenne"
    HIGH = "Haute"
    CRITICAL = "Critique"


class IssueStatus(str, enum.Enum):
    OPEN = "Ouvert"
    IN_PROGRESS = "En cours"
    RESOLVED = "Résolu"
    CLOSED = "Fermé"

    @property
    def is_settled(self) -> bool:
        return self in (IssueStatus.RESOLVED, IssueStatus.CLOSED)


EQUIPMENT_TYPES = ["Informatique", "Audiovisuel", "Réseau", "Périphérique"]


def _enum_column(enum_cls, **kwargs):
    # store the wire value ("En cours") rather than the member name
    return Column(
        sa.Enum(
            enum_cls,
            values_callable=lambda members: [m.value for m in members],
            native_enum=False,
            validate_strings=True,
            length=32,
        ),
        **kwargs,
    )


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    name = Column(String)
    phone = Column(String)
    role = _enum_column(Role, nullable=False, default=Role.TRAINER)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_utcnow)

    checkouts = relationship(
        "Checkout",
        back_populates="user",
        foreign_keys="Checkout.user_id",
    )
    notifications = relationship(
        "Notification", back_populates="user", cascade="all, delete-orphan"
    )


class Equipment(Base):
    __tablename__ = "equipment"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    status = _enum_column(EquipmentStatus, nullable=False, default=EquipmentStatus.FUNCTIONAL)
    serial_number = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    purchase_date = Column(Date, nullable=True)
    last_maintenance = Column(Date, nullable=True)
    next_maintenance = Column(Date, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    checkouts = relationship(
        "Checkout", back_populates="equipment", cascade="all, delete-orphan"
    )
    issues = relationship(
        "Issue", back_populates="equipment", cascade="all, delete-orphan"
    )


class Checkout(Base):
    __tablename__ = "checkouts"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    equipment_id = Column(
        UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    checkout_date = Column(Date, nullable=False)
    expected_return_date = Column(Date, nullable=False)
    actual_return_date = Column(Date, nullable=True)
    purpose = Column(Text, nullable=False)
    status = _enum_column(CheckoutStatus, nullable=False, default=CheckoutStatus.OPEN)
    notes = Column(Text, nullable=True)
    checked_out_by = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    checked_in_by = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    equipment = relationship("Equipment", back_populates="checkouts")
    user = relationship("User", back_populates="checkouts", foreign_keys=[user_id])
    checked_out_by_user = relationship("User", foreign_keys=[checked_out_by])
    checked_in_by_user = relationship("User", foreign_keys=[checked_in_by])

    __table_args__ = (
        sa.Index("ix_checkouts_status_expected", "status", "expected_return_date"),
    )


class Issue(Base):
    __tablename__ = "issues"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    equipment_id = Column(
        UUID(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False
    )
    priority = _enum_column(IssuePriority, nullable=False, default=IssuePriority.MEDIUM)
    status = _enum_column(IssueStatus, nullable=False, default=IssueStatus.OPEN, index=True)
    reported_by = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    assigned_to = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reported_date = Column(Date, nullable=False)
    resolved_date = Column(Date, nullable=True)
    resolution_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    equipment = relationship("Equipment", back_populates="issues")
    reporter = relationship("User", foreign_keys=[reported_by])
    assignee = relationship("User", foreign_keys=[assigned_to])


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"))
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    category = Column(String, nullable=True)  # Maintenance, Retard, Problème, Acquisition, Prêt
    is_read = Column(Boolean, default=False)
    meta = Column(JSON, default=dict)  # related_type / related_id of the source record
    created_at = Column(DateTime, default=_utcnow)
    user = relationship("User", back_populates="notifications")


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"))
    token = Column(String, unique=True, nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, default=False)
    created_at = Column(DateTime, default=_utcnow)


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"))
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(UUID(as_uuid=True))
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=_utcnow)
