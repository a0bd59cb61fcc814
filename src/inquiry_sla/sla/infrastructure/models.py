"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for SLA module.

These are the database representations of our domain entities.
They belong in the infrastructure layer, not the domain layer.

``inquiries`` and ``users`` are owned by the ticketing subsystem; they are
mapped here only for the columns the SLA engine reads or updates.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column

from inquiry_sla.infrastructure.database import Base
from inquiry_sla.config import Priority, Role, Severity, ViolationType, WorkItemStatus


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InquiryModel(Base):
    """
    Database model for the Inquiry (work item) entity.

    Maps to the 'inquiries' table.
    """
    __tablename__ = "inquiries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    application_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    priority: Mapped[Priority] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM.value)
    status: Mapped[WorkItemStatus] = mapped_column(String(20), nullable=False, default=WorkItemStatus.OPEN.value, index=True)
    assigned_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Set when the first response is posted
    first_response_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class UserModel(Base):
    """
    Database model for the User collaborator.

    Maps to the 'users' table.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    role: Mapped[Role] = mapped_column(String(20), nullable=False, default=Role.CONTRIBUTOR.value, index=True)

    # Application an admin belongs to; NULL for system admins
    application_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class SlaConfigModel(Base):
    """
    Database model for per-application, per-priority SLA configuration.

    Maps to the 'sla_configs' table.
    """
    __tablename__ = "sla_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    application_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    priority_level: Mapped[Priority] = mapped_column(String(20), nullable=False)

    # Thresholds in hours
    response_time_hours: Mapped[float] = mapped_column(Float, nullable=False)
    resolution_time_hours: Mapped[float] = mapped_column(Float, nullable=False)
    escalation_time_hours: Mapped[float] = mapped_column(Float, nullable=False)

    # Business calendar
    business_hours_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    business_start_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    business_end_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=18)
    business_days: Mapped[str] = mapped_column(String(20), nullable=False, default="1,2,3,4,5")  # ISO weekdays
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("application_id", "priority_level", name="uq_sla_config_app_priority"),
    )


class SlaViolationModel(Base):
    """
    Database model for SLA violation entity.

    Maps to the 'sla_violations' table. One row per (inquiry, violation type).
    """
    __tablename__ = "sla_violations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    work_item_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    sla_config_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Detection
    violation_type: Mapped[ViolationType] = mapped_column(String(30), nullable=False)
    expected_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    delay_hours: Mapped[float] = mapped_column(Float, nullable=False)
    severity: Mapped[Severity] = mapped_column(String(20), nullable=False)

    # Escalation
    is_escalated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    escalated_to_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    escalated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    # Resolution
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("work_item_id", "violation_type", name="uq_sla_violation_item_type"),
    )


class EscalationLogModel(Base):
    """
    Database model for the escalation audit trail.

    Maps to the 'escalation_logs' table. At most one row per violation.
    """
    __tablename__ = "escalation_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    violation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("sla_violations.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    work_item_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    from_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    to_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    escalated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)  # NULL = automatic

    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    previous_priority: Mapped[Priority] = mapped_column(String(20), nullable=False)
    new_priority: Mapped[Priority] = mapped_column(String(20), nullable=False)
    escalated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
