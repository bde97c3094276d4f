"""Attendance records and the per-(person, event) workflow tracker."""
import uuid
from datetime import date, datetime
from sqlalchemy import String, Boolean, Date, JSON, ForeignKey, DateTime, Index, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base, TimestampMixin

STAGE_CHECKED_IN = "checked_in"
STAGE_SURVEY_COMPLETED = "survey_completed"
STAGE_CERTIFICATE_ELIGIBLE = "certificate_eligible"
STAGE_CERTIFICATE_GENERATED = "certificate_generated"

# Ordered: a workflow only ever moves to the right
WORKFLOW_STAGES = (
    STAGE_CHECKED_IN,
    STAGE_SURVEY_COMPLETED,
    STAGE_CERTIFICATE_ELIGIBLE,
    STAGE_CERTIFICATE_GENERATED,
)


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    check_in_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_in_method: Mapped[str] = mapped_column(String(30), nullable=False, default="qr_scan")
    is_validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    validated_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", "check_in_date", name="uq_attendance_daily"),
        Index("idx_attendance_event_user", "event_id", "user_id"),
    )


class AttendanceWorkflow(Base, TimestampMixin):
    __tablename__ = "attendance_workflows"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    current_stage: Mapped[str] = mapped_column(String(30), nullable=False, default=STAGE_CHECKED_IN)

    attendance_record_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attendance_records.id", ondelete="SET NULL"), nullable=True
    )
    scan_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    survey_response_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    certificate_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    # Each set once, the first time the stage is reached
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    survey_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    certificate_eligible_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    certificate_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    workflow_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_workflow_user_event"),
        Index("idx_workflow_stage", "current_stage"),
    )
