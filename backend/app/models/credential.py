"""QR credential and scan audit models."""
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, Boolean, Float, JSON, ForeignKey, DateTime, Index, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base, TimestampMixin

CODE_USER_PROFILE = "user_profile"
CODE_EVENT_CHECKIN = "event_checkin"


class Credential(Base, TimestampMixin):
    __tablename__ = "credentials"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    token: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    code_type: Mapped[str] = mapped_column(String(30), nullable=False, default=CODE_USER_PROFILE)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_by: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    # Person the credential checks in; NULL means "whoever scans it"
    owner_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    event_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=True, index=True
    )

    requires_location_validation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    proximity_tolerance_meters: Mapped[int | None] = mapped_column(Integer, nullable=True)

    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    max_scans: Mapped[int | None] = mapped_column(Integer, nullable=True)  # NULL = unlimited
    scan_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    scans: Mapped[list["CredentialScan"]] = relationship(
        back_populates="credential", cascade="all, delete-orphan", passive_deletes=True
    )


class CredentialScan(Base):
    """Append-only audit row written for every accepted check-in."""
    __tablename__ = "credential_scans"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    credential_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("credentials.id", ondelete="CASCADE"), nullable=False
    )
    scanned_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    attendance_record_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("attendance_records.id", ondelete="SET NULL"), nullable=True
    )
    scan_method: Mapped[str] = mapped_column(String(50), nullable=False, default="qr_scan")

    # Location validation
    location_validated: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    location_validation_method: Mapped[str] = mapped_column(String(20), nullable=False, default="skipped")
    reference_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    reference_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    candidate_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    candidate_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_meters: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Device / network
    device_info: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    workflow_stage: Mapped[str | None] = mapped_column(String(30), nullable=True)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    credential: Mapped["Credential"] = relationship(back_populates="scans")

    __table_args__ = (
        Index("idx_credential_scans_credential", "credential_id", "scanned_at"),
        Index("idx_credential_scans_scanned_by", "scanned_by", "scanned_at"),
    )
