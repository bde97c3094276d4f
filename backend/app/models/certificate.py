"""Certificate template, issued certificate and numbering counter models."""
import uuid
from datetime import date, datetime
from sqlalchemy import String, Integer, Boolean, Date, ForeignKey, DateTime, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base, TimestampMixin


class CertificateTemplate(Base, TimestampMixin):
    __tablename__ = "certificate_templates"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False, default="Certificate of Participation")
    cert_id_prefix: Mapped[str | None] = mapped_column(String(30), nullable=True)
    background_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    text_color: Mapped[str] = mapped_column(String(20), nullable=False, default="#1f2937")
    accent_color: Mapped[str] = mapped_column(String(20), nullable=False, default="#1d4ed8")


class Certificate(Base):
    __tablename__ = "certificates"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # NULL for standalone certificates rendered from an inline template
    event_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    template_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("certificate_templates.id", ondelete="SET NULL"), nullable=True
    )
    certificate_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    participant_name: Mapped[str] = mapped_column(String(255), nullable=False)
    event_title: Mapped[str] = mapped_column(String(255), nullable=False)
    completion_date: Mapped[date] = mapped_column(Date, nullable=False)
    pdf_path: Mapped[str] = mapped_column(String(500), nullable=False)
    png_path: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_certificate_event_user"),
    )


class CertificateCounter(Base):
    """Sequence per numbering scope (an event id, or 'standalone:<prefix>')."""
    __tablename__ = "certificate_counters"

    scope: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
