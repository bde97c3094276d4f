"""Event and registration models.

Only the columns the check-in and certificate pipeline reads are modelled here;
the rest of the event catalogue is owned by the CRUD layer.
"""
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base, TimestampMixin

REGISTRATION_ACTIVE = "active"
REGISTRATION_CANCELLED = "cancelled"


class Event(Base, TimestampMixin):
    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    venue: Mapped[str | None] = mapped_column(String(255), nullable=True)
    organizer_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Asymmetric check-in window around start_at; NULL falls back to settings
    check_in_before_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    check_in_during_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    registrations: Mapped[list["Registration"]] = relationship(
        back_populates="event", cascade="all, delete-orphan", passive_deletes=True
    )


class Registration(Base, TimestampMixin):
    __tablename__ = "registrations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=REGISTRATION_ACTIVE)

    event: Mapped["Event"] = relationship(back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_registration"),
    )
