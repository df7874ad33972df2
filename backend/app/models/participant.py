from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from app.db import Base

class Participant(Base):
    __tablename__ = "participants"
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # external identity; null until the auth callback links it
    user_id: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    postal_address: Mapped[str | None] = mapped_column(Text(), nullable=True)
    bib_number: Mapped[int] = mapped_column(Integer, nullable=False)
    has_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    event_year: Mapped[int] = mapped_column(Integer, index=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "event_year", name="uq_participant_identity_year"),
        UniqueConstraint("bib_number", "event_year", name="uq_participant_bib_year"),
    )
