"""Form model with per-form security overrides."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin


class Form(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "form"

    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organization.id", ondelete="SET NULL"), index=True, default=None
    )
    name: Mapped[str] = mapped_column(String(200))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    submit_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    use_org_integrations: Mapped[bool | None] = mapped_column(Boolean, default=True)
    csrf_enabled: Mapped[bool] = mapped_column(Boolean, default=False)

    # Security settings; ignored while use_org_security_settings is true
    use_org_security_settings: Mapped[bool | None] = mapped_column(Boolean, default=True)
    rate_limit_enabled: Mapped[bool | None] = mapped_column(Boolean, default=True)
    rate_limit_max_requests: Mapped[int | None] = mapped_column(Integer, default=10)
    rate_limit_window_seconds: Mapped[int | None] = mapped_column(Integer, default=60)
    rate_limit_max_requests_per_hour: Mapped[int | None] = mapped_column(Integer, default=50)
    min_time_between_submissions_enabled: Mapped[bool | None] = mapped_column(Boolean, default=True)
    min_time_between_submissions_seconds: Mapped[int | None] = mapped_column(Integer, default=10)
    max_request_size_bytes: Mapped[int | None] = mapped_column(Integer, default=100_000)
    referer_fallback_enabled: Mapped[bool | None] = mapped_column(Boolean, default=True)

    # Relationships
    organization: Mapped["Organization | None"] = relationship(back_populates="forms")  # noqa: F821
    submissions: Mapped[list["Submission"]] = relationship(  # noqa: F821
        back_populates="form", cascade="all, delete-orphan",
    )
