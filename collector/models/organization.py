"""Organization and WhitelistedDomain models."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDMixin, TimestampMixin


class Organization(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "organization"

    name: Mapped[str] = mapped_column(String(200))
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    max_submissions_per_month: Mapped[int | None] = mapped_column(Integer, default=None)

    # Default security settings (used when form.use_org_security_settings is true)
    default_rate_limit_enabled: Mapped[bool | None] = mapped_column(Boolean, default=True)
    default_rate_limit_max_requests: Mapped[int | None] = mapped_column(Integer, default=10)
    default_rate_limit_window_seconds: Mapped[int | None] = mapped_column(Integer, default=60)
    default_rate_limit_max_requests_per_hour: Mapped[int | None] = mapped_column(Integer, default=50)
    default_min_time_between_submissions_enabled: Mapped[bool | None] = mapped_column(
        Boolean, default=True
    )
    default_min_time_between_submissions_seconds: Mapped[int | None] = mapped_column(
        Integer, default=10
    )
    default_max_request_size_bytes: Mapped[int | None] = mapped_column(Integer, default=100_000)
    default_referer_fallback_enabled: Mapped[bool | None] = mapped_column(Boolean, default=True)

    # Relationships
    forms: Mapped[list["Form"]] = relationship(back_populates="organization")  # noqa: F821
    whitelisted_domains: Mapped[list["WhitelistedDomain"]] = relationship(
        back_populates="organization", cascade="all, delete-orphan",
    )


class WhitelistedDomain(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "whitelisted_domain"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organization.id", ondelete="CASCADE"), index=True
    )
    domain: Mapped[str] = mapped_column(String(255))

    organization: Mapped["Organization"] = relationship(back_populates="whitelisted_domains")
