"""Integration model: downstream delivery targets for submissions."""

from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, ForeignKey, JSON, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, UUIDMixin, TimestampMixin


class IntegrationType(str, enum.Enum):
    EMAIL_SMTP = "email-smtp"
    EMAIL_API = "email-api"
    TELEGRAM = "telegram"
    DISCORD = "discord"
    SLACK = "slack"
    WEBHOOK = "webhook"  # generic, Make.com and n8n


class IntegrationScope(str, enum.Enum):
    ORGANIZATION = "organization"
    FORM = "form"


class Integration(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "integration"

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organization.id", ondelete="CASCADE"), index=True
    )
    form_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("form.id", ondelete="CASCADE"), index=True, default=None
    )
    scope: Mapped[str] = mapped_column(String(20), default=IntegrationScope.ORGANIZATION.value)
    type: Mapped[str] = mapped_column(String(20), default=IntegrationType.WEBHOOK.value)
    name: Mapped[str] = mapped_column(String(200))
    config: Mapped[dict] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<Integration {self.type} scope={self.scope}>"
