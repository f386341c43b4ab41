"""Collector models - re-exports all models and Base.metadata."""

from .base import Base, UUIDMixin, TimestampMixin
from .organization import Organization, WhitelistedDomain
from .form import Form
from .submission import Submission
from .integration import Integration, IntegrationScope, IntegrationType
from .job import IntegrationJob

__all__ = [
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "Organization",
    "WhitelistedDomain",
    "Form",
    "Submission",
    "Integration",
    "IntegrationScope",
    "IntegrationType",
    "IntegrationJob",
]
