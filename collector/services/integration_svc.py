"""Integration service - resolve which integrations receive a submission."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.form import Form
from ..models.integration import Integration, IntegrationScope, IntegrationType

EMAIL_TYPES = {IntegrationType.EMAIL_SMTP.value, IntegrationType.EMAIL_API.value}


@dataclass(frozen=True)
class ResolvedIntegration:
    type: str
    config: dict = field(default_factory=dict)
    integration_id: object | None = None
    name: str = ""


def _recipients(value) -> list[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(",") if v.strip()]


def normalize_config(integration_type: str, config: dict | None) -> dict:
    normalized = dict(config or {})
    if integration_type in EMAIL_TYPES:
        normalized["recipients"] = _recipients(normalized.get("recipients"))
    return normalized


def resolve_integration_stack(
    org_integrations: Iterable[Integration],
    form_integrations: Iterable[Integration],
    use_org_integrations: bool = True,
) -> list[ResolvedIntegration]:
    """Stack organization and form integrations.

    A form-level integration overrides every organization integration of the
    same type; with ``use_org_integrations`` off only form integrations apply.
    """
    active_org = [i for i in org_integrations if i.is_active is not False]
    active_form = [i for i in form_integrations if i.is_active is not False]

    if use_org_integrations:
        form_types = {i.type for i in active_form}
        stacked = [i for i in active_org if i.type not in form_types] + active_form
    else:
        stacked = active_form

    return [
        ResolvedIntegration(
            type=i.type,
            config=normalize_config(i.type, i.config),
            integration_id=i.id,
            name=i.name,
        )
        for i in stacked
    ]


async def resolve_for_form(db: AsyncSession, form: Form) -> list[ResolvedIntegration]:
    """Load active integrations for ``form`` and resolve the effective stack."""
    org_stmt = select(Integration).where(
        Integration.organization_id == form.organization_id,
        Integration.scope == IntegrationScope.ORGANIZATION.value,
        Integration.is_active.is_(True),
    )
    form_stmt = select(Integration).where(
        Integration.organization_id == form.organization_id,
        Integration.form_id == form.id,
        Integration.scope == IntegrationScope.FORM.value,
        Integration.is_active.is_(True),
    )
    org_integrations = list((await db.execute(org_stmt)).scalars().all())
    form_integrations = list((await db.execute(form_stmt)).scalars().all())

    use_org = True if form.use_org_integrations is None else form.use_org_integrations
    return resolve_integration_stack(org_integrations, form_integrations, use_org)


async def create_integration(db: AsyncSession, organization_id, **kwargs) -> Integration:
    integration = Integration(organization_id=organization_id, **kwargs)
    if integration.form_id is not None and "scope" not in kwargs:
        integration.scope = IntegrationScope.FORM.value
    db.add(integration)
    await db.commit()
    await db.refresh(integration)
    return integration
