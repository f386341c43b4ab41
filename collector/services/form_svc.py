"""Form service - lookups for admission plus organization/form/submission CRUD."""

from __future__ import annotations

import secrets
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models.form import Form
from ..models.organization import Organization, WhitelistedDomain
from ..models.submission import Submission


def generate_submit_hash() -> str:
    """Short, URL-safe 22-character public identifier."""
    return secrets.token_urlsafe(16)


async def get_form_by_submit_hash(db: AsyncSession, submit_hash: str) -> Form | None:
    stmt = (
        select(Form)
        .where(Form.submit_hash == submit_hash)
        .options(selectinload(Form.organization))
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_form_by_identifier(db: AsyncSession, identifier: str) -> Form | None:
    """Resolve a form by submit hash or slug."""
    stmt = (
        select(Form)
        .where(or_(Form.submit_hash == identifier, Form.slug == identifier))
        .options(selectinload(Form.organization))
        .order_by(Form.created_at.asc())
        .limit(1)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_whitelisted_domains(
    db: AsyncSession, organization_id: uuid.UUID
) -> list[str]:
    stmt = select(WhitelistedDomain.domain).where(
        WhitelistedDomain.organization_id == organization_id
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def create_organization(db: AsyncSession, **kwargs) -> Organization:
    org = Organization(**kwargs)
    db.add(org)
    await db.commit()
    await db.refresh(org)
    return org


async def get_organization_by_slug(db: AsyncSession, slug: str) -> Organization | None:
    result = await db.execute(select(Organization).where(Organization.slug == slug))
    return result.scalar_one_or_none()


async def create_form(
    db: AsyncSession, organization_id: uuid.UUID | None, **kwargs
) -> Form:
    kwargs.setdefault("submit_hash", generate_submit_hash())
    form = Form(organization_id=organization_id, **kwargs)
    db.add(form)
    await db.commit()
    await db.refresh(form)
    return form


async def add_whitelisted_domain(
    db: AsyncSession, organization_id: uuid.UUID, domain: str
) -> WhitelistedDomain:
    entry = WhitelistedDomain(organization_id=organization_id, domain=domain.strip())
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    return entry


async def create_submission(
    db: AsyncSession,
    form_id: uuid.UUID,
    data: dict,
    origin_domain: str | None = None,
    ip_address: str | None = None,
) -> Submission:
    sub = Submission(
        form_id=form_id,
        data=data,
        origin_domain=origin_domain,
        ip_address=ip_address,
    )
    db.add(sub)
    await db.commit()
    await db.refresh(sub)
    return sub


async def list_submissions(
    db: AsyncSession, form_id: uuid.UUID, offset: int = 0, limit: int = 50,
) -> tuple[list[Submission], int]:
    stmt = select(Submission).where(Submission.form_id == form_id)
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0
    stmt = stmt.order_by(Submission.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all()), total
