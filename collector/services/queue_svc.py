"""Durable integration job queue backed by the ``integration_job`` table."""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.integration import IntegrationType
from ..models.job import IntegrationJob
from .integration_svc import ResolvedIntegration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobOptions:
    retry_limit: int
    retry_delay_seconds: int
    expire_in_seconds: int
    retry_backoff: bool = True


QUEUE_NAMES = {t.value: f"integration-{t.value}" for t in IntegrationType}

DEFAULT_JOB_OPTIONS = JobOptions(retry_limit=3, retry_delay_seconds=5, expire_in_seconds=1800)

JOB_OPTIONS = {
    IntegrationType.EMAIL_SMTP.value: JobOptions(5, 10, 3600),
    IntegrationType.EMAIL_API.value: JobOptions(5, 5, 3600),
}


def queue_name_for(integration_type: str) -> str:
    return QUEUE_NAMES.get(integration_type, f"integration-{integration_type}")


def options_for(integration_type: str) -> JobOptions:
    return JOB_OPTIONS.get(integration_type, DEFAULT_JOB_OPTIONS)


def singleton_key(submission_id: uuid.UUID, integration_type: str) -> str:
    return f"{submission_id}-{integration_type}-{secrets.token_hex(4)}"


async def enqueue_integration_jobs(
    db: AsyncSession,
    submission_id: uuid.UUID,
    form_id: uuid.UUID,
    fields: dict,
    message: str,
    integrations: Iterable[ResolvedIntegration],
    form_name: str = "",
    organization_id: uuid.UUID | None = None,
    correlation_id: str | None = None,
) -> list[IntegrationJob]:
    """Queue one job per integration in a single transaction.

    Either every job is persisted or none is; on failure the session is
    rolled back and the error propagates.
    """
    now = datetime.now(timezone.utc)
    jobs: list[IntegrationJob] = []
    for integration in integrations:
        opts = options_for(integration.type)
        job = IntegrationJob(
            queue_name=queue_name_for(integration.type),
            integration_type=integration.type,
            submission_id=submission_id,
            singleton_key=singleton_key(submission_id, integration.type),
            payload={
                "submissionId": str(submission_id),
                "formId": str(form_id),
                "formName": form_name,
                "organizationId": str(organization_id) if organization_id else None,
                "correlationId": correlation_id,
                "integrationId": (
                    str(integration.integration_id) if integration.integration_id else None
                ),
                "config": integration.config,
                "fields": fields,
                "message": message,
            },
            status="pending",
            available_at=now,
            expire_at=now + timedelta(seconds=opts.expire_in_seconds),
            max_attempts=opts.retry_limit + 1,
            retry_delay_seconds=opts.retry_delay_seconds,
            retry_backoff=opts.retry_backoff,
        )
        db.add(job)
        jobs.append(job)

    if not jobs:
        return jobs

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return jobs


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> IntegrationJob | None:
    result = await db.execute(select(IntegrationJob).where(IntegrationJob.id == job_id))
    return result.scalar_one_or_none()


async def list_jobs_for_submission(
    db: AsyncSession, submission_id: uuid.UUID
) -> list[IntegrationJob]:
    stmt = (
        select(IntegrationJob)
        .where(IntegrationJob.submission_id == submission_id)
        .order_by(IntegrationJob.created_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back out.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def claim_next_job(db: AsyncSession) -> IntegrationJob | None:
    """Claim the next runnable job.

    Best-effort claim suitable for a single worker process. Jobs past their
    expiry are failed instead of being handed out.
    """
    while True:
        now = datetime.now(timezone.utc)
        stmt = (
            select(IntegrationJob)
            .where(
                and_(
                    IntegrationJob.status.in_(("pending", "retrying")),
                    IntegrationJob.available_at <= now,
                )
            )
            .order_by(IntegrationJob.available_at.asc(), IntegrationJob.created_at.asc())
            .limit(1)
        )
        result = await db.execute(stmt)
        job = result.scalar_one_or_none()
        if not job:
            return None

        expire_at = _aware(job.expire_at)
        if expire_at is not None and expire_at <= now:
            job.status = "failed"
            job.error_message = "Job expired before delivery"
            job.finished_at = now
            await db.commit()
            logger.warning("Integration job %s expired", job.id)
            continue

        job.status = "running"
        job.started_at = now
        job.error_message = None
        job.attempts += 1
        await db.commit()
        await db.refresh(job)
        return job


async def mark_job_completed(db: AsyncSession, job: IntegrationJob) -> None:
    job.status = "completed"
    job.finished_at = datetime.now(timezone.utc)
    await db.commit()


async def mark_job_failed(
    db: AsyncSession, job: IntegrationJob, error: str, permanent: bool = False
) -> None:
    """Mark a job failed or schedule a retry with exponential backoff."""
    now = datetime.now(timezone.utc)
    job.error_message = error
    job.finished_at = now

    if not permanent and job.attempts < job.max_attempts:
        job.status = "retrying"
        delay = job.retry_delay_seconds
        if job.retry_backoff:
            delay = delay * (2 ** max(0, job.attempts - 1))
        job.available_at = now + timedelta(seconds=delay)
    else:
        job.status = "failed"

    await db.commit()


async def count_pending_jobs(db: AsyncSession) -> int:
    stmt = select(func.count(IntegrationJob.id)).where(
        IntegrationJob.status.in_(("pending", "retrying"))
    )
    return (await db.execute(stmt)).scalar() or 0
