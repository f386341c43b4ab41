"""Background worker draining the integration job queue."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from .config import settings
from .database import async_session_factory
from .services.delivery_svc import DeliveryError, PermanentDeliveryError, deliver
from .services.queue_svc import claim_next_job, mark_job_completed, mark_job_failed

logger = logging.getLogger(__name__)


class IntegrationWorker:
    """Polls queued integration jobs and delivers them."""

    def __init__(
        self,
        session_factory=None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._session_factory = session_factory or async_session_factory
        self._client = client
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        if self._task is not None or not settings.worker_enabled:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="integration-worker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None

    async def run_once(self) -> bool:
        """Claim and deliver at most one job. Returns True if a job was processed."""
        async with self._session_factory() as db:
            job = await claim_next_job(db)
            if job is None:
                return False
            try:
                await deliver(job.integration_type, job.payload, client=self._client)
            except PermanentDeliveryError as exc:
                logger.error("Integration job %s failed permanently: %s", job.id, exc)
                await mark_job_failed(db, job, str(exc), permanent=True)
            except DeliveryError as exc:
                logger.warning(
                    "Integration job %s attempt %s failed: %s", job.id, job.attempts, exc
                )
                await mark_job_failed(db, job, str(exc))
            except Exception as exc:
                logger.exception("Integration job %s raised unexpectedly", job.id)
                await mark_job_failed(db, job, str(exc))
            else:
                await mark_job_completed(db, job)
            return True

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            processed = False
            try:
                processed = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover - log and keep polling
                logger.exception("Integration worker loop failed")

            if not processed:
                await asyncio.sleep(settings.worker_poll_interval_seconds)


integration_worker = IntegrationWorker()
