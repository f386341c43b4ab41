"""FastAPI dependencies for the admission components."""

from __future__ import annotations

from fastapi import Request

from .config import settings
from .security.throttle import ThrottleStore
from .services.admission_svc import AdmissionConfig, AdmissionPipeline


def build_throttle_store() -> ThrottleStore:
    return ThrottleStore(
        shards=settings.throttle_shards,
        max_age_seconds=settings.throttle_entry_max_age_seconds,
        sweep_interval_seconds=settings.throttle_sweep_interval_seconds,
    )


def build_admission_pipeline(throttle: ThrottleStore) -> AdmissionPipeline:
    return AdmissionPipeline(AdmissionConfig.from_settings(settings), throttle)


def get_admission_pipeline(request: Request) -> AdmissionPipeline:
    return request.app.state.admission_pipeline
