"""Admission pipeline for public form submissions.

Every inbound POST walks a fixed sequence of checks; the first failing check
raises its ``AdmissionRejected`` variant and nothing after it runs. Side
effects happen only inside the check that owns them: the rate-limit check
consumes quota the moment it allows a request, and the spacing timestamp is
recorded once the submission is about to be persisted.

1.  hard body-size ceiling on the declared Content-Length
2.  form lookup by submit hash
3.  form active
4.  organization linked
5.  organization active
6.  effective security settings
7.  Content-Type
8.  per-form body-size limit
9.  CSRF token, when the form enables it
10. proof-of-work solution, when one was supplied
11. organization domain whitelist
12. minimum spacing between submissions
13. dual-window rate limit
14. message content
15. commit: record spacing, persist, enqueue integrations
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import (
    BodyTooLarge,
    ChallengeUnavailable,
    ConfigurationError,
    CsrfUnavailable,
    EmptySubmission,
    FormInactive,
    FormNotFound,
    InvalidChallenge,
    InvalidContentType,
    InvalidCsrf,
    OrganizationInactive,
    OriginNotWhitelisted,
    OriginRequired,
    PersistenceFailed,
    QueueUnavailable,
    RateLimited,
    SpacingViolation,
    SubmissionTooLarge,
)
from ..models.form import Form
from ..models.organization import Organization
from ..models.submission import Submission
from ..security.challenge import (
    ChallengeConfig,
    ChallengeNotConfigured,
    create_challenge,
    verify_solution,
)
from ..security.csrf import CsrfConfig, issue_csrf_token, verify_csrf_token
from ..security.origin import client_ip, resolve_origin
from ..security.policy import SecuritySettings, resolve_security_settings
from ..security.throttle import RateLimitDecision, ThrottleStore
from ..security.whitelist import is_origin_allowed
from . import form_svc, integration_svc, queue_svc
from .message_svc import format_message, strip_control_fields

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = (
    "application/json",
    "multipart/form-data",
    "application/x-www-form-urlencoded",
)
CSRF_HEADER = "x-csrf-token"
CHALLENGE_HEADER = "x-altcha-spam-filter"

MSG_RECEIVED = "Submission received"
MSG_RECEIVED_QUEUED = "Submission received successfully"

FieldLoader = Callable[[int], Awaitable[dict]]


@dataclass(frozen=True)
class AdmissionConfig:
    csrf: CsrfConfig
    challenge: ChallengeConfig
    max_body_bytes: int = 100_000
    max_message_chars: int = 4000

    @classmethod
    def from_settings(cls, settings_obj) -> "AdmissionConfig":
        return cls(
            csrf=CsrfConfig.from_settings(settings_obj),
            challenge=ChallengeConfig.from_settings(settings_obj),
            max_body_bytes=settings_obj.max_body_bytes,
            max_message_chars=settings_obj.max_message_chars,
        )


@dataclass
class InboundSubmission:
    """Transport-neutral view of one POST request.

    ``load_fields`` reads and parses the body lazily, given the byte limit it
    must enforce, so oversized or mistyped bodies are never parsed.
    """

    identifier: str
    headers: Mapping[str, str]
    load_fields: FieldLoader
    peer_host: str | None = None
    correlation_id: str | None = None

    def header(self, name: str) -> str | None:
        value = self.headers.get(name)
        if value is None:
            value = self.headers.get(name.lower())
        return value

    @property
    def content_length(self) -> int | None:
        raw = self.header("content-length")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    @property
    def content_type(self) -> str | None:
        return self.header("content-type")


@dataclass
class AdmittedSubmission:
    form: Form
    organization: Organization
    security: SecuritySettings
    origin: str | None
    ip: str | None
    fields: dict
    message: str
    correlation_id: str | None = None
    rate_limit: Optional[RateLimitDecision] = None


@dataclass
class CommitResult:
    submission: Submission
    jobs_queued: int = 0
    message: str = MSG_RECEIVED


@dataclass
class IssuedCsrfToken:
    token: str
    expires_in_seconds: int


class AdmissionPipeline:
    """Runs the ordered admission checks against a shared throttle store."""

    def __init__(
        self,
        config: AdmissionConfig,
        throttle: ThrottleStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.throttle = throttle
        self._clock = clock

    # -- POST /s/{identifier} ---------------------------------------------

    async def admit(self, db: AsyncSession, inbound: InboundSubmission) -> AdmittedSubmission:
        """Run checks 1-14; raises the first rejection encountered."""
        declared = inbound.content_length
        if declared is not None and declared > self.config.max_body_bytes:
            logger.warning(
                "Rejected oversized body (%s bytes) for %s", declared, inbound.identifier
            )
            raise BodyTooLarge()

        form = await form_svc.get_form_by_submit_hash(db, inbound.identifier)
        if form is None:
            raise FormNotFound()
        if not form.is_active:
            raise FormInactive()
        organization = form.organization
        if organization is None:
            logger.error("Form %s has no linked organization", form.id)
            raise ConfigurationError("Form configuration error: No organization linked")
        if not organization.is_active:
            raise OrganizationInactive()

        security = resolve_security_settings(form, organization)

        content_type = inbound.content_type
        if content_type and not any(t in content_type.lower() for t in ALLOWED_CONTENT_TYPES):
            raise InvalidContentType()

        limit = min(security.max_request_size_bytes, self.config.max_body_bytes)
        if declared is not None and declared > security.max_request_size_bytes:
            raise BodyTooLarge(security.max_request_size_bytes)

        raw_fields = await inbound.load_fields(limit)
        origin = resolve_origin(inbound.headers, security.referer_fallback_enabled)

        if form.csrf_enabled:
            self._check_csrf(inbound, raw_fields, form, origin)

        self._check_challenge(inbound, raw_fields)

        if origin is not None:
            domains = await form_svc.list_whitelisted_domains(db, organization.id)
            if not is_origin_allowed(origin, domains):
                logger.warning(
                    "Origin %s not whitelisted for form %s rid=%s",
                    origin,
                    form.id,
                    inbound.correlation_id,
                )
                raise OriginNotWhitelisted()

        ip = client_ip(inbound.headers, inbound.peer_host)
        rate_limit = None
        if ip:
            if security.min_time_between_submissions_enabled:
                spacing = self.throttle.check_spacing(
                    ip, form.id, security.min_time_between_submissions_seconds
                )
                if not spacing.allowed:
                    logger.warning(
                        "Submission spacing violated for form %s rid=%s",
                        form.id,
                        inbound.correlation_id,
                    )
                    raise SpacingViolation(spacing.wait_seconds)

            if security.rate_limit_enabled:
                rate_limit = self.throttle.check_rate_limit(
                    ip,
                    form.id,
                    security.rate_limit_max_requests,
                    security.rate_limit_window_seconds,
                    security.rate_limit_max_requests_per_hour,
                )
                if not rate_limit.allowed:
                    logger.warning(
                        "Rate limit exceeded for form %s rid=%s", form.id, inbound.correlation_id
                    )
                    raise RateLimited(rate_limit.reset_at, int(self._clock() * 1000))

        fields = strip_control_fields(raw_fields)
        message = format_message(fields)
        if not message.strip():
            raise EmptySubmission()
        if len(message) > self.config.max_message_chars:
            raise SubmissionTooLarge()

        return AdmittedSubmission(
            form=form,
            organization=organization,
            security=security,
            origin=origin,
            ip=ip,
            fields=fields,
            message=message,
            correlation_id=inbound.correlation_id,
            rate_limit=rate_limit,
        )

    def _check_csrf(
        self, inbound: InboundSubmission, raw_fields: dict, form: Form, origin: str | None
    ) -> None:
        if not self.config.csrf.enabled:
            logger.error("CSRF required by form %s but no secret is configured", form.id)
            raise ConfigurationError("CSRF protection not configured")
        if origin is None:
            raise OriginRequired()
        token = _csrf_token(inbound, raw_fields)
        if not token or not verify_csrf_token(
            self.config.csrf, token, form.submit_hash, origin, now=self._clock()
        ):
            raise InvalidCsrf()

    def _check_challenge(self, inbound: InboundSubmission, raw_fields: dict) -> None:
        solution = raw_fields.get("altcha")
        if not isinstance(solution, str) or not solution:
            solution = inbound.header(CHALLENGE_HEADER)
        if not solution:
            return
        try:
            valid = verify_solution(self.config.challenge, solution, now=self._clock())
        except ChallengeNotConfigured as exc:
            logger.error("Challenge solution received but no HMAC key is configured")
            raise ConfigurationError("Challenge protection not configured") from exc
        if not valid:
            raise InvalidChallenge()

    async def commit(self, db: AsyncSession, admitted: AdmittedSubmission) -> CommitResult:
        """Record spacing, persist the submission and queue its integrations."""
        form = admitted.form
        form_id = form.id
        if admitted.ip:
            self.throttle.record_submission(admitted.ip, form_id)

        try:
            submission = await form_svc.create_submission(
                db,
                form_id=form_id,
                data=admitted.fields,
                origin_domain=admitted.origin,
                ip_address=admitted.ip,
            )
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.exception("Failed to persist submission for form %s", form_id)
            raise PersistenceFailed() from exc

        submission_id = submission.id
        try:
            integrations = await integration_svc.resolve_for_form(db, form)
            jobs = await queue_svc.enqueue_integration_jobs(
                db,
                submission_id=submission_id,
                form_id=form_id,
                fields=admitted.fields,
                message=admitted.message,
                integrations=integrations,
                form_name=form.name,
                organization_id=admitted.organization.id,
                correlation_id=admitted.correlation_id,
            )
        except Exception as exc:
            logger.error(
                "Failed to queue integrations for submission %s rid=%s: %s",
                submission_id,
                admitted.correlation_id,
                exc,
            )
            raise QueueUnavailable(submission_id) from exc

        logger.info(
            "Accepted submission %s for form %s (%s jobs) rid=%s",
            submission_id,
            form_id,
            len(jobs),
            admitted.correlation_id,
        )
        return CommitResult(
            submission=submission,
            jobs_queued=len(jobs),
            message=MSG_RECEIVED_QUEUED if jobs else MSG_RECEIVED,
        )

    # -- GET /s/{identifier}/csrf -------------------------------------------

    async def issue_csrf(
        self, db: AsyncSession, identifier: str, headers: Mapping[str, str]
    ) -> IssuedCsrfToken:
        if not self.config.csrf.enabled:
            raise CsrfUnavailable()

        origin = resolve_origin(headers, referer_fallback_enabled=True)
        if origin is None:
            raise OriginRequired()

        form = await form_svc.get_form_by_identifier(db, identifier)
        if form is None:
            raise FormNotFound()
        if not form.is_active:
            raise FormInactive()
        if form.organization is None:
            logger.error("Form %s has no linked organization", form.id)
            raise ConfigurationError("Form configuration error: No organization linked")
        if not form.organization.is_active:
            raise OrganizationInactive()

        domains = await form_svc.list_whitelisted_domains(db, form.organization.id)
        if not is_origin_allowed(origin, domains):
            logger.warning("Origin %s not whitelisted for CSRF issuance on %s", origin, form.id)
            raise OriginNotWhitelisted()

        token = issue_csrf_token(self.config.csrf, form.submit_hash, origin, now=self._clock())
        logger.info("Issued CSRF token for form %s", form.id)
        return IssuedCsrfToken(
            token=token,
            expires_in_seconds=self.config.csrf.ttl_seconds,
        )

    # -- GET /s/{identifier}/challenge --------------------------------------

    def issue_challenge(self) -> dict:
        if not self.config.challenge.enabled:
            raise ChallengeUnavailable()
        return create_challenge(self.config.challenge, now=self._clock())


def _csrf_token(inbound: InboundSubmission, raw_fields: dict) -> str | None:
    header = inbound.header(CSRF_HEADER)
    if header:
        return header
    for name in ("csrfToken", "_csrf"):
        value = raw_fields.get(name)
        if isinstance(value, str):
            return value
    return None
