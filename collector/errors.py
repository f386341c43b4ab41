"""Rejection taxonomy for the public submission endpoints.

Each rejection is an exception carrying a machine-readable ``reason``, the
HTTP status it maps to, a caller-safe message and optional structured
extras. The router layer turns them into JSON responses.
"""

from __future__ import annotations

from datetime import datetime, timezone


class AdmissionRejected(Exception):
    """Base class for every decided rejection."""

    status_code: int = 400
    reason: str = "rejected"
    message: str = "Request rejected"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def extras(self) -> dict:
        return {}

    def headers(self) -> dict[str, str]:
        return {}

    def to_dict(self) -> dict:
        return {"error": self.message, "reason": self.reason, **self.extras()}


# Client input errors


class BodyTooLarge(AdmissionRejected):
    status_code = 413
    reason = "body_too_large"

    def __init__(self, configured_limit: int | None = None) -> None:
        self.configured_limit = configured_limit
        if configured_limit is None:
            super().__init__("Request body too large")
        else:
            super().__init__(f"Request body too large (max {configured_limit} bytes)")

    def extras(self) -> dict:
        return {"limit": self.configured_limit} if self.configured_limit is not None else {}


class InvalidContentType(AdmissionRejected):
    reason = "invalid_content_type"
    message = "Invalid Content-Type"


class OriginRequired(AdmissionRejected):
    reason = "origin_required"
    message = "Origin or Referer header required"


class InvalidCsrf(AdmissionRejected):
    status_code = 403
    reason = "invalid_csrf"
    message = "Invalid CSRF token"


class InvalidChallenge(AdmissionRejected):
    status_code = 403
    reason = "invalid_challenge"
    message = "Invalid challenge solution"


class OriginNotWhitelisted(AdmissionRejected):
    status_code = 403
    reason = "origin_not_whitelisted"
    message = "Origin not whitelisted"


class EmptySubmission(AdmissionRejected):
    reason = "empty_submission"
    message = "Empty submission"


class SubmissionTooLarge(AdmissionRejected):
    reason = "submission_too_large"
    message = "Submission too large"


# Resource-state errors


class FormNotFound(AdmissionRejected):
    status_code = 404
    reason = "not_found"
    message = "Form not found"


class FormInactive(AdmissionRejected):
    reason = "form_inactive"
    message = "Form is not accepting submissions"


class OrganizationInactive(AdmissionRejected):
    reason = "organization_inactive"
    message = "Organization is inactive"


# Throttling errors


class SpacingViolation(AdmissionRejected):
    status_code = 429
    reason = "too_many_requests"
    message = "Submission rate limit exceeded"

    def __init__(self, wait_seconds: int) -> None:
        self.wait_seconds = wait_seconds
        super().__init__()

    def extras(self) -> dict:
        return {
            "message": f"Please wait {self.wait_seconds} seconds before submitting again",
            "retryAfter": self.wait_seconds,
        }

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(self.wait_seconds)}


class RateLimited(AdmissionRejected):
    status_code = 429
    reason = "too_many_requests"
    message = "Rate limit exceeded"

    def __init__(self, reset_at_ms: int, now_ms: int | None = None) -> None:
        self.reset_at_ms = reset_at_ms
        self.now_ms = now_ms
        super().__init__()

    @property
    def reset_at(self) -> datetime:
        return datetime.fromtimestamp(self.reset_at_ms / 1000, tz=timezone.utc)

    def extras(self) -> dict:
        return {
            "message": "Too many requests. Please try again later.",
            "resetAt": self.reset_at.isoformat().replace("+00:00", "Z"),
        }

    def headers(self) -> dict[str, str]:
        if self.now_ms is None:
            return {}
        seconds = max(1, -(-(self.reset_at_ms - self.now_ms) // 1000))
        return {"Retry-After": str(seconds)}


# Structural / configuration errors


class ConfigurationError(AdmissionRejected):
    status_code = 500
    reason = "configuration_error"
    message = "Form configuration error"


class CsrfUnavailable(AdmissionRejected):
    status_code = 501
    reason = "csrf_not_configured"
    message = "CSRF protection not configured"


class ChallengeUnavailable(AdmissionRejected):
    status_code = 501
    reason = "challenge_not_configured"
    message = "Challenge protection not configured"


class PersistenceFailed(AdmissionRejected):
    status_code = 500
    reason = "persistence_failed"
    message = "Failed to process submission"


# Transient downstream errors


class QueueUnavailable(AdmissionRejected):
    status_code = 503
    reason = "queue_unavailable"
    message = "Submission stored but integrations could not be scheduled; retry later"

    def __init__(self, submission_id=None) -> None:
        self.submission_id = submission_id
        super().__init__()

    def extras(self) -> dict:
        return {"submissionId": str(self.submission_id)} if self.submission_id else {}
