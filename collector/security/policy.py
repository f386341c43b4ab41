"""Effective per-request security settings for a form."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_RATE_LIMIT_ENABLED = True
DEFAULT_RATE_LIMIT_MAX_REQUESTS = 10
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 60
DEFAULT_RATE_LIMIT_MAX_REQUESTS_PER_HOUR = 50
DEFAULT_MIN_TIME_ENABLED = True
DEFAULT_MIN_TIME_SECONDS = 10
DEFAULT_MAX_REQUEST_SIZE_BYTES = 100_000
DEFAULT_REFERER_FALLBACK_ENABLED = True


@dataclass(frozen=True)
class SecuritySettings:
    rate_limit_enabled: bool
    rate_limit_max_requests: int
    rate_limit_window_seconds: int
    rate_limit_max_requests_per_hour: int
    min_time_between_submissions_enabled: bool
    min_time_between_submissions_seconds: int
    max_request_size_bytes: int
    referer_fallback_enabled: bool


def _pick(value, default):
    return default if value is None else value


def _pick_positive(value, default: int) -> int:
    # Zero counts as unset for limits.
    return value if value else default


def resolve_security_settings(form, organization) -> SecuritySettings:
    """Combine form overrides with organization defaults.

    With ``use_org_security_settings`` set (the default) every field comes from
    the organization's ``default_*`` column, otherwise from the form itself;
    unset values fall back to the built-in defaults.
    """
    use_org = _pick(form.use_org_security_settings, True)
    src, prefix = (organization, "default_") if use_org else (form, "")

    def value(name: str):
        if src is None:
            return None
        return getattr(src, f"{prefix}{name}", None)

    return SecuritySettings(
        rate_limit_enabled=bool(_pick(value("rate_limit_enabled"), DEFAULT_RATE_LIMIT_ENABLED)),
        rate_limit_max_requests=_pick_positive(
            value("rate_limit_max_requests"), DEFAULT_RATE_LIMIT_MAX_REQUESTS
        ),
        rate_limit_window_seconds=_pick_positive(
            value("rate_limit_window_seconds"), DEFAULT_RATE_LIMIT_WINDOW_SECONDS
        ),
        rate_limit_max_requests_per_hour=_pick_positive(
            value("rate_limit_max_requests_per_hour"), DEFAULT_RATE_LIMIT_MAX_REQUESTS_PER_HOUR
        ),
        min_time_between_submissions_enabled=bool(
            _pick(value("min_time_between_submissions_enabled"), DEFAULT_MIN_TIME_ENABLED)
        ),
        min_time_between_submissions_seconds=_pick_positive(
            value("min_time_between_submissions_seconds"), DEFAULT_MIN_TIME_SECONDS
        ),
        max_request_size_bytes=_pick_positive(
            value("max_request_size_bytes"), DEFAULT_MAX_REQUEST_SIZE_BYTES
        ),
        referer_fallback_enabled=bool(
            _pick(value("referer_fallback_enabled"), DEFAULT_REFERER_FALLBACK_ENABLED)
        ),
    )
