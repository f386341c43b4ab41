"""Admission-control primitives for public form submissions."""

from .challenge import ChallengeConfig, ChallengeNotConfigured, create_challenge, verify_solution
from .csrf import CsrfConfig, CsrfNotConfigured, issue_csrf_token, verify_csrf_token
from .origin import client_ip, resolve_origin, url_origin
from .policy import SecuritySettings, resolve_security_settings
from .throttle import RateLimitDecision, SpacingDecision, ThrottleEntry, ThrottleStore
from .whitelist import is_origin_allowed

__all__ = [
    "ChallengeConfig",
    "ChallengeNotConfigured",
    "create_challenge",
    "verify_solution",
    "CsrfConfig",
    "CsrfNotConfigured",
    "issue_csrf_token",
    "verify_csrf_token",
    "client_ip",
    "resolve_origin",
    "url_origin",
    "SecuritySettings",
    "resolve_security_settings",
    "RateLimitDecision",
    "SpacingDecision",
    "ThrottleEntry",
    "ThrottleStore",
    "is_origin_allowed",
]
