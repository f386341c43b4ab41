"""End-to-end tests for the public submission endpoints."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from collector.app import app
from collector.deps import get_admission_pipeline
from collector.models.form import Form
from collector.models.organization import Organization
from collector.security.challenge import ChallengeConfig
from collector.security.csrf import CsrfConfig
from collector.services import form_svc, integration_svc, queue_svc
from collector.services.admission_svc import AdmissionConfig, AdmissionPipeline
from collector.tests.conftest import ORIGIN, encode_solution

SUBMIT_URL = "/s/hash-contact-0001"
PROTECTED_URL = "/s/hash-protected-01"


async def _post(client: AsyncClient, url: str = SUBMIT_URL, origin: str | None = ORIGIN, **kwargs):
    headers = dict(kwargs.pop("headers", {}))
    if origin:
        headers.setdefault("Origin", origin)
    return await client.post(url, headers=headers, **kwargs)


async def _own_security(db: AsyncSession, form: Form, **overrides):
    form.use_org_security_settings = False
    for key, value in overrides.items():
        setattr(form, key, value)
    await db.commit()


# -- Accepted submissions ---------------------------------------------------


@pytest.mark.asyncio
async def test_submit_json(client: AsyncClient, db: AsyncSession, form: Form):
    resp = await _post(client, json={"name": "Ada", "email": "ada@example.com"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Submission received"}
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-RateLimit-Limit"] == "10"
    assert resp.headers["X-RateLimit-Remaining"] == "9"
    assert resp.headers["X-Request-ID"]

    submissions, total = await form_svc.list_submissions(db, form.id)
    assert total == 1
    assert submissions[0].data == {"name": "Ada", "email": "ada@example.com"}
    assert submissions[0].origin_domain == ORIGIN
    assert submissions[0].ip_address == "127.0.0.1"


@pytest.mark.asyncio
async def test_submit_urlencoded_repeated_keys(client: AsyncClient, db: AsyncSession, form: Form):
    resp = await _post(client, data={"name": "Ada", "topics": ["a", "b"]})
    assert resp.status_code == 200

    submissions, _ = await form_svc.list_submissions(db, form.id)
    assert submissions[0].data == {"name": "Ada", "topics": ["a", "b"]}


@pytest.mark.asyncio
async def test_submit_multipart_keeps_file_name(client: AsyncClient, db: AsyncSession, form: Form):
    resp = await _post(
        client,
        data={"name": "Ada"},
        files={"cv": ("cv.pdf", b"%PDF-1.4", "application/pdf")},
    )
    assert resp.status_code == 200

    submissions, _ = await form_svc.list_submissions(db, form.id)
    assert submissions[0].data == {"name": "Ada", "cv": "cv.pdf"}


@pytest.mark.asyncio
async def test_submit_without_origin_when_csrf_off(client: AsyncClient, form: Form):
    resp = await _post(client, origin=None, json={"name": "Ada"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_submit_queues_integrations(
    client: AsyncClient, db: AsyncSession, organization: Organization, form: Form
):
    await integration_svc.create_integration(
        db, organization.id, type="webhook", name="Hook", config={"webhook": "https://h.example"}
    )
    resp = await _post(client, json={"name": "Ada"}, headers={"X-Request-ID": "rid-42"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Submission received successfully"}

    submissions, _ = await form_svc.list_submissions(db, form.id)
    jobs = await queue_svc.list_jobs_for_submission(db, submissions[0].id)
    assert len(jobs) == 1
    assert jobs[0].queue_name == "integration-webhook"
    assert jobs[0].payload["correlationId"] == "rid-42"


# -- Throttling ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_spacing_then_recovery(client: AsyncClient, form: Form, clock):
    assert (await _post(client, json={"name": "Ada"})).status_code == 200

    resp = await _post(client, json={"name": "Ada"})
    assert resp.status_code == 429
    body = resp.json()
    assert body["reason"] == "too_many_requests"
    assert body["retryAfter"] == 10
    assert body["message"] == "Please wait 10 seconds before submitting again"
    assert resp.headers["Retry-After"] == "10"

    clock.advance(11)
    assert (await _post(client, json={"name": "Ada"})).status_code == 200


@pytest.mark.asyncio
async def test_spacing_is_per_client_ip(client: AsyncClient, form: Form):
    first = await _post(client, json={"a": "1"}, headers={"X-Forwarded-For": "198.51.100.1"})
    second = await _post(client, json={"a": "1"}, headers={"X-Forwarded-For": "198.51.100.2"})
    assert first.status_code == 200
    assert second.status_code == 200


@pytest.mark.asyncio
async def test_rate_limit_rejection(client: AsyncClient, db: AsyncSession, form: Form):
    await _own_security(
        db, form, rate_limit_max_requests=2, min_time_between_submissions_enabled=False
    )
    assert (await _post(client, json={"a": "1"})).status_code == 200
    assert (await _post(client, json={"a": "2"})).status_code == 200

    resp = await _post(client, json={"a": "3"})
    assert resp.status_code == 429
    body = resp.json()
    assert body["error"] == "Rate limit exceeded"
    assert body["resetAt"] == "2023-11-14T22:14:20Z"
    assert resp.headers["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_rejected_content_still_consumes_quota(client: AsyncClient, form: Form):
    resp = await _post(client, json={"name": ""})
    assert resp.status_code == 400
    assert resp.json()["reason"] == "empty_submission"

    resp = await _post(client, json={"name": "Ada"})
    assert resp.status_code == 200
    assert resp.headers["X-RateLimit-Remaining"] == "8"


@pytest.mark.asyncio
async def test_rate_limit_disabled_omits_headers(client: AsyncClient, db: AsyncSession, form: Form):
    await _own_security(db, form, rate_limit_enabled=False)
    resp = await _post(client, json={"name": "Ada"})
    assert resp.status_code == 200
    assert "X-RateLimit-Limit" not in resp.headers


# -- Rejections ---------------------------------------------------------------


@pytest.mark.asyncio
async def test_unknown_form(client: AsyncClient):
    resp = await _post(client, url="/s/nope", json={"a": "b"}, headers={"X-Request-ID": "rid-1"})
    assert resp.status_code == 404
    assert resp.json() == {"error": "Form not found", "reason": "not_found", "correlationId": "rid-1"}
    assert resp.headers["X-Request-ID"] == "rid-1"


@pytest.mark.asyncio
async def test_inactive_form(client: AsyncClient, db: AsyncSession, form: Form):
    form.is_active = False
    await db.commit()
    resp = await _post(client, json={"a": "b"})
    assert resp.status_code == 400
    assert resp.json()["reason"] == "form_inactive"


@pytest.mark.asyncio
async def test_form_without_organization(client: AsyncClient, db: AsyncSession):
    db.add(Form(organization_id=None, name="Orphan", slug="orphan", submit_hash="hash-orphan"))
    await db.commit()
    resp = await _post(client, url="/s/hash-orphan", json={"a": "b"})
    assert resp.status_code == 500
    assert resp.json()["reason"] == "configuration_error"


@pytest.mark.asyncio
async def test_inactive_organization(
    client: AsyncClient, db: AsyncSession, organization: Organization, form: Form
):
    organization.is_active = False
    await db.commit()
    resp = await _post(client, json={"a": "b"})
    assert resp.status_code == 400
    assert resp.json()["reason"] == "organization_inactive"


@pytest.mark.asyncio
async def test_unsupported_content_type(client: AsyncClient, form: Form):
    resp = await _post(client, content=b"name=Ada", headers={"Content-Type": "text/plain"})
    assert resp.status_code == 400
    assert resp.json()["reason"] == "invalid_content_type"


@pytest.mark.asyncio
async def test_malformed_json(client: AsyncClient, form: Form):
    resp = await _post(client, content=b'{"a":', headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Malformed JSON body"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "content_type,content",
    [
        ("multipart/form-data", b"name=Ada"),
        ("multipart/form-data; boundary=xyz", b"garbage"),
    ],
)
async def test_malformed_multipart(
    client: AsyncClient, form: Form, content_type: str, content: bytes
):
    resp = await _post(client, content=content, headers={"Content-Type": content_type})
    assert resp.status_code == 400
    body = resp.json()
    assert body["reason"] == "invalid_content_type"
    assert body["error"] == "Malformed form body"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_hard_body_ceiling(client: AsyncClient, form: Form):
    resp = await _post(client, json={"m": "x" * 100_000})
    assert resp.status_code == 413
    assert resp.json() == {
        "error": "Request body too large",
        "reason": "body_too_large",
        "correlationId": resp.headers["X-Request-ID"],
    }


@pytest.mark.asyncio
async def test_per_form_body_limit(client: AsyncClient, db: AsyncSession, form: Form):
    await _own_security(db, form, max_request_size_bytes=50)
    resp = await _post(client, json={"m": "x" * 100})
    assert resp.status_code == 413
    assert resp.json()["limit"] == 50


@pytest.mark.asyncio
async def test_per_form_body_limit_without_content_length(
    client: AsyncClient, db: AsyncSession, form: Form
):
    await _own_security(db, form, max_request_size_bytes=50)

    async def chunks():
        yield b'{"m": "'
        yield b"x" * 100
        yield b'"}'

    resp = await _post(client, content=chunks(), headers={"Content-Type": "application/json"})
    assert resp.status_code == 413
    assert resp.json()["limit"] == 50


@pytest.mark.asyncio
async def test_message_too_long(client: AsyncClient, form: Form):
    resp = await _post(client, json={"m": "x" * 4000})
    assert resp.status_code == 400
    assert resp.json()["reason"] == "submission_too_large"


@pytest.mark.asyncio
async def test_origin_not_whitelisted(
    client: AsyncClient, db: AsyncSession, organization: Organization, form: Form
):
    await form_svc.add_whitelisted_domain(db, organization.id, "allowed.example")
    resp = await _post(client, json={"a": "b"})
    assert resp.status_code == 403
    assert resp.json()["reason"] == "origin_not_whitelisted"

    resp = await _post(client, origin="https://www.allowed.example", json={"a": "b"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_queue_failure_returns_503(client: AsyncClient, db: AsyncSession, form: Form, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("queue down")

    monkeypatch.setattr(queue_svc, "enqueue_integration_jobs", broken)
    resp = await _post(client, json={"name": "Ada"})
    assert resp.status_code == 503
    body = resp.json()
    assert body["reason"] == "queue_unavailable"

    submissions, total = await form_svc.list_submissions(db, form.id)
    assert total == 1
    assert body["submissionId"] == str(submissions[0].id)


@pytest.mark.asyncio
async def test_unhandled_error_keeps_security_headers(client: AsyncClient, form: Form, monkeypatch):
    async def broken(*args, **kwargs):
        raise RuntimeError("lookup exploded")

    monkeypatch.setattr(form_svc, "get_form_by_submit_hash", broken)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as raw_client:
        resp = await _post(raw_client, json={"name": "Ada"})

    assert resp.status_code == 500
    assert resp.json()["reason"] == "internal_error"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"


# -- CSRF ---------------------------------------------------------------------


async def _csrf_token(client: AsyncClient, identifier: str = "hash-protected-01", origin=ORIGIN):
    resp = await client.get(f"/s/{identifier}/csrf", headers={"Origin": origin})
    assert resp.status_code == 200
    return resp


@pytest.mark.asyncio
async def test_csrf_round_trip(client: AsyncClient, csrf_form: Form):
    resp = await _csrf_token(client)
    assert resp.headers["Cache-Control"] == "no-store"
    body = resp.json()
    assert body["expiresInSeconds"] == 900

    resp = await _post(
        client, url=PROTECTED_URL, json={"name": "Ada"}, headers={"X-CSRF-Token": body["token"]}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_csrf_form_second_submission_spaced(client: AsyncClient, csrf_form: Form, clock):
    first_token = (await _csrf_token(client)).json()["token"]
    clock.advance(1)
    second_token = (await _csrf_token(client)).json()["token"]
    assert first_token != second_token

    resp = await _post(
        client, url=PROTECTED_URL, json={"name": "Test"}, headers={"X-CSRF-Token": first_token}
    )
    assert resp.status_code == 200
    assert resp.json()["message"].startswith("Submission received")

    resp = await _post(
        client, url=PROTECTED_URL, json={"name": "Test"}, headers={"X-CSRF-Token": second_token}
    )
    assert resp.status_code == 429
    body = resp.json()
    assert body["reason"] == "too_many_requests"
    assert body["retryAfter"] == 10
    assert resp.headers["Retry-After"] == "10"


@pytest.mark.asyncio
async def test_csrf_token_in_body_is_stripped(
    client: AsyncClient, db: AsyncSession, csrf_form: Form
):
    token = (await _csrf_token(client, identifier="protected")).json()["token"]
    resp = await _post(client, url=PROTECTED_URL, data={"name": "Ada", "csrfToken": token})
    assert resp.status_code == 200

    submissions, _ = await form_svc.list_submissions(db, csrf_form.id)
    assert submissions[0].data == {"name": "Ada"}


@pytest.mark.asyncio
async def test_csrf_required_and_validated(client: AsyncClient, csrf_form: Form, clock):
    resp = await _post(client, url=PROTECTED_URL, origin=None, json={"name": "Ada"})
    assert resp.status_code == 400
    assert resp.json()["reason"] == "origin_required"

    resp = await _post(client, url=PROTECTED_URL, json={"name": "Ada"})
    assert resp.status_code == 403
    assert resp.json()["reason"] == "invalid_csrf"

    token = (await _csrf_token(client)).json()["token"]
    resp = await _post(
        client,
        url=PROTECTED_URL,
        origin="https://other.example",
        json={"name": "Ada", "_csrf": token},
    )
    assert resp.status_code == 403

    clock.advance(901)
    resp = await _post(client, url=PROTECTED_URL, json={"name": "Ada", "_csrf": token})
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_csrf_issue_requires_origin(client: AsyncClient, csrf_form: Form):
    resp = await client.get("/s/hash-protected-01/csrf")
    assert resp.status_code == 400
    assert resp.json()["reason"] == "origin_required"

    resp = await client.get(
        "/s/hash-protected-01/csrf", headers={"Referer": "https://site.example/contact"}
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_csrf_issue_rejections(
    client: AsyncClient, db: AsyncSession, organization: Organization, csrf_form: Form
):
    resp = await client.get("/s/missing/csrf", headers={"Origin": ORIGIN})
    assert resp.status_code == 404

    await form_svc.add_whitelisted_domain(db, organization.id, "allowed.example")
    resp = await client.get("/s/hash-protected-01/csrf", headers={"Origin": ORIGIN})
    assert resp.status_code == 403
    assert resp.json()["reason"] == "origin_not_whitelisted"


# -- Challenge ----------------------------------------------------------------


@pytest.mark.asyncio
async def test_challenge_round_trip(client: AsyncClient, form: Form):
    resp = await client.get("/s/hash-contact-0001/challenge")
    assert resp.status_code == 200
    challenge = resp.json()
    assert challenge["algorithm"] == "SHA-256"
    assert challenge["maxnumber"] == 1000

    resp = await _post(client, json={"name": "Ada", "altcha": encode_solution(challenge)})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_challenge_solution_in_header(client: AsyncClient, form: Form):
    challenge = (await client.get("/s/hash-contact-0001/challenge")).json()
    resp = await _post(
        client,
        json={"name": "Ada"},
        headers={"X-Altcha-Spam-Filter": encode_solution(challenge)},
    )
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_invalid_challenge_solution(client: AsyncClient, form: Form):
    challenge = (await client.get("/s/hash-contact-0001/challenge")).json()
    bad = encode_solution(challenge, signature="0" * 64)
    resp = await _post(client, json={"name": "Ada", "altcha": bad})
    assert resp.status_code == 403
    assert resp.json()["reason"] == "invalid_challenge"


# -- Unconfigured secrets -------------------------------------------------------


@pytest.mark.asyncio
async def test_unconfigured_secrets(client: AsyncClient, throttle, clock, form: Form, csrf_form: Form):
    unconfigured = AdmissionPipeline(
        AdmissionConfig(csrf=CsrfConfig(secret=None), challenge=ChallengeConfig(hmac_key=None)),
        throttle,
        clock=clock,
    )
    app.dependency_overrides[get_admission_pipeline] = lambda: unconfigured

    resp = await client.get("/s/hash-protected-01/csrf", headers={"Origin": ORIGIN})
    assert resp.status_code == 501
    assert resp.json()["reason"] == "csrf_not_configured"

    resp = await client.get("/s/hash-contact-0001/challenge")
    assert resp.status_code == 501
    assert resp.json()["reason"] == "challenge_not_configured"

    resp = await _post(client, url=PROTECTED_URL, json={"name": "Ada"})
    assert resp.status_code == 500
    assert resp.json()["reason"] == "configuration_error"

    resp = await _post(client, json={"name": "Ada", "altcha": "e30="})
    assert resp.status_code == 500
    assert resp.json()["reason"] == "configuration_error"
