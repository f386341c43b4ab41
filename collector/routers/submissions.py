"""Public submission endpoints: CSRF issuance, challenges, and form POSTs."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile
from starlette.formparsers import FormParser, MultiPartException, MultiPartParser

from ..database import get_db
from ..deps import get_admission_pipeline
from ..errors import BodyTooLarge, InvalidContentType
from ..logging_setup import get_correlation_id
from ..services.admission_svc import AdmissionPipeline, InboundSubmission

router = APIRouter(prefix="/s", tags=["submissions"])

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
}


async def _read_limited(request: Request, limit: int) -> bytes:
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > limit:
            raise BodyTooLarge(limit)
    return bytes(body)


async def _replay(body: bytes):
    yield body


def _form_to_dict(form) -> dict:
    fields: dict = {}
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            value = value.filename or ""
        if key in fields:
            existing = fields[key]
            fields[key] = existing + [value] if isinstance(existing, list) else [existing, value]
        else:
            fields[key] = value
    return fields


async def parse_fields(request: Request, limit: int) -> dict:
    """Read at most ``limit`` bytes and decode them per the declared Content-Type."""
    body = await _read_limited(request, limit)
    content_type = (request.headers.get("content-type") or "").lower()
    if not body:
        return {}

    if "application/json" in content_type:
        try:
            data = json.loads(body)
        except (UnicodeDecodeError, ValueError) as exc:
            raise InvalidContentType("Malformed JSON body") from exc
        return data if isinstance(data, dict) else {}

    if "multipart/form-data" in content_type:
        parser = MultiPartParser(request.headers, _replay(body))
    elif "application/x-www-form-urlencoded" in content_type:
        parser = FormParser(request.headers, _replay(body))
    else:
        return {}
    try:
        form = await parser.parse()
    except (MultiPartException, UnicodeDecodeError, ValueError) as exc:
        raise InvalidContentType("Malformed form body") from exc
    try:
        return _form_to_dict(form)
    finally:
        await form.close()


def _rate_limit_headers(admitted) -> dict[str, str]:
    if admitted.rate_limit is None:
        return {}
    return {
        "X-RateLimit-Limit": str(admitted.security.rate_limit_max_requests),
        "X-RateLimit-Remaining": str(max(0, admitted.rate_limit.remaining)),
    }


@router.get("/{identifier}/csrf")
async def issue_csrf_token(
    identifier: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    pipeline: AdmissionPipeline = Depends(get_admission_pipeline),
):
    issued = await pipeline.issue_csrf(db, identifier, request.headers)
    return JSONResponse(
        {"token": issued.token, "expiresInSeconds": issued.expires_in_seconds},
        headers={"Cache-Control": "no-store"},
    )


@router.get("/{identifier}/challenge")
async def issue_challenge(
    identifier: str,
    pipeline: AdmissionPipeline = Depends(get_admission_pipeline),
):
    return JSONResponse(pipeline.issue_challenge(), headers={"Cache-Control": "no-store"})


@router.post("/{identifier}")
async def submit_form(
    identifier: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    pipeline: AdmissionPipeline = Depends(get_admission_pipeline),
):
    async def load_fields(limit: int) -> dict:
        return await parse_fields(request, limit)

    inbound = InboundSubmission(
        identifier=identifier,
        headers=request.headers,
        load_fields=load_fields,
        peer_host=request.client.host if request.client else None,
        correlation_id=get_correlation_id(request),
    )
    admitted = await pipeline.admit(db, inbound)
    result = await pipeline.commit(db, admitted)
    return JSONResponse(
        {"message": result.message},
        headers={**SECURITY_HEADERS, **_rate_limit_headers(admitted)},
    )
