from __future__ import annotations
from typing import Mapping
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from app.core.tenant import set_organization_id

# Checked in order; X-Tenant-Id is accepted from older terminals.
ORGANIZATION_HEADERS = ("X-Organization-Id", "X-Tenant-Id")


def organization_from_headers(headers: Mapping[str, str]) -> str | None:
    for name in ORGANIZATION_HEADERS:
        value = (headers.get(name) or "").strip()
        if value:
            return value
    return None


class OrganizationMiddleware(BaseHTTPMiddleware):
    """Binds the caller's organization to the request context and echoes it back."""

    async def dispatch(self, request: Request, call_next):
        org = organization_from_headers(request.headers)
        set_organization_id(org)
        response = await call_next(request)
        if org:
            response.headers[ORGANIZATION_HEADERS[0]] = org
        return response
