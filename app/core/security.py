from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError

from app.core.middleware import organization_from_headers
from app.core.tenant import get_organization_id

bearer = HTTPBearer(auto_error=False)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
JWT_TTL_MIN = int(os.getenv("JWT_TTL_MIN", "30"))  # 30m default

IAM_ISSUER = os.getenv("IAM_ISSUER", "enterprise-iam")
IAM_AUDIENCE = os.getenv("IAM_AUDIENCE", "enterprise-core")


@dataclass
class Principal:
    """Caller identity as resolved by the upstream session service.

    The production core trusts these values and performs no further authorization
    beyond the admin-only event subscription endpoints.
    """
    user_id: str | None = None
    username: str = "anonymous"
    organization_id: str | None = None
    roles: list[str] | None = None

    def has_role(self, role: str) -> bool:
        return role in (self.roles or [])


def create_access_token(user_id: str, *, username: str, organization_id: str, roles: Iterable[str] = ()) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "iss": IAM_ISSUER,
        "aud": IAM_AUDIENCE,
        "sub": user_id,
        "tid": organization_id,
        "email": username,
        "roles": sorted(set(roles)),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=JWT_TTL_MIN)).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALG)


def _header_organization(request: Request) -> str | None:
    return organization_from_headers(request.headers) or get_organization_id()


def get_principal(request: Request, creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Principal:
    header_org = _header_organization(request)
    if not creds or not creds.credentials:
        # Anonymous
        return Principal(organization_id=header_org, roles=[])

    try:
        payload = jwt.decode(
            creds.credentials,
            JWT_SECRET,
            algorithms=[JWT_ALG],
            audience=IAM_AUDIENCE,
            issuer=IAM_ISSUER,
        )
    except JWTError:
        return Principal(organization_id=header_org, roles=[])

    # An explicit organization header wins over the token claim.
    organization_id = header_org or payload.get("tid")
    return Principal(
        user_id=payload.get("sub"),
        username=payload.get("email") or "unknown",
        organization_id=organization_id,
        roles=[str(r) for r in (payload.get("roles") or [])],
    )


def require_roles(required: Iterable[str]) -> Callable:
    required_set = set(required)

    def _dep(principal: Principal = Depends(get_principal)) -> Principal:
        if not principal.user_id:
            raise HTTPException(status_code=401, detail="Not authenticated")
        missing = [r for r in required_set if not principal.has_role(r)]
        if missing:
            raise HTTPException(status_code=403, detail={"error": "missing_roles", "missing": sorted(missing)})
        return principal

    return _dep
