from __future__ import annotations
import contextvars

from app.core.errors import ConfigurationError

_organization: contextvars.ContextVar[str | None] = contextvars.ContextVar("organization_id", default=None)

def set_organization_id(organization_id: str | None) -> None:
    _organization.set(organization_id or None)

def get_organization_id() -> str | None:
    return _organization.get()

def require_organization(organization_id: str | None = None) -> str:
    """Explicit id wins; otherwise the request context. Raises when neither is set."""
    org = organization_id or _organization.get()
    if not org:
        raise ConfigurationError("Organization context is missing")
    return org
