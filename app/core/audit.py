from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from app.db.models.security_audit import AuditLog

logger = logging.getLogger(__name__)


def audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    payload: dict | None = None,
    success: bool = True,
    organization_id: str | None = None,
) -> None:
    """Write an append-only audit record.

    Keep payload JSON-serializable.
    """
    safe_payload: dict[str, Any] = payload or {}
    try:
        # Ensure it can roundtrip to JSON (avoids runtime errors on commit)
        json.dumps(safe_payload)
    except (TypeError, ValueError):
        safe_payload = {"_payload_error": "non_json", "_payload_repr": repr(payload)}

    db.add(
        AuditLog(
            organization_id=organization_id,
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            success=success,
            payload=safe_payload,
        )
    )
    db.commit()
    logger.debug("audit %s %s/%s by %s", action, entity_type, entity_id, actor)
