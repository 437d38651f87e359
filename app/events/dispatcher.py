from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

import httpx
from sqlalchemy.orm import Session, sessionmaker

from app.db.session import SessionLocal
from app.events.outbox import OutboxEvent
from app.events.subscriptions import EventSubscription

logger = logging.getLogger(__name__)

Handler = Callable[[OutboxEvent], None]

# In-process consumers, e.g. the cognitive engine: (topic pattern, handler)
_handlers: list[tuple[str, Handler]] = []


def register_handler(pattern: str, handler: Handler) -> None:
    _handlers.append((pattern, handler))


def clear_handlers() -> None:
    _handlers.clear()


def _pattern_matches(pattern: str, topic: str) -> bool:
    """Very small pattern helper.

    Supported:
      - exact match
      - prefix match using trailing '.'
      - wildcard 'prefix.*' treated as prefix match
    """
    if not pattern:
        return False
    if pattern == topic:
        return True
    if pattern.endswith(".*"):
        return topic.startswith(pattern[:-1])  # keep trailing '.'
    if pattern.endswith("."):
        return topic.startswith(pattern)
    return False


def _get_matching_subs(db: Session, evt: OutboxEvent) -> list[EventSubscription]:
    subs = db.query(EventSubscription).filter(EventSubscription.is_active == True).all()  # noqa: E712
    return [
        s for s in subs
        if _pattern_matches(s.topic_pattern, evt.topic)
        and (s.organization_id is None or s.organization_id == evt.organization_id)
    ]


def _run_handlers(evt: OutboxEvent) -> str | None:
    """Run in-process handlers; returns the last error, if any."""
    last_err = None
    for pattern, handler in list(_handlers):
        if not _pattern_matches(pattern, evt.topic):
            continue
        try:
            handler(evt)
        except Exception as e:
            logger.exception("handler for %s failed on event %s", pattern, evt.id)
            last_err = f"handler {pattern}: {e}"
    return last_err


async def _deliver_one(client: httpx.AsyncClient, sub: EventSubscription, evt: OutboxEvent) -> tuple[bool, str | None]:
    headers = {k: str(v) for k, v in (sub.headers or {}).items()}
    body = evt.as_message()
    try:
        resp = await client.post(sub.target_url, json=body, headers=headers, timeout=10.0)
        if 200 <= resp.status_code < 300:
            return True, None
        return False, f"HTTP {resp.status_code}: {resp.text[:300]}"
    except httpx.HTTPError as e:
        return False, str(e)


def _schedule_next(attempt_count: int) -> datetime:
    # Simple exponential backoff capped at 10 minutes
    seconds = min(600, 2 ** min(attempt_count, 9))
    return datetime.utcnow() + timedelta(seconds=seconds)


async def dispatch_once(
    client: httpx.AsyncClient,
    *,
    session_factory: sessionmaker = SessionLocal,
    limit: int = 50,
) -> int:
    """Deliver one batch of due outbox events. Returns how many were delivered."""
    delivered = 0
    db = session_factory()
    try:
        now = datetime.utcnow()
        events = (
            db.query(OutboxEvent)
            .filter(OutboxEvent.delivered == False)  # noqa: E712
            .filter(OutboxEvent.available_at <= now)
            .order_by(OutboxEvent.created_at.asc())
            .limit(limit)
            .all()
        )
        if not events:
            return 0

        for evt in events:
            last_err = None
            if evt.handled_at is None:
                last_err = _run_handlers(evt)
                if last_err is None:
                    evt.mark_handled()

            # Deliver to all subs; event considered delivered when all succeed
            for sub in _get_matching_subs(db, evt):
                ok, err = await _deliver_one(client, sub, evt)
                if ok:
                    sub.last_error = None
                    sub.failure_count = 0
                    sub.last_delivered_at = datetime.utcnow()
                else:
                    last_err = err
                    sub.last_error = err
                    sub.failure_count = (sub.failure_count or 0) + 1

            if last_err is None:
                evt.mark_delivered()
                delivered += 1
            else:
                evt.defer(last_err, _schedule_next((evt.attempt_count or 0) + 1))
                logger.warning("event %s (%s) not delivered, attempt %s: %s", evt.id, evt.topic, evt.attempt_count, last_err)

        db.commit()
        return delivered
    finally:
        db.close()


async def run_dispatcher_forever(*, poll_interval_seconds: float = 1.0, session_factory: sessionmaker = SessionLocal) -> None:
    """Background worker that delivers outbox events to handlers and webhooks."""
    async with httpx.AsyncClient() as client:
        while True:
            try:
                await dispatch_once(client, session_factory=session_factory)
            except Exception:
                # Never crash the server because the dispatcher had a bad day
                logger.exception("outbox dispatch failed")
            await asyncio.sleep(poll_interval_seconds)
