from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from sqlalchemy import event as sa_event
from sqlmodel import Session

from personnel_console.domain.models import EventEnvelope, EventRecord
from personnel_console.infra.context import get_actor_id, get_request_id
from personnel_console.infra.db import engine

EventHandler = Callable[[EventEnvelope], None]

PENDING_EVENTS_KEY = "pending_events"

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: EventEnvelope, session: Session | None = None) -> None:
        """Persist ``event`` and notify subscribers once it is committed.

        With a caller-owned ``session`` delivery waits for that session's
        commit; a rollback discards the event.
        """
        record = EventRecord(
            event_id=event.event_id,
            event_type=event.event_type,
            ts=event.ts,
            actor_id=event.actor_id,
            correlation_id=event.correlation_id,
            payload=event.payload,
        )
        if session is None:
            with Session(engine) as own_session:
                own_session.add(record)
                own_session.commit()
            self._dispatch(event)
            return

        session.add(record)
        if PENDING_EVENTS_KEY not in session.info:
            session.info[PENDING_EVENTS_KEY] = []
            sa_event.listen(session, "after_commit", self._flush_pending)
            sa_event.listen(session, "after_rollback", self._drop_pending)
        session.info[PENDING_EVENTS_KEY].append(event)

    def _flush_pending(self, session: Session) -> None:
        pending: list[EventEnvelope] = session.info.get(PENDING_EVENTS_KEY, [])
        session.info[PENDING_EVENTS_KEY] = []
        for event in pending:
            self._dispatch(event)

    def _drop_pending(self, session: Session) -> None:
        dropped = session.info.get(PENDING_EVENTS_KEY, [])
        if dropped:
            logger.debug("events discarded on rollback", extra={"count": len(dropped)})
        session.info[PENDING_EVENTS_KEY] = []

    def _dispatch(self, event: EventEnvelope) -> None:
        logger.debug("event published", extra={"event_type": event.event_type, "event_id": event.event_id})
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            handler(event)

    def publish_dict(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        actor_id: str | None = None,
        session: Session | None = None,
    ) -> EventEnvelope:
        event = EventEnvelope(
            event_type=event_type,
            actor_id=actor_id or get_actor_id(),
            correlation_id=get_request_id(),
            payload=payload,
        )
        self.publish(event, session=session)
        return event


event_bus = EventBus()
