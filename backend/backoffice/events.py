# Overview: Post-commit side channel for audit entries and stock notifications.

"""
Event bus.

Services *stage* events on the SQLAlchemy session while a unit of work is
open. The unit of work publishes them after a successful commit and drops
them on rollback, so subscribers never hear about writes that did not
happen.

Delivery is best-effort: each handler runs inside an app context, either on
a small thread pool or inline when EVENTS_SYNC_DELIVERY is set. A handler
that raises is logged and skipped.
"""

from __future__ import annotations

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from flask import Flask, current_app

from .time_utils import utcnow

STAGED_KEY = "backoffice.staged_events"

EVENT_STOCK_UPDATED = "stock.updated"
EVENT_AUDIT = "audit"

WILDCARD = "*"


@dataclass
class Event:
    type: str
    payload: dict[str, Any]
    tenant_id: int | None = None
    branch_id: int | None = None
    user_id: int | None = None
    ip: str | None = None
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def room(self) -> str | None:
        """Branch-scoped channel name for live stock listeners."""
        if self.branch_id is None:
            return None
        return f"branch:{self.branch_id}"


class _BusState:
    def __init__(self, max_workers: int):
        self.handlers: dict[str, list[Callable[[Event], None]]] = defaultdict(list)
        self.max_workers = max_workers
        self.executor: ThreadPoolExecutor | None = None

    def get_executor(self) -> ThreadPoolExecutor:
        if self.executor is None:
            self.executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="backoffice-events",
            )
        return self.executor


class EventBus:
    """Flask extension; handlers are registered per application."""

    def __init__(self, app: Flask | None = None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        app.extensions["backoffice_events"] = _BusState(app.config.get("EVENTS_MAX_WORKERS", 2))

    def _state(self, app: Flask | None = None) -> _BusState:
        return (app or current_app).extensions["backoffice_events"]

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def subscribe(self, event_type: str, handler: Callable[[Event], None], app: Flask | None = None) -> None:
        handlers = self._state(app).handlers[event_type]
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, event_type: str, handler: Callable[[Event], None], app: Flask | None = None) -> None:
        handlers = self._state(app).handlers[event_type]
        if handler in handlers:
            handlers.remove(handler)

    # -------------------------------------------------------------------------
    # Staging (inside a unit of work)
    # -------------------------------------------------------------------------

    def stage(self, session, event_type: str, payload: dict[str, Any], *, actor=None, branch_id: int | None = None) -> Event:
        event = Event(
            type=event_type,
            payload=payload,
            tenant_id=getattr(actor, "tenant_id", None),
            branch_id=branch_id if branch_id is not None else getattr(actor, "branch_id", None),
            user_id=getattr(actor, "user_id", None),
            ip=getattr(actor, "ip", None),
        )
        session.info.setdefault(STAGED_KEY, []).append(event)
        return event

    def audit(
        self,
        session,
        *,
        action: str,
        entity_type: str,
        entity_id,
        description: str,
        actor=None,
        branch_id: int | None = None,
        metadata: dict | None = None,
    ) -> Event:
        return self.stage(
            session,
            EVENT_AUDIT,
            {
                "action": action,
                "entity_type": entity_type,
                "entity_id": str(entity_id) if entity_id is not None else None,
                "description": description,
                "metadata": metadata or {},
            },
            actor=actor,
            branch_id=branch_id,
        )

    def discard_staged(self, session) -> None:
        session.info.pop(STAGED_KEY, None)

    def publish_staged(self, session) -> None:
        staged = session.info.pop(STAGED_KEY, None)
        if staged:
            self.publish(staged)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def publish(self, events: list[Event]) -> None:
        app = current_app._get_current_object()
        if app.config.get("EVENTS_SYNC_DELIVERY") or app.config.get("TESTING"):
            _deliver(app, self._state(app), events)
            return
        try:
            self._state(app).get_executor().submit(_deliver_in_context, app, self._state(app), events)
        except RuntimeError:
            # Executor shut down (interpreter exit); fall back to inline delivery
            _deliver(app, self._state(app), events)


def _deliver_in_context(app: Flask, state: _BusState, events: list[Event]) -> None:
    with app.app_context():
        _deliver(app, state, events)


def _deliver(app: Flask, state: _BusState, events: list[Event]) -> None:
    for event in events:
        handlers = list(state.handlers.get(event.type, ())) + list(state.handlers.get(WILDCARD, ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                app.logger.exception("Event handler failed for %s", event.type)
