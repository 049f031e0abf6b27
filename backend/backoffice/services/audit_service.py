# Overview: Default event-bus subscribers: audit-log writer and stock notification logger.

from __future__ import annotations

from flask import Flask, current_app
from sqlalchemy.orm import Session

from ..events import EVENT_AUDIT, EVENT_STOCK_UPDATED, Event
from ..extensions import db, events
from ..models import AuditLog


def write_audit_entry(event: Event) -> None:
    """
    Persist an audit event in its own session.

    Called after the business transaction committed; raising here only
    loses the audit row.
    """
    payload = event.payload
    with Session(db.engine) as session:
        session.add(AuditLog(
            action=payload["action"],
            entity_type=payload["entity_type"],
            entity_id=payload.get("entity_id"),
            description=payload.get("description"),
            metadata_json=payload.get("metadata") or {},
            tenant_id=event.tenant_id,
            branch_id=event.branch_id,
            user_id=event.user_id,
            ip=event.ip,
            created_at=event.occurred_at,
        ))
        session.commit()


def log_stock_update(event: Event) -> None:
    payload = event.payload
    current_app.logger.debug(
        "Stock %s on %s: variant=%s %s -> %s",
        payload.get("operation"), event.room, payload.get("variant_id"),
        payload.get("previous_qty"), payload.get("quantity"),
    )


def register_default_handlers(app: Flask) -> None:
    events.subscribe(EVENT_AUDIT, write_audit_entry, app=app)
    events.subscribe(EVENT_STOCK_UPDATED, log_stock_update, app=app)

