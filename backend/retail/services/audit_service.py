# Overview: Best-effort audit trail written after business commits.

from __future__ import annotations

from typing import Any

from flask import current_app

from ..extensions import db
from ..models import AuditEvent
from ..repositories import Page, Pagination
from ..time_utils import utcnow


def _write_event(event: AuditEvent) -> None:
    db.session.add(event)
    db.session.commit()


def log_event(
    *,
    tenant_id: int,
    action: str,
    resource: str,
    resource_id: Any = None,
    user_id: int | None = None,
    old_value: dict | None = None,
    new_value: dict | None = None,
    success: bool = True,
    note: str | None = None,
) -> AuditEvent | None:
    """
    Append an audit event in its own transaction.

    Must be called after the business transaction has committed. Failures
    are logged and swallowed; the caller's outcome is never changed.
    """
    event = AuditEvent(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id) if resource_id is not None else None,
        old_value=old_value,
        new_value=new_value,
        success=success,
        note=note,
        created_at=utcnow(),
    )
    try:
        _write_event(event)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Audit write failed: action=%s resource=%s resource_id=%s tenant_id=%s",
            action, resource, resource_id, tenant_id,
        )
        return None
    return event


def list_audit_events(
    tenant_id: int,
    *,
    resource: str | None = None,
    resource_id: Any = None,
    action: str | None = None,
    pagination: Pagination | None = None,
) -> Page:
    pagination = pagination or Pagination.from_args()
    query = db.session.query(AuditEvent).filter(AuditEvent.tenant_id == tenant_id)
    if resource:
        query = query.filter(AuditEvent.resource == resource)
    if resource_id is not None:
        query = query.filter(AuditEvent.resource_id == str(resource_id))
    if action:
        query = query.filter(AuditEvent.action == action)

    total = query.count()
    items = (
        query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
        .offset(pagination.offset)
        .limit(pagination.per_page)
        .all()
    )
    return Page(items=items, total=total, page=pagination.page, per_page=pagination.per_page)
