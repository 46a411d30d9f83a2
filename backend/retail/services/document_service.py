# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence


def _current_number(session, tenant_id: int, document_type: str) -> int:
    current = (
        session.query(DocumentSequence.next_number)
        .filter_by(tenant_id=tenant_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    tenant_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
    session=None,
) -> str:
    """
    Atomically allocate the next document number for a tenant/type.

    Runs inside the caller's transaction: the number is consumed only if
    that transaction commits. The first allocation inserts the sequence row
    under a savepoint so a concurrent insert falls back to the UPDATE path.
    """
    session = session or db.session
    if not tenant_id:
        raise ValidationError("tenant_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = session.execute(stmt)
    if result.rowcount:
        next_num = _current_number(session, tenant_id, document_type)
    else:
        try:
            with session.begin_nested():
                session.add(DocumentSequence(tenant_id=tenant_id, document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            result = session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_number(session, tenant_id, document_type)

    return f"{prefix}-{tenant_id:03d}-{next_num:0{pad}d}"
