# Overview: Date + counter document numbers (INV-/TRF-/RET-YYYYMMDD-NNNN).

from __future__ import annotations

from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import date_code

PREFIX_TRANSACTION = "INV"
PREFIX_TRANSFER = "TRF"
PREFIX_RETURN = "RET"

MAX_PROBES = 5


def _allocate(document_type: str, day: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.date_code == day,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, date_code=day)
            .scalar()
        )
        return current - 1

    seq = DocumentSequence(document_type=document_type, date_code=day, next_number=2)
    db.session.add(seq)
    try:
        db.session.flush()
    except IntegrityError as exc:
        # Another writer created today's row first; the unit of work retries
        raise Conflict("Document sequence contention") from exc
    return 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 4,
    exists: Callable[[str], bool] | None = None,
) -> str:
    """
    Allocate the next number for ``document_type`` today.

    Must run inside a unit of work. ``exists`` probes the target table so a
    number already taken (for example by an offline-replayed document) is
    skipped rather than colliding on the unique constraint.
    """
    if not document_type:
        raise ValidationError("document_type is required")

    day = date_code()
    for _ in range(MAX_PROBES):
        number = f"{prefix}-{day}-{_allocate(document_type, day):0{pad}d}"
        if exists is None or not exists(number):
            return number
    raise Conflict(f"Could not allocate a free {document_type} number")
