# Overview: Per-store gapless document numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence


def _bump(store_id: str, document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(store_id=store_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    store_id: str,
    document_type: str,
    prefix: str,
    store_code: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a store/type, e.g. FT-LIS01-000042.

    Must run inside the caller's unit of work: the UPDATE holds the sequence
    row lock until the caller commits, and a rollback hands the number back,
    which keeps the sequence gapless.
    """
    if not store_id:
        raise ValidationError("store_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    next_num = _bump(store_id, document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(store_id=store_id, document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            # Another writer created the row first
            next_num = _bump(store_id, document_type)
            if next_num is None:
                raise

    return f"{prefix}-{store_code}-{next_num:0{pad}d}"
