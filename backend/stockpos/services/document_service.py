# Overview: Sequential, time-ordered document numbers (sale numbers).

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ValidationError
from ..models import DocumentSequence
from ..time_utils import utcnow


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for document_type in the current UTC day.

    Must run inside write_transaction(): the increment is a single UPDATE on
    the (type, day) row, so concurrent callers serialize on that row. The
    first number of a day inserts the row inside a savepoint and falls back
    to the UPDATE if another writer inserted it first.

    Format: {prefix}{yymmdd}-{number}, e.g. S251017-000042.
    """
    if not document_type:
        raise ValidationError("document_type is required")

    period = utcnow().strftime("%y%m%d")
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    def _bump() -> int | None:
        result = db.session.execute(stmt)
        if not result.rowcount:
            return None
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type, period=period)
            .scalar()
        )
        return current - 1

    number = _bump()
    if number is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, period=period, next_number=2))
            number = 1
        except IntegrityError:
            number = _bump()
            if number is None:
                raise

    return f"{prefix}{period}-{number:0{pad}d}"


def next_sale_number() -> str:
    return next_document_number(document_type="SALE", prefix="S")
