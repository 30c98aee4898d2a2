# Overview: Per-branch, per-year invoice numbering for sale and return documents.

from __future__ import annotations

from sqlalchemy import Integer, String, cast, update
from sqlalchemy.exc import IntegrityError

from ..models import Branch, Setting
from ..time_utils import utcnow
from ..validation import NotFoundError


INVOICE_SEQ_KEY_PREFIX = "last_invoice_seq_"


class InvoiceSequenceError(NotFoundError):
    """Raised when an invoice number cannot be allocated."""
    pass


def invoice_sequence_key(branch_id: int, year: int) -> str:
    return f"{INVOICE_SEQ_KEY_PREFIX}{branch_id}_{year}"


def format_invoice_number(prefix: str, year: int, seq: int) -> str:
    return f"{prefix}-{year}-{seq:06d}"


def _increment(session, key: str) -> int | None:
    stmt = (
        update(Setting)
        .where(Setting.key == key)
        .values(
            value=cast(cast(Setting.value, Integer) + 1, String),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    result = session.execute(stmt)
    if not result.rowcount:
        return None
    current = session.query(Setting.value).filter(Setting.key == key).scalar()
    return int(current)


def next_invoice_number(session, branch_id: int, *, year: int | None = None) -> str:
    """
    Allocate the next invoice number for a branch inside the caller's transaction.

    The counter row is bumped with a single UPDATE (value = value + 1) and read
    back, so the write lock is held from the increment until the sale commits.
    A rolled-back sale therefore releases its number and numbering stays gapless.
    """
    if not branch_id:
        raise InvoiceSequenceError("branch_id is required")

    branch = session.query(Branch).filter_by(id=branch_id).first()
    if branch is None:
        raise InvoiceSequenceError(f"Branch {branch_id} not found")

    if year is None:
        year = utcnow().year
    key = invoice_sequence_key(branch_id, year)

    seq = _increment(session, key)
    if seq is None:
        try:
            with session.begin_nested():
                session.add(Setting(key=key, value="1"))
            seq = 1
        except IntegrityError:
            # Another writer created the counter first
            seq = _increment(session, key)
            if seq is None:
                raise

    return format_invoice_number(branch.invoice_prefix, year, seq)


def peek_last_sequence(session, branch_id: int, year: int) -> int:
    """Last allocated sequence number for (branch, year); 0 when none yet."""
    value = session.query(Setting.value).filter(
        Setting.key == invoice_sequence_key(branch_id, year)
    ).scalar()
    return int(value) if value else 0
