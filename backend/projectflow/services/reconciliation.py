"""Apply row changes to cached, newest-first record collections"""

from typing import List, Optional, Sequence, TypeVar

from projectflow.schemas.realtime import ChangeKind

T = TypeVar("T")


def sort_newest_first(records: Sequence[T]) -> List[T]:
    """Stable sort, descending by created_at"""
    return sorted(records, key=lambda record: record.created_at, reverse=True)


def apply_insert(records: Sequence[T], record: T, ordered: bool = True) -> List[T]:
    """
    Prepend a record, replacing any copy with the same id.

    With ordered=True the collection is re-sorted newest first afterwards;
    otherwise the record simply moves to the front.
    """
    merged = [record] + [existing for existing in records if existing.id != record.id]
    return sort_newest_first(merged) if ordered else merged


def apply_update(records: Sequence[T], record: T, ordered: bool = True) -> List[T]:
    """
    Replace the record with the same id.

    An update for an id that is not cached is handled as an insert, so
    updates delivered ahead of their insert still converge.
    """
    if not any(existing.id == record.id for existing in records):
        return apply_insert(records, record, ordered)

    merged = [record if existing.id == record.id else existing for existing in records]
    return sort_newest_first(merged) if ordered else merged


def apply_delete(records: Sequence[T], record_id: str) -> List[T]:
    """Drop the record with this id; unknown ids leave the collection unchanged"""
    return [existing for existing in records if existing.id != record_id]


def apply_change(
    records: Sequence[T],
    kind: ChangeKind,
    record: Optional[T] = None,
    record_id: Optional[str] = None,
    ordered: bool = True,
) -> List[T]:
    """Dispatch one change to apply_insert / apply_update / apply_delete"""
    if kind == ChangeKind.INSERT:
        return apply_insert(records, record, ordered)
    if kind == ChangeKind.UPDATE:
        return apply_update(records, record, ordered)
    if kind == ChangeKind.DELETE:
        return apply_delete(records, record_id if record_id is not None else record.id)
    raise ValueError(f"Unsupported change kind: {kind}")
