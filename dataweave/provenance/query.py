"""Filter / sort / paginate over the record store"""

from typing import Callable, Iterable, Optional

from loguru import logger

from dataweave.core.models import (
    PageRequest,
    ProvenanceRecord,
    QueryPage,
    RecordFilter,
    SortKey,
    SortOrder,
)
from dataweave.provenance.record_store import RecordStore


_SORT_FIELDS: dict[SortKey, Callable[[ProvenanceRecord], object]] = {
    SortKey.CREATED_AT: lambda r: r.created_at,
    SortKey.KIND: lambda r: r.kind.value,
    SortKey.ORIGIN_ID: lambda r: r.origin_id,
}


class QueryEngine:
    """
    Read-only query surface over a RecordStore.

    Candidates come from the smallest applicable index (origin or kind),
    falling back to a full scan; the remaining filters are applied linearly.
    Results are sorted by the requested key with ties broken by id, then
    paginated.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def query(
        self,
        record_filter: Optional[RecordFilter] = None,
        page: Optional[PageRequest] = None,
    ) -> QueryPage:
        record_filter = record_filter or RecordFilter()
        page = page or PageRequest()

        candidates = self._candidates(record_filter)
        matches = [r for r in candidates if self._matches(r, record_filter)]
        ordered = self._sort(matches, page.sort_by, page.sort_order)

        total = len(ordered)
        end = total if page.limit is None else page.offset + page.limit
        records = ordered[page.offset:end]

        logger.debug(
            "Query matched {total} records, returning {count} (offset={offset})",
            total=total,
            count=len(records),
            offset=page.offset,
        )

        return QueryPage(
            records=records,
            total=total,
            has_more=page.offset + len(records) < total,
            offset=page.offset,
            limit=page.limit,
        )

    def _candidates(self, record_filter: RecordFilter) -> list[ProvenanceRecord]:
        indexes = self.store.indexes
        id_lists: list[list[str]] = []

        if record_filter.origin_id is not None:
            id_lists.append(indexes.ids_for_origin(record_filter.origin_id))
        if record_filter.kind is not None:
            id_lists.append(indexes.ids_for_kind(record_filter.kind))

        if not id_lists:
            return self.store.records()

        smallest = min(id_lists, key=len)
        return [r for r in (self.store.get_by_id(i) for i in smallest) if r is not None]

    @staticmethod
    def _matches(record: ProvenanceRecord, record_filter: RecordFilter) -> bool:
        if record_filter.origin_id is not None and record.origin_id != record_filter.origin_id:
            return False
        if record_filter.kind is not None and record.kind != record_filter.kind:
            return False
        if record_filter.start_time is not None and record.created_at < record_filter.start_time:
            return False
        if record_filter.end_time is not None and record.created_at > record_filter.end_time:
            return False
        if record_filter.tags:
            wanted = set(record_filter.tags)
            if not wanted.intersection(record.metadata.tags):
                return False
        return True

    @staticmethod
    def _sort(
        records: Iterable[ProvenanceRecord],
        sort_by: SortKey,
        sort_order: SortOrder,
    ) -> list[ProvenanceRecord]:
        key = _SORT_FIELDS[sort_by]
        # Two stable passes: id ascending first, then the primary key
        ordered = sorted(records, key=lambda r: r.id)
        ordered.sort(key=key, reverse=sort_order == SortOrder.DESC)
        return ordered
