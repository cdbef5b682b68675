"""Secondary indexes over the canonical record map"""

from typing import Iterable, Optional

from loguru import logger

from dataweave.core.models import ProvenanceRecord, RecordKind


class SecondaryIndexes:
    """
    Origin and kind indexes holding record ids only.

    Lists are kept in insertion (= creation) order, so the last id for an
    origin is its chain head. Only the record store mutates these.
    """

    def __init__(self) -> None:
        self.by_origin: dict[str, list[str]] = {}
        self.by_kind: dict[RecordKind, list[str]] = {kind: [] for kind in RecordKind}

    def add(self, record: ProvenanceRecord) -> None:
        self.by_origin.setdefault(record.origin_id, []).append(record.id)
        self.by_kind[record.kind].append(record.id)
        logger.debug(f"Indexed {record.id} under origin={record.origin_id} kind={record.kind.value}")

    def head(self, origin_id: str) -> Optional[str]:
        """Most recent record id for an origin, O(1)"""
        ids = self.by_origin.get(origin_id)
        return ids[-1] if ids else None

    def ids_for_origin(self, origin_id: str) -> list[str]:
        return self.by_origin.get(origin_id, [])

    def ids_for_kind(self, kind: RecordKind) -> list[str]:
        return self.by_kind.get(kind, [])

    def snapshot(self) -> tuple[dict[str, list[str]], dict[str, list[str]]]:
        """Copies of both indexes keyed by plain strings"""
        by_origin = {origin: list(ids) for origin, ids in self.by_origin.items()}
        by_kind = {kind.value: list(ids) for kind, ids in self.by_kind.items()}
        return by_origin, by_kind

    @classmethod
    def from_snapshot(
        cls,
        by_origin: dict[str, list[str]],
        by_kind: dict[str, list[str]],
    ) -> "SecondaryIndexes":
        indexes = cls()
        indexes.by_origin = {origin: list(ids) for origin, ids in by_origin.items() if ids}
        for kind_value, ids in by_kind.items():
            indexes.by_kind[RecordKind(kind_value)] = list(ids)
        return indexes

    @classmethod
    def rebuild(cls, records: Iterable[ProvenanceRecord]) -> "SecondaryIndexes":
        """Derive both indexes from the canonical records alone"""
        indexes = cls()
        for record in sorted(records, key=lambda r: (r.created_at, r.id)):
            indexes.add(record)
        return indexes

    def check_consistency(self, records: dict[str, ProvenanceRecord]) -> list[str]:
        """
        Compare index membership with the canonical map.

        Returns human-readable problems; an empty list means every record
        sits in exactly its own origin and kind bucket and nothing else is
        indexed.
        """
        problems: list[str] = []

        for name, index, key_of in (
            ("origin", self.by_origin, lambda r: r.origin_id),
            ("kind", self.by_kind, lambda r: r.kind),
        ):
            seen: set[str] = set()
            for key, ids in index.items():
                for record_id in ids:
                    if record_id in seen:
                        problems.append(f"{record_id} indexed twice in {name} index")
                        continue
                    seen.add(record_id)

                    record = records.get(record_id)
                    if record is None:
                        problems.append(f"{name} index references unknown record {record_id}")
                    elif key_of(record) != key:
                        problems.append(f"{record_id} filed under wrong {name} {key!r}")

            for record_id in records.keys() - seen:
                problems.append(f"{record_id} missing from {name} index")

        return problems

    def check_chain_order(self, records: dict[str, ProvenanceRecord]) -> list[str]:
        """
        Verify each origin list is a well-formed chain.

        Ids must appear in non-decreasing `created_at` order and every
        record's `prior_links[0]` must be the id filed just before it, so
        `head()` always returns the newest link and the next create cannot
        fork the chain. Ids unknown to `records` are left to
        `check_consistency`.
        """
        problems: list[str] = []

        for origin_id, ids in self.by_origin.items():
            previous: Optional[ProvenanceRecord] = None
            for record_id in ids:
                record = records.get(record_id)
                if record is None:
                    continue

                expected = previous.id if previous else None
                if record.prior_link == record.id:
                    problems.append(f"{record_id} links to itself")
                elif record.prior_link != expected:
                    problems.append(
                        f"{record_id} links to {record.prior_link} but follows {expected} "
                        f"in origin {origin_id!r}"
                    )

                if previous and record.created_at < previous.created_at:
                    problems.append(
                        f"{record_id} filed after newer record {previous.id} in origin {origin_id!r}"
                    )
                previous = record

        return problems
