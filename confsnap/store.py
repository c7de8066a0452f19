from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from confsnap.errors import MissingIdError, NonNumericIdError, StructuralError
from confsnap.identifiers import EntityId, id_key, is_canonical_id, normalize_id


class EntityStore:
    """Deduplicated, id-sorted records with O(1) lookup by id.

    ``all_ids`` is strictly ascending and resolves 1:1 against ``by_id``; the
    constructor refuses anything else.
    """

    __slots__ = ("_all_ids", "_by_id")

    def __init__(self, all_ids: Iterable[EntityId], by_id: Mapping[EntityId, dict[str, Any]]) -> None:
        ids = list(all_ids)
        records = dict(by_id)
        for index, entity_id in enumerate(ids):
            if not is_canonical_id(entity_id):
                raise NonNumericIdError(f"entity store requires numeric ids, got {entity_id!r}")
            if index and ids[index - 1] >= entity_id:
                raise StructuralError("entity store ids must be strictly ascending")
        if len(records) != len(ids) or any(entity_id not in records for entity_id in ids):
            raise StructuralError("entity store allIds/byId mismatch")
        self._all_ids = ids
        self._by_id = records

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> EntityStore:
        items = list(records)
        for item in items:
            entity_id = item.get("id") if isinstance(item, Mapping) else None
            if entity_id is None:
                raise MissingIdError("entity store requires items with id")
            if not is_canonical_id(entity_id):
                raise NonNumericIdError(f"entity store requires numeric ids, got {entity_id!r}")

        # sorted() is stable, so duplicate ids resolve to the first-seen record.
        by_id: dict[EntityId, dict[str, Any]] = {}
        all_ids: list[EntityId] = []
        for item in sorted(items, key=lambda record: record["id"]):
            entity_id = item["id"]
            if entity_id in by_id:
                continue
            by_id[entity_id] = dict(item)
            all_ids.append(entity_id)
        return cls(all_ids, by_id)

    @classmethod
    def from_payload(cls, payload: Any, *, name: str = "store") -> EntityStore:
        if not isinstance(payload, Mapping):
            raise StructuralError(f"{name} missing allIds/byId")
        all_ids = payload.get("allIds")
        by_key = payload.get("byId")
        if not isinstance(all_ids, list) or not isinstance(by_key, Mapping):
            raise StructuralError(f"{name} missing allIds/byId")
        by_id: dict[EntityId, dict[str, Any]] = {}
        for key, record in by_key.items():
            entity_id = normalize_id(key)
            if entity_id is None:
                raise NonNumericIdError(f"{name}.byId has non-numeric key {key!r}")
            by_id[entity_id] = dict(record)
        return cls(all_ids, by_id)

    @property
    def all_ids(self) -> list[EntityId]:
        return list(self._all_ids)

    def ids(self) -> frozenset[EntityId]:
        return frozenset(self._all_ids)

    def get(self, entity_id: EntityId | None) -> dict[str, Any] | None:
        if entity_id is None:
            return None
        return self._by_id.get(entity_id)

    def records(self) -> Iterator[dict[str, Any]]:
        for entity_id in self._all_ids:
            yield self._by_id[entity_id]

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._by_id

    def __len__(self) -> int:
        return len(self._all_ids)

    def __iter__(self) -> Iterator[EntityId]:
        return iter(self._all_ids)

    def as_dict(self) -> dict[str, Any]:
        return {
            "allIds": list(self._all_ids),
            "byId": {id_key(entity_id): self._by_id[entity_id] for entity_id in self._all_ids},
        }


def require_store(stores: Mapping[str, Any], name: str) -> EntityStore:
    value = stores.get(name) if isinstance(stores, Mapping) else None
    if isinstance(value, EntityStore):
        return value
    return EntityStore.from_payload(value, name=f"entities/{name}")
