"""In-memory cache of establishment aggregates."""

from typing import Dict, Iterable, List, Optional

from .domain import Establishment


class EstablishmentCache:
    """
    Holds at most one aggregate per establishment id.

    Aggregates are immutable snapshots built completely before ``put``, so a
    reader never sees a half-populated table map. Only the sync engine writes.
    """

    def __init__(self):
        self._entries: Dict[str, Establishment] = {}

    def get(self, establishment_id: str) -> Optional[Establishment]:
        return self._entries.get(establishment_id)

    def put(self, establishment_id: str, establishment: Establishment):
        """Replace the aggregate wholesale."""
        self._entries[establishment_id] = establishment

    def invalidate(self, establishment_id: str) -> bool:
        return self._entries.pop(establishment_id, None) is not None

    def retain(self, establishment_ids: Iterable[str]) -> List[str]:
        """Drop every entry not in ``establishment_ids``; return what was dropped."""
        keep = set(establishment_ids)
        dropped = [eid for eid in self._entries if eid not in keep]
        for eid in dropped:
            del self._entries[eid]
        return dropped

    def clear(self):
        self._entries.clear()

    def ids(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, establishment_id: str) -> bool:
        return establishment_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
