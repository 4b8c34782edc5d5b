"""Version chains: grouping ad units into slots and navigating their versions.

Revisions always point at the lineage root (``parentAdId`` is the root id for
every later version), so ancestors are one point lookup plus one sibling
query away. Older data with deeper parent links is still grouped correctly
because membership is resolved with a union over every ``parentAdId`` edge.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from campfire.asset_store.repository import AssetStore, StoreError
from campfire.review.models import AdUnit, SlotKey

logger = logging.getLogger(__name__)


class VersionChain:
    """Ordered versions of one slot plus an ephemeral display cursor."""

    def __init__(self, root_id: str, versions: Iterable[AdUnit], ancestors_loaded: bool = False) -> None:
        self.root_id = root_id
        self.versions: List[AdUnit] = []
        self.ancestors_loaded = ancestors_loaded
        self._cursor_id: Optional[str] = None
        for unit in versions:
            self.add(unit)

    def __repr__(self) -> str:
        return f"VersionChain(root={self.root_id!r}, versions={[u.version for u in self.versions]})"

    @property
    def slot(self) -> SlotKey:
        for unit in self.versions:
            if unit.slot_key.is_complete:
                return unit.slot_key
        return self.versions[0].slot_key if self.versions else SlotKey()

    @property
    def group_id(self) -> str:
        return self.versions[0].groupId if self.versions else ""

    def add(self, unit: AdUnit) -> None:
        """Insert or replace ``unit`` keeping ascending version order."""
        self.versions = [u for u in self.versions if u.id != unit.id]
        self.versions.append(unit)
        self.versions.sort(key=lambda u: (u.version, u.id))

    def get(self, unit_id: str) -> Optional[AdUnit]:
        for unit in self.versions:
            if unit.id == unit_id:
                return unit
        return None

    def __contains__(self, unit_id: object) -> bool:
        return any(u.id == unit_id for u in self.versions)

    @property
    def max_version(self) -> int:
        return max((u.version for u in self.versions), default=0)

    @property
    def active(self) -> Optional[AdUnit]:
        """Highest version that is not archived."""
        for unit in reversed(self.versions):
            if not unit.is_archived:
                return unit
        return None

    def older_than(self, unit: AdUnit) -> List[AdUnit]:
        return [u for u in self.versions if u.id != unit.id and u.version < unit.version]

    # display cursor, never persisted

    def _display_index(self) -> int:
        if self._cursor_id is not None:
            for idx, unit in enumerate(self.versions):
                if unit.id == self._cursor_id:
                    return idx
        active = self.active
        if active is not None:
            return self.versions.index(active)
        return len(self.versions) - 1

    @property
    def displayed(self) -> Optional[AdUnit]:
        if not self.versions:
            return None
        return self.versions[self._display_index()]

    @property
    def has_previous(self) -> bool:
        return bool(self.versions) and self._display_index() > 0

    @property
    def has_next(self) -> bool:
        return bool(self.versions) and self._display_index() < len(self.versions) - 1

    def show_previous(self) -> Optional[AdUnit]:
        if self.has_previous:
            self._cursor_id = self.versions[self._display_index() - 1].id
        return self.displayed

    def show_next(self) -> Optional[AdUnit]:
        if self.has_next:
            self._cursor_id = self.versions[self._display_index() + 1].id
        return self.displayed

    def reset_display(self) -> None:
        self._cursor_id = None


class _Union:
    def __init__(self) -> None:
        self._parent: Dict[str, str] = {}

    def find(self, key: str) -> str:
        self._parent.setdefault(key, key)
        while self._parent[key] != key:
            self._parent[key] = self._parent[self._parent[key]]
            key = self._parent[key]
        return key

    def union(self, a: str, b: str) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self._parent[rb] = ra


def build_chains(units: Iterable[AdUnit], complete: bool = False) -> List[VersionChain]:
    """Partition ``units`` into version chains.

    Units are linked through ``parentAdId`` edges, and units that share a
    complete slot key are merged even when the links are missing.
    ``complete`` marks the input as a full group listing, so chains whose
    root is present need no further ancestor fetches.
    """
    by_id: Dict[str, AdUnit] = {}
    for unit in units:
        by_id[unit.id] = unit
    links = _Union()
    slot_owner: Dict[SlotKey, str] = {}
    for unit in by_id.values():
        links.find(unit.id)
        if unit.parentAdId:
            links.union(unit.parentAdId, unit.id)
        key = unit.slot_key
        if key.is_complete:
            if key in slot_owner:
                links.union(slot_owner[key], unit.id)
            else:
                slot_owner[key] = unit.id

    members: Dict[str, List[AdUnit]] = {}
    order: List[str] = []
    for unit in by_id.values():
        head = links.find(unit.id)
        if head not in members:
            members[head] = []
            order.append(head)
        members[head].append(unit)

    chains: List[VersionChain] = []
    for head in order:
        group = members[head]
        roots = [u for u in group if not u.parentAdId]
        if roots:
            root_id = min(roots, key=lambda u: (u.version, u.id)).id
        else:
            # root not loaded; the lowest version points at it
            root_id = min(group, key=lambda u: (u.version, u.id)).parentAdId or group[0].id
        chains.append(VersionChain(root_id, group, ancestors_loaded=complete and bool(roots)))
    return chains


class LineageResolver:
    """Builds chains and lazily fills in missing ancestors from the store."""

    def __init__(self, store: AssetStore) -> None:
        self._store = store

    def build(self, units: Iterable[AdUnit], complete: bool = False) -> List[VersionChain]:
        return build_chains(units, complete=complete)

    def ensure_ancestors(self, chain: VersionChain) -> VersionChain:
        """Fetch the root by id and its direct revisions, once per chain.

        A root that no longer exists is tolerated: the chain keeps only the
        versions already loaded.
        """
        if chain.ancestors_loaded or not chain.versions:
            return chain
        group_id = chain.group_id
        try:
            if chain.root_id not in chain:
                root = self._store.get_ad_unit(group_id, chain.root_id)
                if root is None:
                    logger.debug("lineage root %s/%s not found", group_id, chain.root_id)
                else:
                    chain.add(root)
            for sibling in self._store.list_ad_units_by_parent(group_id, chain.root_id):
                if sibling.id not in chain:
                    chain.add(sibling)
        except StoreError as exc:
            logger.warning("ancestor lookup failed for %s/%s: %s", group_id, chain.root_id, exc)
            return chain
        chain.ancestors_loaded = True
        return chain

    def chain_for_unit(self, unit: AdUnit) -> VersionChain:
        chain = build_chains([unit])[0]
        return self.ensure_ancestors(chain)

    def show_previous(self, chain: VersionChain) -> Optional[AdUnit]:
        """Step the display back, fetching ancestors on the first attempt."""
        if not chain.has_previous:
            self.ensure_ancestors(chain)
        return chain.show_previous()
