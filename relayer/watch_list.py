"""
Shared watch-list of known subscription ids.

Two independent producers append to it: the tick-driven block scanner and the
push listener. Every read-merge-persist sequence runs under one asyncio.Lock
so neither can overwrite the other's append with stale state.

Operator commands (``main.py backfill``) may append to the same file from a
separate process, so every merge starts from what is on disk and ``reload``
picks up such appends between merges.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from relayer.state_store import StateStore
from shared.serialization_utils import normalize_sub_id


class WatchList:
    """Ordered, duplicate-free, append-only set of subscription ids."""

    def __init__(self, store: StateStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()
        self._ids: list[str] = store.load_watch_list()
        self._members: set[str] = set(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, sub_id: object) -> bool:
        try:
            return normalize_sub_id(sub_id) in self._members
        except ValueError:
            return False

    def snapshot(self) -> list[str]:
        """Copy of the ids in first-insertion order."""
        return list(self._ids)

    def _union_with_disk(self) -> list[str]:
        """Ids known in memory followed by ids another process appended on disk."""
        on_disk = [sub_id for sub_id in self._store.load_watch_list() if sub_id not in self._members]
        return self._ids + on_disk

    def _adopt(self, ids: list[str]) -> None:
        self._ids = ids
        self._members = set(ids)

    async def reload(self) -> int:
        """Pull in ids appended to the file by another process. Returns how many."""
        async with self._lock:
            current = self._union_with_disk()
            picked_up = len(current) - len(self._ids)
            self._adopt(current)
            return picked_up

    async def merge(self, sub_ids: Iterable[str]) -> list[str]:
        """
        Union ``sub_ids`` into the list and persist.

        Returns the ids that were actually new. Nothing is written when every id
        is already known. In-memory state only changes after the write succeeds.
        """
        async with self._lock:
            current = self._union_with_disk()
            known = set(current)
            added: list[str] = []
            for raw in sub_ids:
                sub_id = normalize_sub_id(raw)
                if sub_id not in known and sub_id not in added:
                    added.append(sub_id)
            if not added:
                self._adopt(current)
                return []

            updated = current + added
            self._store.save_watch_list(updated)
            self._adopt(updated)
            return added
