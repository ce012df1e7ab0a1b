"""
Durable relayer state: scan cursor, watch-list and failure ledger.

Each record lives in its own JSON file and is rewritten wholesale through a
temp file + ``os.replace`` so a reader never observes a torn write. Unreadable
or malformed files load as empty state and are logged as warnings.

Usage:
    store = StateStore(settings.state_dir)
    cursor = store.load_cursor()
    store.save_cursor(cursor + 500)
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from shared.constants import CURSOR_FILE, FAILURE_LEDGER_FILE, WATCH_LIST_FILE
from shared.serialization_utils import LedgerJSONEncoder, normalize_sub_id
from shared.types import FailureRecord

_MISSING = object()


class StateStore:
    """File-backed persistence for everything the relayer needs across restarts."""

    def __init__(self, state_dir: Path | str) -> None:
        self._state_dir = Path(state_dir)
        self._state_dir.mkdir(parents=True, exist_ok=True)

        self._logger = setup_module_logger(
            "state_store", "state_store.log", module_folder="State_Logs"
        )

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    # ------------------------------------------------------------------
    # Raw file access
    # ------------------------------------------------------------------

    def _read_json(self, name: str) -> Any:
        """Return parsed JSON, or ``_MISSING`` when the file is absent or unreadable."""
        path = self._state_dir / name
        if not path.exists():
            return _MISSING
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.warning("Unreadable state file %s, treating as empty: %s", path, exc)
            return _MISSING

    def _write_json(self, name: str, payload: Any) -> None:
        """Atomically replace ``name`` with ``payload``."""
        target = self._state_dir / name
        fd, tmp_path = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=self._state_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, cls=LedgerJSONEncoder, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    # ------------------------------------------------------------------
    # Scan cursor
    # ------------------------------------------------------------------

    def load_cursor(self) -> int | None:
        """Next block not yet scanned, or None when never persisted."""
        data = self._read_json(CURSOR_FILE)
        if data is _MISSING:
            return None
        value = data.get("next_block") if isinstance(data, dict) else data
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            self._logger.warning("Malformed cursor %r in %s, treating as empty", data, CURSOR_FILE)
            return None
        return value

    def save_cursor(self, next_block: int) -> None:
        self._write_json(CURSOR_FILE, {"next_block": int(next_block)})

    # ------------------------------------------------------------------
    # Watch-list
    # ------------------------------------------------------------------

    def load_watch_list(self) -> list[str]:
        data = self._read_json(WATCH_LIST_FILE)
        if data is _MISSING:
            return []
        if not isinstance(data, list):
            self._logger.warning("Watch-list file is not a JSON array, treating as empty")
            return []

        ids: list[str] = []
        seen: set[str] = set()
        for entry in data:
            try:
                sub_id = normalize_sub_id(entry)
            except ValueError as exc:
                self._logger.warning("Dropping invalid watch-list entry %r: %s", entry, exc)
                continue
            if sub_id not in seen:
                seen.add(sub_id)
                ids.append(sub_id)
        return ids

    def save_watch_list(self, sub_ids: list[str]) -> None:
        self._write_json(WATCH_LIST_FILE, list(sub_ids))

    # ------------------------------------------------------------------
    # Failure ledger
    # ------------------------------------------------------------------

    def load_failures(self) -> dict[str, FailureRecord]:
        data = self._read_json(FAILURE_LEDGER_FILE)
        if data is _MISSING:
            return {}
        if not isinstance(data, dict):
            self._logger.warning("Failure ledger is not a JSON object, treating as empty")
            return {}

        records: dict[str, FailureRecord] = {}
        for key, entry in data.items():
            try:
                records[normalize_sub_id(key)] = FailureRecord.from_dict(entry)
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                self._logger.warning("Dropping malformed failure record %s: %s", key, exc)
        return records

    def save_failures(self, records: dict[str, FailureRecord]) -> None:
        self._write_json(
            FAILURE_LEDGER_FILE,
            {sub_id: record.to_dict() for sub_id, record in records.items()},
        )
