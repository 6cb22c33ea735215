"""
Persistence layer for the transparency engine.

Two kinds of storage live here:

- AppendOnlyLog: insert-only event logs (chronicle adjustments, consent
  entries, share access events). The class exposes ``append`` and read
  helpers and nothing else; there is no update or delete path. With a
  backing file every record is mirrored to JSONL before it becomes
  visible, and a failed write raises AppendFailure so the triggering
  operation aborts instead of losing its audit trail.
- TransparencyStore: the engine's mutable rows (acknowledgements, shares,
  export requests, webhook registrations) guarded by a lock, plus the
  three logs. Counters that must only grow (share ``access_count``,
  webhook ``call_count``) are changed only through dedicated methods.
  A table write that fails raises StorageFailure after the in-memory row
  is rolled back.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

from pydantic import BaseModel

from .exceptions import AppendFailure, StorageFailure
from .models import (
    Acknowledgement,
    AdjustmentEvent,
    ConsentLogEntry,
    ExportRequest,
    Share,
    ShareAccessEvent,
    WebhookRegistration,
)

logger = logging.getLogger("condition-transparency.storage")

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R", bound=BaseModel)


class AppendOnlyLog(Generic[T]):
    """
    Thread-safe, insert-only event log with optional JSONL mirroring.

    Attributes:
        name: Log name used in errors and file names
        _records: In-memory records in insertion order
        _path: JSONL file, or None for a memory-only log
    """

    def __init__(self, name: str, model: type[T], path: Optional[Path] = None) -> None:
        self.name = name
        self._model = model
        self._records: list[T] = []
        self._lock = threading.Lock()
        self._path = path

        if path is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._restore_from_jsonl()

    def _restore_from_jsonl(self) -> None:
        """Reload records written by a previous process."""
        if self._path is None or not self._path.is_file():
            return

        with open(self._path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    self._records.append(self._model.model_validate_json(line))
                except ValueError as e:
                    logger.warning(f"Skipping corrupt {self.name} record at line {line_number}: {e}")

        if self._records:
            logger.info(f"Restored {len(self._records)} {self.name} records")

    def append(self, record: T) -> T:
        """
        Append a record.

        Raises:
            AppendFailure: If the backing file cannot be written
        """
        with self._lock:
            if self._path is not None:
                try:
                    with open(self._path, "a", encoding="utf-8") as f:
                        f.write(record.model_dump_json() + "\n")
                except OSError as e:
                    logger.error(f"Failed to append to {self.name} log: {e}")
                    raise AppendFailure(
                        f"Could not write to the {self.name} log",
                        log_name=self.name,
                        details={"error": str(e)},
                    ) from e
            self._records.append(record)
        return record

    def __iter__(self) -> Iterator[T]:
        with self._lock:
            snapshot = list(self._records)
        return iter(snapshot)

    def __len__(self) -> int:
        return len(self._records)

    def filter(self, predicate: Callable[[T], bool]) -> list[T]:
        """Return matching records, oldest first."""
        return [record for record in self if predicate(record)]

    def latest(self, predicate: Callable[[T], bool]) -> Optional[T]:
        """Return the most recently appended matching record."""
        for record in reversed(list(self)):
            if predicate(record):
                return record
        return None


AckKey = tuple[str, str, str, str]


class TransparencyStore:
    """
    Engine-owned state: logs plus lock-guarded tables.

    Records are immutable pydantic models; updates replace a row with a
    copy while holding the lock.
    """

    _TABLES = ("acknowledgements", "shares", "exports", "webhooks")

    def __init__(self, data_dir: Optional[Path] = None) -> None:
        """
        Initialize the store.

        Args:
            data_dir: Directory for JSONL logs and JSON tables. None keeps
                      everything in memory.
        """
        self.data_dir = data_dir
        if data_dir is not None:
            data_dir.mkdir(parents=True, exist_ok=True)

        self.adjustments: AppendOnlyLog[AdjustmentEvent] = AppendOnlyLog(
            "adjustments", AdjustmentEvent, self._log_path("adjustments")
        )
        self.consents: AppendOnlyLog[ConsentLogEntry] = AppendOnlyLog(
            "consents", ConsentLogEntry, self._log_path("consents")
        )
        self.share_events: AppendOnlyLog[ShareAccessEvent] = AppendOnlyLog(
            "share_events", ShareAccessEvent, self._log_path("share_events")
        )

        self._acks: dict[AckKey, Acknowledgement] = {}
        self._shares: dict[str, Share] = {}
        self._share_tokens: dict[str, str] = {}
        self._exports: dict[str, ExportRequest] = {}
        self._webhooks: dict[str, WebhookRegistration] = {}
        self._lock = threading.Lock()

        self._restore_tables()

    def _log_path(self, name: str) -> Optional[Path]:
        if self.data_dir is None:
            return None
        return self.data_dir / f"{name}.jsonl"

    # -- table persistence --------------------------------------------------

    def _restore_tables(self) -> None:
        if self.data_dir is None:
            return

        for row in self._read_table("acknowledgements"):
            ack = Acknowledgement.model_validate(row)
            self._acks[ack.key] = ack
        for row in self._read_table("shares"):
            share = Share.model_validate(row)
            self._shares[share.id] = share
            self._share_tokens[share.token] = share.id
        for row in self._read_table("exports"):
            export = ExportRequest.model_validate(row)
            self._exports[export.id] = export
        for row in self._read_table("webhooks"):
            webhook = WebhookRegistration.model_validate(row)
            self._webhooks[webhook.id] = webhook

    def _read_table(self, name: str) -> list[dict[str, Any]]:
        path = self.data_dir / f"{name}.json"
        if not path.is_file():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Error restoring {name} table: {e}")
            return []

    def _persist(self, name: str, rows: list[BaseModel]) -> None:
        """
        Rewrite one table file. Caller holds the lock.

        Raises:
            StorageFailure: If the file cannot be written
        """
        if self.data_dir is None:
            return
        path = self.data_dir / f"{name}.json"
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump([row.model_dump(mode="json") for row in rows], f, indent=2)
        except OSError as e:
            logger.error(f"Failed to write {name} table: {e}")
            raise StorageFailure(
                f"Could not write the {name} table",
                table=name,
                details={"error": str(e)},
            ) from e

    def _commit(self, name: str, table: dict[Any, R], key: Any, row: R) -> R:
        """
        Put ``row`` under ``key`` and persist the table. Caller holds the lock.

        On a failed write the previous row (or its absence) is restored
        before StorageFailure propagates.
        """
        previous = table.get(key)
        table[key] = row
        try:
            self._persist(name, list(table.values()))
        except StorageFailure:
            if previous is None:
                del table[key]
            else:
                table[key] = previous
            raise
        return row

    # -- acknowledgements ---------------------------------------------------

    def upsert_acknowledgement(self, ack: Acknowledgement) -> tuple[Acknowledgement, bool]:
        """
        Insert or refresh an acknowledgement under its unique key.

        A row for the same (group, token, user, condition) and the same
        summary generation is left untouched, so a duplicate or concurrent
        submit becomes a no-op.

        Returns:
            The stored row and whether this call wrote it
        """
        with self._lock:
            existing = self._acks.get(ack.key)
            if existing is not None and existing.summary_generated_at == ack.summary_generated_at:
                return existing, False
            return self._commit("acknowledgements", self._acks, ack.key, ack), True

    def acknowledgements(
        self,
        group_id: str,
        summary_generated_at: Optional[datetime] = None,
    ) -> list[Acknowledgement]:
        with self._lock:
            rows = [a for a in self._acks.values() if a.group_id == group_id]
        if summary_generated_at is not None:
            rows = [a for a in rows if a.summary_generated_at == summary_generated_at]
        return rows

    # -- shares -------------------------------------------------------------

    def insert_share(self, share: Share) -> Share:
        """
        Persist a new share.

        Raises:
            ValueError: If the share token is already taken
            StorageFailure: If the shares table cannot be written
        """
        with self._lock:
            if share.token in self._share_tokens:
                raise ValueError("Share token collision")
            self._commit("shares", self._shares, share.id, share)
            self._share_tokens[share.token] = share.id
        return share

    def get_share(self, share_id: str) -> Optional[Share]:
        with self._lock:
            return self._shares.get(share_id)

    def share_by_token(self, token: str) -> Optional[Share]:
        with self._lock:
            share_id = self._share_tokens.get(token)
            return self._shares.get(share_id) if share_id else None

    def shares_for(self, group_id: str) -> list[Share]:
        with self._lock:
            return [s for s in self._shares.values() if s.group_id == group_id]

    def update_share(self, share_id: str, **changes: Any) -> Share:
        """
        Replace fields on a share.

        Raises:
            KeyError: If the share does not exist
            ValueError: If ``access_count`` is passed (use record_share_access)
        """
        if "access_count" in changes:
            raise ValueError("access_count can only grow through record_share_access")
        with self._lock:
            share = self._shares[share_id].model_copy(update=changes)
            return self._commit("shares", self._shares, share_id, share)

    def record_share_access(self, share_id: str, accessed_at: datetime) -> Share:
        """Increment ``access_count`` and stamp ``last_accessed_at`` atomically."""
        with self._lock:
            current = self._shares[share_id]
            share = current.model_copy(update={
                "access_count": current.access_count + 1,
                "last_accessed_at": accessed_at,
            })
            return self._commit("shares", self._shares, share_id, share)

    # -- exports ------------------------------------------------------------

    def insert_export(self, export: ExportRequest) -> ExportRequest:
        with self._lock:
            return self._commit("exports", self._exports, export.id, export)

    def get_export(self, export_id: str) -> Optional[ExportRequest]:
        with self._lock:
            return self._exports.get(export_id)

    def exports_for(self, group_id: str) -> list[ExportRequest]:
        with self._lock:
            return [e for e in self._exports.values() if e.group_id == group_id]

    def update_export(self, export_id: str, **changes: Any) -> ExportRequest:
        with self._lock:
            export = self._exports[export_id].model_copy(update=changes)
            return self._commit("exports", self._exports, export_id, export)

    def increment_export_attempts(self, export_id: str, **changes: Any) -> ExportRequest:
        """Bump ``retry_attempts`` by one and apply ``changes`` in the same step."""
        with self._lock:
            current = self._exports[export_id]
            export = current.model_copy(
                update={**changes, "retry_attempts": current.retry_attempts + 1}
            )
            return self._commit("exports", self._exports, export_id, export)

    # -- webhooks -----------------------------------------------------------

    def insert_webhook(self, webhook: WebhookRegistration) -> WebhookRegistration:
        with self._lock:
            return self._commit("webhooks", self._webhooks, webhook.id, webhook)

    def get_webhook(self, webhook_id: str) -> Optional[WebhookRegistration]:
        with self._lock:
            return self._webhooks.get(webhook_id)

    def webhooks_for(self, group_id: str, active_only: bool = False) -> list[WebhookRegistration]:
        with self._lock:
            rows = [w for w in self._webhooks.values() if w.group_id == group_id]
        if active_only:
            rows = [w for w in rows if w.active]
        return rows

    def update_webhook(self, webhook_id: str, **changes: Any) -> WebhookRegistration:
        with self._lock:
            webhook = self._webhooks[webhook_id].model_copy(update=changes)
            return self._commit("webhooks", self._webhooks, webhook_id, webhook)

    def record_webhook_success(self, webhook_id: str, at: datetime) -> WebhookRegistration:
        with self._lock:
            current = self._webhooks[webhook_id]
            webhook = current.model_copy(update={
                "call_count": current.call_count + 1,
                "last_triggered_at": at,
                "consecutive_failures": 0,
            })
            return self._commit("webhooks", self._webhooks, webhook_id, webhook)

    def record_webhook_failure(self, webhook_id: str, at: datetime) -> WebhookRegistration:
        with self._lock:
            current = self._webhooks[webhook_id]
            webhook = current.model_copy(update={
                "consecutive_failures": current.consecutive_failures + 1,
                "last_failed_at": at,
            })
            return self._commit("webhooks", self._webhooks, webhook_id, webhook)


__all__ = [
    "AppendOnlyLog",
    "TransparencyStore",
]
