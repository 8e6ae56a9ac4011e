# studio_app/services/storage_ledger.py
# -*- coding: utf-8 -*-
"""
Storage usage ledger.

One global record keeps the aggregate usage of the object store
(bytes, files, upload operations of the current UTC day).

- ``ensure_capacity``: advisory pre-check, before spending bandwidth
- ``record_successful_upload`` / ``record_deletion``: the only incremental
  writers, each one a compare-and-swap transaction on the ledger row
  (retried on conflict)
- ``reconcile``: full sweep of the object store, replaces the record

The daily counter has no scheduler behind it: the rollover is computed at
every decision point by ``normalize_upload_ops``.
"""
from __future__ import annotations

import random
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models.storage_ledger import StorageLedger, LEDGER_ROW_ID
from .object_store import get_object_store, iter_objects


# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------
class StorageQuotaError(Exception):
    code = "quota"
    default_message = "Storage quota exceeded."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class StorageLimitExceeded(StorageQuotaError):
    code = "storage-limit"
    default_message = "Storage limit reached. Delete existing files before uploading more."


class UploadOpsLimitExceeded(StorageQuotaError):
    code = "upload-ops-limit"
    default_message = "Daily upload operation limit reached. Please wait until tomorrow."


class LedgerContentionError(RuntimeError):
    """The ledger row kept changing under us and the retry budget ran out."""


# ---------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def _naive(value: Optional[datetime]) -> Optional[datetime]:
    # the DateTime columns hold naive UTC
    if value is None:
        return None
    return _aware(value).replace(tzinfo=None)

def iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 UTC with milliseconds and 'Z' (same shape as JS toISOString)."""
    if value is None:
        return None
    return _aware(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class LedgerSnapshot:
    total_bytes: int
    total_files: int
    upload_ops_today: int
    upload_ops_reset_at: Optional[datetime]
    last_updated_at: datetime
    last_reconciled_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: StorageLedger) -> "LedgerSnapshot":
        return cls(
            total_bytes=int(row.total_bytes or 0),
            total_files=int(row.total_files or 0),
            upload_ops_today=int(row.upload_ops_today or 0),
            upload_ops_reset_at=_aware(row.upload_ops_reset_at),
            last_updated_at=_aware(row.last_updated_at),
            last_reconciled_at=_aware(row.last_reconciled_at),
        )

    def apply_to(self, row: StorageLedger) -> None:
        row.total_bytes = self.total_bytes
        row.total_files = self.total_files
        row.upload_ops_today = self.upload_ops_today
        row.upload_ops_reset_at = _naive(self.upload_ops_reset_at)
        row.last_updated_at = _naive(self.last_updated_at)
        row.last_reconciled_at = _naive(self.last_reconciled_at)

    def to_dict(self) -> dict:
        return {
            "totalBytes": self.total_bytes,
            "totalFiles": self.total_files,
            "uploadOpsToday": self.upload_ops_today,
            "uploadOpsResetAt": iso(self.upload_ops_reset_at),
            "lastUpdatedAt": iso(self.last_updated_at),
            "lastReconciledAt": iso(self.last_reconciled_at),
        }


@dataclass(frozen=True)
class UploadOpsWindow:
    upload_ops_today: int
    upload_ops_reset_at: datetime


def is_same_utc_date(a: datetime, b: datetime) -> bool:
    return _aware(a).date() == _aware(b).date()

def normalize_upload_ops(snapshot: LedgerSnapshot, now: datetime) -> UploadOpsWindow:
    """Effective daily counter at ``now``: zero once the UTC date moved on."""
    reset_at = snapshot.upload_ops_reset_at
    if reset_at is None or not is_same_utc_date(reset_at, now):
        return UploadOpsWindow(upload_ops_today=0, upload_ops_reset_at=_aware(now))
    return UploadOpsWindow(upload_ops_today=snapshot.upload_ops_today, upload_ops_reset_at=reset_at)


# ---------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------
def storage_limit_bytes() -> int:
    return int(current_app.config["STORAGE_LIMIT_BYTES"])

def upload_ops_daily_limit() -> int:
    return int(current_app.config["UPLOAD_OPS_DAILY_LIMIT"])

def ledger_limits() -> dict:
    return {"storageBytes": storage_limit_bytes(), "uploadOpsDaily": upload_ops_daily_limit()}

def _check_limits(total_bytes: int, required_bytes: int, ops_today: int, required_ops: int) -> None:
    if total_bytes + required_bytes > storage_limit_bytes():
        raise StorageLimitExceeded()
    if ops_today + required_ops > upload_ops_daily_limit():
        raise UploadOpsLimitExceeded()


# ---------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------
def _session() -> Session:
    # ledger transactions never ride on the request's db.session
    return Session(db.engine, expire_on_commit=False)

def _load_row(session: Session) -> Optional[StorageLedger]:
    return session.get(StorageLedger, LEDGER_ROW_ID, populate_existing=True)

def peek_snapshot() -> Optional[LedgerSnapshot]:
    """Stored snapshot or None; never seeds."""
    with _session() as session:
        row = _load_row(session)
        return LedgerSnapshot.from_row(row) if row is not None else None

def get_snapshot() -> LedgerSnapshot:
    snapshot = peek_snapshot()
    if snapshot is None:
        current_app.logger.info("Storage ledger missing; seeding it from the object store.")
        return reconcile()
    return snapshot


# ---------------------------------------------------------------------
# Guard (advisory)
# ---------------------------------------------------------------------
def ensure_capacity(required_bytes: int, required_upload_ops: int = 1, now: Optional[datetime] = None) -> None:
    if required_bytes < 0 or required_upload_ops < 0:
        raise ValueError("required_bytes and required_upload_ops must be >= 0")
    snapshot = get_snapshot()
    window = normalize_upload_ops(snapshot, now or utcnow())
    _check_limits(snapshot.total_bytes, required_bytes, window.upload_ops_today, required_upload_ops)


# ---------------------------------------------------------------------
# Recorder (authoritative)
# ---------------------------------------------------------------------
_MAX_BACKOFF = 1.0

def _backoff(attempt: int) -> None:
    base = float(current_app.config.get("LEDGER_RETRY_BACKOFF", 0.05))
    if base > 0:
        delay = min(base * (2 ** min(attempt - 1, 16)), _MAX_BACKOFF)
        time.sleep(delay * (0.5 + random.random()))

def _run_transaction(mutate: Callable[[LedgerSnapshot], LedgerSnapshot]) -> LedgerSnapshot:
    """
    Read the row, compute the next snapshot, write it back guarded by the
    version column. A concurrent writer makes the UPDATE match no row
    (StaleDataError) and the whole read-compute-write is retried.
    Errors raised by ``mutate`` abort the transaction untouched.
    """
    attempts = max(1, int(current_app.config.get("LEDGER_MAX_RETRIES", 5)))
    seeded = False
    attempt = 0
    while attempt < attempts:
        with _session() as session:
            row = _load_row(session)
            if row is None:
                if seeded:
                    raise LedgerContentionError("Storage ledger row disappeared while recording.")
                # first write ever: seed from the object store, then apply
                session.close()
                get_snapshot()
                seeded = True
                continue
            attempt += 1
            nxt = mutate(LedgerSnapshot.from_row(row))
            nxt.apply_to(row)
            try:
                session.commit()
            except StaleDataError:
                session.rollback()
                current_app.logger.debug("Storage ledger write conflict (attempt %s/%s)", attempt, attempts)
                _backoff(attempt)
                continue
            return nxt

    current_app.logger.warning("Storage ledger still contended after %s attempts", attempts)
    raise LedgerContentionError(f"Storage ledger update failed after {attempts} attempts.")


def record_successful_upload(bytes_added: int, now: Optional[datetime] = None) -> LedgerSnapshot:
    """
    Count one stored object. Must run after the bytes are at rest; if this
    raises, the caller owns the cleanup of the stored object.
    """
    if bytes_added < 0:
        raise ValueError("bytes_added must be >= 0")

    def _mutate(current: LedgerSnapshot) -> LedgerSnapshot:
        at = _aware(now) if now else utcnow()
        window = normalize_upload_ops(current, at)
        _check_limits(current.total_bytes, bytes_added, window.upload_ops_today, 1)
        return replace(
            current,
            total_bytes=current.total_bytes + bytes_added,
            total_files=current.total_files + 1,
            upload_ops_today=window.upload_ops_today + 1,
            upload_ops_reset_at=window.upload_ops_reset_at,
            last_updated_at=at,
        )

    return _run_transaction(_mutate)


def record_deletion(bytes_removed: int, files_deleted: int = 1, now: Optional[datetime] = None) -> LedgerSnapshot:
    if bytes_removed < 0 or files_deleted < 0:
        raise ValueError("bytes_removed and files_deleted must be >= 0")

    def _mutate(current: LedgerSnapshot) -> LedgerSnapshot:
        return replace(
            current,
            total_bytes=max(0, current.total_bytes - bytes_removed),
            total_files=max(0, current.total_files - files_deleted),
            last_updated_at=_aware(now) if now else utcnow(),
        )

    return _run_transaction(_mutate)


# ---------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------
def _write_snapshot(snapshot: LedgerSnapshot) -> Optional[LedgerSnapshot]:
    """Replace the row wholesale (insert on first run). Returns the previous state."""
    for _ in range(3):
        with _session() as session:
            row = _load_row(session)
            previous = LedgerSnapshot.from_row(row) if row is not None else None
            if row is None:
                row = StorageLedger(id=LEDGER_ROW_ID)
                session.add(row)
            snapshot.apply_to(row)
            try:
                session.commit()
            except (StaleDataError, IntegrityError):
                # another writer created/changed the row meanwhile: overwrite it
                session.rollback()
                continue
            return previous
    raise LedgerContentionError("Storage ledger could not be replaced.")


def reconcile(now: Optional[datetime] = None) -> LedgerSnapshot:
    """
    Rebuild the ledger from the object store contents. Any failure while
    listing propagates before the write, leaving the stored record as it was.
    """
    store = get_object_store()
    total_bytes = 0
    total_files = 0
    for info in iter_objects(store, ""):
        total_files += 1
        total_bytes += int(info.size_bytes or 0)

    at = _aware(now) if now else utcnow()
    snapshot = LedgerSnapshot(
        total_bytes=total_bytes,
        total_files=total_files,
        upload_ops_today=0,
        upload_ops_reset_at=at,
        last_updated_at=at,
        last_reconciled_at=at,
    )
    previous = _write_snapshot(snapshot)

    current_app.logger.info("Storage ledger reconciled: %s files, %s bytes", total_files, total_bytes)
    if previous is not None and (previous.total_bytes, previous.total_files) != (total_bytes, total_files):
        current_app.logger.warning(
            "Storage ledger drift corrected: bytes %+d, files %+d",
            total_bytes - previous.total_bytes, total_files - previous.total_files,
        )
    return snapshot
