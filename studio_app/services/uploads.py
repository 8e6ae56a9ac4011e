# studio_app/services/uploads.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import os
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .object_store import ObjectNotFound, get_object_store, iter_objects, normalize_path
from .storage_ledger import (
    LedgerContentionError,
    LedgerSnapshot,
    ensure_capacity,
    record_deletion,
    record_successful_upload,
)

# Image file signatures (magic bytes)
IMAGE_SIGNATURES = {
    "jpeg": [b"\xff\xd8\xff"],
    "jpg": [b"\xff\xd8\xff"],
    "png": [b"\x89PNG\r\n\x1a\n"],
    "gif": [b"GIF87a", b"GIF89a"],
    "webp": [b"RIFF"],
    "bmp": [b"BM"],
}

# ledger failures that must not block a user-visible delete
_LEDGER_FAILURES = (SQLAlchemyError, LedgerContentionError)


@dataclass(frozen=True)
class StoredUpload:
    path: str
    size_bytes: int
    url: str
    snapshot: LedgerSnapshot


def validate_image(data: bytes, content_type: str) -> tuple[bool, str]:
    """
    Quick checks before any storage work:
    - MIME type image/*
    - at least a few bytes
    - magic bytes matching the declared type (when the type is known)
    """
    content_type = (content_type or "").lower()
    if not content_type.startswith("image/"):
        return False, "File is not an image. Please upload a valid image file."
    if len(data) < 4:
        return False, "File is too small or corrupted."

    image_type = content_type.split("/", 1)[1].split(";", 1)[0].strip()
    if not image_type:
        return False, "Invalid image type."

    signatures = IMAGE_SIGNATURES.get(image_type)
    if signatures is None:
        return True, ""

    if not any(data.startswith(sig) for sig in signatures):
        return False, f"File appears to be corrupted or is not a valid {image_type.upper()} image."
    if image_type == "webp" and data[8:12] != b"WEBP":
        return False, "File appears to be corrupted or is not a valid WebP image."
    return True, ""


def extract_extension(name: str) -> str:
    return os.path.splitext(name or "")[1]

def build_object_path(filename: str, folder: str = "uploads", path: Optional[str] = None) -> str:
    if path:
        return normalize_path(path)
    folder = normalize_path(folder or "uploads")
    return f"{folder}/{int(time.time() * 1000)}-{uuid.uuid4()}{extract_extension(filename)}"


def _release(path: str, size: int, files: int = 1) -> None:
    """record_deletion that never blocks the caller: failures are logged."""
    try:
        record_deletion(size, files)
    except _LEDGER_FAILURES:
        current_app.logger.warning("Ledger not updated after removing %s (%s files, %s bytes)",
                                   path, files, size, exc_info=True)


def _existing_size(store, path: str) -> Optional[int]:
    try:
        return store.get_metadata(path).size_bytes
    except ObjectNotFound:
        return None


def _put_and_record(store, object_path: str, data: bytes, content_type: Optional[str],
                    replaced: Optional[int] = None) -> StoredUpload:
    """
    put -> record. If recording fails after the bytes landed, the object is
    removed before the error propagates. ``replaced`` is the size of the
    object that was at ``object_path`` before the put, if any.
    """
    size = len(data)
    info = store.put_object(object_path, data, content_type)

    try:
        snapshot = record_successful_upload(size)
    except Exception:
        try:
            store.delete_object(info.path)
            current_app.logger.info("Removed unrecorded upload %s", info.path)
        except Exception:
            current_app.logger.exception("Could not remove unrecorded upload %s", info.path)
        else:
            if replaced is not None:
                # the overwritten object went away with it
                _release(info.path, replaced)
        raise

    if replaced is not None:
        _release(info.path, replaced)
    return StoredUpload(path=info.path, size_bytes=size, url=store.read_url(info.path), snapshot=snapshot)


def store_upload(data: bytes, filename: str, content_type: Optional[str] = None,
                 folder: str = "uploads", path: Optional[str] = None) -> StoredUpload:
    """
    guard -> put -> record. With an explicit ``path`` the put may overwrite
    an existing object; its bytes and file are released once the new upload
    is recorded.
    """
    ensure_capacity(len(data))

    store = get_object_store()
    object_path = build_object_path(filename, folder, path)
    replaced = _existing_size(store, object_path) if path else None
    return _put_and_record(store, object_path, data, content_type, replaced)


def store_uploads(files, folder: str = "uploads") -> list[StoredUpload]:
    """
    Upload a batch of ``(data, filename, content_type)`` into ``folder``.

    One guard covers the whole batch (sum of bytes, one op per file), so an
    over-quota batch is refused before any byte is written. Files are then
    stored one by one; if a later file fails, the earlier ones stay stored
    and recorded. Empty files are skipped.
    """
    batch = [(data, filename, content_type) for data, filename, content_type in files if data]
    if not batch:
        return []
    paths = [build_object_path(filename, folder) for _, filename, _ in batch]

    ensure_capacity(sum(len(data) for data, _, _ in batch), len(batch))

    store = get_object_store()
    return [
        _put_and_record(store, object_path, data, content_type)
        for object_path, (data, _, content_type) in zip(paths, batch)
    ]


def delete_stored_object(path: str) -> int:
    """Delete one object and release its bytes in the ledger. Returns bytes released."""
    store = get_object_store()
    size = _existing_size(store, path)
    if size is None:
        return 0

    store.delete_object(path)
    _release(path, size)
    return size


def delete_folder(folder: str) -> tuple[int, int]:
    """Delete every object under ``folder/``. Returns (files, bytes) released."""
    store = get_object_store()
    prefix = normalize_path(folder) + "/"

    # materialize first: deleting while paginating shifts the pages
    objects = list(iter_objects(store, prefix))
    files = released = 0
    try:
        for info in objects:
            store.delete_object(info.path)
            files += 1
            released += info.size_bytes
    finally:
        # whatever was removed gets recorded, even if a later delete failed
        if files:
            _release(prefix, released, files)
    return files, released
