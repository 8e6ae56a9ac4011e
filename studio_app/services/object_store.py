# studio_app/services/object_store.py
# -*- coding: utf-8 -*-
"""
Object store adapters.

The ledger only needs a small contract from blob storage:
put, get-metadata, delete, list-by-prefix (paginated) and read-url.
Two backends are available:

- ``LocalObjectStore``: files under ``UPLOAD_FOLDER`` (dev/single host)
- ``S3ObjectStore``: any S3-compatible bucket through boto3
"""
from __future__ import annotations

import heapq
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional
from urllib.parse import quote

import boto3
from botocore.exceptions import ClientError
from flask import current_app


class ObjectNotFound(LookupError):
    """Raised when a path does not exist in the object store."""


@dataclass(frozen=True)
class ObjectInfo:
    path: str
    size_bytes: int
    content_type: Optional[str] = None


@dataclass
class ObjectPage:
    items: List[ObjectInfo] = field(default_factory=list)
    next_page_token: Optional[str] = None


def normalize_path(path: str) -> str:
    """Canonical object key: no leading/trailing slashes, no '.'/'..' segments."""
    parts = [p for p in (path or "").replace("\\", "/").split("/") if p]
    if not parts or any(p in (".", "..") for p in parts):
        raise ValueError(f"Invalid object path: {path!r}")
    return "/".join(parts)


class ObjectStore:
    """Base contract. Subclasses implement every method."""

    def put_object(self, path: str, data: bytes, content_type: Optional[str] = None) -> ObjectInfo:
        raise NotImplementedError

    def get_metadata(self, path: str) -> ObjectInfo:
        raise NotImplementedError

    def delete_object(self, path: str) -> None:
        raise NotImplementedError

    def list_objects(self, prefix: str = "", page_token: Optional[str] = None) -> ObjectPage:
        raise NotImplementedError

    def read_url(self, path: str) -> str:
        raise NotImplementedError


def iter_objects(store: ObjectStore, prefix: str = "") -> Iterator[ObjectInfo]:
    """Walk every page of ``store.list_objects`` lazily."""
    token = None
    while True:
        page = store.list_objects(prefix, page_token=token)
        yield from page.items
        token = page.next_page_token
        if not token:
            break


# ---------------------------------------------------------------------
# Local filesystem
# ---------------------------------------------------------------------
class LocalObjectStore(ObjectStore):

    def __init__(self, root, url_prefix: str = "/media", page_size: int = 500):
        self.root = Path(root).resolve()
        self.url_prefix = url_prefix.rstrip("/")
        self.page_size = max(1, int(page_size))
        self.root.mkdir(parents=True, exist_ok=True)

    def fs_path(self, path: str) -> Path:
        target = (self.root / normalize_path(path)).resolve()
        if self.root not in target.parents:
            raise ValueError(f"Object path escapes the store root: {path!r}")
        return target

    def put_object(self, path, data, content_type=None):
        key = normalize_path(path)
        target = self.fs_path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return ObjectInfo(path=key, size_bytes=len(data), content_type=content_type)

    def get_metadata(self, path):
        key = normalize_path(path)
        target = self.fs_path(key)
        if not target.is_file():
            raise ObjectNotFound(key)
        return ObjectInfo(path=key, size_bytes=target.stat().st_size,
                          content_type=mimetypes.guess_type(target.name)[0])

    def delete_object(self, path):
        self.fs_path(path).unlink(missing_ok=True)

    def _walk_keys(self, prefix: str, after: Optional[str]) -> Iterator[str]:
        start = self.root
        if "/" in prefix:
            try:
                start = self.fs_path(prefix.rpartition("/")[0])
            except ValueError:
                return
        if not start.is_dir():
            return
        for p in start.rglob("*"):
            if not p.is_file():
                continue
            key = p.relative_to(self.root).as_posix()
            if key.startswith(prefix) and (after is None or key > after):
                yield key

    def list_objects(self, prefix="", page_token=None):
        # one walk per page, holding at most one page of keys
        prefix = (prefix or "").lstrip("/")
        keys = heapq.nsmallest(self.page_size + 1, self._walk_keys(prefix, page_token or None))

        chunk = keys[:self.page_size]
        items = [ObjectInfo(path=k, size_bytes=(self.root / k).stat().st_size) for k in chunk]
        next_token = chunk[-1] if len(keys) > self.page_size else None
        return ObjectPage(items=items, next_page_token=next_token)

    def read_url(self, path):
        return f"{self.url_prefix}/{quote(normalize_path(path))}"


# ---------------------------------------------------------------------
# S3 / S3-compatible
# ---------------------------------------------------------------------
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}

class S3ObjectStore(ObjectStore):

    def __init__(self, bucket: str, client=None, page_size: int = 500,
                 url_expires: int = 7 * 24 * 3600, region: Optional[str] = None,
                 endpoint_url: Optional[str] = None):
        if not bucket:
            raise ValueError("S3 bucket is not configured.")
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        self.page_size = max(1, min(int(page_size), 1000))
        self.url_expires = int(url_expires)

    def put_object(self, path, data, content_type=None):
        key = normalize_path(path)
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "CacheControl": "public,max-age=31536000",
        }
        if content_type:
            params["ContentType"] = content_type
        self.client.put_object(**params)
        return ObjectInfo(path=key, size_bytes=len(data), content_type=content_type)

    def get_metadata(self, path):
        key = normalize_path(path)
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if str(e.response.get("Error", {}).get("Code")) in _MISSING_CODES:
                raise ObjectNotFound(key) from e
            raise
        return ObjectInfo(path=key, size_bytes=int(head.get("ContentLength") or 0),
                          content_type=head.get("ContentType"))

    def delete_object(self, path):
        self.client.delete_object(Bucket=self.bucket, Key=normalize_path(path))

    def list_objects(self, prefix="", page_token=None):
        params = {"Bucket": self.bucket, "Prefix": (prefix or "").lstrip("/"), "MaxKeys": self.page_size}
        if page_token:
            params["ContinuationToken"] = page_token
        resp = self.client.list_objects_v2(**params)
        items = [ObjectInfo(path=o["Key"], size_bytes=int(o.get("Size") or 0))
                 for o in resp.get("Contents", [])]
        next_token = resp.get("NextContinuationToken") if resp.get("IsTruncated") else None
        return ObjectPage(items=items, next_page_token=next_token)

    def read_url(self, path):
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": normalize_path(path)},
            ExpiresIn=self.url_expires,
        )


# ---------------------------------------------------------------------
# App wiring
# ---------------------------------------------------------------------
def _build_store(app) -> ObjectStore:
    cfg = app.config
    backend = (cfg.get("OBJECT_STORE_BACKEND") or "local").lower()
    page_size = cfg.get("LEDGER_PAGE_SIZE", 500)
    if backend == "s3":
        return S3ObjectStore(
            cfg.get("S3_BUCKET", ""),
            page_size=page_size,
            url_expires=cfg.get("S3_URL_EXPIRES", 7 * 24 * 3600),
            region=cfg.get("AWS_REGION"),
            endpoint_url=cfg.get("S3_ENDPOINT_URL"),
        )
    if backend == "local":
        return LocalObjectStore(
            cfg.get("UPLOAD_FOLDER", "./uploads"),
            url_prefix=cfg.get("MEDIA_URL_PREFIX", "/media"),
            page_size=page_size,
        )
    raise ValueError(f"Unknown OBJECT_STORE_BACKEND: {backend}")

def init_object_store(app) -> None:
    app.extensions["object_store"] = _build_store(app)

def get_object_store() -> ObjectStore:
    store = current_app.extensions.get("object_store")
    if store is None:
        store = _build_store(current_app)
        current_app.extensions["object_store"] = store
    return store
