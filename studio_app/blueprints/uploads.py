# studio_app/blueprints/uploads.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask import Blueprint, abort, current_app, jsonify, request, send_file

from ..decorators import admin_required
from ..services.object_store import LocalObjectStore, get_object_store
from ..services.storage_ledger import StorageLimitExceeded, StorageQuotaError
from ..services.uploads import (
    delete_folder,
    extract_extension,
    store_upload,
    store_uploads,
    validate_image,
)

bp = Blueprint("uploads", __name__)


def quota_error_response(err: StorageQuotaError):
    status = 507 if isinstance(err, StorageLimitExceeded) else 429
    return jsonify({"error": err.message, "code": err.code}), status

def read_upload(field: str):
    """(bytes, FileStorage) for a non-empty multipart field, or (None, None)."""
    f = request.files.get(field)
    if not f or not f.filename:
        return None, None
    data = f.read()
    if not data:
        return None, None
    return data, f

def check_upload(data: bytes, f):
    """None when acceptable, else an error response."""
    max_size = current_app.config.get("MAX_UPLOAD_BYTES", 50 * 1024 * 1024)
    if len(data) > max_size:
        return jsonify({"error": f"File size exceeds {max_size // (1024 * 1024)}MB limit"}), 400
    ok, err = validate_image(data, f.mimetype or "")
    if not ok:
        return jsonify({"error": err or "Invalid or corrupted image file"}), 400
    return None


@bp.route("/api/upload", methods=["POST"])
@admin_required
def upload():
    data, f = read_upload("file")
    if data is None:
        return jsonify({"error": "No file provided or Invalid file"}), 400
    rejected = check_upload(data, f)
    if rejected is not None:
        return rejected

    folder = (request.form.get("folder") or "uploads").strip("/") or "uploads"
    replace_existing = request.form.get("replaceExisting") == "true"

    try:
        path = None
        if replace_existing:
            # fixed name so the folder always holds a single "hero" image
            delete_folder(folder)
            path = f"{folder}/hero{extract_extension(f.filename) or '.jpg'}"
        stored = store_upload(data, f.filename, f.mimetype, folder=folder, path=path)
    except StorageQuotaError as e:
        return quota_error_response(e)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("Upload error")
        return jsonify({"error": str(e) or "Upload failed"}), 500

    return jsonify({"url": stored.url, "path": stored.path})


@bp.route("/api/upload/batch", methods=["POST"])
@admin_required
def upload_batch():
    """Several images into one folder (gallery style): multipart ``files`` + ``folder``."""
    batch = []
    for f in request.files.getlist("files"):
        if not f or not f.filename:
            continue
        data = f.read()
        if not data:
            continue
        rejected = check_upload(data, f)
        if rejected is not None:
            return rejected
        batch.append((data, f.filename, f.mimetype))
    if not batch:
        return jsonify({"error": "No files provided"}), 400

    folder = (request.form.get("folder") or "uploads").strip("/") or "uploads"
    try:
        stored = store_uploads(batch, folder=folder)
    except StorageQuotaError as e:
        return quota_error_response(e)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("Batch upload error")
        return jsonify({"error": str(e) or "Upload failed"}), 500

    return jsonify({"files": [{"url": s.url, "path": s.path} for s in stored]})


@bp.route("/media/<path:object_path>")
def media(object_path: str):
    store = get_object_store()
    if not isinstance(store, LocalObjectStore):
        abort(404)
    try:
        target = store.fs_path(object_path)
    except ValueError:
        abort(404)
    if not target.is_file():
        abort(404)
    return send_file(str(target), max_age=31536000)
