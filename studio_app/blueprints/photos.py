# studio_app/blueprints/photos.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask import Blueprint, current_app, jsonify, request

from ..decorators import admin_required
from ..extensions import db
from ..models.photo import Photo, EVENT_TYPES
from ..services.storage_ledger import StorageQuotaError
from ..services.uploads import delete_stored_object, store_upload
from .uploads import check_upload, quota_error_response, read_upload

bp = Blueprint("photos", __name__, url_prefix="/api/photos")

def _truthy(v) -> bool:
    return str(v).strip().lower() in ("1", "true", "on", "yes")

@bp.route("", methods=["GET"])
def list_photos():
    q = Photo.query
    if _truthy(request.args.get("favorite", "")):
        q = q.filter(Photo.is_favorite.is_(True))
    photos = q.order_by(Photo.created_at.desc(), Photo.id.desc()).all()
    return jsonify({"photos": [p.to_dict() for p in photos]})

@bp.route("", methods=["POST"])
@admin_required
def create_photo():
    data, f = read_upload("image")
    if data is None:
        return jsonify({"error": "Image file is required."}), 400
    rejected = check_upload(data, f)
    if rejected is not None:
        return rejected

    event_type = (request.form.get("eventType") or "Other").strip()
    if event_type not in EVENT_TYPES:
        return jsonify({"error": f"Unknown event type: {event_type}"}), 400

    try:
        stored = store_upload(data, f.filename, f.mimetype, folder="photos")
    except StorageQuotaError as e:
        return quota_error_response(e)

    photo = Photo(
        title=(request.form.get("title") or "").strip(),
        object_path=stored.path,
        url=stored.url,
        size_bytes=stored.size_bytes,
        event_type=event_type,
        is_favorite=_truthy(request.form.get("isFavorite", "")),
    )
    db.session.add(photo)
    db.session.commit()
    return jsonify(photo.to_dict()), 201

@bp.route("/<int:photo_id>", methods=["PATCH"])
@admin_required
def update_photo(photo_id: int):
    photo = db.get_or_404(Photo, photo_id)
    data = request.get_json(silent=True) or {}
    if "isFavorite" in data:
        photo.is_favorite = bool(data["isFavorite"])
    if "title" in data:
        photo.title = str(data["title"] or "").strip()
    db.session.add(photo); db.session.commit()
    return jsonify(photo.to_dict())

@bp.route("/<int:photo_id>", methods=["DELETE"])
@admin_required
def delete_photo(photo_id: int):
    photo = db.get_or_404(Photo, photo_id)
    try:
        delete_stored_object(photo.object_path)
    except Exception:
        # the document goes away even if the bytes could not be removed
        current_app.logger.exception("Error deleting %s from storage", photo.object_path)
    db.session.delete(photo)
    db.session.commit()
    return jsonify({"ok": True, "id": photo_id})
