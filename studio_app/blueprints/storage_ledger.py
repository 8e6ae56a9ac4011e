# studio_app/blueprints/storage_ledger.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from flask import Blueprint, current_app, jsonify, request

from ..decorators import admin_required
from ..services.storage_ledger import get_snapshot, ledger_limits, reconcile

bp = Blueprint("storage_ledger", __name__, url_prefix="/api/storage-ledger")

def _payload(snapshot):
    return {"snapshot": snapshot.to_dict(), "limits": ledger_limits()}

@bp.route("", methods=["GET"])
@admin_required
def status():
    try:
        snapshot = get_snapshot()
    except Exception as e:
        current_app.logger.exception("Failed to fetch storage ledger")
        return jsonify({"error": str(e) or "Unable to load storage ledger."}), 500
    return jsonify(_payload(snapshot))

@bp.route("", methods=["POST"])
@admin_required
def action():
    data = request.get_json(silent=True) or {}
    if data.get("action") != "reconcile":
        return jsonify({"error": "Unsupported action."}), 400
    try:
        snapshot = reconcile()
    except Exception as e:
        current_app.logger.exception("Failed to reconcile storage ledger")
        return jsonify({"error": str(e) or "Unable to reconcile storage usage."}), 500
    return jsonify(_payload(snapshot))
