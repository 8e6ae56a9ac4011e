# studio_app/decorators.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from functools import wraps
from flask import session, jsonify

def admin_required(view_func):
    """session['user'] is issued by the auth layer: {"id", "email", "is_admin"}."""
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        user = session.get("user")
        if not user:
            return jsonify({"error": "Authentication required."}), 401
        if not user.get("is_admin"):
            return jsonify({"error": "Admin access required."}), 403
        return view_func(*args, **kwargs)
    return wrapper
