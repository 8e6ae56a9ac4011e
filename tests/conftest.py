# tests/conftest.py
# -*- coding: utf-8 -*-
import os
import sys
import uuid
import pathlib
import tempfile
from datetime import datetime, timezone

import pytest


# =====================================================================================
# Project root on sys.path (so "studio_app" and "config" import without install)
# =====================================================================================
def _add_project_root():
    here = pathlib.Path(__file__).resolve()
    for candidate in [here.parent, *here.parents]:
        if (candidate / "studio_app").is_dir():
            if str(candidate) not in sys.path:
                sys.path.insert(0, str(candidate))
            return candidate
    return None


PROJECT_ROOT = _add_project_root()

PNG_HEADER = b"\x89PNG\r\n\x1a\n"


@pytest.fixture
def make_png():
    """Bytes that pass the PNG signature check, padded to ``size``."""
    def _make(size: int = 64) -> bytes:
        return PNG_HEADER + b"\x00" * max(0, size - len(PNG_HEADER))
    return _make


# =====================================================================================
# Unit test environment (no external services)
# =====================================================================================
@pytest.fixture(autouse=True, scope="session")
def _testing_env():
    os.environ["APP_ENV"] = "testing"
    os.environ["FLASK_ENV"] = "testing"
    os.environ["DISABLE_SCHEDULER"] = "1"
    os.environ.setdefault("SECRET_KEY", "testing-secret")
    yield


# =====================================================================================
# Flask app on a temporary SQLite file, schema created once per session
# - check_same_thread off + busy timeout (threaded ledger tests)
# - PRAGMA busy_timeout on every connection
# =====================================================================================
@pytest.fixture(scope="session")
def app(_testing_env):
    from config import TestingConfig
    from studio_app import create_app
    from studio_app.extensions import db
    from sqlalchemy import event

    fd, db_path = tempfile.mkstemp(prefix="studio_test_", suffix=".sqlite")
    os.close(fd)
    upload_root = tempfile.mkdtemp(prefix="studio_uploads_")

    app = create_app(TestingConfig, overrides={
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        "UPLOAD_FOLDER": upload_root,
    })

    def _set_sqlite_pragmas(dbapi_conn, _conn_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=30000")
        cursor.close()

    with app.app_context():
        event.listen(db.engine, "connect", _set_sqlite_pragmas)
        db.create_all()

    yield app

    # teardown
    with app.app_context():
        db.session.remove()
        db.engine.dispose()
    try:
        os.remove(db_path)
    except OSError:
        pass


# =====================================================================================
# Per test: empty ledger, empty photo table, fresh upload folder, default limits
# =====================================================================================
@pytest.fixture(autouse=True)
def _fresh_state(app, tmp_path):
    from studio_app.extensions import db
    from studio_app.models import StorageLedger, Photo
    from studio_app.services.object_store import init_object_store

    saved = {k: app.config[k] for k in (
        "STORAGE_LIMIT_BYTES", "UPLOAD_OPS_DAILY_LIMIT", "LEDGER_MAX_RETRIES", "MAX_UPLOAD_BYTES", "UPLOAD_FOLDER",
    )}
    app.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    init_object_store(app)

    with app.app_context():
        db.session.query(StorageLedger).delete()
        db.session.query(Photo).delete()
        db.session.commit()

    yield

    app.config.update(saved)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    from studio_app.extensions import db
    with app.app_context():
        try:
            yield db.session
        finally:
            db.session.rollback()
            db.session.close()


@pytest.fixture
def store(db_session):
    from studio_app.services.object_store import get_object_store
    return get_object_store()


@pytest.fixture
def seed_ledger(db_session):
    """Insert the ledger row directly with the given values."""
    from studio_app.models import StorageLedger, LEDGER_ROW_ID

    def _seed(total_bytes=0, total_files=0, upload_ops_today=0, upload_ops_reset_at=None,
              last_reconciled_at=None):
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        if upload_ops_reset_at is not None and upload_ops_reset_at.tzinfo is not None:
            upload_ops_reset_at = upload_ops_reset_at.astimezone(timezone.utc).replace(tzinfo=None)
        row = StorageLedger(
            id=LEDGER_ROW_ID,
            total_bytes=total_bytes,
            total_files=total_files,
            upload_ops_today=upload_ops_today,
            upload_ops_reset_at=upload_ops_reset_at or now,
            last_updated_at=now,
            last_reconciled_at=last_reconciled_at,
        )
        db_session.add(row)
        db_session.commit()
        return row
    return _seed


# =====================================================================================
# Logged-in clients (session written the way the auth layer writes it)
# =====================================================================================
@pytest.fixture
def logged_client_admin(client):
    with client.session_transaction() as sess:
        sess["user"] = {"id": 1, "email": f"admin+{uuid.uuid4().hex[:6]}@test.com", "is_admin": True}
    return client


@pytest.fixture
def logged_client_user(client):
    with client.session_transaction() as sess:
        sess["user"] = {"id": 2, "email": f"user+{uuid.uuid4().hex[:6]}@test.com", "is_admin": False}
    return client
