# studio_app/extensions.py
# -*- coding: utf-8 -*-
from __future__ import annotations
import json

import click
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import text



db = SQLAlchemy()
migrate = Migrate()
scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

def init_extensions(app):
    # DB/Migrate
    db.init_app(app)
    migrate.init_app(app, db)

def register_cli(app):
    @app.cli.command("init-db")
    def init_db_cmd():
        """Create the tables (DEV/MVP). In production use: flask db upgrade."""
        with app.app_context():
            # sanity check
            db.session.execute(text("SELECT 1"))
            db.create_all()
            print("Tables created.")

    @app.cli.command("ledger-status")
    def ledger_status_cmd():
        """Print the storage ledger snapshot and limits as JSON."""
        from .services.storage_ledger import get_snapshot, ledger_limits
        with app.app_context():
            payload = {"snapshot": get_snapshot().to_dict(), "limits": ledger_limits()}
            click.echo(json.dumps(payload, indent=2))

    @app.cli.command("ledger-reconcile")
    def ledger_reconcile_cmd():
        """Rebuild the storage ledger from the object store contents."""
        from .services.storage_ledger import peek_snapshot, reconcile
        with app.app_context():
            before = peek_snapshot()
            after = reconcile()
            click.echo(json.dumps({"snapshot": after.to_dict()}, indent=2))
            if before is not None:
                click.echo(
                    f"drift corrected: bytes {after.total_bytes - before.total_bytes:+d}, "
                    f"files {after.total_files - before.total_files:+d}"
                )
