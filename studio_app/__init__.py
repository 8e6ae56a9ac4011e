# studio_app/__init__.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import os
from datetime import datetime, timezone

from flask import Flask
from config import Config, TestingConfig, StagingConfig, ProductionConfig
from .extensions import scheduler, init_extensions, register_cli
from .services.object_store import init_object_store
from .services.scheduling import register_jobs
from .blueprints.storage_ledger import bp as storage_ledger_bp
from .blueprints.uploads import bp as uploads_bp
from .blueprints.photos import bp as photos_bp

_CONFIGS = {
    "testing": TestingConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
}

def create_app(config_object: type[Config] | None = None, overrides: dict | None = None) -> Flask:
    app = Flask(__name__)

    if config_object is None:
        config_object = _CONFIGS.get(os.getenv("APP_ENV", "").lower(), Config)
    app.config.from_object(config_object)
    if overrides:
        app.config.update(overrides)

    # Extensions (DB/Migrate)
    init_extensions(app)

    # Object store, available in app.extensions["object_store"]
    init_object_store(app)
    app.config["STARTED_AT"] = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

    # Blueprints
    app.register_blueprint(storage_ledger_bp)
    app.register_blueprint(uploads_bp)
    app.register_blueprint(photos_bp)
    # CLI (ex.: flask init-db, flask ledger-reconcile)
    register_cli(app)

    # Scheduler (optional daily reconcile)
    if not app.config.get("TESTING") and os.getenv("DISABLE_SCHEDULER") != "1":
        if register_jobs(app, scheduler) and not scheduler.running:
            scheduler.start()

    return app
