# studio_app/services/scheduling.py
# -*- coding: utf-8 -*-
from __future__ import annotations

RECONCILE_JOB_ID = "ledger-reconcile"

def _reconcile_job(app):
    from .storage_ledger import reconcile
    with app.app_context():
        try:
            reconcile()
        except Exception:
            app.logger.exception("Scheduled storage ledger reconcile failed")

def register_jobs(app, scheduler) -> bool:
    """Daily drift correction (UTC). The daily op counter still rolls over lazily."""
    if not app.config.get("LEDGER_AUTO_RECONCILE"):
        return False
    scheduler.add_job(
        _reconcile_job, "cron", args=[app],
        id=RECONCILE_JOB_ID, replace_existing=True,
        hour=int(app.config.get("LEDGER_RECONCILE_HOUR", 3)), minute=0, timezone="UTC",
    )
    return True
