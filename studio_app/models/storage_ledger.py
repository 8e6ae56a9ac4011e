# studio_app/models/storage_ledger.py
# -*- coding: utf-8 -*-
from __future__ import annotations
from ..extensions import db

# single global row
LEDGER_ROW_ID = 1

class StorageLedger(db.Model):
    __tablename__ = "storage_ledger"

    id = db.Column(db.Integer, primary_key=True)

    total_bytes = db.Column(db.BigInteger, nullable=False, default=0)     # bytes currently stored
    total_files = db.Column(db.Integer, nullable=False, default=0)        # objects currently stored

    # daily upload operations, counted since upload_ops_reset_at (UTC day)
    upload_ops_today = db.Column(db.Integer, nullable=False, default=0)
    upload_ops_reset_at = db.Column(db.DateTime, nullable=True)

    last_updated_at = db.Column(db.DateTime, nullable=False)
    last_reconciled_at = db.Column(db.DateTime, nullable=True)

    # compare-and-swap: every UPDATE carries "WHERE version = <seen>"
    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
