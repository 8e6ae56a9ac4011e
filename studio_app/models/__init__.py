# studio_app/models/__init__.py
# -*- coding: utf-8 -*-
from .storage_ledger import StorageLedger, LEDGER_ROW_ID
from .photo import Photo, EVENT_TYPES


__all__ = [
    "StorageLedger",
    "LEDGER_ROW_ID",
    "Photo",
    "EVENT_TYPES",
]
