"""
Backends de stockage du registre de présence et fabrique selon LEDGER_BACKEND.
"""

import json
import logging

from app.config import Settings, settings
from app.stores.base import LedgerStore, LedgerStoreError, TransientStoreError
from app.stores.memory import MemoryLedgerStore

logger = logging.getLogger(__name__)

__all__ = [
    "LedgerStore",
    "LedgerStoreError",
    "TransientStoreError",
    "MemoryLedgerStore",
    "build_ledger_store",
]


def build_ledger_store(config: Settings = settings) -> LedgerStore:
    """
    Instancie le backend configuré et garantit l'existence de la feuille principale.
    Imports locaux : seul le backend choisi charge ses dépendances (SQLAlchemy, gspread).
    """
    backend = config.LEDGER_BACKEND.strip().lower()

    if backend == "memory":
        store = MemoryLedgerStore(default_sheet=config.LEDGER_MAIN_SHEET)
        store.add_sheet(config.LEDGER_MAIN_SHEET)
    elif backend == "sql":
        from app.database import SessionLocal
        from app.stores.sql import SqlLedgerStore

        store = SqlLedgerStore(SessionLocal, default_sheet=config.LEDGER_MAIN_SHEET)
        store.create_schema()
        if not store.sheet_exists(config.LEDGER_MAIN_SHEET):
            store.add_sheet(config.LEDGER_MAIN_SHEET)
    elif backend == "gsheets":
        from app.stores.gsheets import GoogleSheetsLedgerStore

        if not config.GOOGLE_CREDENTIALS_JSON or not config.SPREADSHEET_ID:
            raise RuntimeError("GOOGLE_CREDENTIALS_JSON et SPREADSHEET_ID sont requis pour le backend gsheets")
        store = GoogleSheetsLedgerStore(
            config.SPREADSHEET_ID,
            json.loads(config.GOOGLE_CREDENTIALS_JSON),
            default_sheet=config.LEDGER_MAIN_SHEET,
        )
    else:
        raise ValueError(f"Backend de registre inconnu : {config.LEDGER_BACKEND}")

    logger.info("Registre de présence initialisé (backend %s)", backend)
    return store
