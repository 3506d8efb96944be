"""
Backend Google Sheets du registre (gspread + compte de service).

Les quotas de l'API (429) et les indisponibilités (503) ainsi que les
connexions réinitialisées sont traduits en TransientStoreError.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Optional, Sequence, Tuple

import gspread
import requests
from google.oauth2.service_account import Credentials

from app.stores.base import Grid, LedgerStore, LedgerStoreError, TransientStoreError

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TRANSIENT_STATUS_CODES = {429, 503}


@contextmanager
def _translate_errors():
    try:
        yield
    except gspread.exceptions.APIError as exc:
        status_code: Optional[int] = getattr(exc.response, "status_code", None)
        if status_code in TRANSIENT_STATUS_CODES:
            raise TransientStoreError(str(exc), status_code=status_code) from exc
        raise LedgerStoreError(str(exc), status_code=status_code) from exc
    except (requests.exceptions.ConnectionError, ConnectionResetError) as exc:
        raise TransientStoreError(str(exc)) from exc


class GoogleSheetsLedgerStore(LedgerStore):

    def __init__(self, spreadsheet_id: str, credentials_info: dict, default_sheet: str = "Sheet1"):
        self.default_sheet = default_sheet
        self._spreadsheet_id = spreadsheet_id
        self._credentials_info = credentials_info
        self._spreadsheet = None
        self._open_lock = threading.Lock()

    def _open(self) -> gspread.Spreadsheet:
        with self._open_lock:
            if self._spreadsheet is None:
                creds = Credentials.from_service_account_info(self._credentials_info, scopes=SCOPES)
                client = gspread.authorize(creds)
                with _translate_errors():
                    self._spreadsheet = client.open_by_key(self._spreadsheet_id)
            return self._spreadsheet

    def _qualify(self, range_spec: str) -> str:
        if "!" in range_spec:
            return range_spec
        return f"{self.default_sheet}!{range_spec}"

    def get_range(self, range_spec: str) -> Grid:
        with _translate_errors():
            response = self._open().values_get(self._qualify(range_spec))
        return [[str(value) for value in row] for row in response.get("values", [])]

    def update_range(self, range_spec: str, values: Grid) -> None:
        with _translate_errors():
            self._open().values_update(
                self._qualify(range_spec),
                params={"valueInputOption": "RAW"},
                body={"values": values},
            )

    def batch_update(self, updates: Sequence[Tuple[str, Grid]]) -> None:
        data = [{"range": self._qualify(spec), "values": values} for spec, values in updates]
        with _translate_errors():
            self._open().values_batch_update(body={"valueInputOption": "RAW", "data": data})

    def append_rows(self, range_spec: str, values: Grid) -> None:
        with _translate_errors():
            self._open().values_append(
                self._qualify(range_spec),
                params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                body={"values": values},
            )

    def sheet_exists(self, sheet_name: str) -> bool:
        with _translate_errors():
            worksheets = self._open().worksheets()
        return any(ws.title == sheet_name for ws in worksheets)

    def add_sheet(self, sheet_name: str, column_count: int = 26) -> None:
        with _translate_errors():
            self._open().add_worksheet(title=sheet_name, rows=1000, cols=column_count)
        logger.info("Onglet Google Sheets %s créé", sheet_name)
