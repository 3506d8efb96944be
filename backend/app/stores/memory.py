"""
Backend en mémoire du registre : une grille par feuille, protégée par un verrou.
Sert de double de test et de backend de développement (`LEDGER_BACKEND=memory`).
"""

import threading
from typing import Dict, Optional, Sequence, Tuple

from app.stores.a1 import GridRange, build_grid, parse_range
from app.stores.base import Grid, LedgerStore, LedgerStoreError


class MemoryLedgerStore(LedgerStore):

    def __init__(self, sheets: Optional[Dict[str, Grid]] = None, default_sheet: str = "Sheet1"):
        self.default_sheet = default_sheet
        self._lock = threading.Lock()
        self._cells: Dict[str, Dict[Tuple[int, int], str]] = {}
        for name, rows in (sheets or {}).items():
            self.add_sheet(name)
            self.update_range(f"{name}!A1", rows)

    def _sheet(self, grid_range: GridRange) -> Dict[Tuple[int, int], str]:
        cells = self._cells.get(grid_range.sheet)
        if cells is None:
            raise LedgerStoreError(f"Feuille introuvable : {grid_range.sheet}", status_code=400)
        return cells

    def _write(self, grid_range: GridRange, values: Grid) -> None:
        cells = self._sheet(grid_range)
        for i, row in enumerate(values):
            for j, value in enumerate(row):
                position = (grid_range.start_row + i, grid_range.start_col + j)
                text = "" if value is None else str(value)
                if text:
                    cells[position] = text
                else:
                    cells.pop(position, None)

    def get_range(self, range_spec: str) -> Grid:
        grid_range = parse_range(range_spec, self.default_sheet)
        with self._lock:
            return build_grid(dict(self._sheet(grid_range)), grid_range)

    def update_range(self, range_spec: str, values: Grid) -> None:
        grid_range = parse_range(range_spec, self.default_sheet)
        with self._lock:
            self._write(grid_range, values)

    def batch_update(self, updates: Sequence[Tuple[str, Grid]]) -> None:
        ranges = [(parse_range(spec, self.default_sheet), values) for spec, values in updates]
        with self._lock:
            for grid_range, values in ranges:
                self._write(grid_range, values)

    def append_rows(self, range_spec: str, values: Grid) -> None:
        grid_range = parse_range(range_spec, self.default_sheet)
        with self._lock:
            cells = self._sheet(grid_range)
            used_rows = [row for (row, col), value in cells.items() if value and grid_range.contains(row, col)]
            next_row = max(used_rows) + 1 if used_rows else grid_range.start_row
            self._write(grid_range._replace(start_row=next_row), values)

    def sheet_exists(self, sheet_name: str) -> bool:
        with self._lock:
            return sheet_name in self._cells

    def add_sheet(self, sheet_name: str, column_count: int = 26) -> None:
        with self._lock:
            if sheet_name in self._cells:
                raise LedgerStoreError(f"La feuille {sheet_name} existe déjà.", status_code=400)
            self._cells[sheet_name] = {}
