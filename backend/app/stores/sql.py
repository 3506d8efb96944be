"""
Backend SQLAlchemy du registre : chaque cellule non vide est une ligne de `ledger_cells`.

Une erreur opérationnelle de la base (connexion perdue, verrou, timeout) est
signalée comme TransientStoreError pour être réessayée par l'appelant.
"""

import logging
from typing import Callable, Dict, Sequence, Tuple, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.database import Base
from app.models.ledger import LedgerCell, LedgerSheet
from app.stores.a1 import GridRange, build_grid, parse_range
from app.stores.base import Grid, LedgerStore, LedgerStoreError, TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlLedgerStore(LedgerStore):

    def __init__(self, session_factory: Callable[[], Session], default_sheet: str = "Sheet1"):
        self.default_sheet = default_sheet
        self._session_factory = session_factory

    def create_schema(self) -> None:
        """Crée les tables ledger_* si elles n'existent pas encore."""
        db = self._session_factory()
        try:
            Base.metadata.create_all(bind=db.get_bind())
        finally:
            db.close()

    def _run(self, operation: Callable[[Session], T]) -> T:
        db = self._session_factory()
        try:
            result = operation(db)
            db.commit()
            return result
        except OperationalError as exc:
            db.rollback()
            raise TransientStoreError(str(exc.orig or exc)) from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _require_sheet(db: Session, sheet_name: str) -> None:
        if db.get(LedgerSheet, sheet_name) is None:
            raise LedgerStoreError(f"Feuille introuvable : {sheet_name}", status_code=400)

    @staticmethod
    def _write(db: Session, grid_range: GridRange, values: Grid) -> None:
        for i, row in enumerate(values):
            for j, value in enumerate(row):
                row_index = grid_range.start_row + i
                col_index = grid_range.start_col + j
                text = "" if value is None else str(value)
                cell = db.execute(
                    select(LedgerCell).where(
                        LedgerCell.sheet_name == grid_range.sheet,
                        LedgerCell.row_index == row_index,
                        LedgerCell.col_index == col_index,
                    )
                ).scalar()
                if not text:
                    if cell is not None:
                        db.delete(cell)
                elif cell is not None:
                    cell.value = text
                else:
                    db.add(LedgerCell(
                        sheet_name=grid_range.sheet,
                        row_index=row_index,
                        col_index=col_index,
                        value=text,
                    ))
                # autoflush=False : rendre la cellule visible aux SELECT suivants du même lot
                db.flush()

    @staticmethod
    def _range_filter(grid_range: GridRange):
        clauses = [
            LedgerCell.sheet_name == grid_range.sheet,
            LedgerCell.row_index >= grid_range.start_row,
            LedgerCell.col_index >= grid_range.start_col,
        ]
        if grid_range.end_row is not None:
            clauses.append(LedgerCell.row_index <= grid_range.end_row)
        if grid_range.end_col is not None:
            clauses.append(LedgerCell.col_index <= grid_range.end_col)
        return clauses

    def get_range(self, range_spec: str) -> Grid:
        grid_range = parse_range(range_spec, self.default_sheet)

        def read(db: Session) -> Dict[Tuple[int, int], str]:
            self._require_sheet(db, grid_range.sheet)
            rows = db.execute(
                select(LedgerCell).where(*self._range_filter(grid_range))
            ).scalars().all()
            return {(cell.row_index, cell.col_index): cell.value for cell in rows}

        return build_grid(self._run(read), grid_range)

    def update_range(self, range_spec: str, values: Grid) -> None:
        grid_range = parse_range(range_spec, self.default_sheet)

        def write(db: Session) -> None:
            self._require_sheet(db, grid_range.sheet)
            self._write(db, grid_range, values)

        self._run(write)

    def batch_update(self, updates: Sequence[Tuple[str, Grid]]) -> None:
        ranges = [(parse_range(spec, self.default_sheet), values) for spec, values in updates]

        def write_all(db: Session) -> None:
            for grid_range, values in ranges:
                self._require_sheet(db, grid_range.sheet)
                self._write(db, grid_range, values)

        self._run(write_all)

    def append_rows(self, range_spec: str, values: Grid) -> None:
        grid_range = parse_range(range_spec, self.default_sheet)

        def append(db: Session) -> None:
            self._require_sheet(db, grid_range.sheet)
            last_row = db.execute(
                select(func.max(LedgerCell.row_index)).where(*self._range_filter(grid_range))
            ).scalar()
            next_row = grid_range.start_row if last_row is None else last_row + 1
            self._write(db, grid_range._replace(start_row=next_row), values)

        self._run(append)

    def sheet_exists(self, sheet_name: str) -> bool:
        return self._run(lambda db: db.get(LedgerSheet, sheet_name) is not None)

    def add_sheet(self, sheet_name: str, column_count: int = 26) -> None:
        def create(db: Session) -> None:
            if db.get(LedgerSheet, sheet_name) is not None:
                raise LedgerStoreError(f"La feuille {sheet_name} existe déjà.", status_code=400)
            db.add(LedgerSheet(name=sheet_name, column_count=column_count))

        self._run(create)
        logger.info("Feuille %s créée (%d colonnes)", sheet_name, column_count)
