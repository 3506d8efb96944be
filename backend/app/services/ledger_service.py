"""
Adaptateur du registre de présence (feuille : une ligne par étudiant, une colonne par semaine).

- Localise la ligne d'un étudiant et la colonne d'une semaine.
- Lit et écrit des cellules via LedgerCallGate (espacement + backoff).
- Met en cache 60 s les lectures de feuilles complètes ; une écriture invalide
  uniquement les entrées de cache de la feuille concernée.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from app.config import Settings, settings
from app.schemas.student import Student
from app.services import provenance
from app.services.retry import LedgerCallGate
from app.stores.a1 import cell_name, column_letter, parse_range
from app.stores.base import Grid, LedgerStore, LedgerStoreError

logger = logging.getLogger(__name__)


class StudentNotFound(ValueError):
    def __init__(self, student_id: str):
        super().__init__(f"Étudiant {student_id} introuvable dans le registre.")
        self.student_id = student_id


class InvalidWeek(ValueError):
    def __init__(self, week, week_count: int):
        super().__init__(f"Numéro de semaine invalide : {week} (1-{week_count}).")
        self.week = week


class AttendanceLedger:

    def __init__(
        self,
        store: LedgerStore,
        gate: LedgerCallGate,
        main_sheet: str = "Sheet1",
        scan_columns: str = "A:Z",
        student_id_column: int = 1,
        student_name_column: int = 2,
        first_week_column: int = 3,
        week_count: int = 16,
        cache_ttl: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.gate = gate
        self.main_sheet = main_sheet
        self.scan_columns = scan_columns
        self.student_id_column = student_id_column
        self.student_name_column = student_name_column
        self.first_week_column = first_week_column
        self.week_count = week_count
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: Dict[str, Tuple[float, Grid]] = {}
        self._cache_lock = threading.Lock()

    @classmethod
    def from_settings(cls, store: LedgerStore, gate: LedgerCallGate, config: Settings = settings) -> "AttendanceLedger":
        return cls(
            store,
            gate,
            main_sheet=config.LEDGER_MAIN_SHEET,
            scan_columns=config.LEDGER_SCAN_COLUMNS,
            student_id_column=config.STUDENT_ID_COLUMN,
            student_name_column=config.STUDENT_NAME_COLUMN,
            first_week_column=config.FIRST_WEEK_COLUMN,
            week_count=config.WEEK_COUNT,
            cache_ttl=config.LEDGER_CACHE_TTL_SECONDS,
        )

    # ------------------------------------------------------------------
    # Lectures (avec cache)
    # ------------------------------------------------------------------

    @property
    def main_range(self) -> str:
        return f"{self.main_sheet}!{self.scan_columns}"

    def read_rows(self, range_spec: str, force_refresh: bool = False) -> Grid:
        """Lit une plage complète, depuis le cache si l'entrée a moins de cache_ttl secondes."""
        now = self._clock()
        if not force_refresh:
            with self._cache_lock:
                cached = self._cache.get(range_spec)
            if cached is not None and now - cached[0] < self.cache_ttl:
                return cached[1]

        rows = self.gate.call(lambda: self.store.get_range(range_spec), f"lecture {range_spec}")
        with self._cache_lock:
            self._cache[range_spec] = (now, rows)
        return rows

    def get_main_sheet_data(self, force_refresh: bool = False) -> Grid:
        return self.read_rows(self.main_range, force_refresh=force_refresh)

    def invalidate(self, sheet: Optional[str] = None) -> None:
        """Vide le cache d'une feuille (ou tout le cache si sheet est None)."""
        with self._cache_lock:
            if sheet is None:
                self._cache.clear()
                return
            for key in list(self._cache):
                if parse_range(key, self.main_sheet).sheet == sheet:
                    del self._cache[key]

    def get_students(self) -> List[Student]:
        """Roster : lignes de la feuille principale (en-tête ignoré, identifiants vides ignorés)."""
        students = []
        for row in self.get_main_sheet_data()[1:]:
            student_id = _cell(row, self.student_id_column).strip()
            if student_id:
                students.append(Student(
                    student_id=student_id,
                    student_name=_cell(row, self.student_name_column).strip(),
                ))
        return students

    # ------------------------------------------------------------------
    # Adressage
    # ------------------------------------------------------------------

    def find_student_row(self, rows: Grid, student_id: str) -> int:
        """Index 0 de la ligne de l'étudiant. Lève StudentNotFound."""
        for index, row in enumerate(rows):
            if index == 0:
                continue
            if _cell(row, self.student_id_column).strip() == student_id:
                return index
        raise StudentNotFound(student_id)

    def week_column_index(self, week) -> int:
        """Index 0 de la colonne d'une semaine. Lève InvalidWeek."""
        if isinstance(week, bool) or not isinstance(week, int) or not 1 <= week <= self.week_count:
            raise InvalidWeek(week, self.week_count)
        return self.first_week_column + week - 1

    def week_column(self, week) -> str:
        return column_letter(self.week_column_index(week))

    def cell_range(self, row_index: int, week: int) -> str:
        """« Feuille!<col><ligne> » pour la cellule (étudiant, semaine)."""
        return f"{self.main_sheet}!{cell_name(row_index, self.week_column_index(week))}"

    # ------------------------------------------------------------------
    # Cellules
    # ------------------------------------------------------------------

    is_already_marked = staticmethod(provenance.is_marked)

    def read_cell(self, range_spec: str) -> str:
        """Lecture directe (sans cache) d'une cellule."""
        grid = self.gate.call(lambda: self.store.get_range(range_spec), f"lecture {range_spec}")
        if grid and grid[0]:
            return grid[0][0]
        return ""

    def write_cell(self, range_spec: str, value: str) -> None:
        self.gate.call(lambda: self.store.update_range(range_spec, [[value]]), f"écriture {range_spec}")
        self.invalidate(parse_range(range_spec, self.main_sheet).sheet)

    def write_row(self, range_spec: str, values: List[str]) -> None:
        self.gate.call(lambda: self.store.update_range(range_spec, [values]), f"écriture {range_spec}")
        self.invalidate(parse_range(range_spec, self.main_sheet).sheet)

    def append_row(self, range_spec: str, values: List[str]) -> None:
        self.gate.call(lambda: self.store.append_rows(range_spec, [values]), f"ajout {range_spec}")
        self.invalidate(parse_range(range_spec, self.main_sheet).sheet)

    def write_cells(self, cells: Sequence[Tuple[str, str]]) -> None:
        """Écrit plusieurs cellules en un seul appel batch (une valeur par plage)."""
        if not cells:
            return
        updates = [(range_spec, [[value]]) for range_spec, value in cells]
        self.gate.call(lambda: self.store.batch_update(updates), f"écriture batch ({len(cells)} cellules)")
        for sheet in {parse_range(spec, self.main_sheet).sheet for spec, _ in cells}:
            self.invalidate(sheet)

    def write_cells_in_chunks(
        self,
        cells: Sequence[Tuple[str, str]],
        chunk_size: int,
        pause: float,
        sleep: Callable[[float], None] = time.sleep,
        stop_on_error: bool = True,
    ) -> Tuple[int, int]:
        """
        Écrit des cellules par lots séquentiels de chunk_size, avec une pause entre deux lots.
        Retourne (cellules écrites, lots en échec). Avec stop_on_error=False, un lot en
        échec est journalisé puis ignoré.
        """
        written = 0
        failed = 0
        chunks = [cells[i:i + chunk_size] for i in range(0, len(cells), chunk_size)]
        for number, chunk in enumerate(chunks, start=1):
            try:
                self.write_cells(chunk)
                written += len(chunk)
            except LedgerStoreError:
                if stop_on_error:
                    raise
                failed += 1
                logger.error("Lot %d/%d en échec, ignoré", number, len(chunks), exc_info=True)
            if number < len(chunks):
                sleep(pause)
        return written, failed

    # ------------------------------------------------------------------
    # Onglets
    # ------------------------------------------------------------------

    def sheet_exists(self, sheet_name: str) -> bool:
        return self.gate.call(lambda: self.store.sheet_exists(sheet_name), f"recherche onglet {sheet_name}")

    def add_sheet(self, sheet_name: str, column_count: int) -> None:
        self.gate.call(lambda: self.store.add_sheet(sheet_name, column_count), f"création onglet {sheet_name}")


def _cell(row: List[str], index: int) -> str:
    if index < len(row) and row[index] is not None:
        return str(row[index])
    return ""
