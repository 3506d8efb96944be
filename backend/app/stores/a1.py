"""
Notation A1 des feuilles de calcul : « Feuille!A1:E1 », « A:Z », « D5 », « AA12 ».
Toutes les positions internes sont en index 0 ; les bornes de fin sont inclusives.
"""

import re
from typing import Dict, List, NamedTuple, Optional, Tuple

_REF_REGEX = re.compile(r"^([A-Za-z]*)(\d*)$")


class GridRange(NamedTuple):
    sheet: str
    start_row: int
    start_col: int
    end_row: Optional[int]   # None = jusqu'à la dernière ligne
    end_col: Optional[int]   # None = jusqu'à la dernière colonne

    def contains(self, row: int, col: int) -> bool:
        if row < self.start_row or col < self.start_col:
            return False
        if self.end_row is not None and row > self.end_row:
            return False
        if self.end_col is not None and col > self.end_col:
            return False
        return True


def column_letter(index: int) -> str:
    """0 → A, 25 → Z, 26 → AA."""
    if index < 0:
        raise ValueError(f"Index de colonne négatif : {index}")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def column_index(letters: str) -> int:
    """A → 0, Z → 25, AA → 26."""
    if not letters or not letters.isalpha():
        raise ValueError(f"Colonne invalide : {letters!r}")
    result = 0
    for char in letters.upper():
        result = result * 26 + (ord(char) - 64)
    return result - 1


def cell_name(row_index: int, col_index: int) -> str:
    """Adresse A1 d'une cellule à partir de ses index 0 (ligne 0, colonne 3 → D1)."""
    return f"{column_letter(col_index)}{row_index + 1}"


def _split_ref(ref: str, spec: str) -> Tuple[Optional[int], Optional[int]]:
    match = _REF_REGEX.match(ref.strip())
    if not match or not (match.group(1) or match.group(2)):
        raise ValueError(f"Plage A1 invalide : {spec!r}")
    col = column_index(match.group(1)) if match.group(1) else None
    row = int(match.group(2)) - 1 if match.group(2) else None
    if row is not None and row < 0:
        raise ValueError(f"Plage A1 invalide : {spec!r}")
    return row, col


def parse_range(spec: str, default_sheet: str) -> GridRange:
    """Décompose une plage A1 en GridRange. Lève ValueError si la plage est mal formée."""
    sheet = default_sheet
    ref = spec
    if "!" in spec:
        sheet, ref = spec.rsplit("!", 1)
        sheet = sheet.strip("'")
    start, _, end = ref.partition(":")
    start_row, start_col = _split_ref(start, spec)
    if end:
        end_row, end_col = _split_ref(end, spec)
    else:
        end_row, end_col = start_row, start_col
    return GridRange(
        sheet=sheet,
        start_row=start_row or 0,
        start_col=start_col or 0,
        end_row=end_row,
        end_col=end_col,
    )


def build_grid(cells: Dict[Tuple[int, int], str], grid_range: GridRange) -> List[List[str]]:
    """
    Construit la grille row-major d'une plage comme le ferait l'API Sheets :
    lignes vides finales et cellules vides en fin de ligne supprimées.
    """
    by_row: Dict[int, Dict[int, str]] = {}
    for (row, col), value in cells.items():
        if value == "" or not grid_range.contains(row, col):
            continue
        by_row.setdefault(row, {})[col] = value

    if not by_row:
        return []

    grid: List[List[str]] = []
    for row in range(grid_range.start_row, max(by_row) + 1):
        row_cells = by_row.get(row)
        if not row_cells:
            grid.append([])
            continue
        width = max(row_cells) - grid_range.start_col + 1
        grid.append([row_cells.get(grid_range.start_col + i, "") for i in range(width)])
    return grid
