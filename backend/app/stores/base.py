"""
Interface commune des backends de stockage du registre de présence.

Le registre est une feuille de calcul partagée, sans verrou ni transaction :
deux écritures concurrentes sur la même cellule se résolvent en last-write-wins.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Tuple

Grid = List[List[str]]


class LedgerStoreError(Exception):
    """Erreur du stockage sous-jacent (plage inconnue, droits, schéma absent...)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientStoreError(LedgerStoreError):
    """Erreur passagère (quota 429/503, connexion réinitialisée) : peut être réessayée."""


class LedgerStore(ABC):
    """Accès brut à une feuille de calcul en notation A1."""

    default_sheet: str = "Sheet1"

    @abstractmethod
    def get_range(self, range_spec: str) -> Grid:
        """Lit une plage ; la grille retournée est tronquée comme une réponse Sheets."""

    @abstractmethod
    def update_range(self, range_spec: str, values: Grid) -> None:
        """Écrit une grille à partir du coin supérieur gauche de la plage."""

    @abstractmethod
    def batch_update(self, updates: Sequence[Tuple[str, Grid]]) -> None:
        """Écrit plusieurs plages en un seul appel."""

    @abstractmethod
    def append_rows(self, range_spec: str, values: Grid) -> None:
        """Ajoute des lignes après la dernière ligne non vide de la plage."""

    @abstractmethod
    def sheet_exists(self, sheet_name: str) -> bool:
        ...

    @abstractmethod
    def add_sheet(self, sheet_name: str, column_count: int = 26) -> None:
        ...
