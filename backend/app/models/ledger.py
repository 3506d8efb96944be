"""
Modèles SQLAlchemy du backend `sql` : une feuille de calcul stockée cellule par cellule.

Seules les cellules non vides sont persistées. Aucune transaction multi-requêtes
n'est offerte aux appelants : chaque écriture est « last-write-wins ».
"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func

from app.database import Base


class LedgerSheet(Base):
    """Onglet du registre (feuille de présence, StudentDevices, ...)."""
    __tablename__ = "ledger_sheets"

    name = Column(String(100), primary_key=True)
    column_count = Column(Integer, nullable=False, default=26)
    created_at = Column(DateTime, server_default=func.now())


class LedgerCell(Base):
    """Valeur texte d'une cellule, adressée en index 0 (ligne, colonne)."""
    __tablename__ = "ledger_cells"
    __table_args__ = (
        UniqueConstraint("sheet_name", "row_index", "col_index", name="uq_ledger_cell_position"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    sheet_name = Column(String(100), ForeignKey("ledger_sheets.name", ondelete="CASCADE"), nullable=False)
    row_index = Column(Integer, nullable=False)
    col_index = Column(Integer, nullable=False)
    value = Column(Text, nullable=False, default="")

    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
