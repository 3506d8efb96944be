"""
Tests unitaires pour le suivi journalier des appareils (un appareil = un étudiant par jour).
"""

import hashlib
from datetime import datetime, timedelta
from unittest.mock import patch

from app.schemas.device import DailyDeviceRecord
from app.services.daily_tracker import DailyDeviceTracker
from app.services.provenance import CellProvenance
from app.stores.base import LedgerStoreError


# --- Helpers ---

def token(label: str) -> str:
    return hashlib.sha256(label.encode()).hexdigest()


FP_D, HW_D = token("fp-d"), token("hw-d")
FP_E, HW_E = token("fp-e"), token("hw-e")
TODAY_0900 = datetime(2026, 3, 10, 9, 0)


class SettableClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ============================================================
# Cache local
# ============================================================

def test_meme_appareil_autre_etudiant_meme_jour_bloque():
    """Appareil D pour A à 09:00 puis pour B à 10:00 → refus nommant A."""
    clock = SettableClock(TODAY_0900)
    tracker = DailyDeviceTracker(clock=clock)

    assert tracker.track_device(FP_D, "A", "10.0.0.5", HW_D).is_allowed

    clock.now = TODAY_0900 + timedelta(hours=1)
    result = tracker.track_device(FP_D, "B", "10.0.0.5", HW_D)

    assert not result.is_allowed
    assert result.blocked_student_id == "A"
    assert "A" in result.blocked_reason


def test_meme_etudiant_meme_appareil_autorise():
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    assert tracker.track_device(FP_D, "A", "10.0.0.5", HW_D).is_allowed
    assert tracker.track_device(FP_D, "A", "10.0.0.5", HW_D).is_allowed


def test_appareils_distincts_independants():
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    assert tracker.track_device(FP_D, "A", "10.0.0.5", HW_D).is_allowed
    assert tracker.track_device(FP_E, "B", "10.0.0.6", HW_E).is_allowed


def test_ip_differente_jamais_bloquee():
    """Même empreinte et même signature mais IP différente → autre appareil."""
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    tracker.track_device(FP_D, "A", "10.0.0.5", HW_D)
    assert tracker.track_device(FP_D, "B", "10.0.0.99", HW_D).is_allowed


def test_bascule_de_jour():
    """Un enregistrement d'hier 23:59 ne bloque pas un autre étudiant aujourd'hui."""
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    yesterday = datetime(2026, 3, 9, 23, 59)
    tracker.load_record(DailyDeviceRecord(
        student_id="A",
        hardware_signature=HW_D,
        fingerprints=[FP_D],
        last_known_ip="10.0.0.5",
        last_used_at=yesterday,
    ))

    result = tracker.track_device(FP_D, "B", "10.0.0.5", HW_D)

    assert result.is_allowed
    record = tracker.records()[0]
    assert record.student_id == "B"
    assert record.last_used_at == TODAY_0900


def test_check_device_ne_modifie_rien():
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    assert tracker.check_device(FP_D, "A", "10.0.0.5", HW_D).is_allowed
    assert tracker.records() == []


def test_upsert_par_empreinte_ajoute_l_empreinte():
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    tracker.track_device(FP_D, "A", "10.0.0.5", HW_D)
    tracker.track_device(FP_E, "A", "10.0.0.5", HW_D)

    records = tracker.records()
    assert len(records) == 1
    assert records[0].fingerprints == [FP_D, FP_E]
    assert len(records[0].usage_history) == 2


def test_upsert_par_empreinte_sous_une_seule_cle():
    """Même empreinte, signature matérielle modifiée : un seul enregistrement, réindexé."""
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    tracker.track_device(FP_D, "A", "10.0.0.5", HW_D)
    tracker.track_device(FP_D, "A", "10.0.0.5", HW_E)

    records = tracker.records()
    assert len(records) == 1
    assert records[0].hardware_signature == HW_E
    assert len(records[0].usage_history) == 2
    assert list(tracker.snapshot()) == [f"{HW_E[:8]}..."]
    assert tracker.clear() == 1


def test_nouvelle_empreinte_meme_materiel_bloquee():
    """Navigateur différent sur le même téléphone : le matériel exact suffit (60 points)."""
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    tracker.track_device(FP_D, "A", "10.0.0.5", HW_D)
    assert not tracker.track_device(FP_E, "B", "10.0.0.5", HW_D).is_allowed


def test_snapshot_masque_et_clear():
    tracker = DailyDeviceTracker(clock=SettableClock(TODAY_0900))
    tracker.track_device(FP_D, "A", "10.0.0.5", HW_D)

    snapshot = tracker.snapshot()
    record = snapshot[f"{HW_D[:8]}..."]
    assert record.hardware_signature == f"{HW_D[:8]}..."
    assert record.fingerprints == [f"{FP_D[:8]}..."]
    assert record.usage_count == 1

    assert tracker.clear() == 1
    assert tracker.snapshot() == {}


# ============================================================
# Registre durable
# ============================================================

def mark_cell(store, cell: str, fp: str, hw: str, ip: str, moment: datetime) -> None:
    store.update_range(cell, [[CellProvenance.from_submission(fp, hw, ip, moment).encode()]])


def test_registre_bloque_appareil_utilise_par_un_autre(ledger, store):
    """Le cache est vide (redémarrage) mais la cellule de A porte l'appareil du jour."""
    mark_cell(store, "Sheet1!H2", FP_D, HW_D, "10.0.0.5", TODAY_0900)
    tracker = DailyDeviceTracker(ledger, clock=SettableClock(TODAY_0900 + timedelta(hours=1)))

    result = tracker.validate_device_access(FP_D, "150210002", "10.0.0.5", HW_D)

    assert not result.is_allowed
    assert result.blocked_student_id == "150210001"


def test_registre_propre_cellule_ignoree(ledger, store):
    mark_cell(store, "Sheet1!H2", FP_D, HW_D, "10.0.0.5", TODAY_0900)
    tracker = DailyDeviceTracker(ledger, clock=SettableClock(TODAY_0900))
    assert tracker.check_ledger(FP_D, "150210001", "10.0.0.5", HW_D).is_allowed


def test_registre_cellule_d_hier_ignoree(ledger, store):
    mark_cell(store, "Sheet1!H2", FP_D, HW_D, "10.0.0.5", TODAY_0900 - timedelta(days=1))
    tracker = DailyDeviceTracker(ledger, clock=SettableClock(TODAY_0900))
    assert tracker.check_ledger(FP_D, "150210002", "10.0.0.5", HW_D).is_allowed


def test_registre_ip_differente_ignoree(ledger, store):
    mark_cell(store, "Sheet1!H2", FP_D, HW_D, "10.0.0.7", TODAY_0900)
    tracker = DailyDeviceTracker(ledger, clock=SettableClock(TODAY_0900))
    assert tracker.check_ledger(FP_D, "150210002", "10.0.0.5", HW_D).is_allowed


def test_registre_materiel_seul_sous_le_seuil(ledger, store):
    """Jeton matériel seul = 30 points < 40."""
    mark_cell(store, "Sheet1!H2", FP_E, HW_D, "10.0.0.5", TODAY_0900)
    tracker = DailyDeviceTracker(ledger, clock=SettableClock(TODAY_0900))
    assert tracker.check_ledger(FP_D, "150210002", "10.0.0.5", HW_D).is_allowed


def test_registre_illisible_passe(ledger):
    tracker = DailyDeviceTracker(ledger, clock=SettableClock(TODAY_0900))
    with patch.object(ledger, "get_main_sheet_data", side_effect=LedgerStoreError("droits")):
        assert tracker.check_ledger(FP_D, "150210002", "10.0.0.5", HW_D).is_allowed
