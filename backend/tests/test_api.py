"""
Tests d'intégration API : présences, roster, séance, appareils et maintenance.
Testent les URLs, les codes HTTP, la validation et le format des réponses.
"""

import hashlib
from unittest.mock import patch

from fastapi.testclient import TestClient

from app.main import app

DIRTY = "VAR (DF:01234567) (HW:fedcba98) (IP:10.0.0.5) (DATE:1773129600000)"


# --- Helpers ---

def token(label: str) -> str:
    return hashlib.sha256(label.encode()).hexdigest()


def submission(**kwargs) -> dict:
    data = {
        "student_id": "150210001",
        "week": 5,
        "device_fingerprint": token("fp-api"),
        "hardware_signature": token("hw-api"),
        "client_ip": "10.0.0.5",
    }
    data.update(kwargs)
    return data


# ============================================================
# GET /api/health
# ============================================================

def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# ============================================================
# POST /api/attendance
# ============================================================

def test_presence_acceptee(client, store):
    response = client.post("/api/attendance", json=submission())

    assert response.status_code == 200
    assert response.json()["accepted"] is True
    assert response.json()["is_already_attended"] is False
    assert store.get_range("Sheet1!H2")[0][0].startswith("VAR")


def test_presence_deja_enregistree(client):
    client.post("/api/attendance", json=submission())
    response = client.post("/api/attendance", json=submission())

    assert response.status_code == 200
    assert response.json()["is_already_attended"] is True


def test_presence_champ_manquant_400(client):
    response = client.post("/api/attendance", json=submission(student_id=None))
    assert response.status_code == 400
    assert response.json()["error_kind"] == "INVALID_INPUT"


def test_presence_identite_trop_courte_400(client):
    response = client.post("/api/attendance", json=submission(device_fingerprint="abc"))
    assert response.status_code == 400
    assert response.json()["error_kind"] == "INVALID_DEVICE_IDENTITY"


def test_presence_etudiant_introuvable_404(client):
    response = client.post("/api/attendance", json=submission(student_id="999999999"))
    assert response.status_code == 404
    assert response.json()["error_kind"] == "STUDENT_NOT_FOUND"


def test_presence_appareil_deja_utilise_403(client):
    client.post("/api/attendance", json=submission())
    response = client.post("/api/attendance", json=submission(student_id="150210002"))

    assert response.status_code == 403
    assert response.json()["blocked_student_id"] == "150210001"
    assert response.json()["error"]


def test_presence_qr_expire_410(client):
    payload = {"timestamp": 0, "class_location": {"lat": 41.0, "lng": 29.0}, "valid_until": 1, "week": 5}
    response = client.post("/api/attendance", json=submission(qr_payload=payload))

    assert response.status_code == 410
    assert response.json()["error_kind"] == "QR_EXPIRED"


def test_presence_semaine_non_entiere_400(client):
    response = client.post("/api/attendance", json=submission(week="cinq"))

    assert response.status_code == 400
    assert response.json()["error_kind"] == "INVALID_INPUT"


def test_exception_non_geree_500(client, engine):
    """Exception imprévue → 500 générique, sans détail interne."""
    with patch.object(engine, "submit", side_effect=RuntimeError("boom")):
        response = TestClient(app, raise_server_exceptions=False).post("/api/attendance", json=submission())

    assert response.status_code == 500
    assert response.json()["detail"] == "Une erreur interne est survenue."


# ============================================================
# GET /api/students
# ============================================================

def test_liste_etudiants(client):
    response = client.get("/api/students")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "public, s-maxage=60"
    students = response.json()["students"]
    assert students[0] == {"student_id": "150210001", "student_name": "Ayşe Yılmaz"}
    assert len(students) == 3


# ============================================================
# Séance : QR code et position
# ============================================================

def test_generer_qr_png(client):
    response = client.post("/api/qr", json={"week": 5})

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert response.content[:4] == b"\x89PNG"
    assert int(response.headers["x-qr-valid-until"]) > 0


def test_generer_qr_semaine_invalide_422(client):
    assert client.post("/api/qr", json={"week": 0}).status_code == 422


def test_position_salle(client):
    response = client.get("/api/location")
    assert response.status_code == 200
    assert set(response.json()) == {"lat", "lng"}


# ============================================================
# /api/devices
# ============================================================

def test_snapshot_appareils_masque(client):
    client.post("/api/attendance", json=submission())

    response = client.get("/api/devices")

    assert response.status_code == 200
    records = list(response.json().values())
    assert records[0]["student_id"] == "150210001"
    assert records[0]["hardware_signature"] == token("hw-api")[:8] + "..."


def test_effacer_donnees_appareil(client, store, tracker):
    client.post("/api/attendance", json=submission())

    response = client.delete("/api/devices")

    assert response.status_code == 200
    assert response.json()["memory_records_cleared"] == 1
    assert response.json()["registry_entries_cleared"] == 1
    assert response.json()["ledger_cells_cleared"] == 1
    assert store.get_range("Sheet1!H2") == [["VAR"]]
    assert tracker.records() == []


def test_retirer_empreinte_du_registre(client):
    client.post("/api/attendance", json=submission())

    response = client.delete(f"/api/devices/registry/{token('fp-api')}")

    assert response.status_code == 200
    assert response.json()["cleared"] is True


def test_retirer_empreinte_inconnue_404(client):
    response = client.delete(f"/api/devices/registry/{token('inconnue')}")
    assert response.status_code == 404


# ============================================================
# Maintenance : /api/cleanup-jobs et /api/weeks/{week}/clear
# ============================================================

def test_cycle_tache_de_nettoyage(client, store):
    for row in (2, 3, 4):
        store.update_range(f"Sheet1!H{row}", [[DIRTY]])

    created = client.post("/api/cleanup-jobs", json={"week": 5})
    assert created.status_code == 201
    job_id = created.json()["job_id"]
    assert created.json()["total_cells"] == 3

    first = client.post(f"/api/cleanup-jobs/{job_id}/process").json()
    assert first["completed"] is False
    assert first["processed_cells"] == 2
    assert client.post(f"/api/cleanup-jobs/{job_id}/process").json()["completed"] is True

    status = client.get(f"/api/cleanup-jobs/{job_id}")
    assert status.status_code == 200
    assert status.json()["status"] == "COMPLETED"
    assert status.json()["progress"] == 100
    assert store.get_range("Sheet1!H3") == [["VAR"]]


def test_tache_semaine_invalide_422(client):
    assert client.post("/api/cleanup-jobs", json={"week": 42}).status_code == 422


def test_tache_inconnue_404(client):
    response = client.get("/api/cleanup-jobs/absente")
    assert response.status_code == 404
    assert "introuvable" in response.json()["detail"]


def test_nettoyer_semaine(client, store):
    store.update_range("Sheet1!D2", [[DIRTY]])

    response = client.post("/api/weeks/1/clear")

    assert response.status_code == 200
    assert response.json() == {"week": 1, "cleared_cells": 1}


def test_nettoyer_semaine_invalide_400(client):
    assert client.post("/api/weeks/20/clear").status_code == 400
