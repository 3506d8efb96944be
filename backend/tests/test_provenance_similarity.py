"""
Tests unitaires : format de provenance des cellules et score de similarité des appareils.
"""

from datetime import datetime

from app.services import provenance
from app.services.provenance import CellProvenance
from app.services.similarity import DeviceSimilarity, prefix_compatible, tokens_match

FP = "0123456789abcdef" * 4
HW = "fedcba9876543210" * 4


# ============================================================
# Provenance
# ============================================================

def test_encode_tronque_a_8_caracteres():
    moment = datetime(2026, 3, 10, 9, 30)
    value = CellProvenance.from_submission(FP, HW, "10.0.0.5", moment).encode()

    assert value == f"VAR (DF:01234567) (HW:fedcba98) (IP:10.0.0.5) (DATE:{int(moment.timestamp() * 1000)})"


def test_decode_cellule_complete():
    moment = datetime(2026, 3, 10, 9, 30)
    decoded = provenance.decode(CellProvenance.from_submission(FP, HW, "10.0.0.5", moment).encode())

    assert decoded.fingerprint == "01234567"
    assert decoded.hardware_signature == "fedcba98"
    assert decoded.ip == "10.0.0.5"
    assert decoded.recorded_at == moment


def test_decode_var_simple():
    decoded = provenance.decode("VAR")
    assert decoded is not None
    assert decoded.fingerprint is None
    assert decoded.recorded_at is None


def test_decode_cellule_vide_ou_non_marquee():
    assert provenance.decode("") is None
    assert provenance.decode(None) is None
    assert provenance.decode("YOK") is None


def test_decode_jeton_inconnu_ignore():
    decoded = provenance.decode("VAR (XX:abc) (IP:1.2.3.4) (DATE:pas-un-nombre)")
    assert decoded.ip == "1.2.3.4"
    assert decoded.recorded_at is None


def test_is_marked_tolere_tout_suffixe():
    assert provenance.is_marked("VAR")
    assert provenance.is_marked("VAR (DF:01234567)")
    assert not provenance.is_marked("")
    assert not provenance.is_marked(None)


def test_has_device_metadata():
    assert provenance.has_device_metadata("VAR (DF:01234567)")
    assert provenance.has_device_metadata("VAR (DATE:1700000000000)")
    assert not provenance.has_device_metadata("VAR")
    assert not provenance.has_device_metadata("VAR (IP:10.0.0.5)")


# ============================================================
# Similarité
# ============================================================

def test_prefix_compatible_dans_les_deux_sens():
    assert prefix_compatible(HW[:8], HW)
    assert prefix_compatible(HW, HW[:8])
    assert not prefix_compatible(HW, FP)
    assert not prefix_compatible("", HW)


def test_tokens_match_tronque_vs_complet():
    """Une signature tronquée à 8 caractères correspond à la signature complète."""
    assert tokens_match(HW[:8], HW)
    assert not tokens_match(None, HW)


def test_score_exact_les_deux_facteurs():
    similarity = DeviceSimilarity.between(FP, FP, HW, HW)
    assert similarity.score == 100
    assert similarity.is_same_device


def test_score_un_seul_palier_par_facteur():
    """Une égalité exacte ne cumule pas le palier préfixe."""
    similarity = DeviceSimilarity.between(FP, FP, "autre-signature-materielle-000000", HW)
    assert similarity.fingerprint_points == 40
    assert similarity.hardware_points == 0
    assert not similarity.is_same_device


def test_score_prefixes_seuls():
    similarity = DeviceSimilarity.between(FP[:8] + "x" * 56, FP, HW[:8] + "y" * 56, HW)
    assert similarity.score == 50
    assert similarity.is_same_device


def test_materiel_exact_suffit():
    similarity = DeviceSimilarity.between("z" * 64, FP, HW, HW)
    assert similarity.score == 60
    assert similarity.is_same_device


def test_jetons_registre_seuil_abaisse():
    assert DeviceSimilarity.against_ledger_tokens(FP[:8], FP, None, HW).is_same_device
    assert not DeviceSimilarity.against_ledger_tokens(None, FP, HW[:8], HW).is_same_device
    assert DeviceSimilarity.against_ledger_tokens(FP[:8], FP, HW[:8], HW).score == 70
