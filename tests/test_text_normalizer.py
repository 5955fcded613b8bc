import pytest

from text_normalizer import apply_corrections, casefold_for_match, normalize


def test_collapses_whitespace_and_blank_lines():
    raw = "  MODEL   NO:  TWR036A1000AA \n\n\n  SERIAL\tNO: 1234ABC  "
    assert normalize(raw) == "MODEL NO: TWR036A1000AA\nSERIAL NO: 1234ABC"


def test_empty_input():
    assert normalize("") == ""
    assert normalize("   \n \n") == ""


@pytest.mark.parametrize("raw, expected", [
    ("36000 8TU", "36000 BTU"),
    ("208/230 VOITS", "208/230 VOLTS"),
    ("SEEP2 15.2", "SEER2 15.2"),
    ("REFRIGEPANT R-4l0A", "REFRIGERANT R-410A"),
    ("M0DEL NO", "MODEL NO"),
    ("SER1AL NO", "SERIAL NO"),
    ("C0OLING CAPAGITY", "COOLING CAPACITY"),
])
def test_ocr_corrections(raw, expected):
    assert normalize(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("208-230V 3PH 60HZ", "208-230V 3φ 60HZ"),
    ("460V 3-PHASE", "460V 3φ"),
    ("230V 1 PH", "230V 1φ"),
    ("SINGLE PHASE", "1φ"),
    ("THREE PHASE", "3φ"),
])
def test_phase_tokens(raw, expected):
    assert normalize(raw) == expected


def test_corrections_respect_word_boundaries():
    assert apply_corrections("ABSEEPX") == "ABSEEPX"
    assert apply_corrections("28TU") == "28TU"


@pytest.mark.parametrize("raw", [
    "MODEL: GSZ140361 \n\n  3 PH  8TU 36000",
    "SINGLE   PHASE\n\n\nR4l0A  SEEP 14",
    "",
    "   ",
    "M0DEL  SER1AL  CAPAC1TY",
])
def test_normalize_is_idempotent(raw):
    once = normalize(raw)
    assert normalize(once) == once


@pytest.mark.parametrize("raw, expected", [
    ("dhg1024l150", "DHG1024L150"),
    ("Trane twr036", "TRANE TWR036"),
    ("", ""),
    (None, ""),
])
def test_casefold_for_match(raw, expected):
    assert casefold_for_match(raw) == expected
