import pytest

from data_plate_decoder import DataPlateDecoder, clamp_confidence, decode, decode_text
from models import DiagnosticCode, FieldSource, Severity, SystemType, parse_electrical_notation

TRANE_PLATE = """
TRANE
MODEL NO: TWR036A1000AA
SERIAL NO: 21234ABCD5
VOLTAGE: 208-230/1/60
COOLING CAPACITY: 36,000 BTU
SEER 14.5
REFRIGERANT: R-410A
SCROLL COMPRESSOR
HEAT PUMP
MFG DATE: 03/2019
"""


def test_full_plate_decode():
    result = decode_text(TRANE_PLATE, 0.95)
    assert result.success
    spec = result.spec
    assert spec.manufacturer == "Trane"
    assert spec.model_number == "TWR036A1000AA"
    assert spec.serial_number == "21234ABCD5"
    assert spec.voltage == "208-230"
    assert spec.phase_count == 1
    assert spec.frequency_hz == 60
    assert spec.cooling_btu == 36000
    assert spec.tonnage() == pytest.approx(3.0)
    assert spec.seer == pytest.approx(14.5)
    assert spec.refrigerant == "R-410A"
    assert spec.compressor_type == "Scroll"
    assert spec.system_type == SystemType.HEAT_PUMP
    assert spec.manufacture_date == "2019-03"
    assert not [d for d in result.diagnostics if d.severity == Severity.ERROR]


def test_provenance_records_rule_and_confidence():
    result = decode_text(TRANE_PLATE, 0.9)
    prov = result.spec.provenance["voltage"]
    assert prov.source == FieldSource.DECODED
    assert prov.rule == "electrical:voltage_slash"
    assert prov.confidence == pytest.approx(0.9)


@pytest.mark.parametrize("confidence", [0.0, 0.1, 0.19])
def test_low_confidence_returns_no_spec(confidence):
    result = decode_text(TRANE_PLATE, confidence)
    assert result.success is False
    assert result.spec is None
    assert result.diagnostics[0].code == DiagnosticCode.LOW_CONFIDENCE_INPUT
    assert result.diagnostics[0].severity == Severity.ERROR
    assert result.suggestions


def test_short_text_is_rejected():
    result = decode("ab", 0.99)
    assert result.success is False
    assert result.spec is None
    assert result.diagnostics[0].field == "text"


def test_confidence_floor_is_inclusive():
    result = decode_text(TRANE_PLATE, 0.2)
    assert result.success


def test_low_quality_warning_below_point_seven():
    result = decode_text(TRANE_PLATE, 0.5)
    assert result.success
    codes = [d.code for d in result.diagnostics]
    assert DiagnosticCode.LOW_QUALITY_INPUT in codes


def test_missing_fields_are_warnings():
    result = decode_text("SEER2 15.2\nREFRIGERANT R-454B", 0.9)
    assert result.success
    missing = {d.field for d in result.diagnostics if d.code == DiagnosticCode.MISSING_FIELD}
    assert missing == {"model_number", "manufacturer", "capacity", "voltage"}
    assert result.spec.seer2 == pytest.approx(15.2)
    assert result.spec.refrigerant == "R-454B"


@pytest.mark.parametrize("line, field, value", [
    ("NOMINAL 5 TONS", "capacity_tons", 5.0),
    ("TONNAGE: 7.5", "capacity_tons", 7.5),
    ("CAPACITY: 60 MBH", "cooling_btu", 60000),
    ("48000 BTU/H COOLING", "cooling_btu", 48000),
])
def test_capacity_units(line, field, value):
    spec = decode_text(line, 0.9).spec
    assert getattr(spec, field) == pytest.approx(value)


def test_heating_input_mbh():
    spec = decode_text("GAS HEAT INPUT: 150 MBH", 0.9).spec
    assert spec.heating_btu == 150000
    assert spec.system_type == SystemType.GAS_ELECTRIC


def test_phase_from_ocr_token():
    spec = decode_text("460V 3 PH 60HZ", 0.9).spec
    assert spec.voltage == "460"
    assert spec.phase_count == 3
    assert spec.frequency_hz == 60


def test_ocr_corrections_feed_extraction():
    spec = decode_text("M0DEL NO: GSZ160361A1\n36000 8TU COOLING", 0.9).spec
    assert spec.model_number == "GSZ160361A1"
    assert spec.cooling_btu == 36000


def test_model_decode_fills_missing_fields_only():
    spec = decode_text("GOODMAN\nMODEL NO: GSZ160361A1\nVOLTAGE: 460/3/60", 0.9).spec
    assert spec.manufacturer == "Goodman"
    assert spec.cooling_btu == 36000
    assert spec.system_type == SystemType.HEAT_PUMP
    # plate text wins over the model string
    assert spec.voltage == "460"
    assert spec.phase_count == 3
    assert spec.provenance["cooling_btu"].rule == "model:Goodman"


def test_schema_model_number_on_plate(schema):
    decoder = DataPlateDecoder(schema)
    result = decoder.decode_text("DAIKIN\nMODEL NO: DHG1024L150CCAXXXXXXXAAX", 0.9)
    spec = result.spec
    assert spec.family == "DHG"
    assert spec.capacity_tons == pytest.approx(8.5)
    assert spec.heating_btu == 150000
    assert spec.voltage == "460"


@pytest.mark.parametrize("confidence", [float("nan"), float("-inf"), None])
def test_unusable_confidence_is_treated_as_zero(confidence):
    assert clamp_confidence(confidence) == 0.0
    result = decode(TRANE_PLATE, confidence)
    assert result.success is False
    assert result.spec is None
    assert result.diagnostics[0].code == DiagnosticCode.LOW_CONFIDENCE_INPUT


@pytest.mark.parametrize("confidence, expected", [
    (1.5, 1.0),
    (float("inf"), 0.0),
    (-0.3, 0.0),
    (0.55, 0.55),
])
def test_clamp_confidence(confidence, expected):
    assert clamp_confidence(confidence) == pytest.approx(expected)


def test_confidence_above_one_is_clamped():
    result = decode(TRANE_PLATE, 1.5)
    assert result.success
    assert result.confidence == pytest.approx(1.0)
    assert result.spec.provenance["voltage"].confidence == pytest.approx(1.0)


def test_sub_btu_capacity_is_ignored():
    result = decode_text("TRANE\nCOOLING CAPACITY: 0.0004 MBH\nVOLTAGE 460/3/60", 0.9)
    assert result.success
    assert result.spec.cooling_btu is None
    assert result.spec.capacity_tons is None
    assert result.spec.voltage == "460"


@pytest.mark.parametrize("line, tons, btu", [
    ("NOMINAL 49 TONS", 49.0, None),
    ("NOMINAL 50 TONS", None, None),
    ("NOMINAL 60 TONS", None, None),
    ("30 BTU/H COOLING", None, None),
    ("49 BTU/H COOLING", None, None),
    ("50 BTU/H COOLING", None, 50),
    ("CAPACITY: 0.5 MBH", None, None),
    ("CAPACITY: 1 MBH", None, 1000),
])
def test_capacity_thresholds(line, tons, btu):
    spec = decode_text(line, 0.9).spec
    assert spec.capacity_tons == (pytest.approx(tons) if tons is not None else None)
    assert spec.cooling_btu == btu


@pytest.mark.parametrize("line, voltage, phase, hz", [
    ("POWER SUPPLY: 460-3-60", "460", 3, 60),
    ("VOLTAGE: 208-230-1-60", "208-230", 1, 60),
    ("ELECTRICAL: 575/3/60", "575", 3, 60),
])
def test_dash_and_slash_notation(line, voltage, phase, hz):
    spec = decode_text(line, 0.9).spec
    assert spec.voltage == voltage
    assert spec.phase_count == phase
    assert spec.frequency_hz == hz


def test_dash_notation_provenance():
    spec = decode_text("POWER SUPPLY: 460-3-60", 0.9).spec
    assert spec.provenance["voltage"].rule == "electrical:supply_slash"


def test_bare_dash_notation():
    spec = decode_text("UNIT 208-230-1-60", 0.9).spec
    assert spec.voltage == "208-230"
    assert spec.phase_count == 1
    assert spec.provenance["voltage"].rule == "electrical:bare_notation"


@pytest.mark.parametrize("text, expected", [
    ("208-230/3/60", {"voltage": "208-230", "phase_count": 3, "frequency_hz": 60}),
    ("460-3-60", {"voltage": "460", "phase_count": 3, "frequency_hz": 60}),
    ("230V/1", {"voltage": "208-230", "phase_count": 1}),
    ("SEER 14", {}),
    ("", {}),
])
def test_parse_electrical_notation(text, expected):
    assert parse_electrical_notation(text) == expected
