import pytest

from models import InvalidPositionCode, SystemType, UnknownFamily
from model_decoder import clean_model_number, decode_model_number, parse_model


@pytest.mark.parametrize("model, manufacturer, btu, system_type", [
    ("TWR036A1000AA", "Trane", 36000, SystemType.HEAT_PUMP),
    ("4TTR6036J1000AA", "Trane", 36000, SystemType.STRAIGHT_AC),
    ("YCJF36S41S2", "York", 36000, SystemType.STRAIGHT_AC),
    ("ZF060N10", "York", 60000, SystemType.GAS_ELECTRIC),
    ("GSZ160361A1", "Goodman", 36000, SystemType.HEAT_PUMP),
    ("ASX140481", "Amana", 48000, SystemType.STRAIGHT_AC),
    ("XP16-036-230", "Lennox", 36000, SystemType.HEAT_PUMP),
    ("25HCB648", "Carrier", 48000, SystemType.HEAT_PUMP),
    ("RP1448AJ1NA", "Rheem", 48000, SystemType.HEAT_PUMP),
    ("LSU090HSV4", "LG", 9000, SystemType.HEAT_PUMP),
    ("MSZ-FE09NA", "Mitsubishi", 9000, SystemType.HEAT_PUMP),
])
def test_manufacturer_patterns(model, manufacturer, btu, system_type):
    res = decode_model_number(model)
    assert res is not None
    assert res.manufacturer == manufacturer
    assert res.spec.cooling_btu == btu
    assert res.spec.system_type == system_type


def test_trane_voltage_digit():
    single = decode_model_number("TWR036A1000AA").spec
    assert (single.voltage, single.phase_count) == ("208-230", 1)
    three = decode_model_number("TWR036A3000AA").spec
    assert (three.voltage, three.phase_count) == ("460", 3)


def test_york_is_not_read_as_goodman():
    res = decode_model_number("YCJF36S41S2")
    assert res.manufacturer == "York"
    assert "Y[CH]J" in res.matched_pattern


def test_lennox_series_sets_seer_and_voltage():
    spec = decode_model_number("XP16-036-230").spec
    assert spec.seer == pytest.approx(16.0)
    assert spec.voltage == "208-230"
    assert spec.refrigerant is None


def test_unknown_size_code_yields_nothing():
    assert decode_model_number("LSU999HSV4") is None


@pytest.mark.parametrize("model", ["", "   ", "HELLO-WORLD", "12345"])
def test_unrecognized_strings(model):
    assert decode_model_number(model) is None


def test_no_defaults_are_invented():
    spec = decode_model_number("YCJF36S41S2").spec
    assert spec.seer is None
    assert spec.voltage is None
    assert spec.refrigerant is None
    assert spec.provenance["cooling_btu"].rule == "model:York"


def test_clean_model_number():
    assert clean_model_number(" twr 036a1000aa ") == "TWR036A1000AA"
    assert clean_model_number(None) == ""


# ── Schema-aware parsing ─────────────────────────────────────────────

def test_parse_gas_electric_model(schema):
    parsed = parse_model("DHG1024L150CCAXXXXXXXAAX", schema)
    assert parsed.family == "DHG"
    assert parsed.codes["capacity"] == "102"
    assert parsed.codes["gas_btu"] == "150"
    spec = parsed.spec
    assert spec.capacity_tons == pytest.approx(8.5)
    assert spec.cooling_btu == 102000
    assert spec.heating_btu == 150000
    assert spec.system_type == SystemType.GAS_ELECTRIC
    assert (spec.voltage, spec.phase_count) == ("460", 3)
    assert spec.refrigerant == "R-32"


def test_parse_selects_split_family_by_capacity(schema):
    small = parse_model("DSH0483D010AAXXXXXXXXAAX", schema)
    large = parse_model("DSH1023D010ACXXXXXXXXAAX", schema)
    assert small.family == "DSH_3to6"
    assert large.family == "DSH_7p5to10"
    assert large.spec.electric_heat_kw == pytest.approx(10.0)


def test_parse_rejects_wrong_length(schema):
    with pytest.raises(InvalidPositionCode):
        parse_model("DHG1024L150", schema)


def test_parse_rejects_unknown_code(schema):
    with pytest.raises(InvalidPositionCode) as exc:
        parse_model("DHG1024Q150CCAXXXXXXXAAX", schema)
    assert exc.value.field == "fan_drive"


def test_parse_rejects_unknown_series(schema):
    with pytest.raises(UnknownFamily):
        parse_model("QQQ1024L150CCAXXXXXXXAAX", schema)


def test_decode_prefers_schema_parse(schema):
    res = decode_model_number("DHG1024L150CCAXXXXXXXAAX", schema)
    assert res.matched_pattern == "schema"
    assert res.family == "DHG"
    assert res.confidence == 1.0
