import pytest

from models import CanonicalSpec, DiagnosticCode, Severity, SystemType
from model_builder import build_exact
from model_decoder import parse_model
from schema_store import AccessoryRule
from spec_validator import check_accessory_rule, validate


def _fields(diags):
    return {d.field for d in diags}


def test_consistent_gas_spec(schema):
    spec = CanonicalSpec(capacity_tons=8.5, heating_btu=150000, voltage="460",
                         phase_count=3, system_type=SystemType.GAS_ELECTRIC)
    assert validate(spec, "DHG", schema) == []


def test_gas_family_requires_heating(schema):
    spec = CanonicalSpec(capacity_tons=5.0, voltage="460", phase_count=3)
    diags = validate(spec, "DSG", schema)
    assert _fields(diags) == {"heating_btu"}
    assert all(d.code == DiagnosticCode.CONSTRAINT_VIOLATION for d in diags)
    assert all(d.severity == Severity.ERROR for d in diags)


def test_gas_family_rejects_electric_heat(schema):
    spec = CanonicalSpec(capacity_tons=5.0, heating_btu=100000, electric_heat_kw=10.0)
    assert "electric_heat_kw" in _fields(validate(spec, "DSG", schema))


def test_heat_pump_requires_electric_heat(schema):
    spec = CanonicalSpec(capacity_tons=4.0, voltage="460", phase_count=3)
    assert _fields(validate(spec, "DHH", schema)) == {"electric_heat_kw"}


def test_heat_pump_rejects_gas_heat(schema):
    spec = CanonicalSpec(capacity_tons=4.0, electric_heat_kw=10.0, heating_btu=60000)
    assert "heating_btu" in _fields(validate(spec, "DHH", schema))


def test_capacity_outside_family(schema):
    spec = CanonicalSpec(capacity_tons=20.0, heating_btu=240000)
    diags = validate(spec, "DHG", schema)
    assert _fields(diags) == {"capacity"}


def test_capacity_with_no_code(schema):
    spec = CanonicalSpec(capacity_tons=9.0, heating_btu=150000)
    assert "capacity" in _fields(validate(spec, "DHG", schema))


def test_voltage_not_offered(schema):
    spec = CanonicalSpec(capacity_tons=5.0, voltage="208-230", phase_count=1)
    assert _fields(validate(spec, "DHC", schema)) == {"voltage"}


def test_system_type_mismatch(schema):
    spec = CanonicalSpec(capacity_tons=5.0, system_type=SystemType.HEAT_PUMP)
    assert "system_type" in _fields(validate(spec, "DSC", schema))


def test_unknown_accessory_on_spec(schema):
    spec = CanonicalSpec(capacity_tons=5.0, accessories={"sunroof": "Y"})
    assert "accessories.sunroof" in _fields(validate(spec, "DSC", schema))


def test_unknown_family_is_a_diagnostic(schema):
    diags = validate(CanonicalSpec(capacity_tons=5.0), "XYZ", schema)
    assert len(diags) == 1
    assert diags[0].code == DiagnosticCode.UNKNOWN_FAMILY


def test_series_prefix_uses_tonnage(schema):
    spec = CanonicalSpec(capacity_tons=8.5, electric_heat_kw=10.0)
    assert validate(spec, "DSH", schema) == []


def test_parsed_model_accessory_rules(schema):
    # powered outlet (service P) without single point power
    parsed = parse_model("DHG1024L150CCAXXXPXXXAAX", schema)
    diags = validate(parsed, parsed.family, schema)
    assert len(diags) == 1
    assert diags[0].field in ("service", "single_point")
    assert "single point" in diags[0].message.lower()


def test_parsed_model_controls_not_allowed(schema):
    # DHC only ships with high-tier DDC controls
    parsed = parse_model("DHC0363DXXXACXXXXXXXXAAX", schema)
    assert _fields(validate(parsed, "DHC", schema)) == {"controls"}


def test_validate_against_other_family(schema):
    result = build_exact("DHG", {"capacity": "102", "voltage": "4", "gas_btu": "150"}, schema)
    diags = validate(result, "DSG", schema)
    assert "system_type" not in _fields(diags)
    assert {"tier", "controls", "refrig_sys"} & _fields(diags)


def test_validate_does_not_mutate(schema):
    spec = CanonicalSpec(capacity_tons=5.0)
    before = spec.model_dump()
    validate(spec, "DSG", schema)
    assert spec.model_dump() == before


RULE = AccessoryRule(name="r", kind="together",
                     when={"service": ["P"]}, then={"single_point": ["S"]})


@pytest.mark.parametrize("codes, broken", [
    ({"service": "P", "single_point": "S"}, False),
    ({"service": "X", "single_point": "X"}, False),
    ({"service": "P", "single_point": "X"}, True),
    ({"service": "H", "single_point": "S"}, True),
    ({"service": "P"}, False),
])
def test_together_rule(codes, broken):
    assert (check_accessory_rule(RULE, codes) is not None) == broken


def test_forbidden_rule(schema):
    rule = next(r for r in schema.accessory_rules if r.kind == "forbidden")
    assert check_accessory_rule(rule, {"voltage": "1", "electrical": "B"}) is not None
    assert check_accessory_rule(rule, {"voltage": "1", "electrical": "N"}) is None
    assert check_accessory_rule(rule, {"voltage": "3", "electrical": "P"}) is None


def test_requires_rule(schema):
    rule = next(r for r in schema.accessory_rules if r.kind == "requires")
    assert check_accessory_rule(rule, {"economizer": "B", "controls": "A"}) is not None
    assert check_accessory_rule(rule, {"economizer": "B", "controls": "C"}) is None
    assert check_accessory_rule(rule, {"economizer": "A", "controls": "A"}) is None
