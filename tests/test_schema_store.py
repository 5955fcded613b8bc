import json

import pytest

from models import SchemaLoadError, SystemType, UnknownFamily
from schema_store import load_schema, parse_schema


def _mutated(schema_text, mutate):
    doc = json.loads(schema_text)
    mutate(doc)
    return json.dumps(doc)


def test_loads_bundled_schema(schema):
    assert schema.model_length == 24
    assert schema.refrigerant == "R-32"
    assert set(schema.families) == {
        "DSC", "DHC", "DSG", "DHG", "DSH_3to6", "DSH_7p5to10", "DHH"}
    assert schema.family("DHG").system_type == SystemType.GAS_ELECTRIC


def test_family_positions_cover_model_length(schema):
    for fam in schema.families.values():
        positions = schema.family_positions(fam)
        assert positions[0].start == 0
        assert positions[-1].end == schema.model_length


def test_schema_is_immutable(schema):
    with pytest.raises(Exception):
        schema.model_length = 30


def test_invalid_json_is_fatal():
    with pytest.raises(SchemaLoadError):
        parse_schema("{not json")


def test_duplicate_keys_are_fatal():
    with pytest.raises(SchemaLoadError, match="duplicate key"):
        parse_schema('{"name": "a", "name": "b"}')


def test_duplicate_code_in_position_table_is_fatal(schema_text):
    text = schema_text.replace(
        '"codes": {"D": "Daikin"}', '"codes": {"D": "Daikin", "D": "Daikin"}', 1)
    assert text != schema_text
    with pytest.raises(SchemaLoadError):
        parse_schema(text)


def test_unknown_position_reference_is_fatal(schema_text):
    def mutate(doc):
        doc["families"]["DSC"]["positions"][5] = "blower"
    with pytest.raises(SchemaLoadError, match="unknown positions"):
        parse_schema(_mutated(schema_text, mutate))


def test_non_ascending_ladder_is_fatal(schema_text):
    def mutate(doc):
        doc["ladders"][0]["values"] = [3.0, 5.0, 4.0]
    with pytest.raises(SchemaLoadError, match="ascending"):
        parse_schema(_mutated(schema_text, mutate))


def test_code_width_must_match_position_length(schema_text):
    def mutate(doc):
        doc["positions"][3]["codes"]["36"] = 3.0
    with pytest.raises(SchemaLoadError):
        parse_schema(_mutated(schema_text, mutate))


def test_missing_schema_file(tmp_path):
    with pytest.raises(SchemaLoadError):
        load_schema(tmp_path / "absent.json")


def test_family_ladder_respects_allowed_codes(schema):
    steps = schema.family_ladder(schema.family("DSH_7p5to10"), "tons")
    assert [v for v, _ in steps] == [7.5, 8.5, 10.0]
    assert [c for _, c in steps] == ["090", "102", "120"]


@pytest.mark.parametrize("position, dimension", [
    ("capacity", "tons"),
    ("gas_btu", "heating_btu"),
    ("electric_heat", "electric_kw"),
])
def test_ladder_for_position(schema, position, dimension):
    assert schema.ladder_for_position(position).dimension == dimension


def test_unladdered_position_has_no_ladder(schema):
    assert schema.ladder_for_position("voltage") is None


def test_gas_ladder_has_no_160k_step(schema):
    values = schema.ladder("heating_btu").values
    assert 160000 not in values
    assert values == sorted(values)


@pytest.mark.parametrize("tons, expected", [
    (3.0, "DSH_3to6"),
    (6.0, "DSH_3to6"),
    (7.5, "DSH_7p5to10"),
    (10.0, "DSH_7p5to10"),
    (6.5, "DSH_3to6"),
    (12.5, "DSH_7p5to10"),
])
def test_resolve_family_by_series_prefix(schema, tons, expected):
    assert schema.resolve_family("DSH", tons).name == expected


def test_unknown_family(schema):
    with pytest.raises(UnknownFamily):
        schema.resolve_family("XYZ")


def test_position_code_lookup(schema):
    cap = schema.position("capacity")
    assert cap.code_for(8.5) == "102"
    assert cap.code_for(8) is None
    assert schema.position("hail_guard").code_for_label("HAIL_GUARD") == "H"


def test_rating_brackets(schema):
    ratings = schema.family("DSC").catalog
    assert ratings.rating_for(3.0).seer2 == 14.0
    assert ratings.rating_for(6.0).seer2 == 16.7
    assert ratings.rating_for(12.5).ieer == 16.7
    assert schema.family("DSG").catalog.heating_options(8.5) == [130000, 140000, 150000]
