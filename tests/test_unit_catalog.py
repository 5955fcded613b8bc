import json

import pytest

from models import CatalogLoadError, SystemType
from model_decoder import parse_model
from spec_validator import validate
from unit_catalog import dump_catalog, generate_catalog, load_catalog


def _units(catalog, family, tons=None):
    return [u for u in catalog
            if u.family == family and (tons is None or u.tons == pytest.approx(tons))]


def test_catalog_covers_every_family(schema, catalog):
    assert {u.family for u in catalog} == set(schema.families)
    assert {u.system_type for u in catalog} == set(SystemType)


def test_model_numbers_are_unique(catalog):
    numbers = [u.model_number for u in catalog]
    assert len(numbers) == len(set(numbers))


def test_catalog_is_valid_by_construction(schema, catalog):
    for unit in catalog:
        parsed = parse_model(unit.model_number, schema)
        assert parsed.family == unit.family
        assert parsed.spec.capacity_tons == pytest.approx(unit.tons)
        assert validate(parsed, unit.family, schema) == []


def test_single_phase_limit(catalog):
    dsc = _units(catalog, "DSC")
    assert len(dsc) == 4 * 4 + 7 * 3
    assert max(u.tons for u in dsc if u.phase_count == 1) == pytest.approx(6.0)


def test_gas_heating_brackets(catalog):
    units = _units(catalog, "DSG", 8.5)
    assert sorted({u.heating_btu for u in units}) == [130000, 140000, 150000]
    assert {u.voltage for u in units} == {"208-230", "460", "575"}
    assert len(units) == 9


def test_heat_pump_electric_heat(catalog):
    assert {u.electric_heat_kw for u in _units(catalog, "DSH_3to6")} == {10.0}
    assert {u.electric_heat_kw for u in _units(catalog, "DSH_7p5to10")} == {20.0}
    assert all(u.heating_btu is None for u in _units(catalog, "DHH"))


def test_ratings_by_tonnage_bracket(catalog):
    small = _units(catalog, "DSC", 3.0)[0]
    large = _units(catalog, "DSC", 12.5)[0]
    assert small.seer2 == pytest.approx(14.0)
    assert large.seer2 is None
    assert large.ieer == pytest.approx(16.7)
    assert _units(catalog, "DHH", 4.0)[0].hspf2 == pytest.approx(10.5)


def test_units_carry_schema_attributes(catalog):
    unit = catalog[0]
    assert unit.manufacturer == "Daikin"
    assert unit.refrigerant == "R-32"
    assert unit.cooling_btu == int(unit.tons * 12000)


def test_generation_is_deterministic(schema, catalog):
    assert [u.model_number for u in generate_catalog(schema)] == \
        [u.model_number for u in catalog]


def test_load_catalog_round_trip(tmp_path, catalog):
    path = tmp_path / "catalog.json"
    path.write_text(dump_catalog(catalog[:5]), encoding="utf-8")
    loaded = load_catalog(path)
    assert [u.model_number for u in loaded] == [u.model_number for u in catalog[:5]]


def test_load_catalog_accepts_bare_list(tmp_path, catalog):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps([catalog[0].model_dump(mode="json")]), encoding="utf-8")
    assert load_catalog(path)[0] == catalog[0]


@pytest.mark.parametrize("content", ["{broken", '[{"model_number": "X"}]'])
def test_load_catalog_rejects_bad_documents(tmp_path, content):
    path = tmp_path / "catalog.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(CatalogLoadError):
        load_catalog(path)


def test_load_catalog_missing_file(tmp_path):
    with pytest.raises(CatalogLoadError):
        load_catalog(tmp_path / "absent.json")
