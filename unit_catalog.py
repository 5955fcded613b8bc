"""
HVAC Replacement Expert — Unit Catalog
unit_catalog.py

Expands each family's catalog metadata into concrete orderable units:
  1. Tonnages from the family's allowed capacity codes
  2. Voltages from the family's allowed voltage codes
     (single phase only up to single_phase_max_tons)
  3. One unit per gas heating option for Gas/Electric families,
     a representative electric heat size for heat pumps
  4. SEER2 / EER2 / IEER / HSPF2 by tonnage bracket

Every model number comes out of model_builder, so the catalog is valid
against the schema by construction.
"""
from __future__ import annotations
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Union

from pydantic import TypeAdapter, ValidationError

from models import (
    BuildResult, CatalogLoadError, CatalogUnit, SchemaViolation, SystemType,
)
from model_builder import build_exact
from schema_store import Family, MasterSchema

logger = logging.getLogger(__name__)

_UNITS = TypeAdapter(list[CatalogUnit])

# ============================================================
# Generation
# ============================================================

def _heat_variants(family: Family, tons: float, schema: MasterSchema) -> list[dict[str, str]]:
    """Heat-section codes to build for one tonnage."""
    if family.uses('gas_btu'):
        gas = schema.position('gas_btu')
        options = family.catalog.heating_options(tons)
        if not options:
            logger.warning(f"{family.name}: no gas heating options for {tons:g} T")
        return [{'gas_btu': gas.code_for(btu)} for btu in options
                if gas.code_for(btu) is not None]
    if family.uses('electric_heat') and family.catalog.electric_heat_kw is not None:
        code = schema.position('electric_heat').code_for(family.catalog.electric_heat_kw)
        if code is not None and family.allows('electric_heat', code):
            return [{'electric_heat': code}]
    return [{}]


def _to_unit(result: BuildResult, family: Family, schema: MasterSchema) -> CatalogUnit:
    spec = result.spec
    tons = spec.capacity_tons
    rating = family.catalog.rating_for(tons)
    return CatalogUnit(
        model_number=result.model_number,
        family=family.name,
        manufacturer=schema.manufacturer or "Daikin",
        system_type=family.system_type,
        efficiency=family.efficiency,
        tons=tons,
        cooling_btu=spec.cooling_btu,
        voltage=spec.voltage,
        phase_count=spec.phase_count,
        heating_btu=spec.heating_btu,
        electric_heat_kw=spec.electric_heat_kw,
        refrigerant=schema.refrigerant,
        seer2=rating.seer2 if rating else None,
        eer2=rating.eer2 if rating else None,
        ieer=rating.ieer if rating else None,
        hspf2=rating.hspf2 if rating else None,
    )


def generate_family(family: Family, schema: MasterSchema) -> list[CatalogUnit]:
    voltage = schema.position('voltage')
    units: list[CatalogUnit] = []
    max_single = family.catalog.single_phase_max_tons

    for tons, cap_code in schema.family_ladder(family, 'tons'):
        for volt_code in family.allowed_codes('voltage') or list(voltage.codes):
            phase = voltage.meaning(volt_code)['phase']
            if phase == 1 and max_single is not None and tons > max_single:
                continue
            for heat in _heat_variants(family, tons, schema):
                codes = {'capacity': cap_code, 'voltage': volt_code, **heat}
                try:
                    result = build_exact(family.name, codes, schema)
                except SchemaViolation as e:
                    logger.warning(f"Skipping {family.name} {codes}: {e.message}")
                    continue
                units.append(_to_unit(result, family, schema))
    return units


def generate_catalog(schema: MasterSchema) -> list[CatalogUnit]:
    """All catalog units, in family then tonnage order."""
    units: list[CatalogUnit] = []
    for family in schema.families.values():
        units.extend(generate_family(family, schema))
    by_type = {
        st.value: sum(1 for u in units if u.system_type == st) for st in SystemType
    }
    logger.info(f"Generated catalog: {len(units)} units {by_type}")
    return units

# ============================================================
# External Catalogs
# ============================================================

def load_catalog(path: Union[str, Path]) -> list[CatalogUnit]:
    """
    Read a JSON catalog: either a list of units or {"units": [...]}.
    Raises CatalogLoadError on unreadable or invalid documents.
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogLoadError(f"cannot read catalog {path}: {e}") from e
    if isinstance(raw, dict):
        raw = raw.get("units", [])
    try:
        units = _UNITS.validate_python(raw)
    except ValidationError as e:
        raise CatalogLoadError(f"catalog {path} failed validation: {e}") from e
    logger.info(f"Loaded {len(units)} catalog units from {path}")
    return units


def dump_catalog(units: list[CatalogUnit]) -> str:
    return json.dumps({"units": [u.model_dump(mode="json") for u in units]}, indent=2)


def catalog_from_settings(schema: MasterSchema, catalog_path: Optional[str]) -> list[CatalogUnit]:
    if catalog_path:
        return load_catalog(catalog_path)
    return generate_catalog(schema)


if __name__ == '__main__':
    from config import configure_logging
    from schema_store import get_schema

    configure_logging()
    catalog = generate_catalog(get_schema())
    if len(sys.argv) > 1:
        Path(sys.argv[1]).write_text(dump_catalog(catalog), encoding="utf-8")
        print(f"Wrote {len(catalog)} units to {sys.argv[1]}")
    else:
        for unit in catalog:
            heat = unit.heating_btu or unit.electric_heat_kw or '-'
            print(f"  {unit.model_number}  {unit.family:<12} {unit.tons:>5g} T  "
                  f"{unit.voltage}/{unit.phase_count}  heat={heat}")
