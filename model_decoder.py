"""
HVAC Replacement Expert — Model Number Decoder
model_decoder.py

Two decoders over bare model strings:
  1. Manufacturer rule table: ordered (pattern, meta) pairs, first
     accepted match wins. Only attributes the string actually encodes
     are reported; nothing is filled from defaults.
  2. Schema-aware parser for position-coded vendor strings produced by
     the builder (parse_model), the inverse of model_builder.build.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from models import (
    CanonicalSpec, FieldProvenance, FieldSource, InvalidPositionCode,
    ParsedModel, SchemaViolation, SystemType, UnknownFamily, tons_to_btu,
)
from schema_store import Family, MasterSchema
from text_normalizer import casefold_for_match

logger = logging.getLogger(__name__)

# ============================================================
# Manufacturer Rule Table
# ============================================================

# Nominal sizes in thousands of BTU/h
RESIDENTIAL_SIZES = {18, 24, 30, 36, 42, 48, 60}
PACKAGED_SIZES = RESIDENTIAL_SIZES | {72, 90, 102, 120, 150, 180, 240, 300}
MINI_SPLIT_SIZES = {6, 9, 12, 15, 18, 24, 30, 36, 42, 48}
# LG encodes hundreds of BTU/h: 090 = 9,000
LG_SIZES = {90, 120, 180, 240, 300, 360}

_HP = SystemType.HEAT_PUMP
_GE = SystemType.GAS_ELECTRIC
_AC = SystemType.STRAIGHT_AC

MODEL_FAMILY_PATTERNS: list[tuple[str, dict[str, Any]]] = [
    # York split systems: YCJF36S41S2, YHJF48S41S2 (listed before Goodman/Trane)
    (r'^(?P<series>Y[CH]J[A-Z])(?P<size>\d{2})[A-Z]', {
        'manufacturer': 'York',
        'size_scale': 1000,
        'valid_sizes': RESIDENTIAL_SIZES,
        'system_map': {'YC': _AC, 'YH': _HP},
        'confidence': 0.88,
    }),
    # York packaged: ZF060N10, ZH120C00, ZJ090...
    (r'^(?P<series>Z[FHJR])(?P<size>\d{3})[A-Z]', {
        'manufacturer': 'York',
        'size_scale': 1000,
        'valid_sizes': PACKAGED_SIZES,
        'system_map': {'ZF': _GE, 'ZH': _HP, 'ZJ': _AC, 'ZR': _AC},
        'confidence': 0.85,
    }),
    # Trane split: TWR036A1000AA, 4TTR6036J1000AA, 4TWA4048A3000
    (r'^[24]?(?P<series>TT[ABRX]|TW[AERX]|TUD)(?P<eff>\d)?(?P<size>\d{3})(?P<vletter>[A-Z])(?P<vdigit>\d)', {
        'manufacturer': 'Trane',
        'size_scale': 1000,
        'valid_sizes': RESIDENTIAL_SIZES,
        'system_map': {'TT': _AC, 'TW': _HP, 'TU': _GE},
        'voltage_group': 'vdigit',
        'voltage_map': {'1': ('208-230', 1), '3': ('460', 3), '4': ('460', 3)},
        'confidence': 0.92,
    }),
    # Trane packaged: YSC060E3, WSC090A4, TSC120...
    (r'^(?P<series>YSC|YHC|WSC|TSC|THC)(?P<size>\d{3})[A-Z](?P<vdigit>[34W])', {
        'manufacturer': 'Trane',
        'size_scale': 1000,
        'valid_sizes': PACKAGED_SIZES,
        'system_map': {'Y': _GE, 'W': _HP, 'T': _AC},
        'voltage_group': 'vdigit',
        'voltage_map': {'3': ('208-230', 3), '4': ('460', 3), 'W': ('575', 3)},
        'confidence': 0.88,
    }),
    # Goodman / Amana / Daikin residential split: GSZ160361A1, DSXC160481
    (r'^(?P<series>GSZ|GSX|ASZ|ASX|DSZC|DSXC)(?P<eff>\d{2})(?P<size>\d{3})(?P<vdigit>[134])', {
        'manufacturer_map': {'G': 'Goodman', 'A': 'Amana', 'D': 'Daikin'},
        'size_scale': 1000,
        'valid_sizes': RESIDENTIAL_SIZES,
        'system_map': {'GSZ': _HP, 'GSX': _AC, 'ASZ': _HP, 'ASX': _AC,
                       'DSZ': _HP, 'DSX': _AC},
        'voltage_group': 'vdigit',
        'voltage_map': {'1': ('208-230', 1), '3': ('208-230', 3), '4': ('460', 3)},
        'seer_group': 'eff',
        'confidence': 0.9,
    }),
    # Goodman packaged: GPG1636090M41, GPH1448M41
    (r'^(?P<series>GPG|GPH|GPC|APG)(?P<eff>\d{2})(?P<size>\d{2})(?P<heat>\d{3})?', {
        'manufacturer_map': {'G': 'Goodman', 'A': 'Amana'},
        'size_scale': 1000,
        'valid_sizes': RESIDENTIAL_SIZES,
        'system_map': {'GPG': _GE, 'APG': _GE, 'GPH': _HP, 'GPC': _AC},
        'heating_group': 'heat',
        'seer_group': 'eff',
        'confidence': 0.88,
    }),
    # Lennox: XP16-036-230, XC21-048-230, ML14XC1-036-230
    (r'^(?P<series>XP|XC|EL|ML|SL|HP)(?P<eff>\d{2})[A-Z0-9]*-(?P<size>\d{3})-(?P<volt>\d{3})', {
        'manufacturer': 'Lennox',
        'size_scale': 1000,
        'valid_sizes': RESIDENTIAL_SIZES,
        'system_map': {'XP': _HP, 'HP': _HP, 'XC': _AC, 'EL': _AC,
                       'ML': _AC, 'SL': _AC},
        'voltage_group': 'volt',
        'voltage_map': {'230': ('208-230', 1), '460': ('460', 3)},
        'seer_group': 'eff',
        'confidence': 0.9,
    }),
    # Carrier split and packaged: 38HDR048, 24ACC636A003, 25HCB648, 48TCED08
    (r'^(?P<series>2[45]A[A-Z]{1,2}|25H[A-Z]{1,2}|38[A-Z]{2,3}|48[A-Z]{2,3}|50[A-Z]{2,3})(?P<eff>\d)?(?P<size>\d{2,3})', {
        'manufacturer': 'Carrier',
        'size_scale': 1000,
        'valid_sizes': PACKAGED_SIZES,
        'system_map': {'24': _AC, '25': _HP, '38': _AC, '48': _GE, '50': _AC},
        'confidence': 0.85,
    }),
    # Bryant: 113ANA036, 215ANA048
    (r'^(?P<series>[12]\d{2}[A-Z]{3})(?P<size>\d{3})', {
        'manufacturer': 'Bryant',
        'size_scale': 1000,
        'valid_sizes': RESIDENTIAL_SIZES,
        'system_map': {'1': _AC, '2': _HP},
        'confidence': 0.8,
    }),
    # Rheem / Ruud: RP1448AJ1NA, RA1636AJ1NA, UA1624...
    (r'^(?P<series>RP|RA|RQP|RGE|RKN|UP|UA|UGR)(?P<eff>\d{2})(?P<size>\d{2})[A-Z]', {
        'manufacturer_map': {'R': 'Rheem', 'U': 'Ruud'},
        'size_scale': 1000,
        'valid_sizes': RESIDENTIAL_SIZES,
        'system_map': {'RP': _HP, 'RQ': _HP, 'UP': _HP, 'RA': _AC, 'UA': _AC,
                       'RG': _GE, 'RK': _GE, 'UG': _GE},
        'seer_group': 'eff',
        'confidence': 0.85,
    }),
    # LG mini-split: LSU090HSV4, LSN120HV4
    (r'^L(?P<series>S[NU]|A[NU]|U[NU])(?P<size>\d{3})(?P<mode>[HC])', {
        'manufacturer': 'LG',
        'size_scale': 100,
        'valid_sizes': LG_SIZES,
        'mode_map': {'H': _HP, 'C': _AC},
        'confidence': 0.85,
    }),
    # Mitsubishi: MSZ-FE09NA, MUZ-GL15NA, PUZ-A36NHA7, MSY-GL12NA
    (r'^(?P<series>MSZ|MUZ|MSY|MUY|MXZ|PUZ|PUY|SUZ|SEZ|PKA|PLA)-?(?P<line>[A-Z]{1,2})(?P<size>\d{2})', {
        'manufacturer': 'Mitsubishi',
        'size_scale': 1000,
        'valid_sizes': MINI_SPLIT_SIZES,
        'system_map': {'MSZ': _HP, 'MUZ': _HP, 'MXZ': _HP, 'PUZ': _HP,
                       'SUZ': _HP, 'MSY': _AC, 'MUY': _AC, 'PUY': _AC},
        'confidence': 0.85,
    }),
]

_COMPILED_PATTERNS = [
    (re.compile(pat), meta) for pat, meta in MODEL_FAMILY_PATTERNS
]


@dataclass
class ModelResolution:
    """Result of resolving a model number to a canonical specification."""
    model_number: str
    manufacturer: str
    spec: CanonicalSpec
    confidence: float
    matched_pattern: Optional[str] = None
    family: Optional[str] = None


def clean_model_number(model: str) -> str:
    return re.sub(r'\s+', '', casefold_for_match(model))


def _lookup_prefix(mapping: dict[str, Any], key: str) -> Any:
    """Value for the longest mapping key that prefixes key."""
    for prefix in sorted(mapping, key=len, reverse=True):
        if key.startswith(prefix):
            return mapping[prefix]
    return None


def _apply_rule(model: str, m: re.Match, pattern: str,
                meta: dict[str, Any]) -> Optional[ModelResolution]:
    groups = m.groupdict()
    series = groups.get('series') or ''

    size_code = groups.get('size')
    if size_code is None or int(size_code) not in meta['valid_sizes']:
        logger.debug(f"Rule {pattern!r} rejected {model}: size {size_code!r} unknown")
        return None
    btu = int(size_code) * meta['size_scale']

    if 'manufacturer_map' in meta:
        manufacturer = _lookup_prefix(meta['manufacturer_map'], series)
    else:
        manufacturer = meta['manufacturer']
    confidence = meta['confidence']
    rule = f"model:{manufacturer}"

    values: dict[str, Any] = {'cooling_btu': btu}

    if 'mode_map' in meta:
        values['system_type'] = meta['mode_map'].get(groups.get('mode'))
    elif 'system_map' in meta:
        values['system_type'] = _lookup_prefix(meta['system_map'], series)

    vgroup = meta.get('voltage_group')
    if vgroup and groups.get(vgroup) in meta.get('voltage_map', {}):
        voltage, phase = meta['voltage_map'][groups[vgroup]]
        values['voltage'] = voltage
        values['phase_count'] = phase

    sgroup = meta.get('seer_group')
    if sgroup and groups.get(sgroup):
        seer = int(groups[sgroup])
        if 10 <= seer <= 30:
            values['seer'] = float(seer)

    hgroup = meta.get('heating_group')
    if hgroup and groups.get(hgroup):
        heat = int(groups[hgroup]) * 1000
        if heat > 0:
            values['heating_btu'] = heat

    values = {k: v for k, v in values.items() if v is not None}
    provenance = {
        k: FieldProvenance(source=FieldSource.DECODED, confidence=confidence, rule=rule)
        for k in list(values) + ['manufacturer', 'model_number']
    }
    spec = CanonicalSpec(
        manufacturer=manufacturer,
        model_number=model,
        provenance=provenance,
        **values,
    )
    return ModelResolution(
        model_number=model,
        manufacturer=manufacturer,
        spec=spec,
        confidence=confidence,
        matched_pattern=pattern,
    )


def decode_model_number(model: str,
                        schema: Optional[MasterSchema] = None) -> Optional[ModelResolution]:
    """
    Resolve a model string. Position-coded strings for the loaded schema
    are parsed exactly; everything else goes through MODEL_FAMILY_PATTERNS.
    Returns None when no rule accepts the string.
    """
    model = clean_model_number(model)
    if not model:
        return None

    if schema is not None and len(model) == schema.model_length \
            and schema.families_by_prefix(model[:3]):
        try:
            parsed = parse_model(model, schema)
        except SchemaViolation as e:
            logger.debug(f"Schema parse failed for {model}: {e.message}")
        else:
            return ModelResolution(
                model_number=model,
                manufacturer=schema.manufacturer,
                spec=parsed.spec,
                confidence=1.0,
                matched_pattern='schema',
                family=parsed.family,
            )

    for regex, meta in _COMPILED_PATTERNS:
        m = regex.match(model)
        if not m:
            continue
        res = _apply_rule(model, m, regex.pattern, meta)
        if res:
            logger.debug(f"Decoded {model} as {res.manufacturer} ({res.spec.cooling_btu} BTU)")
            return res
    logger.info(f"No decoding rule accepted model number {model}")
    return None

# ============================================================
# Schema-Aware Parser
# ============================================================

def spec_from_codes(family: Family, codes: dict[str, str], schema: MasterSchema,
                    source: FieldSource, rule: str,
                    model_number: Optional[str] = None) -> CanonicalSpec:
    """CanonicalSpec for a complete set of family position codes."""
    values: dict[str, Any] = {
        'manufacturer': schema.manufacturer or None,
        'family': family.name,
        'system_type': family.system_type,
        'efficiency': family.efficiency,
        'refrigerant': schema.refrigerant,
    }
    if model_number:
        values['model_number'] = model_number

    accessories: dict[str, str] = {}
    for pos in schema.family_positions(family):
        code = codes.get(pos.name)
        if code is None:
            continue
        meaning = pos.meaning(code)
        if pos.name == 'capacity':
            values['capacity_tons'] = float(meaning)
            values['cooling_btu'] = tons_to_btu(float(meaning))
        elif pos.name == 'voltage':
            values['voltage'] = meaning['voltage']
            values['phase_count'] = meaning['phase']
        elif pos.name == 'gas_btu':
            values['heating_btu'] = int(meaning)
        elif pos.name == 'electric_heat':
            if code != pos.blank:
                values['electric_heat_kw'] = float(meaning)
        elif pos.options and code != pos.blank:
            accessories[pos.name] = code

    values = {k: v for k, v in values.items() if v is not None}
    provenance = {
        k: FieldProvenance(source=source, confidence=1.0, rule=rule)
        for k in values
    }
    return CanonicalSpec(accessories=accessories, provenance=provenance, **values)


def _select_family(model: str, schema: MasterSchema) -> Family:
    candidates = schema.families_by_prefix(model[:3])
    if not candidates:
        raise UnknownFamily(f"No family with series prefix {model[:3]!r}", field="family")
    if len(candidates) == 1:
        return candidates[0]
    cap = schema.position('capacity')
    code = model[cap.start:cap.end]
    for fam in candidates:
        if fam.allows('capacity', code):
            return fam
    raise InvalidPositionCode(
        f"Capacity code {code!r} not offered by any {model[:3]} family",
        field='capacity')


def parse_model(model: str, schema: MasterSchema) -> ParsedModel:
    """Slice a position-coded model string back into codes and a spec."""
    model = clean_model_number(model)
    if len(model) != schema.model_length:
        raise InvalidPositionCode(
            f"Model {model!r} is {len(model)} characters, expected {schema.model_length}",
            field='model_number')

    family = _select_family(model, schema)
    codes: dict[str, str] = {}
    meanings: dict[str, Any] = {}
    for pos in schema.family_positions(family):
        code = model[pos.start:pos.end]
        if not pos.has_code(code):
            raise InvalidPositionCode(
                f"Unknown {pos.name} code {code!r} in {model}", field=pos.name)
        codes[pos.name] = code
        meanings[pos.name] = pos.meaning(code)

    spec = spec_from_codes(family, codes, schema, FieldSource.DECODED,
                           rule=f"schema:{family.name}", model_number=model)
    return ParsedModel(model_number=model, family=family.name, codes=codes,
                       meanings=meanings, spec=spec)
