"""
HVAC Replacement Expert — Data Plate Decoder
data_plate_decoder.py

Turns normalized OCR text from an equipment data plate into a
CanonicalSpec. Each field group is an ordered rule table; the first
rule whose extractor accepts its match wins, so specific patterns must
be listed before generic ones.

Quality gates:
  - confidence < MIN_CONFIDENCE or text < MIN_TEXT_CHARS → success=False
    with no specification at all
  - confidence < LOW_QUALITY_CONFIDENCE → warning, decode continues
"""
from __future__ import annotations
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from models import (
    CanonicalSpec, DecodeResult, Diagnostic, DiagnosticCode,
    FieldProvenance, FieldSource, SystemType,
    normalize_voltage, parse_electrical_notation, parse_number, parse_refrigerant,
)
from model_decoder import decode_model_number
from schema_store import MasterSchema
from text_normalizer import normalize

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.2
MIN_TEXT_CHARS = 5
LOW_QUALITY_CONFIDENCE = 0.7
# Below this a number next to TON is tonnage; at or above, with BTU, it is BTU/h
TONNAGE_BTU_THRESHOLD = 50

# ============================================================
# Rule Table Plumbing
# ============================================================

Extractor = Callable[[re.Match], Optional[dict[str, Any]]]


@dataclass(frozen=True)
class ExtractionRule:
    name: str
    pattern: re.Pattern
    extract: Extractor


@dataclass(frozen=True)
class FieldGroup:
    name: str
    targets: tuple[str, ...]
    rules: list[ExtractionRule]


def _rule(name: str, pattern: str, extract: Extractor) -> ExtractionRule:
    return ExtractionRule(name, re.compile(pattern, re.IGNORECASE | re.MULTILINE), extract)


def _positive(v: Optional[float]) -> bool:
    return v is not None and v > 0

# ============================================================
# Extractors
# ============================================================

def _brand(name: str) -> Extractor:
    return lambda m: {'manufacturer': name}


def _model(m: re.Match) -> Optional[dict[str, Any]]:
    value = m.group(1).upper().strip('-')
    if len(value) < 6 or not re.search(r'\d', value) or not re.search(r'[A-Z]', value):
        return None
    return {'model_number': value}


def _serial(m: re.Match) -> Optional[dict[str, Any]]:
    value = m.group(1).upper()
    if not re.search(r'\d', value):
        return None
    return {'serial_number': value}


def _classify_capacity(number: str, unit: str) -> Optional[dict[str, Any]]:
    v = parse_number(number)
    if not _positive(v):
        return None
    unit = unit.upper()
    if unit.startswith('TON'):
        return {'capacity_tons': v} if v < TONNAGE_BTU_THRESHOLD else None
    if unit == 'MBH':
        btu = int(v * 1000)
        return {'cooling_btu': btu} if btu >= 1000 else None
    return {'cooling_btu': int(v)} if v >= TONNAGE_BTU_THRESHOLD else None


def _capacity_with_unit(m: re.Match) -> Optional[dict[str, Any]]:
    return _classify_capacity(m.group(1), m.group(2))


def _capacity_btu(m: re.Match) -> Optional[dict[str, Any]]:
    return _classify_capacity(m.group(1), 'BTU')


def _capacity_tons(m: re.Match) -> Optional[dict[str, Any]]:
    return _classify_capacity(m.group(1), 'TON')


def _heating(m: re.Match) -> Optional[dict[str, Any]]:
    v = parse_number(m.group(1))
    unit = (m.group(2) if m.lastindex and m.lastindex >= 2 else 'BTU') or 'BTU'
    if not _positive(v):
        return None
    btu = int(v * 1000) if unit.upper() == 'MBH' else int(v)
    return {'heating_btu': btu} if btu >= 1000 else None


def _notation(m: re.Match) -> Optional[dict[str, Any]]:
    return parse_electrical_notation(m.group(0)) or None


def _electrical(m: re.Match) -> Optional[dict[str, Any]]:
    voltage = normalize_voltage(m.group(1))
    if voltage is None:
        return None
    result: dict[str, Any] = {'voltage': voltage}
    groups = m.groups()
    if len(groups) >= 2 and groups[1]:
        result['phase_count'] = int(groups[1])
    if len(groups) >= 3 and groups[2]:
        result['frequency_hz'] = int(groups[2])
    return result


def _phase(m: re.Match) -> Optional[dict[str, Any]]:
    return {'phase_count': int(m.group(1))}


def _frequency(m: re.Match) -> Optional[dict[str, Any]]:
    return {'frequency_hz': int(m.group(1))}


def _rating(field: str) -> Extractor:
    def extract(m: re.Match) -> Optional[dict[str, Any]]:
        v = parse_number(m.group(1))
        if v is None or not 5 <= v <= 40:
            return None
        return {field: v}
    return extract


def _refrigerant(m: re.Match) -> Optional[dict[str, Any]]:
    value = parse_refrigerant(m.group(1))
    return {'refrigerant': value} if value else None


def _compressor(m: re.Match) -> Optional[dict[str, Any]]:
    return {'compressor_type': m.group(1).capitalize()}


def _system(system_type: SystemType) -> Extractor:
    return lambda m: {'system_type': system_type}


def _month_year(m: re.Match) -> Optional[dict[str, Any]]:
    month = int(m.group(1))
    year = int(m.group(2))
    if not 1 <= month <= 12:
        return None
    if year < 100:
        year += 2000 if year < 50 else 1900
    return {'manufacture_date': f"{year:04d}-{month:02d}"}


def _year(m: re.Match) -> Optional[dict[str, Any]]:
    return {'manufacture_date': m.group(1)}

# ============================================================
# Rule Tables (order = precedence)
# ============================================================

_NUM = r'(\d[\d,]*(?:\.\d+)?)'
_VOLT = r'(\d{3}(?:\s*[-/]\s*\d{3})?)'
_NOTATION_TAIL = r'\s*V?\s*[-/]\s*([13])(?!\d)\s*(?:[-/]\s*(50|60)\b)?'

BRAND_PATTERNS: list[tuple[str, str]] = [
    (r'AMERICAN\s+STANDARD', 'American Standard'),
    (r'\bTRANE\b', 'Trane'),
    (r'\bBRYANT\b', 'Bryant'),
    (r'\bCARRIER\b', 'Carrier'),
    (r'\bYORK\b', 'York'),
    (r'\bLENNOX\b', 'Lennox'),
    (r'\bAMANA\b', 'Amana'),
    (r'\bGOODMAN\b', 'Goodman'),
    (r'\bDAIKIN\b', 'Daikin'),
    (r'\bRUUD\b', 'Ruud'),
    (r'\bRHEEM\b', 'Rheem'),
    (r'\bMITSUBISHI\b', 'Mitsubishi'),
    (r'\bLG\b', 'LG'),
    (r'\bHEIL\b', 'Heil'),
    (r'\bPAYNE\b', 'Payne'),
    (r'\bCOLEMAN\b', 'Coleman'),
]

FIELD_GROUPS: list[FieldGroup] = [
    FieldGroup('manufacturer', ('manufacturer',), [
        _rule(f"brand:{name}", pat, _brand(name)) for pat, name in BRAND_PATTERNS
    ]),
    FieldGroup('model_number', ('model_number',), [
        _rule('model:labeled_number',
              r'\bMODEL\s*(?:NUMBER|NO\.?|#)\s*:?\s*([A-Z0-9][A-Z0-9-]{4,24})', _model),
        _rule('model:m_n', r'\bM/N\s*:?\s*([A-Z0-9][A-Z0-9-]{4,24})', _model),
        _rule('model:label',
              r'\bMODEL(?!\s*(?:NUMBER|NO\b|NO\.|#))\s*:?\s*([A-Z0-9][A-Z0-9-]{4,24})', _model),
        _rule('model:standalone_line', r'^([A-Z]{2,4}\d{3}[A-Z0-9]{3,10})$', _model),
    ]),
    FieldGroup('serial_number', ('serial_number',), [
        _rule('serial:labeled_number',
              r'\bSERIAL\s*(?:NUMBER|NO\.?|#)\s*:?\s*([A-Z0-9]{6,20})', _serial),
        _rule('serial:s_n', r'\bS/N\s*:?\s*([A-Z0-9]{6,20})', _serial),
        _rule('serial:label',
              r'\bSERIAL(?!\s*(?:NUMBER|NO\b|NO\.|#))\s*:?\s*([A-Z0-9]{6,20})', _serial),
    ]),
    FieldGroup('capacity', ('capacity_tons', 'cooling_btu'), [
        _rule('capacity:cooling_capacity',
              r'\bCOOLING\s+CAPACITY\s*:?\s*' + _NUM + r'\s*(BTU|MBH|TONS?)\b', _capacity_with_unit),
        _rule('capacity:btu_cool',
              _NUM + r'\s*BTU(?:/H(?:R)?)?\s*COOL(?:ING)?\b', _capacity_btu),
        _rule('capacity:btu_hr_cool_label',
              r'\bBTU/?H(?:R)?\s+COOL(?:ING)?\s*:?\s*' + _NUM, _capacity_btu),
        _rule('capacity:capacity_label',
              r'(?<!HEATING )\bCAPACITY\s*:?\s*' + _NUM + r'\s*(BTU|MBH|TONS?)\b', _capacity_with_unit),
        _rule('capacity:tonnage_label', r'\bTONNAGE\s*:?\s*' + _NUM, _capacity_tons),
        _rule('capacity:bare_tons', r'\b' + _NUM + r'\s*-?\s*TONS?\b', _capacity_tons),
    ]),
    FieldGroup('heating', ('heating_btu',), [
        _rule('heating:labeled',
              r'\bHEATING\s+(?:CAPACITY|INPUT|OUTPUT)\s*:?\s*' + _NUM + r'\s*(BTU|MBH)', _heating),
        _rule('heating:input',
              r'\b(?:HEAT\s+)?INPUT\s*:?\s*' + _NUM + r'\s*(BTU|MBH)', _heating),
        _rule('heating:btu_heat', _NUM + r'\s*BTU(?:/H(?:R)?)?\s*HEAT', _heating),
    ]),
    FieldGroup('electrical', ('voltage',), [
        _rule('electrical:voltage_slash',
              r'\b(?:VOLTAGE|VOLTS)\s*:?\s*' + _VOLT + _NOTATION_TAIL, _notation),
        _rule('electrical:supply_slash',
              r'\b(?:SUPPLY|ELECTRICAL|POWER)(?:\s+VOLTAGE)?\s*:?\s*' + _VOLT + _NOTATION_TAIL,
              _notation),
        _rule('electrical:volts_phase',
              _VOLT + r'\s*V(?:OLTS?|AC)?\s*,?\s*([13])\s*(?:φ|PH\b|PHASE\b)(?:\s*,?\s*(50|60)\s*HZ)?',
              _electrical),
        _rule('electrical:bare_notation',
              r'\b(\d{3}(?:-\d{3})?)[-/]([13])[-/](50|60)\b', _notation),
        _rule('electrical:labeled_voltage',
              r'\b(?:SUPPLY\s+VOLTAGE|VOLTAGE|VOLTS|ELECTRICAL)\s*:?\s*' + _VOLT, _electrical),
    ]),
    FieldGroup('phase', ('phase_count',), [
        _rule('phase:label', r'\bPHASE\s*:?\s*([13])\b', _phase),
        _rule('phase:symbol', r'\b([13])φ', _phase),
    ]),
    FieldGroup('frequency', ('frequency_hz',), [
        _rule('frequency:hz', r'\b(50|60)\s*HZ\b', _frequency),
    ]),
    FieldGroup('seer2', ('seer2',), [
        _rule('rating:seer2', r'\bSEER2\s*:?\s*(\d{1,2}(?:\.\d+)?)', _rating('seer2')),
    ]),
    FieldGroup('seer', ('seer',), [
        _rule('rating:seer', r'\bSEER(?!2)\s*:?\s*(\d{1,2}(?:\.\d+)?)', _rating('seer')),
    ]),
    FieldGroup('eer2', ('eer2',), [
        _rule('rating:eer2', r'\bEER2\s*:?\s*(\d{1,2}(?:\.\d+)?)', _rating('eer2')),
    ]),
    FieldGroup('eer', ('eer',), [
        _rule('rating:eer', r'\bEER(?!2)\s*:?\s*(\d{1,2}(?:\.\d+)?)', _rating('eer')),
    ]),
    FieldGroup('hspf2', ('hspf2',), [
        _rule('rating:hspf2', r'\bHSPF2\s*:?\s*(\d{1,2}(?:\.\d+)?)', _rating('hspf2')),
    ]),
    FieldGroup('hspf', ('hspf',), [
        _rule('rating:hspf', r'\bHSPF(?!2)\s*:?\s*(\d{1,2}(?:\.\d+)?)', _rating('hspf')),
    ]),
    FieldGroup('refrigerant', ('refrigerant',), [
        _rule('refrigerant:label',
              r'\bREFRIGERANT(?:\s+TYPE)?\s*:?\s*(R-?\s*\d{2,3}[A-Z]?)', _refrigerant),
        _rule('refrigerant:token', r'\b(R-?(?:410A|454B|407C|134A|22|32))\b', _refrigerant),
    ]),
    FieldGroup('compressor_type', ('compressor_type',), [
        _rule('compressor:keyword', r'\b(SCROLL|RECIPROCATING|ROTARY|SCREW)\b', _compressor),
    ]),
    FieldGroup('system_type', ('system_type',), [
        _rule('system:heat_pump', r'\bHEAT\s*PUMP\b', _system(SystemType.HEAT_PUMP)),
        _rule('system:gas',
              r'\b(?:GAS\s*/\s*ELECTRIC|GAS\s+HEAT|GAS\s+FURNACE|NATURAL\s+GAS|LP\s+GAS)\b',
              _system(SystemType.GAS_ELECTRIC)),
        _rule('system:air_conditioner',
              r'\b(?:AIR\s+CONDITION(?:ER|ING)|COOLING\s+ONLY|CONDENSING\s+UNIT)\b',
              _system(SystemType.STRAIGHT_AC)),
    ]),
    FieldGroup('manufacture_date', ('manufacture_date',), [
        _rule('date:mfg_date',
              r'\b(?:MFG\.?\s*DATE|DATE\s+OF\s+MFG|MANUFACTURED?(?:\s+DATE)?)\s*:?\s*'
              r'(\d{1,2})\s*[/-]\s*(\d{4}|\d{2})\b', _month_year),
        _rule('date:date_label', r'\bDATE\s*:?\s*(\d{1,2})[/-](\d{4}|\d{2})\b', _month_year),
        _rule('date:year_label', r'\b(?:MFG\s+)?YEAR\s*:?\s*((?:19|20)\d{2})\b', _year),
    ]),
]

# Missing any of these yields a MissingField warning
EXPECTED_FIELDS: list[tuple[str, tuple[str, ...]]] = [
    ('model_number', ('model_number',)),
    ('manufacturer', ('manufacturer',)),
    ('capacity', ('capacity_tons', 'cooling_btu')),
    ('voltage', ('voltage',)),
]

# ============================================================
# Decoder
# ============================================================

def clamp_confidence(confidence: Optional[float]) -> float:
    if confidence is None or not math.isfinite(confidence):
        return 0.0
    return max(0.0, min(1.0, float(confidence)))


def _suggestions(confidence: float, missing: list[str]) -> list[str]:
    tips = []
    if confidence < LOW_QUALITY_CONFIDENCE:
        tips.append("Retake the photo straight-on, filling the frame with the data plate")
        tips.append("Improve lighting and avoid glare on the plate")
    if 'model_number' in missing:
        tips.append("Enter the model number manually from the data plate")
    if 'capacity' in missing:
        tips.append("Capacity is usually encoded in the model number; decode it directly")
    if 'voltage' in missing:
        tips.append("Check the electrical rating line (e.g. 208-230/3/60)")
    return tips


class DataPlateDecoder:
    """Rule-table decoder over normalized data plate text."""

    def __init__(self, schema: Optional[MasterSchema] = None,
                 groups: Optional[list[FieldGroup]] = None):
        self.schema = schema
        self.groups = groups if groups is not None else FIELD_GROUPS

    def extract_fields(self, text: str, confidence: float
                       ) -> tuple[dict[str, Any], dict[str, FieldProvenance], dict[str, str]]:
        values: dict[str, Any] = {}
        provenance: dict[str, FieldProvenance] = {}
        raw: dict[str, str] = {}

        for group in self.groups:
            if all(t in values for t in group.targets):
                continue
            for rule in group.rules:
                m = rule.pattern.search(text)
                if not m:
                    continue
                found = rule.extract(m)
                if not found:
                    logger.debug(f"Rule {rule.name} matched {m.group(0)!r} but was rejected")
                    continue
                for key, val in found.items():
                    if key in values:
                        continue
                    values[key] = val
                    provenance[key] = FieldProvenance(
                        source=FieldSource.DECODED, confidence=confidence, rule=rule.name)
                raw[group.name] = m.group(0)
                break
        return values, provenance, raw

    def _merge_model_decode(self, values: dict[str, Any],
                            provenance: dict[str, FieldProvenance]) -> None:
        res = decode_model_number(values['model_number'], self.schema)
        if res is None:
            return
        for key in res.spec.populated_fields():
            if key in values or key in ('accessories', 'model_number'):
                continue
            values[key] = getattr(res.spec, key)
            provenance[key] = res.spec.provenance.get(key) or FieldProvenance(
                source=FieldSource.DECODED, confidence=res.confidence,
                rule=f"model:{res.manufacturer}")

    def decode(self, text: str, confidence: float) -> DecodeResult:
        conf = clamp_confidence(confidence)
        text = text or ''
        length = len(text.strip())

        if conf < MIN_CONFIDENCE or length < MIN_TEXT_CHARS:
            if conf < MIN_CONFIDENCE:
                diag = Diagnostic.error(
                    DiagnosticCode.LOW_CONFIDENCE_INPUT, 'confidence',
                    f"OCR confidence {conf:.2f} is below the {MIN_CONFIDENCE} floor",
                    suggestion="Retake the photo")
            else:
                diag = Diagnostic.error(
                    DiagnosticCode.LOW_CONFIDENCE_INPUT, 'text',
                    f"Only {length} characters were recognized",
                    suggestion="Retake the photo")
            logger.warning(f"Decode aborted: {diag.message}")
            return DecodeResult(
                success=False, spec=None, confidence=conf, text_length=length,
                diagnostics=[diag],
                suggestions=[
                    "Retake the photo with the data plate in focus",
                    "Improve lighting and avoid glare on the plate",
                    "Enter the model number manually",
                ],
            )

        values, provenance, raw = self.extract_fields(text, conf)
        if 'model_number' in values:
            self._merge_model_decode(values, provenance)

        spec = CanonicalSpec(provenance=provenance, **values)

        diagnostics: list[Diagnostic] = []
        missing = [
            name for name, fields in EXPECTED_FIELDS
            if not any(f in values for f in fields)
        ]
        for name in missing:
            diagnostics.append(Diagnostic.warning(
                DiagnosticCode.MISSING_FIELD, name, f"No {name.replace('_', ' ')} found"))
        if conf < LOW_QUALITY_CONFIDENCE:
            diagnostics.append(Diagnostic.warning(
                DiagnosticCode.LOW_QUALITY_INPUT, 'confidence',
                f"Low OCR confidence ({conf:.2f}); verify extracted values",
                suggestion="Retake the photo"))

        logger.info(
            f"Decoded data plate: {len(values)} fields, confidence={conf:.2f}, "
            f"missing={missing}")
        return DecodeResult(
            success=True, spec=spec, confidence=conf, text_length=length,
            raw_fields=raw, diagnostics=diagnostics,
            suggestions=_suggestions(conf, missing),
        )

    def decode_text(self, raw_text: str, confidence: float) -> DecodeResult:
        """Normalize raw OCR output, then decode it."""
        return self.decode(normalize(raw_text), confidence)


def decode(cleaned_text: str, confidence: float,
           schema: Optional[MasterSchema] = None) -> DecodeResult:
    return DataPlateDecoder(schema).decode(cleaned_text, confidence)


def decode_text(raw_text: str, confidence: float,
                schema: Optional[MasterSchema] = None) -> DecodeResult:
    return DataPlateDecoder(schema).decode_text(raw_text, confidence)
