"""
HVAC Replacement Expert — Model Number Builder
model_builder.py

Resolves every schema position of a target family to a code and joins
them into a vendor model string.

Per position, in schema order:
  1. exact code supplied        → must exist in the family's code table
  2. numeric value (laddered)   → nearest ladder step, ties round up,
                                  out-of-range values clamp to the bounds
  3. options tail / accessories → replace or additive merge over defaults
  4. family default             → otherwise the position is unresolvable

Family constraints are checked afterwards by spec_validator; build()
refuses results that do not validate clean.
"""
from __future__ import annotations
import bisect
import logging
import math
from typing import Any, Optional, Union

from models import (
    BuildRequest, BuildResult, CanonicalSpec, ConstraintViolation, Diagnostic,
    DiagnosticCode, FieldProvenance, FieldSource, InvalidPositionCode,
    LadderMatch, MatchKind, MergeMode, ResolvedPosition, Severity,
    UnresolvableSchemaPosition, normalize_voltage,
)
from model_decoder import spec_from_codes
from schema_store import Family, MasterSchema, Position
from spec_validator import validate

logger = logging.getLogger(__name__)

_EPS = 1e-9

# Spec attribute feeding each laddered position
LADDER_SPEC_FIELDS: dict[str, str] = {
    'capacity': 'capacity_tons',
    'gas_btu': 'heating_btu',
    'electric_heat': 'electric_heat_kw',
}

# Spec fields carried by each position, for provenance
_POSITION_FIELDS: dict[str, tuple[str, ...]] = {
    'capacity': ('capacity_tons', 'cooling_btu'),
    'voltage': ('voltage', 'phase_count'),
    'gas_btu': ('heating_btu',),
    'electric_heat': ('electric_heat_kw',),
}

# ============================================================
# Ladder Resolution
# ============================================================

def resolve_on_ladder(value: float, steps: list[tuple[float, str]],
                      dimension: str = '', position: str = '') -> LadderMatch:
    """
    Nearest step to value. Equidistant values resolve to the upper step;
    values outside the ladder clamp to its first or last step.
    """
    if not steps:
        raise UnresolvableSchemaPosition(
            f"No {dimension or position} values available", field=position)
    values = [v for v, _ in steps]
    n = len(values)

    if value < values[0] - _EPS:
        idx, kind = 0, MatchKind.CLAMPED
    elif value > values[-1] + _EPS:
        idx, kind = n - 1, MatchKind.CLAMPED
    else:
        i = bisect.bisect_left(values, value)
        exact = [j for j in (i - 1, i) if 0 <= j < n
                 and math.isclose(values[j], value, rel_tol=0, abs_tol=1e-6)]
        if exact:
            idx, kind = exact[0], MatchKind.EXACT
        else:
            lower, upper = i - 1, i
            d_lo = value - values[lower]
            d_hi = values[upper] - value
            if d_hi <= d_lo + _EPS:
                idx, kind = upper, MatchKind.ROUNDED_UP
            else:
                idx, kind = lower, MatchKind.ROUNDED_DOWN

    return LadderMatch(
        dimension=dimension,
        position=position,
        requested=value,
        resolved=values[idx],
        code=steps[idx][1],
        kind=kind,
        smaller=values[idx - 1] if idx > 0 else None,
        larger=values[idx + 1] if idx < n - 1 else None,
    )

# ============================================================
# Position Helpers
# ============================================================

def _voltage_code(pos: Position, family: Family, voltage: str,
                  phase: Optional[int]) -> str:
    band = normalize_voltage(voltage)
    matches = [
        code for code, meaning in pos.codes.items()
        if family.allows(pos.name, code)
        and meaning.get('voltage') == band
        and (phase is None or meaning.get('phase') == phase)
    ]
    if not matches:
        phase_txt = f"/{phase}φ" if phase else ""
        raise UnresolvableSchemaPosition(
            f"{family.name} is not offered in {voltage}{phase_txt}", field='voltage')
    if len(matches) > 1:
        raise UnresolvableSchemaPosition(
            f"Voltage {voltage} is ambiguous for {family.name}; supply phase_count",
            field='voltage')
    return matches[0]


def _accessory_code(pos: Position, value: Union[bool, str]) -> str:
    if isinstance(value, bool):
        if not value:
            return pos.blank or next(iter(pos.codes))
        others = [c for c in pos.codes if c != pos.blank]
        if len(others) != 1:
            raise InvalidPositionCode(
                f"Accessory {pos.name} has several options; give a code", field=pos.name)
        return others[0]
    code = str(value).strip().upper()
    if pos.has_code(code):
        return code
    by_label = pos.code_for_label(str(value))
    if by_label is not None:
        return by_label
    raise InvalidPositionCode(
        f"Unknown {pos.name} option {value!r}; valid: {sorted(pos.codes)}", field=pos.name)


def _options_codes(request: BuildRequest, family: Family,
                   schema: MasterSchema) -> tuple[dict[str, str], dict[str, str]]:
    """(codes from options_tail, codes from accessories)."""
    options = [p for p in schema.family_positions(family) if p.options]

    tail_codes: dict[str, str] = {}
    if request.options_tail:
        width = sum(p.length for p in options)
        if len(request.options_tail) != width:
            raise InvalidPositionCode(
                f"Options tail must be {width} characters", field='options_tail')
        offset = 0
        for p in options:
            code = request.options_tail[offset:offset + p.length]
            offset += p.length
            if not p.has_code(code):
                raise InvalidPositionCode(
                    f"Unknown {p.name} code {code!r} in options tail", field=p.name)
            tail_codes[p.name] = code

    by_name = {p.name: p for p in options}
    accessory_codes: dict[str, str] = {}
    for name, value in {**request.spec.accessories, **request.accessories}.items():
        pos = by_name.get(name)
        if pos is None:
            raise InvalidPositionCode(
                f"{family.name} has no accessory position {name!r}", field=name)
        accessory_codes[name] = _accessory_code(pos, value)
    return tail_codes, accessory_codes


def _spec_number(spec: CanonicalSpec, attr: str) -> Optional[float]:
    if attr == 'capacity_tons':
        return spec.tonnage()
    return getattr(spec, attr)

# ============================================================
# Resolution & Build
# ============================================================

def resolve(request: BuildRequest, schema: MasterSchema) -> BuildResult:
    """Resolve every position without family validation."""
    spec = request.spec
    family = schema.resolve_family(request.family, spec.tonnage())
    positions = schema.family_positions(family)
    used = {p.name for p in positions}

    stray = [name for name in request.codes if name not in used]
    if stray:
        raise InvalidPositionCode(
            f"{family.name} does not use position(s) {stray}", field=stray[0])

    tail_codes, accessory_codes = _options_codes(request, family, schema)
    diagnostics: list[Diagnostic] = []
    resolved: dict[str, ResolvedPosition] = {}
    matches: dict[str, LadderMatch] = {}

    for pos in positions:
        name = pos.name
        ladder = schema.ladder_for_position(name)
        numeric = None
        if ladder is not None and name in LADDER_SPEC_FIELDS:
            numeric = _spec_number(spec, LADDER_SPEC_FIELDS[name])

        if name in request.codes:
            code = request.codes[name]
            if not pos.has_code(code) or not family.allows(name, code):
                valid = family.allowed_codes(name) or sorted(pos.codes)
                raise InvalidPositionCode(
                    f"{name} code {code!r} is not valid for {family.name}; valid: {valid}",
                    field=name)
            source = 'exact'
        elif numeric is not None:
            dimension = ladder.dimension
            match = resolve_on_ladder(
                numeric, schema.family_ladder(family, dimension), dimension, name)
            matches[name] = match
            code, source = match.code, 'ladder'
            logger.debug(f"{family.name} {name}: {numeric} → {match.resolved} ({match.kind.value})")
            if match.kind == MatchKind.CLAMPED:
                diagnostics.append(Diagnostic.warning(
                    DiagnosticCode.OUT_OF_RANGE_FALLBACK, name,
                    f"Requested {dimension} {numeric:g} is outside {family.name}'s "
                    f"range; clamped to {match.resolved:g}",
                    suggestion="Consider a different family or multiple units"))
        elif name == 'voltage' and spec.voltage:
            code, source = _voltage_code(pos, family, spec.voltage, spec.phase_count), 'voltage'
        elif pos.options and name in accessory_codes:
            code, source = accessory_codes[name], 'options'
        elif pos.options and name in tail_codes:
            code, source = tail_codes[name], 'options'
        elif pos.options and request.merge_mode == MergeMode.REPLACE and pos.blank:
            code, source = pos.blank, 'blank'
        elif name in family.defaults:
            code, source = family.defaults[name], 'default'
        else:
            what = pos.label or name
            raise UnresolvableSchemaPosition(
                f"{family.name} ({family.system_type.value}) requires a value for {what}",
                field=name)

        resolved[name] = ResolvedPosition(code=code, meaning=pos.meaning(code), source=source)

    if spec.heating_btu is not None and 'gas_btu' not in used:
        diagnostics.append(Diagnostic.warning(
            DiagnosticCode.CONSTRAINT_VIOLATION, 'heating_btu',
            f"{family.name} has no gas heat section; heating BTU ignored"))

    codes = {name: rp.code for name, rp in resolved.items()}
    model_number = ''.join(codes[p.name] for p in positions)

    built = spec_from_codes(family, codes, schema, FieldSource.SUPPLIED,
                            rule='builder', model_number=model_number)
    provenance = dict(built.provenance)
    for name, fields in _POSITION_FIELDS.items():
        if name in resolved and resolved[name].source == 'default':
            for f in fields:
                if f in provenance:
                    provenance[f] = FieldProvenance(
                        source=FieldSource.DEFAULTED, rule=f"default:{family.name}")
    built = built.model_copy(update={'provenance': provenance})

    return BuildResult(
        model_number=model_number,
        family=family.name,
        resolved=resolved,
        capacity_match=matches.get('capacity'),
        heat_match=matches.get('gas_btu') or matches.get('electric_heat'),
        diagnostics=diagnostics,
        spec=built,
    )


def build(request: BuildRequest, schema: MasterSchema) -> BuildResult:
    """
    Resolve and validate. Raises a SchemaViolation subclass when no model
    string can be produced; warnings ride along on the result.
    """
    result = resolve(request, schema)
    family = schema.family(result.family)
    issues = validate(result, family, schema)
    errors = [d for d in issues if d.severity == Severity.ERROR]
    if errors:
        logger.info(f"Build for {family.name} rejected: {[d.message for d in errors]}")
        raise ConstraintViolation(
            f"{len(errors)} constraint violation(s) for {family.name}",
            diagnostics=errors)
    logger.info(f"Built {result.model_number} ({family.name})")
    return result


def build_exact(family: str, codes: dict[str, str], schema: MasterSchema,
                **kwargs: Any) -> BuildResult:
    """Shorthand for the exact-code path."""
    return build(BuildRequest(family=family, codes=codes, **kwargs), schema)
