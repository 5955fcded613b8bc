"""
HVAC Replacement Expert — Family Constraint Validator
spec_validator.py

Pure cross-checks of a built result, a parsed model string, or a loose
CanonicalSpec against one family's constraints. Returns diagnostics;
an empty list means fully consistent.
"""
from __future__ import annotations
import logging
from typing import Optional, Union

from models import (
    BuildResult, CanonicalSpec, Diagnostic, DiagnosticCode, ParsedModel,
    SchemaViolation, normalize_voltage,
)
from schema_store import AccessoryRule, Family, MasterSchema

logger = logging.getLogger(__name__)

Validatable = Union[BuildResult, ParsedModel, CanonicalSpec]


def _violation(field: str, message: str) -> Diagnostic:
    return Diagnostic.error(DiagnosticCode.CONSTRAINT_VIOLATION, field, message)

# ============================================================
# Spec → Codes
# ============================================================

def _codes_from_spec(spec: CanonicalSpec, family: Family, schema: MasterSchema,
                     diags: list[Diagnostic]) -> dict[str, str]:
    """Map semantic spec values onto family position codes where possible."""
    codes: dict[str, str] = {}

    tons = spec.tonnage()
    if tons is not None:
        code = schema.position('capacity').code_for(tons)
        if code is None:
            diags.append(_violation(
                'capacity', f"{tons:g} tons has no capacity code in {family.name}"))
        else:
            codes['capacity'] = code

    if spec.voltage is not None and family.uses('voltage'):
        pos = schema.position('voltage')
        band = normalize_voltage(spec.voltage)
        found = [
            c for c, m in pos.codes.items()
            if m.get('voltage') == band
            and (spec.phase_count is None or m.get('phase') == spec.phase_count)
        ]
        allowed = [c for c in found if family.allows('voltage', c)]
        if not found:
            diags.append(_violation(
                'voltage', f"{spec.voltage} ({spec.phase_count or '?'}φ) has no voltage code"))
        elif len(allowed) == 1 or (allowed and spec.phase_count is None):
            codes['voltage'] = allowed[0]
        else:
            codes['voltage'] = found[0]

    if spec.heating_btu is not None and family.uses('gas_btu'):
        code = schema.position('gas_btu').code_for(spec.heating_btu)
        if code is None:
            diags.append(_violation(
                'heating_btu', f"{spec.heating_btu} BTU/h has no gas heat code"))
        else:
            codes['gas_btu'] = code

    if spec.electric_heat_kw is not None and family.uses('electric_heat'):
        code = schema.position('electric_heat').code_for(spec.electric_heat_kw)
        if code is None:
            diags.append(_violation(
                'electric_heat_kw', f"{spec.electric_heat_kw:g} kW has no electric heat code"))
        else:
            codes['electric_heat'] = code

    options = {p.name: p for p in schema.family_positions(family) if p.options}
    for name, code in spec.accessories.items():
        if name not in options:
            diags.append(_violation(
                f"accessories.{name}", f"{family.name} has no accessory {name!r}"))
        elif not options[name].has_code(code):
            diags.append(_violation(
                f"accessories.{name}", f"Unknown {name} code {code!r}"))
    for name, pos in options.items():
        code = spec.accessories.get(name, pos.blank)
        if code is not None and pos.has_code(code):
            codes[name] = code
    return codes

# ============================================================
# Checks
# ============================================================

def _check_allowed(codes: dict[str, str], family: Family) -> list[Diagnostic]:
    diags = []
    for name, code in codes.items():
        if family.uses(name) and not family.allows(name, code):
            diags.append(_violation(
                name, f"{name} code {code!r} is not offered by {family.name} "
                      f"(allowed: {family.allowed_codes(name)})"))
    return diags


def _check_heat(family: Family, gas_present: bool, electric_present: bool) -> list[Diagnostic]:
    diags = []
    if family.requires_gas_btu and not gas_present:
        diags.append(_violation(
            'heating_btu', f"{family.name} is {family.system_type.value} and requires a gas heat input"))
    if not family.requires_gas_btu and gas_present:
        diags.append(_violation(
            'heating_btu', f"{family.name} has no gas heat section"))
    if family.requires_electric_heat and not electric_present:
        diags.append(_violation(
            'electric_heat_kw', f"{family.name} requires an electric heat size"))
    if family.requires_gas_btu and electric_present:
        diags.append(_violation(
            'electric_heat_kw', f"{family.name} does not take electric heat"))
    return diags


def _holds(condition: dict[str, list[str]], codes: dict[str, str]) -> bool:
    return all(codes[name] in allowed for name, allowed in condition.items())


def check_accessory_rule(rule: AccessoryRule, codes: dict[str, str]) -> Optional[Diagnostic]:
    if not rule.positions() <= set(codes):
        return None
    when, then = _holds(rule.when, codes), _holds(rule.then, codes)
    broken = (
        (rule.kind == 'together' and when != then)
        or (rule.kind == 'requires' and when and not then)
        or (rule.kind == 'forbidden' and when and then)
    )
    if not broken:
        return None
    field = sorted(rule.positions())[0]
    return _violation(field, rule.message or f"Accessory rule {rule.name} violated")

# ============================================================
# Entry Point
# ============================================================

def validate(target: Validatable, family: Union[Family, str],
             schema: MasterSchema) -> list[Diagnostic]:
    """Diagnostics for target against family; empty when consistent."""
    if isinstance(family, str):
        tons = target.tonnage() if isinstance(target, CanonicalSpec) else None
        try:
            family = schema.resolve_family(family, tons)
        except SchemaViolation as e:
            return list(e.diagnostics)

    diags: list[Diagnostic] = []
    if isinstance(target, (BuildResult, ParsedModel)):
        codes = dict(target.codes)
        spec = target.spec
        electric = schema.position('electric_heat')
        gas_present = 'gas_btu' in codes
        electric_present = codes.get('electric_heat', electric.blank) != electric.blank
    else:
        spec = target
        codes = _codes_from_spec(spec, family, schema, diags)
        gas_present = spec.heating_btu is not None
        electric_present = bool(spec.electric_heat_kw)

    if spec.system_type is not None and spec.system_type != family.system_type:
        diags.append(_violation(
            'system_type',
            f"{spec.system_type.value} does not match {family.name} ({family.system_type.value})"))

    diags.extend(_check_allowed(codes, family))
    diags.extend(_check_heat(family, gas_present, electric_present))
    for rule in schema.accessory_rules:
        d = check_accessory_rule(rule, codes)
        if d is not None:
            diags.append(d)

    if diags:
        logger.debug(f"Validation against {family.name}: {len(diags)} issue(s)")
    return diags
