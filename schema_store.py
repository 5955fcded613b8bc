"""
HVAC Replacement Expert — Master Schema Store
schema_store.py

Loads the position-coded model-number schema once and exposes it as an
immutable value:
  1. Positions: fixed character slices with code → meaning tables
  2. Families: position subsets, defaults, allowed codes, catalog metadata
  3. Ladders: ascending discrete values used for nearest-match fallback
  4. Accessory rules: together / requires / forbidden code combinations

A malformed document raises SchemaLoadError; callers treat that as fatal.
"""
from __future__ import annotations
import json
import logging
import math
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from models import EfficiencyTier, SchemaLoadError, SystemType, UnknownFamily

logger = logging.getLogger(__name__)

# ============================================================
# Schema Records
# ============================================================

class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str = ""
    start: int = Field(ge=0)
    length: int = Field(gt=0)
    codes: dict[str, Any]
    blank: Optional[str] = None
    options: bool = False

    @property
    def end(self) -> int:
        return self.start + self.length

    def has_code(self, code: str) -> bool:
        return code in self.codes

    def meaning(self, code: str) -> Any:
        return self.codes.get(code)

    def code_for(self, value: Any) -> Optional[str]:
        """First code whose meaning equals value (numeric-tolerant)."""
        for code, meaning in self.codes.items():
            if _same_value(meaning, value):
                return code
        return None

    def code_for_label(self, label: str) -> Optional[str]:
        """Code for a semantic label such as 'hail_guard' (case-insensitive)."""
        wanted = str(label).strip().lower()
        for code, meaning in self.codes.items():
            if isinstance(meaning, str) and meaning.lower() == wanted:
                return code
        return None


class AccessoryRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: Literal["together", "requires", "forbidden"]
    when: dict[str, list[str]]
    then: dict[str, list[str]]
    message: str = ""

    def positions(self) -> set[str]:
        return set(self.when) | set(self.then)


class RatingBracket(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_tons: float
    seer2: Optional[float] = None
    eer2: Optional[float] = None
    ieer: Optional[float] = None
    hspf2: Optional[float] = None


class FamilyCatalog(BaseModel):
    model_config = ConfigDict(frozen=True)

    ratings: list[RatingBracket] = Field(default_factory=list)
    gas_heating_btu: dict[str, list[int]] = Field(default_factory=dict)
    electric_heat_kw: Optional[float] = None
    single_phase_max_tons: Optional[float] = None

    def rating_for(self, tons: float) -> Optional[RatingBracket]:
        for bracket in self.ratings:
            if tons <= bracket.max_tons + 1e-9:
                return bracket
        return None

    def heating_options(self, tons: float) -> list[int]:
        for key, values in self.gas_heating_btu.items():
            if _same_value(float(key), tons):
                return list(values)
        return []


class Family(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    series_prefix: str
    label: str = ""
    system_type: SystemType
    efficiency: EfficiencyTier
    positions: list[str]
    defaults: dict[str, str] = Field(default_factory=dict)
    allowed: dict[str, list[str]] = Field(default_factory=dict)
    requires_gas_btu: bool = False
    requires_electric_heat: bool = False
    catalog: FamilyCatalog = Field(default_factory=FamilyCatalog)

    def uses(self, position: str) -> bool:
        return position in self.positions

    def allowed_codes(self, position: str) -> Optional[list[str]]:
        return self.allowed.get(position)

    def allows(self, position: str, code: str) -> bool:
        allowed = self.allowed.get(position)
        return allowed is None or code in allowed


class Ladder(BaseModel):
    model_config = ConfigDict(frozen=True)

    dimension: str
    position: str
    values: list[float]


class MasterSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str = ""
    manufacturer: str = ""
    refrigerant: Optional[str] = None
    model_length: int
    positions: list[Position]
    ladders: list[Ladder] = Field(default_factory=list)
    accessory_rules: list[AccessoryRule] = Field(default_factory=list)
    families: dict[str, Family]

    @model_validator(mode="before")
    @classmethod
    def inject_family_names(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("families"), dict):
            data = dict(data)
            data["families"] = {
                key: ({**fam, "name": key} if isinstance(fam, dict) else fam)
                for key, fam in data["families"].items()
            }
        return data

    @model_validator(mode="after")
    def check_invariants(self) -> "MasterSchema":
        names = [p.name for p in self.positions]
        if len(names) != len(set(names)):
            raise ValueError("position names must be unique")
        by_name = {p.name: p for p in self.positions}

        for p in self.positions:
            if p.blank is not None and p.blank not in p.codes:
                raise ValueError(f"position {p.name}: blank code {p.blank!r} not in table")
            for code in p.codes:
                if len(code) != p.length:
                    raise ValueError(
                        f"position {p.name}: code {code!r} is not {p.length} chars")

        for ladder in self.ladders:
            pos = by_name.get(ladder.position)
            if pos is None:
                raise ValueError(f"ladder {ladder.dimension}: unknown position {ladder.position}")
            if any(b <= a for a, b in zip(ladder.values, ladder.values[1:])):
                raise ValueError(f"ladder {ladder.dimension}: values must be strictly ascending")
            for v in ladder.values:
                if pos.code_for(v) is None:
                    raise ValueError(f"ladder {ladder.dimension}: {v} has no code in {pos.name}")

        for fam in self.families.values():
            missing = [n for n in fam.positions if n not in by_name]
            if missing:
                raise ValueError(f"family {fam.name}: unknown positions {missing}")
            offset = 0
            for n in fam.positions:
                if by_name[n].start != offset:
                    raise ValueError(
                        f"family {fam.name}: position {n} starts at "
                        f"{by_name[n].start}, expected {offset}")
                offset = by_name[n].end
            if offset != self.model_length:
                raise ValueError(
                    f"family {fam.name}: positions cover {offset} of "
                    f"{self.model_length} characters")
            for n, code in fam.defaults.items():
                if n not in fam.positions or not by_name[n].has_code(code):
                    raise ValueError(f"family {fam.name}: bad default {n}={code!r}")
            for n, codes in fam.allowed.items():
                if n not in fam.positions:
                    raise ValueError(f"family {fam.name}: allowed codes for unused position {n}")
                bad = [c for c in codes if not by_name[n].has_code(c)]
                if bad:
                    raise ValueError(f"family {fam.name}: unknown {n} codes {bad}")

        for rule in self.accessory_rules:
            unknown = rule.positions() - set(by_name)
            if unknown:
                raise ValueError(f"accessory rule {rule.name}: unknown positions {sorted(unknown)}")
        return self

    # ── Lookups ──────────────────────────────────────────────────────────

    def position(self, name: str) -> Position:
        for p in self.positions:
            if p.name == name:
                return p
        raise KeyError(name)

    def family_positions(self, family: Family) -> list[Position]:
        return [self.position(n) for n in family.positions]

    def family(self, name: str) -> Family:
        fam = self.families.get(name)
        if fam is None:
            raise UnknownFamily(f"Unknown family: {name}", field="family")
        return fam

    def ladder(self, dimension: str) -> Ladder:
        for ladder in self.ladders:
            if ladder.dimension == dimension:
                return ladder
        raise KeyError(dimension)

    def ladder_for_position(self, position: str) -> Optional[Ladder]:
        for ladder in self.ladders:
            if ladder.position == position:
                return ladder
        return None

    def family_ladder(self, family: Family, dimension: str) -> list[tuple[float, str]]:
        """Ladder steps (value, code) restricted to the family's allowed codes."""
        ladder = self.ladder(dimension)
        pos = self.position(ladder.position)
        steps = []
        for v in ladder.values:
            code = pos.code_for(v)
            if code is not None and family.allows(pos.name, code):
                steps.append((v, code))
        return steps

    def capacity_range(self, family: Family) -> tuple[float, float]:
        steps = self.family_ladder(family, "tons")
        return steps[0][0], steps[-1][0]

    def families_by_prefix(self, prefix: str) -> list[Family]:
        prefix = prefix.upper()
        return [f for f in self.families.values() if f.series_prefix == prefix]

    def resolve_family(self, name: str, tons: Optional[float] = None) -> Family:
        """
        Exact family key, or a series prefix ('DSH') narrowed by tonnage to
        the split family whose capacity range covers it (or lies nearest).
        """
        if name in self.families:
            return self.families[name]
        candidates = self.families_by_prefix(name)
        if not candidates:
            raise UnknownFamily(f"Unknown family: {name}", field="family")
        if len(candidates) == 1 or tons is None:
            return candidates[0]

        def distance(fam: Family) -> float:
            lo, hi = self.capacity_range(fam)
            if lo <= tons <= hi:
                return 0.0
            return min(abs(tons - lo), abs(tons - hi))

        return min(candidates, key=distance)

# ============================================================
# Loading
# ============================================================

def _same_value(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return math.isclose(a, b, rel_tol=0, abs_tol=1e-6)
    return a == b


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in pairs:
        if key in result:
            raise SchemaLoadError(f"duplicate key in schema document: {key!r}")
        result[key] = value
    return result


def parse_schema(text: str) -> MasterSchema:
    """Parse and validate a schema document. Raises SchemaLoadError."""
    try:
        raw = json.loads(text, object_pairs_hook=_reject_duplicate_keys)
    except json.JSONDecodeError as e:
        raise SchemaLoadError(f"schema is not valid JSON: {e}") from e
    try:
        return MasterSchema.model_validate(raw)
    except ValidationError as e:
        raise SchemaLoadError(f"schema failed validation: {e}") from e


def load_schema(path: Union[str, Path]) -> MasterSchema:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SchemaLoadError(f"cannot read schema {path}: {e}") from e
    schema = parse_schema(text)
    logger.info(
        f"Loaded schema '{schema.name}' v{schema.version}: "
        f"{len(schema.positions)} positions, {len(schema.families)} families, "
        f"{len(schema.ladders)} ladders")
    return schema


@lru_cache
def get_schema(path: Optional[str] = None) -> MasterSchema:
    """Process-wide schema, loaded once per path."""
    if path is None:
        from config import get_settings
        path = get_settings().schema_path
    return load_schema(path)
