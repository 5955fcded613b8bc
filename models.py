"""
HVAC Replacement Expert — Core Pydantic Models
models.py

Shared records for the decode → build/match → validate flow, the
diagnostic taxonomy, the exception hierarchy, and small parse helpers
for electrical and numeric notation found on data plates.
"""
from __future__ import annotations
import re
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ============================================================
# Enums
# ============================================================

class SystemType(str, Enum):
    HEAT_PUMP = "Heat Pump"
    GAS_ELECTRIC = "Gas/Electric"
    STRAIGHT_AC = "Straight A/C"

class EfficiencyTier(str, Enum):
    STANDARD = "standard"
    HIGH = "high"

class MatchKind(str, Enum):
    EXACT = "exact"
    ROUNDED_UP = "rounded_up"
    ROUNDED_DOWN = "rounded_down"
    CLAMPED = "clamped"

class MergeMode(str, Enum):
    REPLACE = "replace"
    ADDITIVE = "additive"

class FieldSource(str, Enum):
    DECODED = "decoded"
    SUPPLIED = "supplied"
    DEFAULTED = "defaulted"

class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"

class DiagnosticCode(str, Enum):
    LOW_CONFIDENCE_INPUT = "LowConfidenceInput"
    LOW_QUALITY_INPUT = "LowQualityInput"
    MISSING_FIELD = "MissingField"
    UNRESOLVABLE_SCHEMA_POSITION = "UnresolvableSchemaPosition"
    INVALID_POSITION_CODE = "InvalidPositionCode"
    UNKNOWN_FAMILY = "UnknownFamily"
    OUT_OF_RANGE_FALLBACK = "OutOfRangeFallback"
    CONSTRAINT_VIOLATION = "ConstraintViolation"
    NO_CANDIDATES = "NoCandidates"

class SizeMatch(str, Enum):
    DIRECT = "direct"
    SMALLER = "smaller"
    LARGER = "larger"

# ============================================================
# Diagnostics & Errors
# ============================================================

class Diagnostic(BaseModel):
    severity: Severity
    code: DiagnosticCode
    field: str = ""
    message: str
    suggestion: Optional[str] = None

    @classmethod
    def error(cls, code: DiagnosticCode, field: str, message: str,
              suggestion: Optional[str] = None) -> "Diagnostic":
        return cls(severity=Severity.ERROR, code=code, field=field,
                   message=message, suggestion=suggestion)

    @classmethod
    def warning(cls, code: DiagnosticCode, field: str, message: str,
                suggestion: Optional[str] = None) -> "Diagnostic":
        return cls(severity=Severity.WARNING, code=code, field=field,
                   message=message, suggestion=suggestion)


class HVACError(Exception):
    """Base class for all engine errors."""


class SchemaLoadError(HVACError):
    """Master schema document is missing or malformed. Fatal at startup."""


class CatalogLoadError(HVACError):
    """External unit catalog is missing or malformed."""


class SchemaViolation(HVACError):
    """A build request cannot produce a model string. Carries diagnostics."""
    code = DiagnosticCode.CONSTRAINT_VIOLATION

    def __init__(self, message: str, field: str = "",
                 diagnostics: Optional[list[Diagnostic]] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.diagnostics = diagnostics or [
            Diagnostic.error(self.code, field, message)
        ]


class UnresolvableSchemaPosition(SchemaViolation):
    code = DiagnosticCode.UNRESOLVABLE_SCHEMA_POSITION


class InvalidPositionCode(SchemaViolation):
    code = DiagnosticCode.INVALID_POSITION_CODE


class UnknownFamily(SchemaViolation):
    code = DiagnosticCode.UNKNOWN_FAMILY


class ConstraintViolation(SchemaViolation):
    code = DiagnosticCode.CONSTRAINT_VIOLATION

# ============================================================
# Canonical Specification
# ============================================================

class FieldProvenance(BaseModel):
    source: FieldSource
    confidence: float = 1.0
    rule: Optional[str] = None


class CanonicalSpec(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    manufacturer: Optional[str] = None
    model_number: Optional[str] = None
    serial_number: Optional[str] = None
    family: Optional[str] = None
    system_type: Optional[SystemType] = None
    efficiency: Optional[EfficiencyTier] = None

    capacity_tons: Optional[float] = Field(default=None, gt=0)
    cooling_btu: Optional[int] = Field(default=None, gt=0)
    heating_btu: Optional[int] = Field(default=None, gt=0)
    electric_heat_kw: Optional[float] = Field(default=None, ge=0)

    voltage: Optional[str] = None
    phase_count: Optional[int] = None
    frequency_hz: Optional[int] = None

    refrigerant: Optional[str] = None
    seer: Optional[float] = None
    seer2: Optional[float] = None
    eer: Optional[float] = None
    eer2: Optional[float] = None
    hspf: Optional[float] = None
    hspf2: Optional[float] = None
    compressor_type: Optional[str] = None
    manufacture_date: Optional[str] = None

    accessories: dict[str, str] = Field(default_factory=dict)
    provenance: dict[str, FieldProvenance] = Field(default_factory=dict)

    @field_validator("phase_count")
    @classmethod
    def validate_phase(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in (1, 3):
            raise ValueError("phase_count must be 1 or 3")
        return v

    @field_validator("voltage")
    @classmethod
    def validate_voltage(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        norm = normalize_voltage(v)
        if norm is None:
            raise ValueError(f"unrecognized voltage notation: {v!r}")
        return norm

    def tonnage(self) -> Optional[float]:
        """Nominal tons, from capacity_tons or converted from cooling BTU."""
        if self.capacity_tons is not None:
            return self.capacity_tons
        if self.cooling_btu is not None:
            return btu_to_tons(self.cooling_btu)
        return None

    def populated_fields(self) -> list[str]:
        skip = {"accessories", "provenance"}
        return [
            name for name, val in self
            if name not in skip and val is not None
        ] + (["accessories"] if self.accessories else [])

# ============================================================
# Schema-aware parse result
# ============================================================

class ParsedModel(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_number: str
    family: str
    codes: dict[str, str]
    meanings: dict[str, Any] = Field(default_factory=dict)
    spec: CanonicalSpec

# ============================================================
# Build Request / Result
# ============================================================

class BuildRequest(BaseModel):
    family: str
    spec: CanonicalSpec = Field(default_factory=CanonicalSpec)
    codes: dict[str, str] = Field(default_factory=dict)
    options_tail: Optional[str] = None
    accessories: dict[str, Union[bool, str]] = Field(default_factory=dict)
    merge_mode: MergeMode = MergeMode.ADDITIVE

    @field_validator("codes")
    @classmethod
    def upper_codes(cls, v: dict[str, str]) -> dict[str, str]:
        return {k: str(c).strip().upper() for k, c in v.items()}

    @field_validator("options_tail")
    @classmethod
    def validate_tail(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if len(v) != 10:
            raise ValueError("options_tail must be exactly 10 characters")
        return v


class LadderMatch(BaseModel):
    dimension: str
    position: str
    requested: float
    resolved: float
    code: str
    kind: MatchKind
    smaller: Optional[float] = None
    larger: Optional[float] = None


class ResolvedPosition(BaseModel):
    code: str
    meaning: Any = None
    source: str  # exact | ladder | voltage | default | options | blank


class BuildResult(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_number: str
    family: str
    resolved: dict[str, ResolvedPosition]
    capacity_match: Optional[LadderMatch] = None
    heat_match: Optional[LadderMatch] = None
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    spec: CanonicalSpec

    @property
    def codes(self) -> dict[str, str]:
        return {name: rp.code for name, rp in self.resolved.items()}

# ============================================================
# Decode Results
# ============================================================

class DecodeResult(BaseModel):
    success: bool
    spec: Optional[CanonicalSpec] = None
    confidence: float = 0.0
    text_length: int = 0
    raw_fields: dict[str, str] = Field(default_factory=dict)
    diagnostics: list[Diagnostic] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

# ============================================================
# Catalog / Search
# ============================================================

class CatalogUnit(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_number: str
    family: str
    manufacturer: str = "Daikin"
    system_type: SystemType
    efficiency: EfficiencyTier
    tons: float
    cooling_btu: int
    voltage: str
    phase_count: int
    heating_btu: Optional[int] = None
    electric_heat_kw: Optional[float] = None
    refrigerant: Optional[str] = None
    seer2: Optional[float] = None
    eer2: Optional[float] = None
    ieer: Optional[float] = None
    hspf2: Optional[float] = None


class SearchCriteria(BaseModel):
    system_type: Optional[SystemType] = None
    phase_count: Optional[int] = None
    voltage: Optional[str] = None
    tons: Optional[float] = Field(default=None, gt=0)
    tons_min: Optional[float] = Field(default=None, gt=0)
    tons_max: Optional[float] = Field(default=None, gt=0)
    tolerance: Optional[float] = Field(default=None, ge=0)
    heating_btu: Optional[int] = Field(default=None, gt=0)
    family: Optional[str] = None
    efficiency: Optional[EfficiencyTier] = None
    min_seer2: Optional[float] = None
    limit: Optional[int] = Field(default=None, gt=0)

    @field_validator("phase_count")
    @classmethod
    def validate_phase(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v not in (1, 3):
            raise ValueError("phase_count must be 1 or 3")
        return v

    @field_validator("voltage")
    @classmethod
    def validate_voltage(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        norm = normalize_voltage(v)
        if norm is None:
            raise ValueError(f"unrecognized voltage notation: {v!r}")
        return norm


class Candidate(BaseModel):
    unit: CatalogUnit
    capacity_delta: Optional[float] = None
    heating_delta: Optional[int] = None
    heating_fallback: bool = False
    match_score: float = 0.0
    size_match: Optional[SizeMatch] = None
    notes: list[str] = Field(default_factory=list)


class DecisionTrace(BaseModel):
    step: str
    detail: str
    units_remaining: int


class SearchResponse(BaseModel):
    candidates: list[Candidate]
    decision_trace: list[DecisionTrace] = Field(default_factory=list)
    diagnostics: list[Diagnostic] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str
    version: str
    schema_name: str
    schema_version: str
    families: int
    catalog_units: int
    uptime_seconds: int
    requests_served: int = 0

# ============================================================
# Parse Helpers
# ============================================================

BTU_PER_TON = 12000

# Nominal voltages grouped under one canonical band label
_VOLTAGE_BANDS: dict[str, tuple[int, ...]] = {
    "115": (115, 120),
    "208-230": (208, 220, 230, 240),
    "460": (440, 460, 480),
    "575": (575, 600),
}


def btu_to_tons(btu: float) -> float:
    return round(btu / BTU_PER_TON, 2)


def tons_to_btu(tons: float) -> int:
    return int(round(tons * BTU_PER_TON))


def parse_number(text: str) -> Optional[float]:
    """Parse '36,000' or '7.5' into a float."""
    if text is None:
        return None
    cleaned = str(text).replace(",", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return None


def normalize_voltage(text: str) -> Optional[str]:
    """
    Canonicalize a voltage token into its band label.
    '208/230' → '208-230', '230' → '208-230', '460V' → '460'.
    Unrecognized values return None.
    """
    if text is None:
        return None
    s = str(text).upper().replace("VAC", "").replace("V", "").strip()
    s = re.sub(r"\s*[/–-]\s*", "-", s)
    if s in _VOLTAGE_BANDS:
        return s
    parts = [p for p in s.split("-") if p.isdigit()]
    if not parts:
        return None
    values = {int(p) for p in parts}
    for band, members in _VOLTAGE_BANDS.items():
        if values <= set(members):
            return band
    return None


def voltage_in_band(band: str, voltage: str) -> bool:
    """True when voltage (a nominal value or band) falls inside band."""
    b = normalize_voltage(band)
    v = normalize_voltage(voltage)
    return b is not None and b == v


def parse_electrical_notation(text: str) -> dict[str, Any]:
    """
    Parse slash- or dash-delimited electrical notation.
    '208-230/3/60' → {'voltage': '208-230', 'phase_count': 3, 'frequency_hz': 60}
    '460-3-60'     → {'voltage': '460', 'phase_count': 3, 'frequency_hz': 60}
    """
    result: dict[str, Any] = {}
    if not text:
        return result
    m = re.search(
        r'(\d{3}(?:\s*[-/]\s*\d{3})?)\s*V?\s*[-/]\s*([13])(?!\d)\s*(?:[-/]\s*(50|60)\b)?',
        text)
    if not m:
        return result
    voltage = normalize_voltage(m.group(1))
    if voltage is None:
        return result
    result['voltage'] = voltage
    result['phase_count'] = int(m.group(2))
    if m.group(3):
        result['frequency_hz'] = int(m.group(3))
    return result


def parse_refrigerant(text: str) -> Optional[str]:
    m = re.search(r'R-?\s*(\d{2,3}[A-Z]?)', text or "", re.IGNORECASE)
    return f"R-{m.group(1).upper()}" if m else None
