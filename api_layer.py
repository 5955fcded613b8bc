"""
HVAC Replacement Expert — FastAPI Application Layer
api_layer.py

Endpoints:
  1. POST /decode/model       — Model number → canonical spec
  2. POST /decode/data-plate  — OCR text → canonical spec
  3. POST /build              — Spec / codes → vendor model number
  4. POST /search             — Catalog search with decision trace
  5. POST /replacements       — Replacement sizing for an installed unit
  6. POST /validate           — Family constraint check
  7. GET  /families           — Family summaries
  8. GET  /health             — Health check
"""
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from config import Settings, configure_logging, get_settings
from data_plate_decoder import DataPlateDecoder
from models import (
    BuildRequest, BuildResult, CanonicalSpec, CatalogUnit, DecodeResult,
    Diagnostic, EfficiencyTier, HealthResponse, SchemaViolation,
    SearchCriteria, SearchResponse, Severity, SystemType,
)
from model_builder import build
from model_decoder import decode_model_number, parse_model
from replacement_matcher import ReplacementMatcher
from schema_store import MasterSchema, get_schema
from spec_validator import validate
from unit_catalog import catalog_from_settings

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
MAX_PLATE_TEXT = 20000

# ============================================================
# Application State (shared singletons)
# ============================================================

class AppState:
    """Holds the loaded schema, catalog and services."""
    settings: Settings
    schema: MasterSchema
    catalog: list[CatalogUnit]
    matcher: ReplacementMatcher
    plate_decoder: DataPlateDecoder
    start_time: float
    request_count: int = 0

    def __init__(self):
        self.start_time = time.monotonic()
        self.request_count = 0


_state = AppState()

# ============================================================
# Lifespan: Startup / Shutdown
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load schema and catalog once; both are read-only afterwards."""
    settings = get_settings()
    configure_logging(settings)
    logger.info(f"Starting {settings.app_name}...")

    _state.settings = settings
    _state.schema = get_schema(settings.schema_path)
    _state.catalog = catalog_from_settings(_state.schema, settings.catalog_path)
    _state.matcher = ReplacementMatcher(
        _state.catalog,
        tolerance=settings.match_tonnage_tolerance,
        max_results=settings.max_search_results,
    )
    _state.plate_decoder = DataPlateDecoder(schema=_state.schema)

    logger.info(
        f"System ready. Environment: {settings.app_env}, "
        f"{len(_state.schema.families)} families, {len(_state.catalog)} catalog units")
    yield

    logger.info(f"Shutting down {settings.app_name}...")

# ============================================================
# Request / Response Models
# ============================================================

class ModelDecodeRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())
    model_number: str = Field(min_length=1)


class ModelDecodeResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())
    model_number: str
    manufacturer: str
    family: Optional[str] = None
    matched_pattern: Optional[str] = None
    confidence: float
    spec: CanonicalSpec


class DataPlateRequest(BaseModel):
    text: str
    confidence: float = Field(default=1.0, ge=0, le=1)


class ReplacementRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())
    model_number: Optional[str] = None
    spec: Optional[CanonicalSpec] = None


class ReplacementResponse(SearchResponse):
    spec: CanonicalSpec


class ValidateRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())
    family: Optional[str] = None
    model_number: Optional[str] = None
    spec: Optional[CanonicalSpec] = None


class ValidateResponse(BaseModel):
    family: str
    valid: bool
    diagnostics: list[Diagnostic]


class FamilySummary(BaseModel):
    name: str
    series_prefix: str
    label: str
    system_type: SystemType
    efficiency: EfficiencyTier
    min_tons: float
    max_tons: float
    voltages: list[str]
    requires_gas_btu: bool
    requires_electric_heat: bool

# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="HVAC Replacement Expert API",
    description="Decode HVAC data plates and model numbers, build Daikin R-32 "
                "rooftop model numbers, and match replacement units.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SchemaViolation)
async def schema_violation_handler(request: Request, exc: SchemaViolation):
    logger.info(f"[{request.url.path}] {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=422,
        content={
            "detail": exc.message,
            "error": type(exc).__name__,
            "diagnostics": [d.model_dump(mode="json") for d in exc.diagnostics],
        },
    )

# ============================================================
# Middleware: Request Counting & Timing
# ============================================================

@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.monotonic()
    _state.request_count += 1
    response = await call_next(request)
    elapsed = int((time.monotonic() - start) * 1000)
    response.headers["X-Response-Time-Ms"] = str(elapsed)
    return response

# ============================================================
# 1. POST /decode/model — Model Number Decoding
# ============================================================

@app.post("/decode/model", response_model=ModelDecodeResponse, tags=["Decode"])
async def decode_model(request: ModelDecodeRequest):
    """
    Resolve a model number. Strings in the loaded schema's format are parsed
    position by position; other manufacturers go through the pattern table.
    """
    resolution = decode_model_number(request.model_number, _state.schema)
    if resolution is None:
        raise HTTPException(404, f"Unrecognized model number: {request.model_number}")
    return ModelDecodeResponse(
        model_number=resolution.model_number,
        manufacturer=resolution.manufacturer,
        family=resolution.family,
        matched_pattern=resolution.matched_pattern,
        confidence=resolution.confidence,
        spec=resolution.spec,
    )

# ============================================================
# 2. POST /decode/data-plate — OCR Text Decoding
# ============================================================

@app.post("/decode/data-plate", response_model=DecodeResult, tags=["Decode"])
async def decode_data_plate(request: DataPlateRequest):
    """
    Decode OCR text from an equipment data plate. Low-confidence input
    returns success=false with a LowConfidenceInput diagnostic.
    """
    if len(request.text) > MAX_PLATE_TEXT:
        raise HTTPException(400, f"Text too long (max {MAX_PLATE_TEXT} chars)")
    try:
        result = _state.plate_decoder.decode_text(request.text, request.confidence)
    except Exception as e:
        logger.exception("Data plate decode failed")
        raise HTTPException(500, f"Decode error: {str(e)}")
    logger.info(
        f"[decode/data-plate] success={result.success} "
        f"fields={len(result.raw_fields)} confidence={result.confidence:.2f}")
    return result

# ============================================================
# 3. POST /build — Model Number Builder
# ============================================================

@app.post("/build", response_model=BuildResult, tags=["Build"])
async def build_model(request: BuildRequest):
    """
    Build a model number from exact codes, numeric values (ladder fallback)
    and accessories. Unbuildable requests return 422 with diagnostics.
    """
    result = build(request, _state.schema)
    logger.info(f"[build] {request.family} → {result.model_number}")
    return result

# ============================================================
# 4. POST /search — Catalog Search
# ============================================================

@app.post("/search", response_model=SearchResponse, tags=["Match"])
async def search_catalog(criteria: SearchCriteria):
    """Filter and order catalog units; an empty result carries NoCandidates."""
    try:
        response = _state.matcher.search_with_trace(criteria)
    except Exception as e:
        logger.exception("Search failed")
        raise HTTPException(500, f"Search error: {str(e)}")
    logger.info(f"[search] results={len(response.candidates)}")
    return response

# ============================================================
# 5. POST /replacements — Replacement Sizing
# ============================================================

def _overlay(base: CanonicalSpec, override: Optional[CanonicalSpec]) -> CanonicalSpec:
    if override is None:
        return base
    updates = {f: getattr(override, f) for f in override.populated_fields()}
    return base.model_copy(update=updates)


@app.post("/replacements", response_model=ReplacementResponse, tags=["Match"])
async def find_replacement_units(request: ReplacementRequest):
    """
    Size replacements for an installed unit given by model number, spec,
    or both (spec fields override decoded ones).
    """
    if request.model_number:
        resolution = decode_model_number(request.model_number, _state.schema)
        if resolution is None:
            raise HTTPException(404, f"Unrecognized model number: {request.model_number}")
        spec = _overlay(resolution.spec, request.spec)
    elif request.spec is not None:
        spec = request.spec
    else:
        raise HTTPException(400, "Provide model_number or spec")

    response = _state.matcher.find_replacements(spec)
    logger.info(
        f"[replacements] {spec.model_number or 'spec'} "
        f"tons={spec.tonnage()} results={len(response.candidates)}")
    return ReplacementResponse(spec=spec, **response.model_dump())

# ============================================================
# 6. POST /validate — Family Constraint Check
# ============================================================

@app.post("/validate", response_model=ValidateResponse, tags=["Build"])
async def validate_against_family(request: ValidateRequest):
    """Validate a model number or a spec against a family's constraints."""
    target: Any
    if request.model_number:
        target = parse_model(request.model_number, _state.schema)
        family = request.family or target.family
    elif request.spec is not None:
        if not request.family:
            raise HTTPException(400, "family is required when validating a spec")
        target, family = request.spec, request.family
    else:
        raise HTTPException(400, "Provide model_number or spec")

    diagnostics = validate(target, family, _state.schema)
    return ValidateResponse(
        family=family,
        valid=not any(d.severity == Severity.ERROR for d in diagnostics),
        diagnostics=diagnostics,
    )

# ============================================================
# 7. GET /families — Family Summaries
# ============================================================

@app.get("/families", response_model=list[FamilySummary], tags=["Build"])
async def list_families():
    schema = _state.schema
    summaries = []
    for fam in schema.families.values():
        lo, hi = schema.capacity_range(fam)
        voltage = schema.position('voltage')
        codes = fam.allowed_codes('voltage') or list(voltage.codes)
        summaries.append(FamilySummary(
            name=fam.name,
            series_prefix=fam.series_prefix,
            label=fam.label,
            system_type=fam.system_type,
            efficiency=fam.efficiency,
            min_tons=lo,
            max_tons=hi,
            voltages=[voltage.meaning(c)['label'] for c in codes],
            requires_gas_btu=fam.requires_gas_btu,
            requires_electric_heat=fam.requires_electric_heat,
        ))
    return summaries

# ============================================================
# 8. GET /health — Health Check
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """System health check."""
    uptime = int(time.monotonic() - _state.start_time)
    return HealthResponse(
        status="healthy",
        version=VERSION,
        schema_name=_state.schema.name,
        schema_version=_state.schema.version,
        families=len(_state.schema.families),
        catalog_units=len(_state.catalog),
        uptime_seconds=uptime,
        requests_served=_state.request_count,
    )

# ============================================================
# Entry Point
# ============================================================

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "api_layer:app",
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
