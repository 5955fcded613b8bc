"""
HVAC Replacement Expert — Replacement Matcher
replacement_matcher.py

Responsibilities:
  1. Hard filtering on system type, phase, voltage band and family
  2. Tonnage matching inside a relative tolerance band (or explicit range)
  3. Nearest heating-BTU fallback within each family/tonnage bracket
  4. Stable ordering by capacity distance, then heating distance
  5. Display scoring (0-1) with tolerance decay
  6. Decision trace for explainability
  7. Direct / smaller / larger replacement sizing from a decoded spec
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Optional

from models import (
    CanonicalSpec, Candidate, CatalogUnit, DecisionTrace, Diagnostic,
    DiagnosticCode, SearchCriteria, SearchResponse, SizeMatch, SystemType,
    voltage_in_band,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.10
HEATING_SCORE_TOLERANCE = 0.15
_EPS = 1e-6

# ============================================================
# Scoring
# ============================================================

def score_numeric_match(
    required: float,
    actual: float,
    tolerance_pct: float = DEFAULT_TOLERANCE,
    prefer_higher: bool = True,
) -> float:
    """
    Score a numeric match.
    Returns 0.0-1.0 where 1.0 = perfect match.

    Args:
        required: the requested value
        actual: the unit's value
        tolerance_pct: acceptable deviation (0.10 = ±10%)
        prefer_higher: if True, oversizing is penalized less than undersizing
    """
    if required == 0:
        return 1.0 if actual == 0 else 0.5

    delta = actual - required
    delta_pct = abs(delta) / abs(required)

    if delta_pct <= 0.02:
        return 1.0
    if tolerance_pct > 0 and delta_pct <= tolerance_pct:
        return 1.0 - (delta_pct / tolerance_pct) * 0.3

    if prefer_higher and delta > 0:
        return max(0.3, 0.7 - (delta_pct - tolerance_pct) * 0.5)
    return max(0.0, 0.5 - (delta_pct - tolerance_pct) * 1.0)


def _match_score(unit: CatalogUnit, criteria: SearchCriteria, tolerance: float) -> float:
    scores: list[float] = []
    if criteria.tons is not None:
        scores.append(score_numeric_match(criteria.tons, unit.tons, tolerance))
    if criteria.heating_btu is not None and unit.heating_btu is not None:
        scores.append(score_numeric_match(
            criteria.heating_btu, unit.heating_btu, HEATING_SCORE_TOLERANCE))
    if not scores:
        return 1.0
    return round(sum(scores) / len(scores), 3)

# ============================================================
# Filtering
# ============================================================

@dataclass
class _Pass:
    """Working state for one search."""
    units: list[CatalogUnit]
    trace: list[DecisionTrace] = field(default_factory=list)
    fallback: dict[str, bool] = field(default_factory=dict)

    def keep(self, step: str, detail: str, predicate) -> None:
        self.units = [u for u in self.units if predicate(u)]
        self.trace.append(DecisionTrace(step=step, detail=detail, units_remaining=len(self.units)))


def _family_matches(wanted: str, family: str) -> bool:
    wanted = wanted.upper()
    return family.upper() == wanted or family.split('_')[0].upper() == wanted


def _tons_predicate(criteria: SearchCriteria, tolerance: float):
    if criteria.tons is not None:
        band = criteria.tons * tolerance
        return (lambda u: abs(u.tons - criteria.tons) <= band + _EPS,
                f"{criteria.tons:g} T ±{tolerance:.0%}")
    lo = criteria.tons_min if criteria.tons_min is not None else 0.0
    hi = criteria.tons_max if criteria.tons_max is not None else float('inf')
    return (lambda u: lo - _EPS <= u.tons <= hi + _EPS, f"{lo:g}–{hi:g} T")


def _apply_heating(p: _Pass, requested: int) -> None:
    """
    Exact heating input where the family/tonnage bracket has it, otherwise
    the nearest input in that bracket (ties go to the larger input).
    """
    brackets: dict[tuple[str, float], list[CatalogUnit]] = {}
    for u in p.units:
        if u.heating_btu is not None:
            brackets.setdefault((u.family, u.tons), []).append(u)

    chosen: dict[tuple[str, float], int] = {}
    for key, units in brackets.items():
        values = sorted({u.heating_btu for u in units})
        if requested in values:
            chosen[key] = requested
            continue
        best = min(values, key=lambda v: (abs(v - requested), -v))
        chosen[key] = best
        p.fallback[key] = True
        logger.debug(f"Heating fallback {key}: {requested} → {best}")

    fallbacks = sum(1 for v in p.fallback.values() if v)
    detail = f"{requested} BTU/h"
    if fallbacks:
        detail += f" (nearest input used in {fallbacks} bracket(s))"
    p.keep('heating', detail,
           lambda u: u.heating_btu is not None
           and chosen.get((u.family, u.tons)) == u.heating_btu)


def _run(criteria: SearchCriteria, catalog: list[CatalogUnit],
         tolerance: float) -> _Pass:
    p = _Pass(units=list(catalog))
    p.trace.append(DecisionTrace(step='catalog', detail='all units', units_remaining=len(p.units)))

    if criteria.system_type is not None:
        p.keep('system_type', criteria.system_type.value,
               lambda u: u.system_type == criteria.system_type)
    if criteria.phase_count is not None:
        p.keep('phase', f"{criteria.phase_count}φ",
               lambda u: u.phase_count == criteria.phase_count)
    if criteria.voltage is not None:
        p.keep('voltage', f"band {criteria.voltage}",
               lambda u: voltage_in_band(criteria.voltage, u.voltage))
    if criteria.family is not None:
        p.keep('family', criteria.family, lambda u: _family_matches(criteria.family, u.family))
    if criteria.efficiency is not None:
        p.keep('efficiency', criteria.efficiency.value,
               lambda u: u.efficiency == criteria.efficiency)
    if criteria.min_seer2 is not None:
        p.keep('min_seer2', f"SEER2 ≥ {criteria.min_seer2:g}",
               lambda u: u.seer2 is not None and u.seer2 >= criteria.min_seer2)
    if criteria.tons is not None or criteria.tons_min is not None or criteria.tons_max is not None:
        predicate, detail = _tons_predicate(criteria, tolerance)
        p.keep('tonnage', detail, predicate)
    if criteria.heating_btu is not None:
        _apply_heating(p, criteria.heating_btu)
    return p


def _to_candidates(p: _Pass, criteria: SearchCriteria, tolerance: float) -> list[Candidate]:
    candidates = []
    for u in p.units:
        cap_delta = round(u.tons - criteria.tons, 3) if criteria.tons is not None else None
        heat_delta = None
        if criteria.heating_btu is not None and u.heating_btu is not None:
            heat_delta = u.heating_btu - criteria.heating_btu
        fallback = p.fallback.get((u.family, u.tons), False)
        notes = []
        if fallback:
            notes.append(
                f"No {criteria.heating_btu} BTU/h option at {u.tons:g} T; "
                f"nearest input {u.heating_btu} BTU/h")
        candidates.append(Candidate(
            unit=u,
            capacity_delta=cap_delta,
            heating_delta=heat_delta,
            heating_fallback=fallback,
            match_score=_match_score(u, criteria, tolerance),
            notes=notes,
        ))
    candidates.sort(key=lambda c: (
        abs(c.capacity_delta) if c.capacity_delta is not None else 0.0,
        abs(c.heating_delta) if c.heating_delta is not None else 0,
    ))
    return candidates

# ============================================================
# Public API
# ============================================================

def search(criteria: SearchCriteria, catalog: list[CatalogUnit],
           tolerance: float = DEFAULT_TOLERANCE,
           max_results: Optional[int] = None) -> list[Candidate]:
    """Ordered candidates; empty when nothing qualifies. Never raises."""
    return search_with_trace(criteria, catalog, tolerance, max_results).candidates


def search_with_trace(criteria: SearchCriteria, catalog: list[CatalogUnit],
                      tolerance: float = DEFAULT_TOLERANCE,
                      max_results: Optional[int] = None) -> SearchResponse:
    tol = criteria.tolerance if criteria.tolerance is not None else tolerance
    p = _run(criteria, catalog, tol)
    candidates = _to_candidates(p, criteria, tol)

    limit = criteria.limit or max_results
    if limit is not None and len(candidates) > limit:
        candidates = candidates[:limit]
        p.trace.append(DecisionTrace(step='limit', detail=f"top {limit}",
                                     units_remaining=len(candidates)))

    diagnostics = []
    if not candidates:
        last = next((t for t in p.trace if t.units_remaining == 0), None)
        step = last.step if last else 'catalog'
        diagnostics.append(Diagnostic.warning(
            DiagnosticCode.NO_CANDIDATES, step,
            f"No catalog units left after the {step} filter",
            suggestion="Widen tolerance or relax the voltage and phase filters"))
    logger.debug(f"Search → {len(candidates)} candidate(s)")
    return SearchResponse(candidates=candidates, decision_trace=p.trace, diagnostics=diagnostics)


def _size_label(delta: Optional[float]) -> Optional[SizeMatch]:
    if delta is None:
        return None
    if abs(delta) <= _EPS:
        return SizeMatch.DIRECT
    return SizeMatch.LARGER if delta > 0 else SizeMatch.SMALLER


def criteria_from_spec(spec: CanonicalSpec, tolerance: Optional[float] = None) -> SearchCriteria:
    """
    Search criteria for replacing the unit described by spec. Heating input
    only constrains the search for Gas/Electric equipment.
    """
    heating = spec.heating_btu if spec.system_type == SystemType.GAS_ELECTRIC else None
    return SearchCriteria(
        system_type=spec.system_type,
        phase_count=spec.phase_count,
        voltage=spec.voltage,
        tons=spec.tonnage(),
        heating_btu=heating,
        tolerance=tolerance,
    )


def find_replacements(spec: CanonicalSpec, catalog: list[CatalogUnit],
                      tolerance: float = DEFAULT_TOLERANCE,
                      max_results: Optional[int] = None) -> SearchResponse:
    """
    Replacement candidates for an installed unit, each labelled direct,
    smaller or larger. Falls back to the nearest catalog tonnages above and
    below when nothing is inside the tolerance band.
    """
    tons = spec.tonnage()
    if tons is None:
        return SearchResponse(candidates=[], diagnostics=[Diagnostic.warning(
            DiagnosticCode.MISSING_FIELD, 'capacity_tons',
            "Cannot size a replacement without capacity",
            suggestion="Supply tonnage or cooling BTU")])

    criteria = criteria_from_spec(spec)
    resp = search_with_trace(criteria, catalog, tolerance, max_results)

    if not resp.candidates:
        pool = search_with_trace(
            criteria.model_copy(update={'tons': None}), catalog, tolerance).candidates
        sizes = sorted({c.unit.tons for c in pool})
        below = [s for s in sizes if s < tons]
        above = [s for s in sizes if s > tons]
        nearest = ([below[-1]] if below else []) + ([above[0]] if above else [])
        if nearest:
            fallback: list[Candidate] = []
            for size in nearest:
                sized = criteria.model_copy(update={'tons': size, 'tolerance': 0.0})
                for c in search(sized, catalog):
                    fallback.append(c.model_copy(update={
                        'capacity_delta': round(c.unit.tons - tons, 3),
                        'match_score': _match_score(c.unit, criteria, tolerance),
                        'notes': c.notes + [f"Nearest available size to {tons:g} T"],
                    }))
            fallback.sort(key=lambda c: (abs(c.capacity_delta), abs(c.heating_delta or 0)))
            if max_results is not None:
                fallback = fallback[:max_results]
            trace = resp.decision_trace + [DecisionTrace(
                step='nearest_tonnage',
                detail=f"nothing within tolerance; using {', '.join(f'{s:g}' for s in nearest)} T",
                units_remaining=len(fallback))]
            resp = SearchResponse(candidates=fallback, decision_trace=trace)
            logger.info(f"Replacement for {tons:g} T fell back to {nearest}")

    labelled = [
        c.model_copy(update={'size_match': _size_label(c.capacity_delta)})
        for c in resp.candidates
    ]
    return resp.model_copy(update={'candidates': labelled})


class ReplacementMatcher:
    """Catalog-bound matcher with configured tolerance and result cap."""

    def __init__(self, catalog: list[CatalogUnit],
                 tolerance: float = DEFAULT_TOLERANCE,
                 max_results: Optional[int] = None):
        self.catalog = catalog
        self.tolerance = tolerance
        self.max_results = max_results
        logger.info(f"ReplacementMatcher ready: {len(catalog)} units, tolerance {tolerance:.0%}")

    def search(self, criteria: SearchCriteria) -> list[Candidate]:
        return search(criteria, self.catalog, self.tolerance, self.max_results)

    def search_with_trace(self, criteria: SearchCriteria) -> SearchResponse:
        return search_with_trace(criteria, self.catalog, self.tolerance, self.max_results)

    def find_replacements(self, spec: CanonicalSpec) -> SearchResponse:
        return find_replacements(spec, self.catalog, self.tolerance, self.max_results)
