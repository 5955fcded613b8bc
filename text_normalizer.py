"""
HVAC Replacement Expert — OCR Text Normalizer
text_normalizer.py

Cleans OCR / free text from equipment data plates before rule-based
decoding. Line structure is kept so line-anchored rules still work.
"""
from __future__ import annotations
import logging
import re

logger = logging.getLogger(__name__)

# ============================================================
# Misrecognition Corrections
# ============================================================

# Applied in order, case-insensitive. Every replacement is a fixed point
# of its own pattern so normalize() stays idempotent.
OCR_CORRECTIONS: list[tuple[str, str]] = [
    (r'\b8TU\b', 'BTU'),
    (r'\bVDL', 'VOL'),
    (r'\bVOITS\b', 'VOLTS'),
    (r'\bSEEP(?=2?\b)', 'SEER'),
    (r'\bREFRIGEPANT\b', 'REFRIGERANT'),
    (r'\bR-?4[lI]0A\b', 'R-410A'),
    (r'\bM[O0]DE[L1]\b', 'MODEL'),
    (r'\bSER[I1]A[L1]\b', 'SERIAL'),
    (r'\bCAPA[CG][I1]TY\b', 'CAPACITY'),
    (r'\bTONIHAGE\b', 'TONNAGE'),
    (r'\bC[O0D][O0]LING\b', 'COOLING'),
    (r'\bCOMPRESS[G0]R\b', 'COMPRESSOR'),
    # Phase tokens: 3PH, 3-PHASE, 1 PH → 3φ / 1φ
    (r'\b([13])[ \t]*-?[ \t]*PH(?:ASE)?\b', r'\1φ'),
    (r'\bSINGLE[ \t]*-?[ \t]*PHASE\b', '1φ'),
    (r'\bTHREE[ \t]*-?[ \t]*PHASE\b', '3φ'),
]

_COMPILED_CORRECTIONS = [
    (re.compile(pat, re.IGNORECASE), repl) for pat, repl in OCR_CORRECTIONS
]

_HSPACE = re.compile(r'[^\S\n]+')


def _collapse_whitespace(text: str) -> str:
    lines = (_HSPACE.sub(' ', line).strip() for line in text.splitlines())
    return '\n'.join(line for line in lines if line)


def apply_corrections(text: str) -> str:
    for pattern, repl in _COMPILED_CORRECTIONS:
        text = pattern.sub(repl, text)
    return text


def normalize(raw_text: str) -> str:
    """
    Collapse whitespace and blank-line runs, then apply OCR_CORRECTIONS in
    list order. Always returns a string, possibly empty.
    """
    if not raw_text:
        return ''
    text = _collapse_whitespace(raw_text)
    text = apply_corrections(text)
    cleaned = _collapse_whitespace(text)
    if cleaned != text:
        logger.debug("Whitespace changed after corrections")
    return cleaned


def casefold_for_match(text: str) -> str:
    """Upper-cased form used for keyword matching."""
    return (text or '').upper()
