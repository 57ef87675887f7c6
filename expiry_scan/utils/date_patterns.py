"""Tabla de patrones de fecha y deteccion de palabras clave de caducidad."""

from __future__ import annotations

import re
from typing import Dict, List, Tuple

from expiry_scan.models.schemas import DatePattern, DateShape

MONTHS: Dict[str, int] = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}

_MONTH_WORD = r"(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?"
_ORDINAL = r"(?:st|nd|rd|th)?"

# Orden de prioridad: formas numericas comunes primero.
DATE_PATTERNS: List[DatePattern] = [
    DatePattern(
        pattern_id="mdy_slash",
        regex=re.compile(r"(?<!\d)(\d{1,2})([/-])(\d{1,2})\2(\d{2,4})(?!\d)"),
        shape=DateShape.MDY,
        base_priority=1,
        confidence_bonus=0.2,
    ),
    DatePattern(
        pattern_id="ymd",
        regex=re.compile(r"(?<!\d)(\d{4})([/.-])(\d{1,2})\2(\d{1,2})(?!\d)"),
        shape=DateShape.YMD,
        base_priority=2,
        confidence_bonus=0.2,
    ),
    DatePattern(
        pattern_id="mdy_dot",
        regex=re.compile(r"(?<!\d)(\d{1,2})(\.)(\d{1,2})\.(\d{2,4})(?!\d)"),
        shape=DateShape.MDY,
        base_priority=3,
        confidence_bonus=0.2,
    ),
    DatePattern(
        pattern_id="my",
        regex=re.compile(r"(?<![\d./-])(\d{1,2})([/.-])(\d{2})(?![./-]?\d)"),
        shape=DateShape.MY,
        base_priority=4,
        confidence_bonus=0.1,
    ),
    DatePattern(
        pattern_id="month_d_y",
        regex=re.compile(r"\b" + _MONTH_WORD + r"\s*(\d{1,2})" + _ORDINAL + r",?\s+(\d{2,4})(?!\d)"),
        shape=DateShape.MONTH_D_Y,
        base_priority=5,
        confidence_bonus=0.2,
    ),
    DatePattern(
        pattern_id="d_month_y",
        regex=re.compile(r"(?<!\d)(\d{1,2})" + _ORDINAL + r"\s*" + _MONTH_WORD + r",?\s*(\d{2,4})(?!\d)"),
        shape=DateShape.D_MONTH_Y,
        base_priority=6,
        confidence_bonus=0.2,
    ),
    DatePattern(
        pattern_id="month_y",
        regex=re.compile(r"\b" + _MONTH_WORD + r",?\s+(\d{4})(?!\d)"),
        shape=DateShape.MONTH_Y,
        base_priority=7,
        confidence_bonus=0.1,
    ),
]

_PATTERNS_BY_ID: Dict[str, DatePattern] = {p.pattern_id: p for p in DATE_PATTERNS}

EXPIRY_KEYWORDS: Tuple[str, ...] = (
    "exp", "expiry", "expiration", "expires", "expiring", "exp date",
    "best before", "best by", "best if used by",
    "use by", "use before", "sell by",
    "bb", "bbd",
)

# Solo limite de palabra al inicio: "exp" debe casar con "exp:" y con "expiry".
_KEYWORD_RE = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in sorted(EXPIRY_KEYWORDS, key=len, reverse=True)) + r")"
)


def get_pattern(pattern_id: str) -> DatePattern:
    """Devuelve el patron registrado con ese id (KeyError si no existe)."""
    return _PATTERNS_BY_ID[pattern_id]


def has_expiry_keyword(text: str) -> bool:
    return bool(text) and _KEYWORD_RE.search(text.lower()) is not None


def find_date_spans(text: str) -> List[Tuple[str, str]]:
    """
    Localiza subcadenas con forma de fecha dentro de un texto OCR.

    Todos los patrones se prueban sobre el texto en minusculas, en el orden de
    prioridad de DATE_PATTERNS y, dentro de cada patron, de izquierda a derecha.

    Returns:
        Lista de tuplas (subcadena, pattern_id). Vacia si no hay nada parecido a una fecha.
    """
    if not text:
        return []

    lowered = text.lower()
    spans: List[Tuple[str, str]] = []
    for pattern in DATE_PATTERNS:
        for match in pattern.regex.finditer(lowered):
            spans.append((match.group(0), pattern.pattern_id))
    return spans
