"""Utilidades para convertir fechas detectadas en textos OCR en fechas de calendario."""

from __future__ import annotations

import calendar
import re
from datetime import date
from typing import Optional

from expiry_scan.config import Config
from expiry_scan.models.schemas import DateShape
from expiry_scan.utils.date_patterns import MONTHS, find_date_spans, get_pattern

_WORD = re.compile(r"[a-z]+")


def expand_year(token: str) -> Optional[int]:
    """
    Normaliza el año: 2 digitos con pivote (<50 -> 20xx, >=50 -> 19xx), 4 digitos tal cual.

    Cualquier otra longitud se rechaza (None).
    """
    token = token.strip()
    if not token.isdigit():
        return None
    value = int(token)
    if len(token) == 2:
        return 2000 + value if value < Config.YEAR_PIVOT else 1900 + value
    if len(token) == 4 and value > 0:
        return value
    return None


def end_of_month(year: int, month: int) -> date:
    """Ultimo dia del mes: una caducidad "03/26" vale hasta el 31 de marzo."""
    return date(year, month, calendar.monthrange(year, month)[1])


def _month_from_text(text: str) -> Optional[int]:
    for word in _WORD.findall(text):
        if word[:3] in MONTHS:
            # La palabra completa debe ser un nombre o abreviatura real ("market" no es marzo)
            return MONTHS.get(word)
    return None


def _build_date(year: Optional[int], month: int, day: int) -> Optional[date]:
    if year is None:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_numeric_triplet(first: str, second: str, year_token: str) -> Optional[date]:
    a, b = int(first), int(second)
    year = expand_year(year_token)
    if a > 12:
        # No puede ser un mes: se reinterpreta como dia primero
        return _build_date(year, b, a)
    # Ambiguo (ambos <= 12) o claramente mes/dia: convencion mes primero
    return _build_date(year, a, b)


def _parse_by_shape(shape: DateShape, groups: tuple, matched: str) -> Optional[date]:
    if shape is DateShape.MDY:
        first, _, second, year_token = groups
        return _parse_numeric_triplet(first, second, year_token)

    if shape is DateShape.YMD:
        year_token, _, month, day = groups
        return _build_date(expand_year(year_token), int(month), int(day))

    if shape is DateShape.MY:
        month, _, year_token = groups
        year = expand_year(year_token)
        if year is None or not 1 <= int(month) <= 12:
            return None
        return end_of_month(year, int(month))

    month = _month_from_text(matched)
    if month is None:
        return None

    if shape is DateShape.MONTH_D_Y:
        _, day, year_token = groups
        return _build_date(expand_year(year_token), month, int(day))

    if shape is DateShape.D_MONTH_Y:
        day, _, year_token = groups
        return _build_date(expand_year(year_token), month, int(day))

    if shape is DateShape.MONTH_Y:
        _, year_token = groups
        year = expand_year(year_token)
        return None if year is None else end_of_month(year, month)

    return None


def parse_date(matched: str, pattern_id: str, today: Optional[date] = None) -> Optional[date]:
    """
    Convierte una subcadena detectada por un patron en una fecha de caducidad valida.

    Args:
        matched: Subcadena tal como la devolvio find_date_spans
        pattern_id: Id del patron que la detecto
        today: Fecha de referencia (por defecto, la fecha actual)

    Returns:
        La fecha si es legal en el calendario y estrictamente posterior a `today`, None en otro caso.
    """
    today = today or date.today()
    try:
        pattern = get_pattern(pattern_id)
    except KeyError:
        return None

    match = pattern.regex.search(matched.lower())
    if match is None:
        return None

    try:
        parsed = _parse_by_shape(pattern.shape, match.groups(), match.group(0))
    except (ValueError, OverflowError):
        return None

    if parsed is None or parsed <= today:
        return None
    return parsed


def find_date_in_text(text: str, today: Optional[date] = None) -> Optional[date]:
    """
    Busca la primera fecha de caducidad valida en el texto, en orden de prioridad de patrones.
    """
    for matched, pattern_id in find_date_spans(text):
        parsed = parse_date(matched, pattern_id, today=today)
        if parsed:
            return parsed
    return None
