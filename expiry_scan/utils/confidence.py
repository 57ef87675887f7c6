"""Puntuacion de confianza de los candidatos a fecha de caducidad."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from expiry_scan.config import Config
from expiry_scan.models.schemas import DatePattern
from expiry_scan.utils.date_patterns import has_expiry_keyword


class ScoringConfig(BaseModel):
    """Constantes de puntuacion. Son empiricas: se pueden sobrescribir por sesion."""
    model_config = ConfigDict(frozen=True)

    base_confidence: float = Field(default=Config.BASE_CONFIDENCE, ge=0.0, le=1.0)
    keyword_bonus: float = Field(default=Config.KEYWORD_BONUS, ge=0.0, le=1.0)
    length_bonus: float = Field(default=Config.LENGTH_BONUS, ge=0.0, le=1.0)
    length_bonus_min_chars: int = Field(default=Config.LENGTH_BONUS_MIN_CHARS, ge=0)
    early_exit_confidence: float = Field(default=Config.EARLY_EXIT_CONFIDENCE, ge=0.0, le=1.0)
    accept_confidence: float = Field(default=Config.ACCEPT_CONFIDENCE, ge=0.0, le=1.0)


def score_candidate(
    text: str,
    pattern: Optional[DatePattern] = None,
    config: Optional[ScoringConfig] = None,
    pattern_bonus: Optional[float] = None,
) -> float:
    """
    Calcula la confianza de un candidato a partir del texto del fragmento que lo contiene.

    base + bonus por palabra clave de caducidad + bonus del patron (forma numerica
    nativa frente a heuristica debil) + bonus por contexto largo, recortado a [0, 1].

    Args:
        text: Texto completo del fragmento
        pattern: Patron que produjo la fecha (aporta su confidence_bonus)
        config: Constantes de puntuacion (por defecto las de Config)
        pattern_bonus: Bonus explicito cuando la fecha no viene de un patron de texto

    Returns:
        Confianza en [0, 1]
    """
    config = config or ScoringConfig()
    confidence = config.base_confidence

    if has_expiry_keyword(text):
        confidence += config.keyword_bonus

    if pattern_bonus is not None:
        confidence += pattern_bonus
    elif pattern is not None:
        confidence += pattern.confidence_bonus

    if len(text) > config.length_bonus_min_chars:
        confidence += config.length_bonus

    return max(0.0, min(1.0, confidence))


def fragment_priority(text: str) -> float:
    """Orden de exploracion de fragmentos: primero los que tienen digitos y palabras clave."""
    priority = 0.0
    if len(text) > 3:
        priority += 0.3
    if any(ch.isdigit() for ch in text):
        priority += 0.4
    if has_expiry_keyword(text):
        priority += 0.3
    return priority
