"""Registros de datos del pipeline de deteccion de fechas de caducidad."""

import re
from datetime import date
from enum import Enum
from typing import List, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator


class DateShape(str, Enum):
    """Orden de los campos de una fecha dentro del texto reconocido."""
    MDY = "MM/DD/YYYY"          # ambiguo: mes primero salvo que el primer grupo sea > 12
    YMD = "YYYY/MM/DD"
    MY = "MM/YY"
    MONTH_D_Y = "Month DD YYYY"
    D_MONTH_Y = "DD Month YYYY"
    MONTH_Y = "Month YYYY"
    # Disposiciones fijas para digitos de matriz de puntos
    MMDDYYYY = "MMDDYYYY"
    DDMMYYYY = "DDMMYYYY"
    YYYYMMDD = "YYYYMMDD"
    MMDDYY = "MMDDYY"
    DDMMYY = "DDMMYY"
    YYMMDD = "YYMMDD"


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    left: int
    top: int
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)

    @classmethod
    def union(cls, boxes: List["BoundingBox"]) -> Optional["BoundingBox"]:
        if not boxes:
            return None
        left = min(b.left for b in boxes)
        top = min(b.top for b in boxes)
        right = max(b.left + b.width for b in boxes)
        bottom = max(b.top + b.height for b in boxes)
        return cls(left=left, top=top, width=right - left, height=bottom - top)


class ImageVariant(BaseModel):
    """Una version preprocesada de la foto original, etiquetada con su estrategia."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    image: np.ndarray
    tag: str

    @property
    def is_empty(self) -> bool:
        return self.image.size == 0

    @property
    def width(self) -> int:
        return 0 if self.is_empty else int(self.image.shape[1])

    @property
    def height(self) -> int:
        return 0 if self.is_empty else int(self.image.shape[0])


class OCRTextBlock(BaseModel):
    """Bloque de texto tal como lo devuelve el motor OCR."""
    model_config = ConfigDict(frozen=True)

    text: str
    lines: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    region: Optional[BoundingBox] = None


class TextFragment(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    confidence_hint: float = Field(0.0, ge=0.0, le=1.0)
    region: Optional[BoundingBox] = None

    @property
    def contains_digits(self) -> bool:
        return any(ch.isdigit() for ch in self.text)


class DatePattern(BaseModel):
    """Entrada de la tabla estatica de formas de fecha."""
    model_config = ConfigDict(frozen=True)

    pattern_id: str
    regex: re.Pattern
    shape: DateShape
    base_priority: int
    confidence_bonus: float = Field(0.0, ge=0.0, le=1.0)


class DateCandidate(BaseModel):
    """Fecha provisional producida por una pasada de una estrategia."""
    model_config = ConfigDict(frozen=True)

    parsed_date: date
    source_text: str
    confidence: float
    strategy_tag: str
    pattern_id: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v) -> float:
        return max(0.0, min(1.0, float(v)))


class ScanReport(BaseModel):
    """Resultado por imagen que escribe la CLI."""
    file: str
    expiry_date: Optional[date] = None
    strategy: Optional[str] = None
    confidence: Optional[float] = None
    source_text: Optional[str] = None

    @classmethod
    def from_candidate(cls, file: str, candidate: Optional[DateCandidate]) -> "ScanReport":
        if candidate is None:
            return cls(file=file)
        return cls(
            file=file,
            expiry_date=candidate.parsed_date,
            strategy=candidate.strategy_tag,
            confidence=round(candidate.confidence, 3),
            source_text=candidate.source_text,
        )
