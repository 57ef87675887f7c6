"""Tiempos por fase y tasa de exito de las detecciones de una sesion."""

import time
from contextlib import contextmanager
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from expiry_scan.utils.logger import get_logger

logger = get_logger(__name__)


class ProcessingPhase(str, Enum):
    IMAGE_PREPROCESSING = "image_preprocessing"
    OCR_TEXT_RECOGNITION = "ocr_text_recognition"
    DATE_PARSING = "date_parsing"
    PATTERN_MATCHING = "pattern_matching"
    REGION_DETECTION = "region_detection"


class PhaseStats(BaseModel):
    total_ms: float = 0.0
    count: int = 0

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class PerformanceStats(BaseModel):
    total_operations: int = 0
    successful_operations: int = 0
    total_ms: float = 0.0
    last_operation_time: Optional[datetime] = None
    last_detected_date: Optional[date] = None
    phases: Dict[ProcessingPhase, PhaseStats] = Field(default_factory=dict)

    @property
    def average_ms(self) -> float:
        return self.total_ms / self.total_operations if self.total_operations else 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_operations / self.total_operations if self.total_operations else 0.0


class PerformanceInsights(BaseModel):
    average_ms: float
    success_rate: float
    total_operations: int
    slowest_phase: Optional[ProcessingPhase] = None
    fastest_phase: Optional[ProcessingPhase] = None
    recommendations: List[str] = Field(default_factory=list)


class PerformanceMonitor:
    """
    Acumula metricas de rendimiento de las detecciones.

    Es opcional y nunca influye en el resultado de la deteccion.
    """

    SLOW_OPERATION_MS = 2000
    SLOW_PHASE_MS = 1000
    LOW_SUCCESS_RATE = 0.7

    def __init__(self):
        self.stats = PerformanceStats()
        self._operation_start: Optional[float] = None

    def start_operation(self) -> None:
        self._operation_start = time.perf_counter()

    def record_phase(self, phase: ProcessingPhase, elapsed_ms: float) -> None:
        current = self.stats.phases.get(phase, PhaseStats())
        self.stats.phases[phase] = PhaseStats(total_ms=current.total_ms + elapsed_ms, count=current.count + 1)

    @contextmanager
    def phase(self, phase: ProcessingPhase):
        """Mide el bloque `with` y lo suma a la fase indicada."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_phase(phase, (time.perf_counter() - start) * 1000)

    def complete_operation(self, success: bool, detected_date: Optional[date] = None) -> None:
        elapsed_ms = 0.0
        if self._operation_start is not None:
            elapsed_ms = (time.perf_counter() - self._operation_start) * 1000
        self._operation_start = None

        self.stats.total_operations += 1
        self.stats.successful_operations += int(success)
        self.stats.total_ms += elapsed_ms
        self.stats.last_operation_time = datetime.now()
        self.stats.last_detected_date = detected_date

        logger.debug(
            f"Deteccion {'OK' if success else 'sin fecha'} en {elapsed_ms:.0f}ms "
            f"(media {self.stats.average_ms:.0f}ms, exito {self.stats.success_rate:.0%}, "
            f"{self.stats.total_operations} operaciones)"
        )

    def reset(self) -> None:
        self.stats = PerformanceStats()
        self._operation_start = None

    def insights(self) -> PerformanceInsights:
        phases = self.stats.phases
        slowest = max(phases, key=lambda p: phases[p].average_ms) if phases else None
        fastest = min(phases, key=lambda p: phases[p].average_ms) if phases else None
        return PerformanceInsights(
            average_ms=self.stats.average_ms,
            success_rate=self.stats.success_rate,
            total_operations=self.stats.total_operations,
            slowest_phase=slowest,
            fastest_phase=fastest,
            recommendations=self._recommendations(slowest),
        )

    def _recommendations(self, slowest: Optional[ProcessingPhase]) -> List[str]:
        stats = self.stats
        recommendations = []
        if stats.average_ms > self.SLOW_OPERATION_MS:
            recommendations.append("Reducir la resolucion maxima (MAX_SCALE_DIM) para acelerar el OCR")
        if stats.total_operations and stats.success_rate < self.LOW_SUCCESS_RATE:
            recommendations.append("Tasa de exito baja: revisar las estrategias de preprocesamiento")
        if slowest is not None and stats.phases[slowest].average_ms > self.SLOW_PHASE_MS:
            recommendations.append(f"La fase {slowest.name} es lenta")
        return recommendations

    def report(self) -> str:
        """Informe de texto con estadisticas globales, por fase y recomendaciones."""
        stats = self.stats
        insights = self.insights()
        lines = [
            f"Informe de rendimiento - {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"- Operaciones: {stats.total_operations}",
            f"- Con fecha: {stats.successful_operations}",
            f"- Tasa de exito: {stats.success_rate:.0%}",
            f"- Tiempo medio: {stats.average_ms:.0f}ms",
            "Fases:",
        ]
        for phase, phase_stats in stats.phases.items():
            lines.append(f"- {phase.name}: {phase_stats.average_ms:.0f}ms de media ({phase_stats.count} veces)")
        lines.append(f"- Mas lenta: {insights.slowest_phase.name if insights.slowest_phase else 'N/A'}")
        lines.append(f"- Mas rapida: {insights.fastest_phase.name if insights.fastest_phase else 'N/A'}")
        if insights.recommendations:
            lines.append("Recomendaciones:")
            lines.extend(f"- {r}" for r in insights.recommendations)
        return "\n".join(lines)
