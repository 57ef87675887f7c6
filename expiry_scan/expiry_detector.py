"""
Cascada de estrategias para leer la fecha de caducidad de una foto de envase.

Cada estrategia genera una variante de la foto y la pasa por el OCR (o por el
reconocedor de matriz de puntos). Los candidatos se puntuan; el primero que
supera el umbral alto corta la cascada, y si ninguno lo hace se devuelve el
mejor por encima del umbral de aceptacion.
"""

import threading
from contextlib import nullcontext
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
from pydantic import BaseModel, ConfigDict

from expiry_scan.config import Config
from expiry_scan.models.schemas import DateCandidate, ImageVariant
from expiry_scan.ocr.dotted_digits import DottedDateRecognizer
from expiry_scan.ocr.image_preprocessor import (
    ImageInput,
    adaptive_binarize,
    adjust_contrast,
    as_array,
    center_crop,
    denoise_and_threshold,
    load_photo,
    original,
    scale_down,
)
from expiry_scan.ocr.tesseract_ocr import OCREngine, TesseractOCR, extract_text
from expiry_scan.utils.confidence import ScoringConfig, fragment_priority, score_candidate
from expiry_scan.utils.date_parser import parse_date
from expiry_scan.utils.date_patterns import find_date_spans, get_pattern
from expiry_scan.utils.logger import get_logger
from expiry_scan.utils.performance_monitor import PerformanceMonitor, ProcessingPhase

logger = get_logger(__name__)

PhotoInput = Union[str, Path, ImageInput]


class DetectorNotOpenError(RuntimeError):
    """Se pidio una deteccion antes de abrir la sesion."""


class StrategyMethod(str, Enum):
    OCR = "ocr"
    DOT_MATRIX = "dot_matrix"


class Strategy(BaseModel):
    """Un paso de la cascada: como transformar la foto y como leerla."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    tag: str
    transform: Callable[[np.ndarray], ImageVariant]
    method: StrategyMethod = StrategyMethod.OCR


def _full_resolution(photo: np.ndarray) -> ImageVariant:
    return scale_down(photo, Config.MAX_SCALE_DIM, tag="full-resolution")


def _center_crop_high(photo: np.ndarray) -> ImageVariant:
    cropped = center_crop(scale_down(photo, Config.SECONDARY_SCALE_DIM))
    return adjust_contrast(cropped, "high", tag="center-crop-high")


def _center_crop_enhanced(photo: np.ndarray) -> ImageVariant:
    cropped = center_crop(scale_down(photo, Config.SECONDARY_SCALE_DIM))
    return adjust_contrast(cropped, "enhanced", tag="center-crop-enhanced")


def _adaptive_binarized(photo: np.ndarray) -> ImageVariant:
    return adaptive_binarize(scale_down(photo, Config.SECONDARY_SCALE_DIM))


def _denoised(photo: np.ndarray) -> ImageVariant:
    return denoise_and_threshold(scale_down(photo, Config.SECONDARY_SCALE_DIM))


def _dot_pattern(photo: np.ndarray) -> ImageVariant:
    return scale_down(photo, Config.SECONDARY_SCALE_DIM, tag="dot-pattern")


# Orden fijo de la cascada
DEFAULT_STRATEGIES: Tuple[Strategy, ...] = (
    Strategy(tag="full-resolution", transform=_full_resolution),
    Strategy(tag="center-crop-high", transform=_center_crop_high),
    Strategy(tag="center-crop-enhanced", transform=_center_crop_enhanced),
    Strategy(tag="adaptive-binarized", transform=_adaptive_binarized),
    Strategy(tag="denoised-otsu", transform=_denoised),
    Strategy(tag="dot-pattern", transform=_dot_pattern, method=StrategyMethod.DOT_MATRIX),
    Strategy(tag="original", transform=original),
)


class ExpiryDateDetector:
    """
    Sesion de deteccion. Posee el motor OCR: open() lo arranca y close() lo libera.

    Uso:
        with ExpiryDateDetector() as detector:
            expiry = detector.detect_expiry_date("foto.jpg")
    """

    def __init__(
        self,
        engine: Optional[OCREngine] = None,
        strategies: Optional[Sequence[Strategy]] = None,
        scoring: Optional[ScoringConfig] = None,
        today: Optional[date] = None,
        monitor: Optional[PerformanceMonitor] = None,
        dot_recognizer: Optional[DottedDateRecognizer] = None,
    ):
        self.engine = engine or TesseractOCR()
        self.strategies: List[Strategy] = list(DEFAULT_STRATEGIES if strategies is None else strategies)
        self.scoring = scoring or ScoringConfig()
        self.today = today
        self.monitor = monitor
        self.dot_recognizer = dot_recognizer or DottedDateRecognizer(scoring=self.scoring)
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        if not self.engine.is_open:
            self.engine.open()
        self._open = True
        logger.info(f"Detector abierto con {len(self.strategies)} estrategias")

    def close(self) -> None:
        self.engine.close()
        self._open = False

    def __enter__(self) -> "ExpiryDateDetector":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def detect_expiry_date(self, photo: PhotoInput, cancel_event: Optional[threading.Event] = None) -> Optional[date]:
        """Devuelve la fecha de caducidad de la foto, o None si no se encuentra."""
        candidate = self.detect_candidate(photo, cancel_event)
        return candidate.parsed_date if candidate else None

    def detect_candidate(self, photo: PhotoInput, cancel_event: Optional[threading.Event] = None) -> Optional[DateCandidate]:
        """
        Igual que detect_expiry_date pero conserva la estrategia, el texto y la confianza.

        Raises:
            DetectorNotOpenError: si la sesion no esta abierta
            RuntimeError: si `photo` es una ruta que no se puede leer
        """
        if not self._open:
            raise DetectorNotOpenError("Llama a open() antes de detectar fechas")

        if isinstance(photo, (str, Path)):
            photo = load_photo(str(photo))

        if self.monitor:
            self.monitor.start_operation()

        result = self._run_cascade(as_array(photo), self.today or date.today(), cancel_event)

        if self.monitor:
            self.monitor.complete_operation(result is not None, result.parsed_date if result else None)
        return result

    def _timed(self, phase: ProcessingPhase):
        return self.monitor.phase(phase) if self.monitor else nullcontext()

    def _run_cascade(self, photo: np.ndarray, today: date, cancel_event: Optional[threading.Event]) -> Optional[DateCandidate]:
        if photo.size == 0:
            logger.warning("✗ Imagen vacia o malformada: sin deteccion")
            return None

        best: Optional[DateCandidate] = None
        saw_date_text = False

        for strategy in self.strategies:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Deteccion cancelada")
                return None

            if strategy.method is StrategyMethod.DOT_MATRIX and saw_date_text:
                logger.debug(f"Se omite '{strategy.tag}': el OCR ya vio texto con forma de fecha")
                continue

            try:
                candidates, found_date_text = self._run_strategy(strategy, photo, today)
            except Exception as e:
                logger.warning(f"✗ Estrategia '{strategy.tag}' fallida: {e}")
                continue

            saw_date_text = saw_date_text or found_date_text
            if not candidates:
                logger.info(f"✗ {strategy.tag}: sin candidatos")
                continue

            for candidate in candidates:
                if candidate.confidence > self.scoring.early_exit_confidence:
                    logger.info(f"✓ {strategy.tag}: {candidate.parsed_date} (confianza {candidate.confidence:.2f})")
                    return candidate
                if best is None or candidate.confidence > best.confidence:
                    best = candidate
            logger.info(f"  {strategy.tag}: mejor candidato hasta ahora {best.parsed_date} ({best.confidence:.2f})")

        if best is not None and best.confidence > self.scoring.accept_confidence:
            logger.info(f"✓ Fecha aceptada: {best.parsed_date} via {best.strategy_tag} ({best.confidence:.2f})")
            return best

        logger.info("✗ Ninguna estrategia encontro una fecha de caducidad")
        return None

    def _run_strategy(self, strategy: Strategy, photo: np.ndarray, today: date) -> Tuple[List[DateCandidate], bool]:
        """Devuelve los candidatos de una estrategia y si aparecio texto con forma de fecha."""
        with self._timed(ProcessingPhase.IMAGE_PREPROCESSING):
            variant = strategy.transform(photo)
        if variant.is_empty:
            return [], False

        if strategy.method is StrategyMethod.DOT_MATRIX:
            with self._timed(ProcessingPhase.REGION_DETECTION):
                candidate = self.dot_recognizer.recognize(variant, today, tag=strategy.tag)
            return ([candidate] if candidate else []), False

        with self._timed(ProcessingPhase.OCR_TEXT_RECOGNITION):
            fragments = extract_text(variant, self.engine)

        # Estable: a igual prioridad se conserva el orden del motor
        fragments = sorted(fragments, key=lambda f: fragment_priority(f.text), reverse=True)

        candidates: List[DateCandidate] = []
        found_date_text = False
        for fragment in fragments:
            with self._timed(ProcessingPhase.PATTERN_MATCHING):
                spans = find_date_spans(fragment.text)
            found_date_text = found_date_text or bool(spans)

            for matched, pattern_id in spans:
                with self._timed(ProcessingPhase.DATE_PARSING):
                    parsed = parse_date(matched, pattern_id, today=today)
                if parsed is None:
                    continue
                candidates.append(DateCandidate(
                    parsed_date=parsed,
                    source_text=fragment.text,
                    confidence=score_candidate(fragment.text, get_pattern(pattern_id), self.scoring),
                    strategy_tag=strategy.tag,
                    pattern_id=pattern_id,
                ))
        return candidates, found_date_text
