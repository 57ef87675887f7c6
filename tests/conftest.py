from datetime import date
from typing import List, Optional

import cv2
import numpy as np
import pytest

from expiry_scan.models.schemas import OCRTextBlock
from expiry_scan.ocr.dotted_digits import DIGIT_TEMPLATES
from expiry_scan.ocr.tesseract_ocr import OCREngine


class FakeOCREngine(OCREngine):
    """
    Motor OCR de pruebas.

    - texts: bloques devueltos en cada llamada
    - responses: lista de respuestas por llamada (se consumen en orden; agotadas -> [])
    - fail: process() lanza RuntimeError
    """

    def __init__(self, texts: Optional[List[str]] = None, responses: Optional[List[List[str]]] = None, fail: bool = False):
        self.texts = texts or []
        self.responses = list(responses) if responses is not None else None
        self.fail = fail
        self.calls = 0
        self.open_calls = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self.open_calls += 1
        self._open = True

    def close(self) -> None:
        self._open = False

    def process(self, image: np.ndarray) -> List[OCRTextBlock]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("fallo simulado del motor")
        if self.responses is not None:
            texts = self.responses.pop(0) if self.responses else []
        else:
            texts = self.texts
        return [OCRTextBlock(text=t, lines=t.split("\n"), confidence=0.9) for t in texts]


def render_dot_digits(digits: str, cell: int = 8, gap: int = 16, margin: int = 30, radius: int = 3) -> np.ndarray:
    """Dibuja digitos de matriz de puntos (negro sobre blanco, RGB) con las plantillas 5x5."""
    glyph = 5 * cell
    width = len(digits) * glyph + (len(digits) - 1) * gap + 2 * margin
    height = glyph + 2 * margin
    img = np.full((height, width, 3), 255, dtype=np.uint8)

    for k, ch in enumerate(digits):
        x0 = margin + k * (glyph + gap)
        template = DIGIT_TEMPLATES[int(ch)]
        for r in range(5):
            for c in range(5):
                if template[r, c]:
                    center = (x0 + c * cell + cell // 2, margin + r * cell + cell // 2)
                    cv2.circle(img, center, radius, (0, 0, 0), -1)
    return img


@pytest.fixture
def today() -> date:
    return date(2026, 1, 1)


@pytest.fixture
def label_photo() -> np.ndarray:
    """Foto sintetica en blanco; el texto lo aporta FakeOCREngine."""
    return np.full((240, 320, 3), 255, dtype=np.uint8)
