from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import List, Optional

import numpy as np
import pytesseract
from PIL import Image

from expiry_scan.config import Config
from expiry_scan.models.schemas import BoundingBox, ImageVariant, OCRTextBlock, TextFragment
from expiry_scan.utils.logger import get_logger

logger = get_logger(__name__)

if Config.TESSERACT_CMD:
    pytesseract.pytesseract.tesseract_cmd = Config.TESSERACT_CMD


class OCREngine(ABC):
    """
    Contrato del motor OCR externo.

    El motor es un recurso caro: se abre una vez por sesion (open), se usa
    para muchas fotos (process) y se libera explicitamente (close).
    """

    @abstractmethod
    def open(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @property
    @abstractmethod
    def is_open(self) -> bool:
        pass

    @abstractmethod
    def process(self, image: np.ndarray) -> List[OCRTextBlock]:
        """
        Reconoce el texto de una imagen.

        Returns:
            Bloques de texto en cualquier orden; lista vacia si no hay texto.
        """
        pass


class TesseractOCR(OCREngine):
    def __init__(self, lang: str = Config.OCR_LANG, psm: int = Config.OCR_PSM, oem: int = Config.OCR_OEM):
        """Inicializa el motor OCR con idioma y modos por defecto."""
        self.lang = lang
        self._config = f"--psm {psm} --oem {oem}"
        self._open = False
        self.version: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        """Comprueba que el binario de Tesseract esta disponible."""
        try:
            self.version = str(pytesseract.get_tesseract_version())
        except Exception as e:
            raise RuntimeError(f"Tesseract no disponible: {e}")
        self._open = True
        logger.info(f"Motor OCR abierto (Tesseract v{self.version}, lang={self.lang})")

    def close(self) -> None:
        if self._open:
            logger.info("Motor OCR cerrado")
        self._open = False

    def process(self, image: np.ndarray) -> List[OCRTextBlock]:
        """Ejecuta image_to_data y agrupa las palabras en lineas y bloques."""
        if not self._open:
            raise RuntimeError("El motor OCR no esta abierto")

        try:
            data = pytesseract.image_to_data(
                Image.fromarray(image),
                lang=self.lang,
                config=self._config,
                output_type=pytesseract.Output.DICT,
            )
        except Exception as e:
            raise RuntimeError(f"Error de Tesseract al procesar la imagen: {e}")

        return self._group_words(data)

    @staticmethod
    def _group_words(data: dict) -> List[OCRTextBlock]:
        # bloque -> linea -> [(palabra, conf, caja)]
        blocks: "OrderedDict[int, OrderedDict[tuple, list]]" = OrderedDict()

        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word:
                continue
            conf = float(data["conf"][i])
            box = BoundingBox(
                left=int(data["left"][i]),
                top=int(data["top"][i]),
                width=int(data["width"][i]),
                height=int(data["height"][i]),
            )
            block_key = int(data["block_num"][i])
            line_key = (int(data["par_num"][i]), int(data["line_num"][i]))
            blocks.setdefault(block_key, OrderedDict()).setdefault(line_key, []).append((word, conf, box))

        result = []
        for lines in blocks.values():
            line_texts = [" ".join(w for w, _, _ in words) for words in lines.values()]
            all_words = [w for words in lines.values() for w in words]
            confs = [c for _, c, _ in all_words if c >= 0]
            result.append(OCRTextBlock(
                text="\n".join(line_texts),
                lines=line_texts,
                confidence=(sum(confs) / len(confs) / 100.0) if confs else 0.0,
                region=BoundingBox.union([b for _, _, b in all_words]),
            ))
        return result


def extract_text(variant: ImageVariant, engine: OCREngine) -> List[TextFragment]:
    """
    Convierte una variante de imagen en fragmentos de texto (un bloque y cada una de sus lineas).

    Un fallo del motor se trata igual que "no se encontro texto".
    """
    if variant.is_empty:
        return []

    try:
        blocks = engine.process(variant.image)
    except Exception as e:
        logger.warning(f"✗ OCR fallo en la variante '{variant.tag}': {e}")
        return []

    fragments: List[TextFragment] = []
    for block in blocks:
        hint = max(0.0, min(1.0, block.confidence))
        if block.text.strip():
            fragments.append(TextFragment(text=block.text, confidence_hint=hint, region=block.region))
        # Las lineas sueltas ayudan con fechas de puntos partidas en varios bloques
        if len(block.lines) > 1:
            for line in block.lines:
                if line.strip():
                    fragments.append(TextFragment(text=line, confidence_hint=hint, region=None))
    return fragments
