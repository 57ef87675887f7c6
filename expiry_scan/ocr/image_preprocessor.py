"""
Normalizacion de fotos de etiquetas para OCR.

Cada transformacion es pura: recibe una imagen (RawImage o ImageVariant) y
devuelve una ImageVariant nueva sin tocar la original. Las imagenes vacias o
malformadas producen una variante vacia que el resto del pipeline interpreta
como "sin deteccion".
"""

from enum import Enum
from typing import Dict, Tuple, Union

import cv2
import numpy as np
from PIL import Image, ImageOps

from expiry_scan.config import Config
from expiry_scan.models.schemas import ImageVariant
from expiry_scan.utils.logger import get_logger

logger = get_logger(__name__)

ImageInput = Union[np.ndarray, Image.Image, ImageVariant]

# (ganancia, sesgo) para out = clamp(in * ganancia + sesgo, 0, 255)
CONTRAST_PRESETS: Dict[str, Tuple[float, float]] = {
    "mild": (1.3, -20.0),
    "high": (1.8, 0.0),
    "enhanced": (2.5, 0.0),
    "neural": (1.5, 30.0),
    "dotted": (1.8, 35.0),
}

_EMPTY = np.zeros((0, 0), dtype=np.uint8)


def as_array(image: ImageInput) -> np.ndarray:
    """Convierte cualquier entrada aceptada en un array uint8 (gris, RGB o RGBA)."""
    if isinstance(image, ImageVariant):
        return image.image
    if isinstance(image, Image.Image):
        if image.mode not in ("L", "RGB", "RGBA"):
            image = image.convert("RGB")
        return np.ascontiguousarray(image)
    if not isinstance(image, np.ndarray):
        return _EMPTY
    if image.ndim not in (2, 3) or image.size == 0:
        return _EMPTY
    if image.ndim == 3 and image.shape[2] not in (1, 3, 4):
        return _EMPTY
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    return np.ascontiguousarray(image)


def empty_variant(tag: str) -> ImageVariant:
    return ImageVariant(image=_EMPTY, tag=tag)


def original(image: ImageInput, tag: str = "original") -> ImageVariant:
    return ImageVariant(image=as_array(image), tag=tag)


def load_photo(image_path: str) -> np.ndarray:
    """Carga la foto respetando EXIF y la devuelve como array RGB."""
    try:
        img = Image.open(image_path)
        img = ImageOps.exif_transpose(img)
        return np.asarray(img.convert("RGB"))
    except Exception as e:
        raise RuntimeError(f"Error al cargar la imagen {image_path}: {e}")


def scale_down(image: ImageInput, max_dim: int = Config.MAX_SCALE_DIM, tag: str = "scaled") -> ImageVariant:
    """
    Reduce la imagen para que su lado mayor no supere max_dim, conservando la proporcion.

    Si ya es mas pequeña se devuelve tal cual.
    """
    arr = as_array(image)
    if arr.size == 0 or max_dim <= 0:
        return empty_variant(tag)

    height, width = arr.shape[:2]
    longest = max(height, width)
    if longest <= max_dim:
        return ImageVariant(image=arr, tag=tag)

    scale = max_dim / longest
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return ImageVariant(image=cv2.resize(arr, new_size, interpolation=cv2.INTER_AREA), tag=tag)


def center_crop(image: ImageInput, ratio: float = Config.CENTER_CROP_RATIO, tag: str = "center-crop") -> ImageVariant:
    """Recorta un cuadrado centrado de lado ratio * lado menor."""
    arr = as_array(image)
    if arr.size == 0 or not 0 < ratio <= 1:
        return empty_variant(tag)

    height, width = arr.shape[:2]
    size = max(1, int(min(height, width) * ratio))
    x = (width - size) // 2
    y = (height - size) // 2
    return ImageVariant(image=arr[y:y + size, x:x + size].copy(), tag=tag)


def to_gray(image: ImageInput, tag: str = "gray") -> ImageVariant:
    arr = as_array(image)
    if arr.size == 0:
        return empty_variant(tag)
    if arr.ndim == 2:
        return ImageVariant(image=arr, tag=tag)
    code = cv2.COLOR_RGBA2GRAY if arr.shape[2] == 4 else cv2.COLOR_RGB2GRAY
    return ImageVariant(image=cv2.cvtColor(arr, code), tag=tag)


def _adaptive_preset(gray: np.ndarray) -> Tuple[float, float]:
    """Elige ganancia/sesgo segun el brillo medio y el rango de la imagen."""
    brightness = float(gray.mean())
    contrast = int(gray.max()) - int(gray.min())
    if brightness < 100:
        return 1.6, 40.0    # imagen oscura
    if contrast < 50:
        return 2.0, 20.0    # poco contraste
    return 1.4, 25.0


def adjust_contrast(image: ImageInput, preset: str = "high", tag: str = None) -> ImageVariant:
    """
    Desatura y aplica out = clamp(in * ganancia + sesgo, 0, 255).

    Args:
        image: Imagen de entrada
        preset: Nombre en CONTRAST_PRESETS o "adaptive"
        tag: Etiqueta de la variante (por defecto "contrast-<preset>")
    """
    tag = tag or f"contrast-{preset}"
    gray = to_gray(image).image
    if gray.size == 0:
        return empty_variant(tag)

    if preset == "adaptive":
        gain, bias = _adaptive_preset(gray)
    else:
        gain, bias = CONTRAST_PRESETS[preset]

    out = np.clip(np.rint(gray.astype(np.float32) * gain + bias), 0, 255).astype(np.uint8)
    return ImageVariant(image=out, tag=tag)


def adaptive_binarize(
    image: ImageInput,
    window: int = 15,
    stride: int = 3,
    min_threshold: int = 70,
    max_threshold: int = 200,
    tag: str = "adaptive-binarized",
) -> ImageVariant:
    """
    Binarizacion local: cada pixel se compara con la media de su vecindario.

    La media se muestrea cada `stride` pixeles dentro de ±window (no todos los
    vecinos) y se recorta a [min_threshold, max_threshold]. Los pixeles fuera
    de la imagen no cuentan en la media.
    """
    gray = adjust_contrast(image, "mild").image
    if gray.size == 0:
        return empty_variant(tag)

    side = 2 * window + 1
    kernel = np.zeros((side, side), dtype=np.float32)
    kernel[::stride, ::stride] = 1.0

    src = gray.astype(np.float32)
    sums = cv2.filter2D(src, -1, kernel, borderType=cv2.BORDER_CONSTANT)
    counts = cv2.filter2D(np.ones_like(src), -1, kernel, borderType=cv2.BORDER_CONSTANT)
    local_mean = np.clip(sums / np.maximum(counts, 1.0), min_threshold, max_threshold)

    binary = np.where(src < local_mean, 0, 255).astype(np.uint8)
    return ImageVariant(image=binary, tag=tag)


def connect_dots(
    image: ImageInput,
    radius: int = Config.DOT_CONNECT_RADIUS,
    threshold: int = Config.DOT_BINARY_THRESHOLD,
    tag: str = "dot-connected",
) -> ImageVariant:
    """
    Une los puntos de una impresion de matriz de puntos en trazos continuos.

    Dilata los pixeles oscuros (filtro de minimo) en un radio pequeño y
    despues binariza: negro = trazo, blanco = fondo.
    """
    gray = to_gray(image).image
    if gray.size == 0:
        return empty_variant(tag)

    if radius > 0:
        kernel = np.ones((2 * radius + 1, 2 * radius + 1), dtype=np.uint8)
        gray = cv2.erode(gray, kernel)

    binary = np.where(gray < threshold, 0, 255).astype(np.uint8)
    return ImageVariant(image=binary, tag=tag)


class NoiseType(str, Enum):
    NONE = "none"
    GAUSSIAN = "gaussian"
    IMPULSE = "impulse"


class NoiseTypeDetector:
    """
    Detecta el tipo de ruido con el test de picos del histograma (SDT).
    """

    # Umbrales calibrados empiricamente
    LOWER_GAUSSIAN = 96.04917198684099
    UPPER_GAUSSIAN = 326.5743861507359
    LOWER_IMPULSE = 4039.43981828374
    UPPER_IMPULSE = 8989.931753143906

    def __init__(self, gray: np.ndarray):
        """
        Args:
            gray: Imagen en escala de grises
        """
        self.image = gray

    def sdt_distance(self) -> float:
        """Distancia entre el mayor salto positivo y negativo del histograma, normalizada por pixel."""
        hist = cv2.calcHist([self.image], [0], None, [256], [0, 256]).flatten()
        diffs = np.diff(hist)
        height, width = self.image.shape
        return float(diffs.max() - diffs.min()) / (width * height) * 100000

    def detect(self) -> NoiseType:
        distance = self.sdt_distance()
        if self.LOWER_GAUSSIAN <= distance <= self.UPPER_GAUSSIAN:
            return NoiseType.GAUSSIAN
        if self.LOWER_IMPULSE <= distance <= self.UPPER_IMPULSE:
            return NoiseType.IMPULSE
        return NoiseType.NONE


def denoise_and_threshold(image: ImageInput, tag: str = "denoised-otsu") -> ImageVariant:
    """
    Reduce el ruido segun el tipo detectado y binariza con Otsu.

    - Ruido gaussiano: Gaussian blur 5x5
    - Ruido de impulso (sal y pimienta): median blur 3x3
    """
    gray = to_gray(image).image
    if gray.size == 0:
        return empty_variant(tag)

    noise = NoiseTypeDetector(gray).detect()
    if noise is NoiseType.GAUSSIAN:
        gray = cv2.GaussianBlur(gray, (5, 5), 0)
    elif noise is NoiseType.IMPULSE:
        gray = cv2.medianBlur(gray, 3)

    _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
    return ImageVariant(image=binary, tag=tag)
