from pathlib import Path
from unittest.mock import patch, MagicMock

import numpy as np
import pytest
from PIL import Image

from expiry_scan.models.schemas import ImageVariant, OCRTextBlock
from expiry_scan.ocr.tesseract_ocr import TesseractOCR, extract_text
from expiry_scan.ocr.image_preprocessor import (
    NoiseType,
    NoiseTypeDetector,
    adaptive_binarize,
    adjust_contrast,
    as_array,
    center_crop,
    connect_dots,
    denoise_and_threshold,
    load_photo,
    original,
    scale_down,
    to_gray,
)
from conftest import FakeOCREngine

TESSERACT_DATA = {
    "text": ["EXP", "12/25/2026", "", "LOT", "A1"],
    "conf": ["90", "80", "-1", "70", "60"],
    "left": [10, 60, 0, 10, 50],
    "top": [10, 10, 0, 40, 40],
    "width": [40, 90, 0, 30, 20],
    "height": [20, 20, 0, 20, 20],
    "block_num": [1, 1, 1, 2, 2],
    "par_num": [1, 1, 1, 1, 1],
    "line_num": [1, 1, 1, 1, 1],
}

# ===== TESTS DEL MOTOR TESSERACT =====

def test_ocr_initialization():
    """Test inicialización del OCR con diferentes idiomas"""
    ocr_eng = TesseractOCR(lang="eng")
    assert ocr_eng.lang == "eng"
    assert not ocr_eng.is_open

    ocr_spa = TesseractOCR(lang="spa")
    assert ocr_spa.lang == "spa"

def test_ocr_initialization_default_language():
    """Test que el idioma por defecto es ingles"""
    ocr = TesseractOCR()
    assert ocr.lang == "eng"

def test_ocr_process_requires_open():
    """Test que procesar con el motor cerrado lanza RuntimeError"""
    ocr = TesseractOCR()
    with pytest.raises(RuntimeError):
        ocr.process(np.zeros((10, 10), dtype=np.uint8))

@patch("expiry_scan.ocr.tesseract_ocr.pytesseract")
def test_ocr_open_without_binary(mock_tesseract):
    """Test que open() falla con RuntimeError si Tesseract no esta instalado"""
    mock_tesseract.get_tesseract_version.side_effect = EnvironmentError("tesseract not found")

    ocr = TesseractOCR()
    with pytest.raises(RuntimeError):
        ocr.open()
    assert not ocr.is_open

@patch("expiry_scan.ocr.tesseract_ocr.pytesseract")
def test_ocr_process_groups_words_into_blocks(mock_tesseract):
    """Test que image_to_data se agrupa en bloques con lineas, confianza y region"""
    mock_tesseract.get_tesseract_version.return_value = "5.3.0"
    mock_tesseract.image_to_data.return_value = TESSERACT_DATA

    ocr = TesseractOCR()
    ocr.open()
    blocks = ocr.process(np.full((100, 200, 3), 255, dtype=np.uint8))

    assert [b.text for b in blocks] == ["EXP 12/25/2026", "LOT A1"]
    assert blocks[0].lines == ["EXP 12/25/2026"]
    assert blocks[0].confidence == pytest.approx(0.85)
    assert (blocks[0].region.left, blocks[0].region.width) == (10, 140)

    _, kwargs = mock_tesseract.image_to_data.call_args
    assert "--psm" in kwargs["config"]
    assert kwargs["lang"] == "eng"

    ocr.close()
    assert not ocr.is_open

@patch("expiry_scan.ocr.tesseract_ocr.pytesseract")
def test_ocr_process_wraps_engine_errors(mock_tesseract):
    """Test que un error de Tesseract se convierte en RuntimeError"""
    mock_tesseract.get_tesseract_version.return_value = "5.3.0"
    mock_tesseract.image_to_data.side_effect = Exception("boom")

    ocr = TesseractOCR()
    ocr.open()
    with pytest.raises(RuntimeError):
        ocr.process(np.zeros((10, 10), dtype=np.uint8))

def test_ocr_with_simple_image():
    """Test OCR real con una imagen en blanco (se omite si no hay Tesseract)"""
    ocr = TesseractOCR(lang="eng")
    try:
        ocr.open()
    except RuntimeError as e:
        pytest.skip(f"Tesseract no disponible: {e}")

    try:
        blocks = ocr.process(np.full((100, 100, 3), 255, dtype=np.uint8))
        assert isinstance(blocks, list)
    finally:
        ocr.close()

# ===== TESTS DE EXTRACCION DE FRAGMENTOS =====

def test_extract_text_blocks_and_lines():
    """Test que cada bloque produce su texto y el de cada linea"""
    engine = FakeOCREngine(texts=["BEST BEFORE\n03.04.27", "LOT 42"])
    variant = original(np.zeros((20, 20), dtype=np.uint8))

    fragments = extract_text(variant, engine)

    assert [f.text for f in fragments] == ["BEST BEFORE\n03.04.27", "BEST BEFORE", "03.04.27", "LOT 42"]
    assert all(0.0 <= f.confidence_hint <= 1.0 for f in fragments)

def test_extract_text_engine_failure_is_empty():
    """Test que un fallo del motor equivale a 'sin texto'"""
    engine = FakeOCREngine(fail=True)
    variant = original(np.zeros((20, 20), dtype=np.uint8))
    assert extract_text(variant, engine) == []

def test_extract_text_empty_variant_skips_engine():
    """Test que una variante vacia no llega al motor"""
    engine = FakeOCREngine(texts=["EXP 12/25/2026"])
    assert extract_text(original(np.zeros((0, 0))), engine) == []
    assert engine.calls == 0

def test_extract_text_skips_blank_blocks():
    """Test que los bloques en blanco se descartan"""
    engine = MagicMock()
    engine.process.return_value = [OCRTextBlock(text="   ", lines=["   "]), OCRTextBlock(text="12/26")]
    variant = original(np.zeros((20, 20), dtype=np.uint8))
    assert [f.text for f in extract_text(variant, engine)] == ["12/26"]

# ===== TESTS DE NORMALIZACION DE IMAGEN =====

def test_as_array_rejects_malformed_input():
    """Test que entradas malformadas producen una imagen vacia"""
    assert as_array("no es una imagen").size == 0
    assert as_array(np.zeros((2, 2, 2, 2), dtype=np.uint8)).size == 0
    assert as_array(np.zeros((5, 5, 2), dtype=np.uint8)).size == 0
    assert as_array(np.zeros((0, 5), dtype=np.uint8)).size == 0

def test_as_array_accepts_pil_and_variant():
    """Test conversion desde PIL y desde ImageVariant"""
    pil = Image.new("RGB", (30, 20), color="white")
    assert as_array(pil).shape == (20, 30, 3)

    variant = ImageVariant(image=np.ones((4, 4), dtype=np.uint8), tag="x")
    assert as_array(variant) is variant.image

def test_scale_down_limits_longest_side():
    """Test que el lado mayor no supera max_dim y se conserva la proporcion"""
    photo = np.zeros((3000, 4000, 3), dtype=np.uint8)
    variant = scale_down(photo, 3072)
    assert max(variant.image.shape[:2]) == 3072
    assert variant.image.shape[0] == 2304
    assert variant.tag == "scaled"

def test_scale_down_keeps_small_images():
    """Test que una imagen pequeña no se amplia"""
    photo = np.zeros((100, 200, 3), dtype=np.uint8)
    assert scale_down(photo, 1600).image.shape == photo.shape

def test_transforms_on_empty_input_return_empty_variant():
    """Test que todas las transformaciones toleran imagenes vacias"""
    empty = np.zeros((0, 0), dtype=np.uint8)
    for transform in (scale_down, center_crop, to_gray, adjust_contrast, adaptive_binarize,
                      connect_dots, denoise_and_threshold):
        assert transform(empty).is_empty

def test_center_crop_square():
    """Test recorte centrado de lado ratio * lado menor"""
    photo = np.zeros((100, 200, 3), dtype=np.uint8)
    variant = center_crop(photo, 0.8)
    assert variant.image.shape[:2] == (80, 80)
    assert center_crop(photo, 0).is_empty

def test_to_gray_from_rgb_and_rgba():
    """Test conversion a escala de grises"""
    assert to_gray(np.zeros((10, 10, 3), dtype=np.uint8)).image.ndim == 2
    assert to_gray(np.zeros((10, 10, 4), dtype=np.uint8)).image.ndim == 2

def test_adjust_contrast_presets():
    """Test ganancia y sesgo de los presets de contraste"""
    gray = np.full((10, 10), 100, dtype=np.uint8)
    assert adjust_contrast(gray, "high").image[0, 0] == 180
    assert adjust_contrast(gray, "mild").image[0, 0] == 110
    assert adjust_contrast(np.full((10, 10), 200, dtype=np.uint8), "enhanced").image[0, 0] == 255
    assert adjust_contrast(gray, "high").tag == "contrast-high"

def test_adjust_contrast_adaptive_brightens_dark_images():
    """Test preset adaptativo: imagen oscura -> ganancia 1.6, sesgo 40"""
    dark = np.full((10, 10), 50, dtype=np.uint8)
    assert adjust_contrast(dark, "adaptive").image[0, 0] == 120

def test_adaptive_binarize_is_binary():
    """Test que la binarizacion adaptativa solo produce 0 y 255"""
    img = np.random.randint(0, 256, (60, 80), dtype=np.uint8)
    result = adaptive_binarize(img).image
    assert result.shape == img.shape
    assert set(np.unique(result)) <= {0, 255}

def test_adaptive_binarize_keeps_dark_text_on_light_background():
    """Test que un trazo oscuro sobre fondo claro queda negro"""
    img = np.full((60, 60), 230, dtype=np.uint8)
    img[28:32, 10:50] = 20
    result = adaptive_binarize(img).image
    assert result[30, 30] == 0
    assert result[5, 5] == 255

def test_connect_dots_joins_nearby_dots():
    """Test que dos puntos cercanos quedan unidos tras la dilatacion"""
    img = np.full((20, 40), 255, dtype=np.uint8)
    img[10, 10] = 0
    img[10, 16] = 0
    result = connect_dots(img, radius=3).image
    assert result[10, 13] == 0
    assert result[0, 39] == 255
    assert set(np.unique(result)) <= {0, 255}

def test_noise_detector_on_flat_image():
    """Test que una imagen uniforme no se clasifica como ruidosa"""
    detector = NoiseTypeDetector(np.full((50, 50), 128, dtype=np.uint8))
    assert detector.detect() is NoiseType.NONE

def test_denoise_and_threshold_is_binary():
    """Test reduccion de ruido + Otsu"""
    img = np.random.randint(0, 256, (100, 100), dtype=np.uint8)
    result = denoise_and_threshold(img).image
    assert result.shape == img.shape
    assert len(np.unique(result)) <= 2

def test_load_photo(tmp_path: Path):
    """Test carga de foto como array RGB"""
    path = tmp_path / "foto.png"
    Image.new("L", (40, 30), color=200).save(path)
    photo = load_photo(str(path))
    assert photo.shape == (30, 40, 3)

def test_load_photo_file_not_found(tmp_path: Path):
    """Test que lanza RuntimeError cuando el archivo no existe"""
    with pytest.raises(RuntimeError):
        load_photo(str(tmp_path / "nope.jpg"))
