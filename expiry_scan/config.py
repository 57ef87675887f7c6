from pathlib import Path
import os

class Config:
    BASE_DIR = Path(__file__).resolve().parent.parent
    DATA_DIR = BASE_DIR / "data"
    INPUT_DIR = Path(os.getenv("EXPIRY_INPUT_DIR", str(DATA_DIR / "test-images")))
    OUTPUT_DIR = Path(os.getenv("EXPIRY_OUTPUT_DIR", str(DATA_DIR / "outputs")))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # OCR
    OCR_LANG = os.getenv("OCR_LANG", "eng")
    OCR_PSM = int(os.getenv("OCR_PSM", "11"))  # texto disperso: etiquetas, no documentos
    OCR_OEM = int(os.getenv("OCR_OEM", "3"))
    # Ruta del binario de Tesseract (None = la que encuentre pytesseract en el PATH)
    TESSERACT_CMD = os.getenv("TESSERACT_CMD")

    # Normalizacion de imagen
    MAX_SCALE_DIM = int(os.getenv("MAX_SCALE_DIM", "3072"))
    SECONDARY_SCALE_DIM = int(os.getenv("SECONDARY_SCALE_DIM", "1600"))
    CENTER_CROP_RATIO = float(os.getenv("CENTER_CROP_RATIO", "0.8"))

    # Puntuacion de candidatos (valores empiricos, ver DESIGN.md)
    BASE_CONFIDENCE = float(os.getenv("BASE_CONFIDENCE", "0.5"))
    KEYWORD_BONUS = float(os.getenv("KEYWORD_BONUS", "0.3"))
    LENGTH_BONUS = float(os.getenv("LENGTH_BONUS", "0.1"))
    LENGTH_BONUS_MIN_CHARS = int(os.getenv("LENGTH_BONUS_MIN_CHARS", "20"))
    EARLY_EXIT_CONFIDENCE = float(os.getenv("EARLY_EXIT_CONFIDENCE", "0.85"))
    ACCEPT_CONFIDENCE = float(os.getenv("ACCEPT_CONFIDENCE", "0.6"))

    # Fechas
    YEAR_PIVOT = 50

    # Digitos de matriz de puntos
    DOT_CONNECT_RADIUS = int(os.getenv("DOT_CONNECT_RADIUS", "3"))
    DOT_BINARY_THRESHOLD = 100
    DOT_MIN_SPAN = 20
    DOT_MIN_COUNT = 3
    DOT_MAX_DIGITS = 8
    DOT_MATCH_THRESHOLD = 0.7
    DOT_REGION_PAD_X = 5
    DOT_REGION_PAD_Y = 10
    DOT_CONFIDENCE_BONUS = float(os.getenv("DOT_CONFIDENCE_BONUS", "0.2"))

    # Salida
    JSON_INDENT = 2
