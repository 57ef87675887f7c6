"""
Reconocimiento de fechas impresas con matriz de puntos (inkjet de lote).

El OCR generico no lee bien los digitos formados por puntos sueltos. Este
modulo une los puntos, localiza franjas horizontales con forma de numero,
divide cada franja en casillas de digito y compara cada casilla con plantillas
de 5x5 puntos.
"""

from datetime import date
from typing import List, Optional

import numpy as np
from scipy import ndimage

from expiry_scan.config import Config
from expiry_scan.models.schemas import BoundingBox, DateCandidate, DateShape
from expiry_scan.ocr.image_preprocessor import ImageInput, connect_dots, to_gray
from expiry_scan.utils.confidence import ScoringConfig, score_candidate
from expiry_scan.utils.date_parser import expand_year
from expiry_scan.utils.logger import get_logger

logger = get_logger(__name__)

_GLYPHS = {
    0: ("#####", "#...#", "#...#", "#...#", "#####"),
    1: ("..#..", ".##..", "..#..", "..#..", ".###."),
    2: ("#####", "....#", "#####", "#....", "#####"),
    3: ("#####", "....#", "#####", "....#", "#####"),
    4: ("#...#", "#...#", "#####", "....#", "....#"),
    5: ("#####", "#....", "#####", "....#", "#####"),
    6: ("#####", "#....", "#####", "#...#", "#####"),
    7: ("#####", "....#", "...#.", "..#..", ".#..."),
    8: ("#####", "#...#", "#####", "#...#", "#####"),
    9: ("#####", "#...#", "#####", "....#", "#####"),
}

# DIGIT_TEMPLATES[d] es la rejilla 5x5 del digito d (True = punto)
DIGIT_TEMPLATES = np.array(
    [[[ch == "#" for ch in row] for row in _GLYPHS[d]] for d in range(10)],
    dtype=bool,
)

GRID_SIZE = 5

# (año, mes, dia) como cortes sobre la cadena de digitos
_LAYOUTS = {
    DateShape.MMDDYYYY: (slice(4, 8), slice(0, 2), slice(2, 4)),
    DateShape.DDMMYYYY: (slice(4, 8), slice(2, 4), slice(0, 2)),
    DateShape.YYYYMMDD: (slice(0, 4), slice(4, 6), slice(6, 8)),
    DateShape.MMDDYY: (slice(4, 6), slice(0, 2), slice(2, 4)),
    DateShape.DDMMYY: (slice(4, 6), slice(2, 4), slice(0, 2)),
    DateShape.YYMMDD: (slice(0, 2), slice(2, 4), slice(4, 6)),
}
_LONG_LAYOUTS = (DateShape.MMDDYYYY, DateShape.DDMMYYYY, DateShape.YYYYMMDD)
_SHORT_LAYOUTS = (DateShape.MMDDYY, DateShape.DDMMYY, DateShape.YYMMDD)


def _dark_runs(mask: np.ndarray):
    """Tramos horizontales de pixeles oscuros: (fila, inicio, fin exclusivo)."""
    padded = np.pad(mask.astype(np.int8), ((0, 0), (1, 1)))
    diff = np.diff(padded, axis=1)
    rows, starts = np.nonzero(diff == 1)
    _, ends = np.nonzero(diff == -1)
    return rows, starts, ends


def find_number_regions(
    connected: np.ndarray,
    dots: Optional[np.ndarray] = None,
    min_span: int = Config.DOT_MIN_SPAN,
    min_dots: int = Config.DOT_MIN_COUNT,
    pad_x: int = Config.DOT_REGION_PAD_X,
    pad_y: int = Config.DOT_REGION_PAD_Y,
) -> List[BoundingBox]:
    """
    Busca franjas horizontales que pueden contener una linea de digitos.

    Args:
        connected: Mascara booleana (True = oscuro) con los puntos ya unidos
        dots: Mascara de los puntos originales; por defecto la misma `connected`
        min_span: Longitud minima de un tramo oscuro para contar como linea
        min_dots: Minimo de pixeles de punto dentro del tramo
        pad_x: Margen horizontal alrededor de los tramos
        pad_y: Margen vertical; filas candidatas a menos de esta distancia se agrupan

    Returns:
        Regiones de arriba abajo, recortadas al contenido oscuro de `dots`.
    """
    dots = connected if dots is None else dots
    if connected.size == 0:
        return []

    height, width = connected.shape
    rows, starts, ends = _dark_runs(connected)

    cumulative = np.pad(np.cumsum(dots, axis=1), ((0, 0), (1, 0)))
    dot_counts = cumulative[rows, ends] - cumulative[rows, starts]
    keep = ((ends - starts) >= min_span) & (dot_counts >= min_dots)
    rows, starts, ends = rows[keep], starts[keep], ends[keep]
    if rows.size == 0:
        return []

    line_rows = np.zeros(height, dtype=bool)
    line_rows[rows] = True
    if pad_y > 0:
        line_rows = ndimage.binary_dilation(line_rows, iterations=pad_y)
    bands, count = ndimage.label(line_rows)

    regions = []
    for label in range(1, count + 1):
        band = np.nonzero(bands == label)[0]
        top, bottom = int(band[0]), int(band[-1]) + 1
        in_band = (rows >= top) & (rows < bottom)
        left = max(0, int(starts[in_band].min()) - pad_x)
        right = min(width, int(ends[in_band].max()) + pad_x)

        ys, xs = np.nonzero(dots[top:bottom, left:right])
        if ys.size == 0:
            continue
        regions.append(BoundingBox(
            left=left + int(xs.min()),
            top=top + int(ys.min()),
            width=int(xs.max() - xs.min()) + 1,
            height=int(ys.max() - ys.min()) + 1,
        ))
    return regions


def _column_groups(region: np.ndarray, max_gap: int) -> List[List[int]]:
    """Grupos [inicio, fin) de columnas con tinta; huecos de hasta max_gap se unen."""
    labels, _ = ndimage.label(region.any(axis=0))
    groups: List[List[int]] = []
    for (span,) in ndimage.find_objects(labels):
        if groups and span.start - groups[-1][1] <= max_gap:
            groups[-1][1] = span.stop
        else:
            groups.append([span.start, span.stop])
    return groups


def segment_digits(region: np.ndarray, slots: int = Config.DOT_MAX_DIGITS) -> List[np.ndarray]:
    """
    Divide una region en `slots` casillas de igual ancho y devuelve una ventana
    cuadrada (lado = alto de la region) centrada en el contenido de cada casilla.

    El contenido de una casilla es el grupo de columnas con tinta que mas la
    solapa, asi un digito estrecho (un 1) no arrastra el borde del vecino.
    Las casillas sin tinta, o cuyo grupo ya uso la casilla anterior, se omiten.
    """
    height, width = region.shape[:2]
    if height == 0 or width == 0 or slots <= 0:
        return []

    groups = _column_groups(region, max_gap=max(1, height // 10))
    slot_width = width / slots
    padded = np.pad(region, ((0, 0), (height, height)))
    cells = []
    previous = None
    for k in range(slots):
        start = int(round(k * slot_width))
        end = int(round((k + 1) * slot_width))

        best, best_overlap = None, 0
        for index, (g_start, g_stop) in enumerate(groups):
            overlap = min(end, g_stop) - max(start, g_start)
            if overlap > best_overlap:
                best, best_overlap = index, overlap
        if best is None or best == previous:
            continue
        previous = best

        g_start, g_stop = groups[best]
        center = (g_start + g_stop - 1) / 2.0
        left = int(round(center - (height - 1) / 2.0))
        cells.append(padded[:, left + height:left + 2 * height])
    return cells


def _inner_span(index: int, length: int, size: int):
    step = length / size
    start = int(round((index + 0.25) * step))
    stop = max(start + 1, int(round((index + 0.75) * step)))
    return start, min(stop, length)


def sample_grid(cell: np.ndarray, size: int = GRID_SIZE) -> Optional[np.ndarray]:
    """Reduce una casilla a una rejilla size x size mirando la mitad central de cada celda."""
    height, width = cell.shape[:2]
    if height < size or width < size:
        return None

    grid = np.zeros((size, size), dtype=bool)
    for i in range(size):
        y0, y1 = _inner_span(i, height, size)
        for j in range(size):
            x0, x1 = _inner_span(j, width, size)
            grid[i, j] = cell[y0:y1, x0:x1].mean() > 0.5
    return grid


def match_digit(cell: np.ndarray, threshold: float = Config.DOT_MATCH_THRESHOLD) -> Optional[int]:
    """
    Compara la casilla con las plantillas por coincidencia de celdas.

    Returns:
        El digito con mejor puntuacion si supera `threshold`; None en otro caso.
    """
    grid = sample_grid(cell)
    if grid is None:
        return None

    best_digit, best_score = None, 0.0
    for digit, template in enumerate(DIGIT_TEMPLATES):
        score = float((grid == template).mean())
        if score > best_score and score > threshold:
            best_digit, best_score = digit, score
    return best_digit


def _read_layout(text: str, shape: DateShape) -> Optional[date]:
    year_part, month_part, day_part = _LAYOUTS[shape]
    year = expand_year(text[year_part])
    if year is None:
        return None
    try:
        return date(year, int(text[month_part]), int(text[day_part]))
    except ValueError:
        return None


def assemble_date(digits: List[int], today: Optional[date] = None) -> Optional[date]:
    """
    Interpreta una secuencia de digitos como fecha probando las disposiciones fijas.

    Con 8 o mas digitos se prueban MMDDYYYY, DDMMYYYY y YYYYMMDD sobre los ocho
    primeros; con 6 o 7, MMDDYY, DDMMYY y YYMMDD. Gana la primera fecha legal
    estrictamente posterior a `today`.
    """
    today = today or date.today()
    if len(digits) < 6:
        return None

    text = "".join(str(d) for d in digits)
    if len(text) >= 8:
        text, layouts = text[:8], _LONG_LAYOUTS
    else:
        text, layouts = text[:6], _SHORT_LAYOUTS

    for shape in layouts:
        parsed = _read_layout(text, shape)
        if parsed is not None and parsed > today:
            return parsed
    return None


class DottedDateRecognizer:
    """Ruta de respaldo para fechas de matriz de puntos que el OCR no lee."""

    PATTERN_ID = "dot_matrix"

    def __init__(
        self,
        connect_radius: int = Config.DOT_CONNECT_RADIUS,
        threshold: int = Config.DOT_BINARY_THRESHOLD,
        slots: int = Config.DOT_MAX_DIGITS,
        match_threshold: float = Config.DOT_MATCH_THRESHOLD,
        scoring: Optional[ScoringConfig] = None,
    ):
        self.connect_radius = connect_radius
        self.threshold = threshold
        self.slots = slots
        self.match_threshold = match_threshold
        self.scoring = scoring or ScoringConfig()

    def read_digits(self, image: ImageInput) -> List[List[int]]:
        """Digitos reconocidos en cada region candidata, de arriba abajo."""
        gray = to_gray(image).image
        if gray.size == 0:
            return []

        dots = gray < self.threshold
        connected = connect_dots(gray, radius=self.connect_radius, threshold=self.threshold).image == 0

        lines = []
        for box in find_number_regions(connected, dots):
            region = dots[box.top:box.top + box.height, box.left:box.left + box.width]
            digits = [match_digit(cell, self.match_threshold) for cell in segment_digits(region, self.slots)]
            lines.append([d for d in digits if d is not None])
        return lines

    def recognize(self, image: ImageInput, today: Optional[date] = None, tag: str = "dot-pattern") -> Optional[DateCandidate]:
        """
        Devuelve la primera fecha valida leida en las regiones de puntos, o None.

        Cualquier fallo interno se registra y se trata como "sin deteccion".
        """
        today = today or date.today()
        try:
            for digits in self.read_digits(image):
                parsed = assemble_date(digits, today)
                if parsed is None:
                    continue
                text = "".join(str(d) for d in digits)
                logger.debug(f"Digitos de puntos '{text}' -> {parsed}")
                return DateCandidate(
                    parsed_date=parsed,
                    source_text=text,
                    confidence=score_candidate(text, config=self.scoring, pattern_bonus=Config.DOT_CONFIDENCE_BONUS),
                    strategy_tag=tag,
                    pattern_id=self.PATTERN_ID,
                )
        except Exception as e:
            logger.warning(f"✗ Reconocimiento de puntos fallido: {e}")
        return None
