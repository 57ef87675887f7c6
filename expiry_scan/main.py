from pathlib import Path
import json
import shutil
from expiry_scan.config import Config
from expiry_scan.utils.logger import get_logger
from expiry_scan.expiry_detector import ExpiryDateDetector
from expiry_scan.models.schemas import ScanReport
from expiry_scan.utils.performance_monitor import PerformanceMonitor

logger = get_logger(__name__)

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".tif", ".tiff", ".bmp", ".webp"}


def scan_directory(input_dir: Path, output_dir: Path, detector: ExpiryDateDetector) -> list:
    """
    Procesa cada imagen de input_dir y escribe un <imagen>.json con su ScanReport.

    Un fallo en una imagen se registra y no detiene el resto.
    """
    images = [p for p in sorted(input_dir.iterdir()) if p.suffix.lower() in IMAGE_SUFFIXES]

    if not images:
        logger.warning(f"No hay imagenes en {input_dir}")
        return []

    reports = []
    for img in images:
        try:
            logger.info(f"Analizando: {img.name}")
            candidate = detector.detect_candidate(img)
            report = ScanReport.from_candidate(img.name, candidate)

            json_path = output_dir / f"{img.stem}.json"
            json_path.write_text(
                json.dumps(report.model_dump(mode="json"), ensure_ascii=False, indent=Config.JSON_INDENT),
                encoding="utf-8"
            )
            reports.append(report)

            if report.expiry_date:
                logger.info(f"✓ {img.name} -> {report.expiry_date} ({report.strategy})")
            else:
                logger.warning(f"⚠ {img.name}: fecha de caducidad no encontrada")

        except Exception as e:
            logger.exception(f"✗ Error procesando {img.name}: {e}")

    return reports


def main():
    input_dir: Path = Config.INPUT_DIR
    output_dir: Path = Config.OUTPUT_DIR

    # Limpiar directorio de salida si existe
    if output_dir.exists():
        logger.info(f"Limpiando directorio de salida: {output_dir}")
        shutil.rmtree(output_dir)

    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Directorio de salida creado: {output_dir}")

    if not input_dir.is_dir():
        logger.error(f"No existe el directorio de entrada: {input_dir}")
        return

    monitor = PerformanceMonitor()
    with ExpiryDateDetector(monitor=monitor) as detector:
        scan_directory(input_dir, output_dir, detector)

    logger.info("\n" + monitor.report())


if __name__ == "__main__":
    main()
