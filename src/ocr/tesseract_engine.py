"""Tesseract OCR engine wrapper for photographed intake forms.

Provides page text extraction with an average word confidence and
configurable page segmentation mode.
"""

from dataclasses import dataclass

import pytesseract
from PIL import Image, ImageOps

from src.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class OCRResult:
    """OCR result for one photographed page."""

    text: str
    language: str
    confidence: float
    word_count: int


class TesseractEngine:
    """Wrapper around Tesseract OCR for form text extraction.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: Default OCR language code.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "eng",
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang

    @staticmethod
    def prepare(image: Image.Image) -> Image.Image:
        """Normalize a phone photo for OCR.

        Applies the EXIF orientation (phones store portrait shots rotated)
        and converts to grayscale.
        """
        return ImageOps.exif_transpose(image).convert("L")

    def extract_text(
        self,
        image: Image.Image,
        lang: str | None = None,
        psm: int = 6,
    ) -> OCRResult:
        """Extract text from an image.

        Args:
            image: Input image.
            lang: OCR language code. Defaults to the engine default.
            psm: Tesseract page segmentation mode.

        Returns:
            OCRResult containing full text and average word confidence.
        """
        lang = lang or self.default_lang
        config = f"--psm {psm}"

        prepared = self.prepare(image)
        text = pytesseract.image_to_string(prepared, lang=lang, config=config)

        data = pytesseract.image_to_data(
            prepared,
            lang=lang,
            config=config,
            output_type=pytesseract.Output.DICT,
        )

        total_conf = 0.0
        word_count = 0
        for conf, word_text in zip(data["conf"], data["text"]):
            if float(conf) > 0 and word_text.strip():
                total_conf += float(conf)
                word_count += 1

        avg_conf = (total_conf / word_count / 100.0) if word_count > 0 else 0.0

        logger.info(
            "OCR extracted %d words with average confidence %.2f",
            word_count,
            avg_conf,
        )
        return OCRResult(
            text=text,
            language=lang,
            confidence=avg_conf,
            word_count=word_count,
        )
