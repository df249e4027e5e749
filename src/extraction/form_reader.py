"""OCR collaborators that read a photographed intake form.

A reader takes image bytes and answers with raw JSON text keyed by the
labels it found, the same contract a hosted vision model satisfies. The
extraction worker owns parsing, retries and state; readers only read.
"""

import io
import json
import re
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from src.errors import ExtractionError
from src.ocr.tesseract_engine import TesseractEngine
from src.utils.config import OCRConfig
from src.utils.logger import get_logger

from .parsing import FORM_FIELDS, canonical_field_name

logger = get_logger(__name__)

_LABEL_LINE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9 /#&.'()]{0,40}?)\s*:\s*(.+?)\s*$")
_SERVICE_LINE_RE = re.compile(
    r"^\s*(?:service\s*)?request\s*#?\s*\d*\s*[:.)]\s*(.+?)\s*$", re.IGNORECASE
)

# Fallbacks for values written without a readable label.
_FALLBACK_PATTERNS: dict[str, str] = {
    "email": r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b",
    "cell_phone": r"(?:\+1[\s.\-]?)?\(?\b\d{3}\)?[\s.\-]?\d{3}[\s.\-]?\d{4}\b",
    "Date": r"\b\d{1,4}[/.\-]\d{1,2}[/.\-]\d{2,4}\b",
}

_KNOWN_FIELDS = frozenset((*FORM_FIELDS, "service_requests"))


class FormReader(Protocol):
    """Black-box OCR collaborator: image in, raw JSON text out."""

    def read(self, image: bytes, media_type: str) -> str: ...


def _split_service_request(text: str) -> dict[str, str]:
    for separator in (" - ", " – ", ": "):
        if separator in text:
            area, description = text.split(separator, 1)
            return {"area": area.strip(), "description": description.strip()}
    return {"area": "", "description": text.strip()}


def parse_form_text(text: str) -> dict[str, object]:
    """Collect labelled values from OCR text of an intake form.

    Args:
        text: Page text as returned by OCR.

    Returns:
        Mapping of the labels as written to their values, plus a
        ``serviceRequests`` list when request lines are present.
    """
    found: dict[str, object] = {}
    seen: set[str] = set()
    requests: list[dict[str, str]] = []

    for line in text.splitlines():
        service = _SERVICE_LINE_RE.match(line)
        if service:
            requests.append(_split_service_request(service.group(1)))
            continue

        labelled = _LABEL_LINE_RE.match(line)
        if not labelled:
            continue
        label, value = labelled.group(1).strip(), labelled.group(2)
        name = canonical_field_name(label)
        if name in _KNOWN_FIELDS and name not in seen:
            found[label] = value
            seen.add(name)

    for label, pattern in _FALLBACK_PATTERNS.items():
        if canonical_field_name(label) in seen:
            continue
        match = re.search(pattern, text)
        if match and match.group(0) not in found.values():
            found[label] = match.group(0)
            seen.add(canonical_field_name(label))

    if requests:
        found["serviceRequests"] = requests
    return found


class TesseractFormReader:
    """Form reader backed by the local Tesseract engine.

    Args:
        config: OCR configuration.
        engine: Engine override, mainly for tests.
    """

    def __init__(
        self, config: OCRConfig | None = None, engine: TesseractEngine | None = None
    ) -> None:
        self.config = config or OCRConfig()
        self.engine = engine or TesseractEngine(
            tesseract_cmd=self.config.tesseract_cmd,
            default_lang=self.config.default_lang,
        )

    def read(self, image: bytes, media_type: str) -> str:
        """OCR the image and return labelled fields as JSON text.

        Raises:
            ExtractionError: If the image cannot be opened or no text is found.
        """
        try:
            pil_image = Image.open(io.BytesIO(image))
            pil_image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise ExtractionError(f"Unreadable {media_type} image: {exc}") from exc

        result = self.engine.extract_text(pil_image, psm=self.config.psm)
        if not result.text.strip():
            raise ExtractionError("No text found in captured image")

        fields = parse_form_text(result.text)
        logger.info("Read %d labelled fields from form photo", len(fields))
        return json.dumps(fields)
