"""Cross-device handoff links.

Builds the URL a phone opens to capture a photo for a specific form
session, and renders it as a QR code with high error correction so a
smudged or partly covered printout still scans.
"""

import io
from urllib.parse import quote, urlsplit

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from src.utils.config import HandoffConfig
from src.utils.logger import get_logger

logger = get_logger(__name__)

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "0.0.0.0"})


def _hostname(host: str) -> str:
    """Strip any port (and IPv6 brackets) from a ``Host`` header value."""
    parsed = urlsplit(f"//{host}")
    return (parsed.hostname or host).lower()


def is_loopback(host: str) -> bool:
    return _hostname(host) in _LOOPBACK_HOSTS


def resolve_host(request_host: str, public_hostname: str | None) -> str:
    """Pick the host a second device can actually reach.

    A desktop browsing via ``localhost`` would hand the phone a link to
    the phone itself, so loopback hosts are swapped for the configured
    public hostname when one is set.

    Args:
        request_host: Host (optionally with port) the desktop used.
        public_hostname: Externally reachable host from configuration.

    Returns:
        Host to embed in the handoff URL.
    """
    if public_hostname and is_loopback(request_host):
        logger.debug("Replacing loopback host %s with %s", request_host, public_hostname)
        return public_hostname
    return request_host


def build_handoff_url(form_id: str, request_host: str, config: HandoffConfig) -> str:
    """Build the absolute capture URL for a form session.

    Args:
        form_id: Id of the form session awaiting a photo.
        request_host: Host the desktop session is served from.
        config: Handoff configuration.

    Returns:
        URL of the capture entry point with ``formId`` as a query parameter.

    Raises:
        ValueError: If ``form_id`` is empty.
    """
    if not form_id:
        raise ValueError("form_id must not be empty")
    host = resolve_host(request_host, config.public_hostname)
    path = "/" + config.capture_path.lstrip("/")
    return f"{config.scheme}://{host}{path}?formId={quote(form_id, safe='')}"


def render_qr_png(url: str, box_size: int = 10, border: int = 4) -> bytes:
    """Render ``url`` as a PNG QR code using error-correction level H.

    Args:
        url: Payload to encode.
        box_size: Pixel size of each module.
        border: Quiet-zone width in modules.

    Returns:
        PNG image bytes.
    """
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(url)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white")

    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()
