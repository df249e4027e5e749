"""Configuration management for the intake handoff service.

Loads and validates YAML configuration with sensible defaults
for the HTTP server, handoff links, extraction worker, OCR and
the client-side reconciliation poller.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """Configuration for the HTTP server."""

    host: str = "0.0.0.0"
    port: int = 8000


class HandoffConfig(BaseModel):
    """Configuration for cross-device handoff links."""

    scheme: str = "https"
    public_hostname: str | None = None
    capture_path: str = "/snap"
    qr_box_size: int = 10
    qr_border: int = 4


class WorkerConfig(BaseModel):
    """Configuration for the background extraction worker."""

    max_workers: int = 4
    max_attempts: int = 3
    initial_backoff_s: float = 1.0


class OCRConfig(BaseModel):
    """Configuration for Tesseract OCR engine."""

    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 6


class PollerConfig(BaseModel):
    """Configuration for the client reconciliation poller."""

    base_url: str = "http://localhost:8000"
    interval_s: float = 2.0
    remove_completed: bool = True
    state_path: str = ".snapform/state.json"


class AppConfig(BaseModel):
    """Top-level application configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    handoff: HandoffConfig = Field(default_factory=HandoffConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    poller: PollerConfig = Field(default_factory=PollerConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
