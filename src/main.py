"""Application entry point for the intake handoff API server."""

from src.cli import serve
from src.utils.config import load_config
from src.utils.logger import setup_logging


def main() -> None:
    """Start the API server using ``configs/config.yaml``."""
    config = load_config()
    setup_logging(config.log_level)
    serve(config)


if __name__ == "__main__":
    main()
