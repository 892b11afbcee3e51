"""Service entry point."""

import sys

import structlog
import uvicorn

from .api.app import create_app
from .config import load_settings
from .core.errors import ConfigurationError
from .core.logging import configure_logging


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        structlog.get_logger(__name__).error("invalid_configuration", **e.to_dict())
        sys.exit(1)

    configure_logging(settings.log_level, settings.log_format)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
