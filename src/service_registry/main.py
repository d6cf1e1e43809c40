"""
Entry point for running the service registry HTTP API under uvicorn.
"""
import uvicorn

from .config import RegistrySettings
from .logging_utils import configure_logging


def main():
    """Configures logging and serves the application on the configured host and port."""
    settings = RegistrySettings()
    configure_logging(settings)
    uvicorn.run(
        "service_registry.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_config=None,
    )


if __name__ == "__main__":
    main()
