#!/usr/bin/env python3
"""Start the Keystone API, reporting startup failures to Logfire."""

import sys

import logfire
import uvicorn

from keystone.config import Settings
from keystone.util.logging import setup_logging
from keystone.util.observability import configure_logfire


def main() -> int:
    """Configure logging, then serve the app with uvicorn."""
    settings = Settings()

    setup_logging(settings)
    # Configure Logfire early to catch startup errors
    configure_logfire(settings)

    try:
        logfire.info(
            "Starting Keystone API",
            environment=settings.environment,
            host=settings.host,
            port=settings.port,
        )

        uvicorn.run(
            "keystone.interface.api.app:app",
            host=settings.host,
            port=settings.port,
            # Client IPs feed device fingerprints; trust the proxy's forwarded headers
            proxy_headers=True,
            log_level="debug" if settings.debug else "info",
        )

        return 0

    except Exception as e:
        logfire.error(
            "Application startup failed",
            error=str(e),
            error_type=type(e).__name__,
            _exc_info=sys.exc_info(),
        )
        # Re-raise so the container fails properly
        raise


if __name__ == "__main__":
    sys.exit(main())
