"""Application entry point for the class feedback server."""

from __future__ import annotations

from feedback_app.config import load_settings
from feedback_app.constants.about import APP_NAME
from feedback_app.core.session_coordinator import SessionCoordinator
from feedback_app.persistence.store import FeedbackStore
from feedback_app.server.api_server import run_api_server
from feedback_app.utils.logging_config import configure_logging


def build_coordinator(database_url: str) -> SessionCoordinator:
    """Create the store, make sure its tables exist and reload persisted sessions."""
    store = FeedbackStore.from_url(database_url)
    store.create_schema()
    coordinator = SessionCoordinator(store)
    coordinator.restore()
    return coordinator


def main() -> None:
    """Initialize logging, restore state, and serve the API."""
    settings = load_settings()
    logger = configure_logging(settings.log_level)
    logger.info("Starting %s server…", APP_NAME)

    coordinator = build_coordinator(settings.database_url)
    logger.info("Listening on http://%s:%d/", settings.host, settings.port)
    try:
        run_api_server(
            coordinator,
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level,
            cors_origins=settings.cors_origins,
        )
    finally:
        coordinator.store.dispose()


if __name__ == "__main__":
    main()
