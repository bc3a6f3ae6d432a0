"""Message scheduler entry point."""

import logging

from aiohttp import web

from src.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Validate configuration, wire the scheduler, and serve the API."""
    from src.api.server import create_app
    from src.notifications.whatsapp_notifier import WhatsAppNotifier
    from src.scheduler.engine import SchedulerEngine
    from src.scheduler.store import create_job_store

    missing = settings.missing_required()
    if missing:
        logger.error("Missing required environment variables: %s", ", ".join(missing))
        raise SystemExit(1)
    if not settings.default_recipient:
        logger.warning("DEFAULT_RECIPIENT is empty; /api/messages/send will require 'to'")

    notifier = WhatsAppNotifier()
    engine = SchedulerEngine(store=create_job_store(), notifier=notifier)
    app = create_app(engine, notifier)

    logger.info(
        "Starting message scheduler on %s:%d (graph %s, store=%s, tz=%s)",
        settings.host,
        settings.port,
        settings.graph_version,
        settings.job_store_backend,
        settings.scheduler_timezone,
    )
    web.run_app(app, host=settings.host, port=settings.port, print=None)


if __name__ == "__main__":
    main()
