import logging

from booking_backend.core import config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the root logger.

    Safe to call more than once; only the first call attaches the handler,
    later calls just adjust the level.
    """
    global _configured

    resolved_level = (level or config.LOG_LEVEL).upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(resolved_level)

    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    # SQL echo goes through sqlalchemy.engine; keep it quiet unless asked for.
    if not config.DATABASE_ECHO:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    _configured = True
