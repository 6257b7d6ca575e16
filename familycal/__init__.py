"""familycal - family calendar aggregator engine for remote iCalendar feeds.

The package keeps top-level imports light: the sync engine, the HTTP API and
the CLI are imported on demand so ``import familycal`` stays cheap.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Delegates to :func:`familycal.core.logging_config.configure_logging` so the
    CLI and the server share one formatter and one set of library overrides.
    The FAMILYCAL_DEBUG environment variable (truthy values: "1", "true",
    "yes") forces DEBUG verbosity regardless of the requested level.
    """
    from familycal.core.logging_config import configure_logging

    configure_logging(level_name=level_name)


def run_server(args: Optional[object] = None) -> None:
    """Start the familycal HTTP API and block until shutdown.

    Args:
        args: Optional argparse namespace carrying ``port`` / ``host`` overrides
    """
    import logging

    from familycal.api.server import start_server
    from familycal.core.config_manager import ConfigManager

    settings = ConfigManager().load_settings()
    _init_logging(getattr(args, "log_level", None) or settings.log_level)
    logger = logging.getLogger(__name__)

    if args is not None:
        port = getattr(args, "port", None)
        if port is not None:
            settings.server_port = int(port)
            logger.debug("Applied command line port override: %d", settings.server_port)
        host = getattr(args, "host", None)
        if host:
            settings.server_bind = host

    logger.info("Starting familycal API on %s:%d", settings.server_bind, settings.server_port)
    start_server(settings)
