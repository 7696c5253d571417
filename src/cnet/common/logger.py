"""Package-wide logger."""
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

logger = logging.getLogger("cnet")


def configure_logging(level: int = logging.INFO) -> None:
    """
    Attach a stream handler to the package logger.

    Called by the command line entry point only, library users configure logging themselves.

    :param int level: Logging level for the package logger
    """
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(level)
