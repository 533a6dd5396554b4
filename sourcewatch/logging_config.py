import sys

from loguru import logger

from typing import Any, Optional  # noqa

# Flag to track if logging has been configured
_logging_configured = False

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(level="INFO", sink=None):
    # type: (str, Any) -> Optional[int]
    """Turn on sourcewatch log output.

    The package keeps its logger disabled so embedding applications stay
    quiet.  This enables it, replaces loguru's handlers with a single sink
    writing records of ``level`` and above, and returns the handler id.
    Subsequent calls are no-ops and return ``None``.

    :param level: Minimum level to emit.
    :param sink: Where to write, defaults to stderr.
    """
    global _logging_configured

    # Only configure once to avoid duplicate handlers
    if _logging_configured:
        return None
    _logging_configured = True

    # loguru starts with a DEBUG stderr handler, it would ignore ``level``
    # and print everything twice.
    logger.remove()
    logger.enable("sourcewatch")
    return logger.add(
        sink if sink is not None else sys.stderr,
        level=level,
        filter="sourcewatch",
        format=LOG_FORMAT,
    )
