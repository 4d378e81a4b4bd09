import logging, sys

# Per-request loggers that would emit one line for every segment fetched
_CHATTY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup(level="INFO"):
    """Configure root logging to stdout.

    ``level`` may be a level name (as read from LOG_LEVEL) or a logging constant.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    chatty_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)
