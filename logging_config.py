import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE = "manager.log"

FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
formatter = logging.Formatter(FORMAT)


def _file_handler(path: Path, level=logging.DEBUG) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=3,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    for h in logger.handlers:
        if type(h) is type(handler) and getattr(h, "baseFilename", None) == getattr(handler, "baseFilename", None):
            handler.close()
            return
    logger.addHandler(handler)


def setup_logging(log_dir=None, level="INFO") -> logging.Logger:
    """Send log records to the console and, with a log_dir, to manager.log.

    Calling it again only adjusts the level.
    """
    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    _attach(root, console)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        _attach(root, _file_handler(log_dir / LOG_FILE))

    # Quiet the HTTP stack
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    return root
