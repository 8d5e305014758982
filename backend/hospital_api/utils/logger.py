import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from hospital_api.config import get_settings

settings = get_settings()

LEVEL = logging.DEBUG if settings.APP_DEBUG else logging.INFO

CONSOLE_FORMAT = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
FILE_FORMAT = logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)


def _rotating(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)  # 10MB x 5
    handler.setLevel(level)
    handler.setFormatter(FILE_FORMAT)
    return handler


# Application root logger; modules log through children of it
logger = logging.getLogger("hospital_api")
logger.setLevel(LEVEL)
logger.propagate = False

# Re-imports (reloaders, tests) must not stack handlers
if logger.handlers:
    logger.handlers.clear()

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(LEVEL)
console_handler.setFormatter(CONSOLE_FORMAT)
logger.addHandler(console_handler)

if settings.LOG_TO_FILE:
    logs_dir = Path(settings.LOG_DIR)
    logs_dir.mkdir(parents=True, exist_ok=True)
    logger.addHandler(_rotating(logs_dir / "app.log", logging.INFO))
    logger.addHandler(_rotating(logs_dir / "errors.log", logging.ERROR))


def get_logger(name: str = None) -> logging.Logger:
    """Child of the application logger, e.g. get_logger("identity_service")."""
    if name:
        return logger.getChild(name)
    return logger
