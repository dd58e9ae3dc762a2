import sys

from loguru import logger

from src.config.settings import get_settings

_settings = get_settings()
log_file = _settings.log_dir / "sitewatch_{time}.log"

logger.remove()
logger.add(sys.stderr, level=_settings.log_level)
logger.add(
    log_file,
    rotation="256 MB",  # split once a file reaches 256MB
    retention="10 days",
    compression="zip",
    encoding="utf-8",
    level="DEBUG",
    enqueue=True,
)

if __name__ == "__main__":
    logger.info("info message")
    logger.debug("debug message")
    logger.warning("warning message")
    logger.error("error message")
