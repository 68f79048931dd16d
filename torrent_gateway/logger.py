import sys

from loguru import logger

from .config import Config


VERBOSE = Config.VERBOSE
LOG_PATH = Config.LOG_PATH
LOG_LEVEL = Config.LOG_LEVEL
LOG_ROTATION = Config.LOG_ROTATION
LOG_RETENTION = Config.LOG_RETENTION


# Console output only when asked for
logger.remove()

# Log to a file; adapters log from the gateway's worker threads
logger.add(
    LOG_PATH,
    rotation=LOG_ROTATION,
    retention=LOG_RETENTION,
    level=LOG_LEVEL,
    enqueue=True,
)

# Log to console
if VERBOSE:
    logger.add(
        sys.stderr,
        level=LOG_LEVEL,
    )
