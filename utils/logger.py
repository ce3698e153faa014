# ============================================================
# Lithia - Interactive SQL Console
# utils/logger.py - Loguru sinks shared by the console and worker threads
# ============================================================

import sys
from pathlib import Path
from loguru import logger


def setup_logger(log_file: str = "logs/lithia.log", level: str = "INFO"):
    logger.remove()

    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    # enqueue: the console loop and the database worker log from different threads
    logger.add(
        log_file,
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {thread.name} | {module}:{function}:{line} | {message}",
        backtrace=True,
        diagnose=False,
        enqueue=True,
    )

    # The console owns the terminal; only fatal diagnostics go to stderr
    logger.add(
        sys.stderr,
        level="CRITICAL",
        format="{time:HH:mm:ss} | {level} | {message}",
    )

    logger.info("Lithia logger initialized")
    return logger
