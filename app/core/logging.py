import logging
from app.core.config import LOGS_DIR, RUN_TIMESTAMP
from pythonjsonlogger.json import JsonFormatter

def setup_job_logger(job_id: str) -> logging.Logger:
    """Setup a logger for a specific job."""
    short_id = job_id[:8]
    logger = logging.getLogger(f"job_{short_id}")
    if not logger.handlers:  # Only add handler if none exists
        log_file = LOGS_DIR / f"job_{short_id}_{RUN_TIMESTAMP}.log"

        logger.setLevel(logging.INFO)
        logger.propagate = False

        # create a json formatter for structured logging
        formatter = JsonFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        fh = logging.FileHandler(log_file)
        fh.setLevel(logging.INFO)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setLevel(logging.INFO)
        ch.setFormatter(formatter)
        logger.addHandler(ch)

    return logger

def release_job_logger(logger: logging.Logger) -> None:
    """Close and detach the handlers of a finished job's logger."""
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
