import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional


def setup_logging(log_level: Optional[str] = None) -> None:
    """Configure logging for the contest draft service.

    Level comes from the argument, else CONTEST_DRAFT_LOG_LEVEL, else INFO.
    """
    log_level = log_level or os.environ.get("CONTEST_DRAFT_LOG_LEVEL", "INFO")
    log_dir = Path(__file__).parent.parent / "logs"
    log_dir.mkdir(exist_ok=True)

    log_file = log_dir / "contest_draft.log"

    root_logger = logging.getLogger()
    if root_logger.handlers:
        return  # Already configured

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    # 5MB per file, 3 backups
    file_handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=3
    )
    file_handler.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(formatter)
    console_handler.setFormatter(formatter)

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    # SQL echo is opt-in through Database(echo=True)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.getLogger(__name__).info("Logging initialized (level=%s)", log_level)
