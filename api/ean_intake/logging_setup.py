# -*- coding: utf-8 -*-
from __future__ import annotations
import logging, logging.handlers
from pathlib import Path

LOG_FILE_NAME = "ean_intake.log"

def setup_logging(settings) -> Path:
    """Configure rotating file logging under EAN_DATA_ROOT/logs/ean_intake.log"""
    root = Path(settings.EAN_DATA_ROOT).expanduser()
    log_dir = root / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILE_NAME

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(fmt)
    handler.setLevel(logging.INFO)

    logger = logging.getLogger()  # root
    logger.setLevel(logging.INFO)
    # avoid duplicate handlers
    if not any(getattr(h, 'baseFilename', '') == str(log_path.resolve()) for h in logger.handlers):
        logger.addHandler(handler)

    # uvicorn loggers do not propagate to root
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.setLevel(logging.INFO)
        if not any(getattr(h, 'baseFilename', '').endswith(LOG_FILE_NAME) for h in lg.handlers):
            lg.addHandler(handler)

    return log_path
