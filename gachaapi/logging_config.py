import logging.config
import sys
from typing import Optional

# 수동 정산이 필요한 CRITICAL 로그를 남기는 로거
RECONCILIATION_LOGGERS = ("gachaapi.services.draw_coordinator",)


def setup_logging(log_level: str = "INFO", reconciliation_log_file: Optional[str] = None):
    log_level = log_level.upper()

    handlers = {
        "console": {
            "formatter": "simple",
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
        },
        "error_console": {
            "formatter": "detailed",
            "class": "logging.StreamHandler",
            "stream": sys.stderr,
            "level": "WARNING",
        },
    }
    reconciliation_handlers = []
    if reconciliation_log_file:
        handlers["reconciliation_file"] = {
            "formatter": "reconciliation",
            "class": "logging.FileHandler",
            "filename": reconciliation_log_file,
            "encoding": "utf-8",
            "level": "CRITICAL",
        }
        reconciliation_handlers.append("reconciliation_file")

    LOGGING_CONFIG = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)s\n%(pathname)s:%(lineno)d\n%(message)s",
            },
            "simple": {
                "format": "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
            },
            "reconciliation": {
                "format": "%(asctime)s | RECONCILIATION | %(name)s | %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {  # root logger
                "handlers": ["console", "error_console"],
                "level": log_level,
                "propagate": True,
            },
            "uvicorn.error": {
                "handlers": ["console", "error_console"],
                "level": log_level,
                "propagate": False,
            },
            "uvicorn.access": {
                "handlers": ["console"],
                "level": log_level,
                "propagate": False,
            },
            "gachaapi": {
                "handlers": ["console", "error_console"],
                "level": log_level,
                "propagate": False,
            },
            # 재설정 시 이전 파일 핸들러가 남지 않도록 항상 명시
            **{
                name: {"handlers": reconciliation_handlers, "propagate": True}
                for name in RECONCILIATION_LOGGERS
            },
        },
    }
    logging.config.dictConfig(LOGGING_CONFIG)
