import os
import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Optional


class SecurityFilter(logging.Filter):
    """Filter to remove sensitive information from logs while preserving context"""

    SENSITIVE_PATTERNS = [
        # JWT tokens (eyJ...)
        (r'eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*', '[JWT_TOKEN]'),
        # Bearer tokens
        (r'Bearer\s+[A-Za-z0-9._-]+', 'Bearer [TOKEN]'),
        # Stripe secret and restricted keys
        (r'(sk|rk)_(live|test)_[A-Za-z0-9]+', '[STRIPE_KEY]'),
        # Stripe webhook signing secrets
        (r'whsec_[A-Za-z0-9]+', '[WEBHOOK_SECRET]'),
        # Secret values
        (r'secret["\s]*[:=]["\s]*[^,}\s]+', 'secret: [HIDDEN]'),
    ]

    def filter(self, record):
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                msg = re.sub(pattern, replacement, msg, flags=re.IGNORECASE)
            record.msg = msg
        return True


def setup_logging(log_file_path: Optional[str] = None):
    """Configure application logging based on environment variables"""

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    sql_log_level = os.getenv("SQL_LOG_LEVEL", "WARNING").upper()
    log_format = os.getenv("LOG_FORMAT", "text").lower()

    # Resolve default log file within logs/app.log regardless of CWD
    default_log_path = Path(__file__).resolve().parents[2] / "logs" / "app.log"
    log_file_path = log_file_path or os.getenv("LOG_FILE_PATH", str(default_log_path))
    enable_security_filter = os.getenv("ENABLE_SECURITY_FILTER", "true").lower() == "true"

    log_dir = Path(log_file_path).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    if log_format == "json":
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"module": "%(name)s", "message": "%(message)s", '
            '"line": %(lineno)d, "function": "%(funcName)s"}'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level, logging.INFO))
    console_handler.setFormatter(formatter)

    security_filter = SecurityFilter()
    if enable_security_filter:
        console_handler.addFilter(security_filter)

    root_logger.addHandler(console_handler)

    # File handler with rotation
    file_handler = logging.handlers.RotatingFileHandler(
        log_file_path,
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(getattr(logging, log_level, logging.INFO))
    file_handler.setFormatter(formatter)

    if enable_security_filter:
        file_handler.addFilter(security_filter)

    root_logger.addHandler(file_handler)

    sql_logger = logging.getLogger('sqlalchemy.engine')
    sql_logger.setLevel(getattr(logging, sql_log_level, logging.WARNING))

    app_logger = logging.getLogger('app')
    app_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Stripe SDK logs every request at INFO
    logging.getLogger('stripe').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized level=%s sql=%s file=%s",
        log_level,
        sql_log_level,
        log_file_path,
    )

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name"""
    return logging.getLogger(f"app.{name}")


def log_credit_event(event_type: str, member_id: int, amount: int,
                     remaining: Optional[int] = None, success: bool = True):
    """Log ledger movements on a dedicated logger"""
    ledger_logger = get_logger("ledger")
    if success:
        ledger_logger.info(
            "Ledger %s member=%s amount=%s remaining=%s",
            event_type, member_id, amount, remaining,
        )
    else:
        ledger_logger.warning(
            "Ledger %s rejected member=%s amount=%s remaining=%s",
            event_type, member_id, amount, remaining,
        )
