"""
Structured JSON logging for provisioning runs.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ROOT_LOGGER = 'obs_provision'


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per log record.

    Output format:
    {
        "timestamp": "2026-02-17T10:00:00.123456+00:00",
        "level": "INFO",
        "logger": "obs_provision.steps",
        "message": "Running step install-node-exporter",
        "context": {"model": "agent", "method": "install", "host": "10.0.0.5"}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        # logger.info(..., extra={'context': {...}}) or InvocationLogger
        if getattr(record, 'context', None):
            log_data['context'] = record.context

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        if record.levelno <= logging.DEBUG:
            log_data['source'] = {
                'file': record.pathname,
                'line': record.lineno,
                'function': record.funcName
            }

        return json.dumps(log_data, default=str)


class InvocationLogger(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with the invocation context.

    Context passed per call via extra={'context': {...}} is merged over
    the invocation context, so step-level fields can be added.
    """

    def process(self, msg, kwargs):
        extra = kwargs.setdefault('extra', {})
        context = dict(self.extra)
        context.update(extra.get('context') or {})
        extra['context'] = context
        return msg, kwargs


def _formatter(use_json: bool) -> logging.Formatter:
    if use_json:
        return JSONFormatter()
    return logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def get_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    use_json: bool = True
) -> logging.Logger:
    """
    Get a pre-configured logger instance.

    Args:
        name: Logger name (typically __name__)
        level: Logging level (default: INFO)
        log_file: Optional file path for file handler
        use_json: Use JSON formatter (default: True)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    has_console_handler = any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
                              for h in logger.handlers)
    has_file_handler = any(isinstance(h, logging.FileHandler) and h.baseFilename == log_file
                           for h in logger.handlers) if log_file else False

    if not has_console_handler:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(_formatter(use_json))
        logger.addHandler(console_handler)

    if log_file and not has_file_handler:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(_formatter(use_json))
        logger.addHandler(file_handler)

    return logger


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None, use_json: bool = True) -> logging.Logger:
    """Configure the package root logger; module loggers propagate to it."""
    numeric_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    # Reconfiguring replaces handlers rather than stacking them
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if isinstance(handler, logging.FileHandler):
            handler.close()
    return get_logger(ROOT_LOGGER, level=numeric_level, log_file=log_file, use_json=use_json)


def invocation_logger(name: str, context: Dict[str, Any]) -> InvocationLogger:
    return InvocationLogger(logging.getLogger(name), context)


def validate_log_format(log_line: str) -> bool:
    """
    Validate that a log line is properly formatted JSON.

    Args:
        log_line: Log line to validate

    Returns:
        True if valid JSON with required fields, False otherwise
    """
    try:
        data = json.loads(log_line)

        required_fields = ['timestamp', 'level', 'logger', 'message']
        if not all(field in data for field in required_fields):
            return False

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if data['level'] not in valid_levels:
            return False

        return True

    except (json.JSONDecodeError, TypeError):
        return False
