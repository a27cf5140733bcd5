"""
Logging module for the CMS asset migration tool
"""

import json
import logging
import os
from typing import Any, Dict, Optional

LOGGER_NAME = "cms_migrator"

# Module-level flag to track if API debug logging is enabled
_DEBUG_API_ENABLED = False

# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_RECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "id",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)

SENSITIVE_KEY_PARTS = ("token", "auth", "password", "secret", "key")


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object, including context extras."""

    def format(self, record):
        data = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "module": record.module,
            "thread": record.threadName,
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_ATTRS or key in data:
                continue
            if value in ("", None):
                continue
            data[key] = value
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class EnhancedFormatter(logging.Formatter):
    """
    Formatter that supports a verbose layout (module and line number) and,
    when API debugging is on, appends request/response payloads.
    """

    def __init__(
        self,
        fmt=None,
        datefmt=None,
        style="%",
        verbose=False,
        include_api_details=False,
    ):
        if verbose:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s %(module)s:%(lineno)d] - %(message)s"
        elif not fmt:
            fmt = "%(asctime)s - %(levelname)s - %(message)s"

        super().__init__(fmt, datefmt, style)
        self.include_api_details = include_api_details

    def format(self, record):
        result = super().format(record)

        if self.include_api_details:
            if getattr(record, "api_data", None):
                result += f"\nAPI Data: {record.api_data}"
            if getattr(record, "response", None):
                result += f"\nResponse: {record.response}"

        return result


def setup_file_handlers(output_dir: str, debug_api: bool = False) -> None:
    """
    Attach the per-run log files to the migrator logger.

    ``migration.log`` receives human-readable DEBUG output and
    ``migration.jsonl`` receives one JSON object per record with every
    structured context field attached through :func:`log_with_context`.

    Args:
        output_dir: The run's output directory
        debug_api: If True, include API payloads in the text log
    """
    os.makedirs(output_dir, exist_ok=True)
    logger = logging.getLogger(LOGGER_NAME)

    log_file = os.path.join(output_dir, "migration.log")
    file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        EnhancedFormatter(
            "%(asctime)s - %(levelname)s - [%(threadName)s] - %(message)s",
            include_api_details=debug_api,
        )
    )
    logger.addHandler(file_handler)

    json_file = os.path.join(output_dir, "migration.jsonl")
    json_handler = logging.FileHandler(json_file, mode="w", encoding="utf-8")
    json_handler.setLevel(logging.DEBUG)
    json_handler.setFormatter(JsonFormatter())
    logger.addHandler(json_handler)

    logger.info(f"Log files created at: {log_file} and {json_file}")


def setup_logger(
    verbose: bool = False, debug_api: bool = False, output_dir: Optional[str] = None
) -> logging.Logger:
    """
    Set up and return the logger with appropriate formatting.

    Args:
        verbose: If True, set console handler to DEBUG level; otherwise INFO level
        debug_api: If True, enable detailed API request/response logging
        output_dir: Optional output directory for the run's log files

    Returns:
        Configured logger instance
    """
    global _DEBUG_API_ENABLED
    _DEBUG_API_ENABLED = debug_api

    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers to prevent duplicate messages
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(
        EnhancedFormatter(verbose=verbose, include_api_details=debug_api)
    )
    logger.addHandler(console_handler)

    if output_dir:
        setup_file_handlers(output_dir, debug_api)

    if debug_api:
        # requests logs connection-level detail through urllib3
        urllib3_logger = logging.getLogger("urllib3")
        urllib3_logger.setLevel(logging.DEBUG)
        for handler in logger.handlers:
            urllib3_logger.addHandler(handler)
        logger.info("API debug logging enabled")

    return logger


def log_with_context(level: int, message: str, **kwargs: Any) -> None:
    """
    Log a message with additional context information.

    Args:
        level: The logging level (e.g., logging.INFO)
        message: The log message
        **kwargs: Additional context to include in the log record
    """
    extras = {k: v for k, v in kwargs.items() if v is not None}
    if exc_info := extras.pop("exc_info", None):
        logging.getLogger(LOGGER_NAME).log(
            level, message, extra=extras, exc_info=exc_info
        )
        return
    logging.getLogger(LOGGER_NAME).log(level, message, extra=extras)


def redact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a shallow copy of ``data`` with secret-looking keys masked."""
    redacted = {}
    for key, value in data.items():
        if any(part in key.lower() for part in SENSITIVE_KEY_PARTS):
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted


def log_api_request(
    method: str, url: str, data: Optional[Dict] = None, **kwargs: Any
) -> None:
    """
    Log an API request when API debugging is enabled.

    Args:
        method: HTTP method (GET, POST, etc.)
        url: The API endpoint URL
        data: Optional request payload
        **kwargs: Additional context to include in the log record
    """
    if not is_debug_api_enabled():
        return

    log_context = kwargs.copy()
    if data and isinstance(data, dict):
        log_context["api_data"] = json.dumps(redact(data), indent=2, default=str)

    log_with_context(logging.DEBUG, f"API Request: {method} {url}", **log_context)


def log_api_response(
    status_code: int, url: str, response_data: Any = None, **kwargs: Any
) -> None:
    """
    Log an API response when API debugging is enabled.

    Args:
        status_code: HTTP status code
        url: The API endpoint URL
        response_data: Optional response body
        **kwargs: Additional context to include in the log record
    """
    if not is_debug_api_enabled():
        return

    log_context = kwargs.copy()
    if response_data:
        if isinstance(response_data, (dict, list)):
            response_str = json.dumps(response_data, indent=2, default=str)
            if len(response_str) > 2000:
                response_str = response_str[:2000] + "... [truncated]"
        else:
            response_str = str(response_data)
            if len(response_str) > 1000:
                response_str = response_str[:1000] + "... [truncated]"
        log_context["response"] = response_str

    log_with_context(
        logging.DEBUG, f"API Response: {status_code} from {url}", **log_context
    )


def is_debug_api_enabled() -> bool:
    """Check if API debug logging is enabled."""
    return _DEBUG_API_ENABLED


def get_logger() -> logging.Logger:
    """Get the cms_migrator logger, creating it with defaults if needed."""
    migrator_logger = logging.getLogger(LOGGER_NAME)
    if not migrator_logger.handlers:
        migrator_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(EnhancedFormatter())
        migrator_logger.addHandler(handler)
    return migrator_logger


# Module logger - reconfigured when setup_logger is called
logger = get_logger()
