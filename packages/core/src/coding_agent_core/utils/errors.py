import logging
from typing import Any

logger = logging.getLogger(__name__)


def get_error_message(error: Any) -> str:
    """Safely gets an error message from an exception or arbitrary value."""
    if isinstance(error, BaseException):
        message = str(error)
        return message or type(error).__name__
    try:
        return str(error)
    except Exception:
        return "Failed to get error details"
