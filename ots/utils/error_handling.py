"""Helpers that keep storage and infrastructure details out of client responses.

Full exception details (with stack trace) are logged server-side; the client
only receives a generic message.

Security:
    - CWE-209: Generation of Error Message Containing Sensitive Information
"""

import logging

from fastapi import HTTPException


def safe_error_response(
    logger_instance: logging.Logger,
    error: Exception,
    user_message: str,
    status_code: int = 500,
    log_level: str = "error",
    context: str | None = None,
) -> None:
    """Log the full error server-side and raise a generic HTTPException.

    Args:
        logger_instance: Logger used for the server-side record
        error: The exception that was caught
        user_message: Opaque message returned to the client
        status_code: HTTP status code for the response (default: 500)
        log_level: Logging level to use (error, warning, info)
        context: Extra server-side context, e.g. a masked secret ID

    Raises:
        HTTPException: Always, with user_message as detail
    """
    log_method = getattr(logger_instance, log_level, logger_instance.error)
    suffix = f" ({context})" if context else ""
    log_method(f"{user_message}: {type(error).__name__}{suffix}", exc_info=error)

    raise HTTPException(status_code=status_code, detail=user_message)


def log_and_continue(
    logger_instance: logging.Logger,
    error: Exception,
    context_message: str,
    log_level: str = "warning",
) -> None:
    """Log an error for a non-fatal background failure and carry on.

    Used by periodic jobs whose next tick is the retry.
    """
    log_method = getattr(logger_instance, log_level, logger_instance.warning)
    log_method(f"{context_message}: {type(error).__name__}: {error}", exc_info=error)
