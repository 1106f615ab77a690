# =============================================================================
# homeroom_core/errors/handlers.py
# Error Handling Utilities for the Homeroom data engine
# =============================================================================

from __future__ import annotations
import traceback
from typing import Any, Dict, Optional

from homeroom_core.logging import get_logger
from .exceptions import HomeroomError

logger = get_logger(__name__)


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Log an error once and describe it for whoever has to show it.

    The engine never renders anything itself; Streamlit pages pass the
    returned ``message`` to ``st.error``.

    Args:
        error: The exception to handle
        log_error: Whether to log the error with its traceback
        user_message: Message to show instead of the error's own

    Returns:
        {"message", "code", "details", "recoverable"}
    """
    if isinstance(error, HomeroomError):
        info = error.to_dict()
        info.pop("error_type")
    else:
        info = {
            "message": str(error),
            "code": "UNKNOWN",
            "details": {
                "traceback": "".join(
                    traceback.format_exception(type(error), error, error.__traceback__)
                ),
            },
            "recoverable": True,
        }

    if user_message:
        info["message"] = user_message

    if log_error:
        logger.error(
            f"[{info['code']}] {info['message']}",
            extra={"details": info["details"]},
            exc_info=(type(error), error, error.__traceback__),
        )
    return info
