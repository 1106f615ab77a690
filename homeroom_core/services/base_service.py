# =============================================================================
# homeroom_core/services/base_service.py
# Shared result type and error wrapping for services
# =============================================================================

from __future__ import annotations
from abc import ABC
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from homeroom_core.errors import HomeroomError
from homeroom_core.logging import LogContext, get_logger


@dataclass
class ServiceResult:
    """
    Outcome of a service call: the value on success, the error message and
    code on failure. Truthy only on success, so pages can write
    ``if result: ...``.
    """
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, **metadata: Any) -> ServiceResult:
        return cls(True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, error_code: str = "SERVICE_ERROR", **metadata: Any) -> ServiceResult:
        return cls(False, error=error, error_code=error_code, metadata=metadata)

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        """Engine errors keep their code and details; anything else is EXCEPTION."""
        if isinstance(e, HomeroomError):
            return cls.fail(e.message, e.code, **e.details)
        return cls.fail(str(e), "EXCEPTION")


class BaseService(ABC):
    """
    Base for services built on the data engine.

    Subclasses keep their public methods total: they run the real work
    through ``safe_execute`` and hand back a ServiceResult.
    """

    def __init__(self):
        self.logger = get_logger(f"homeroom_core.services.{type(self).__name__}")

    def log_operation(self, operation: str) -> LogContext:
        return LogContext(self.logger, operation)

    def safe_execute(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> ServiceResult:
        """Run ``func(*args, **kwargs)`` and wrap the value or the failure."""
        try:
            with self.log_operation(operation):
                value = func(*args, **kwargs)
        except Exception as e:
            # LogContext already logged the traceback
            return ServiceResult.from_exception(e)
        return ServiceResult.ok(value)
