# eventcast/services/base_service.py

"""
Base Service for Business Logic.

Provides the result wrapper, the service exception hierarchy and the base
class every eventcast service inherits for session handling, the injectable
clock, and operation logging.
"""

import logging
import uuid
from abc import ABC
from dataclasses import dataclass, field
from typing import Optional, TypeVar, Generic, List

from sqlalchemy.orm import Session

from eventcast.utils.datetime_utils import utcnow


logger = logging.getLogger(__name__)
T = TypeVar('T')


@dataclass
class ServiceResult(Generic[T]):
    """
    Generic result wrapper for service operations.

    ``success`` reflects the core record operation; per-channel problems
    travel in ``errors`` and qualify ``message`` without flipping success.
    """
    success: bool
    message: str
    data: Optional[T] = None
    error_code: Optional[str] = None
    errors: List = field(default_factory=list)

    @classmethod
    def ok(cls, data: T = None, message: str = "Success", errors=None) -> 'ServiceResult[T]':
        """Create a successful result."""
        return cls(success=True, message=message, data=data, errors=list(errors or []))

    @classmethod
    def fail(cls, message: str, error_code: str = None, errors=None) -> 'ServiceResult[T]':
        """Create a failure result."""
        return cls(success=False, message=message, error_code=error_code, errors=list(errors or []))


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, error_code: str = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ValidationError(ServiceError):
    """Raised when input validation fails."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested entity is not found."""
    pass


class ConflictError(ServiceError):
    """Raised when operation conflicts with current state."""
    pass


class BaseService(ABC):
    """
    Abstract base service with common functionality.

    Example:
        class CycleService(BaseService):
            def __init__(self, session: Session):
                super().__init__(session)
                self.cycles = CycleRepository(session)
    """

    def __init__(self, session: Session, clock=None):
        """
        Args:
            session: SQLAlchemy session for database operations
            clock: zero-argument callable returning naive UTC "now"
        """
        self.session = session
        self.clock = clock or utcnow
        self.logger = logging.getLogger(self.__class__.__module__)
        self._operation_id: Optional[str] = None

        # Metrics counters
        self._operations_count = 0
        self._errors_count = 0

    def now(self):
        return self.clock()

    @property
    def operation_id(self) -> str:
        if not self._operation_id:
            self._operation_id = str(uuid.uuid4())
        return self._operation_id

    # ==================== Logging Helpers ====================

    def _log_operation_start(self, operation: str, **context):
        """Log the start of an operation with context."""
        self._operations_count += 1
        self._operation_id = str(uuid.uuid4())
        self.logger.info(
            f"[{self.__class__.__name__}] Starting {operation}",
            extra={'operation_id': self.operation_id, **context}
        )

    def _log_operation_success(self, operation: str, **context):
        """Log successful operation completion."""
        self.logger.info(
            f"[{self.__class__.__name__}] Completed {operation}",
            extra={'operation_id': self.operation_id, **context}
        )

    def _log_operation_error(self, operation: str, error: Exception, **context):
        """Log operation error."""
        self._errors_count += 1
        self.logger.error(
            f"[{self.__class__.__name__}] Failed {operation}: {error}",
            extra={
                'operation_id': self.operation_id,
                'error_type': type(error).__name__,
                **context
            },
            exc_info=not isinstance(error, ServiceError)
        )

    def get_metrics(self):
        return {
            'service': self.__class__.__name__,
            'operations': self._operations_count,
            'errors': self._errors_count,
        }
