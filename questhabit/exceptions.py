"""
Standardized exception hierarchy for questhabit
Provides rich context, consistent logging, and user-friendly error messages

Every error carries a stable ``code`` so the progression service can turn it
into a ``{"success": False, "error": code, ...}`` result without leaking
exceptions to the caller.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class QuestHabitError(Exception):
    """
    Base exception for all questhabit errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise QuestHabitError(
            message="Failed to save completion",
            user_id="user-1",
            operation="complete_habit",
            context={"habit_id": "abc-123"}
        )
    """

    code = "internal_error"
    log_level = logging.ERROR

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "Something went wrong. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_code": self.code,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception as a failed engine result"""
        return {
            "success": False,
            "error": self.code,
            "message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (Caller Input)
# ==========================================

class InvalidInputError(QuestHabitError):
    """
    Raised when engine input is malformed

    Examples:
    - Unknown difficulty or category
    - Unknown quest requirement type
    - Negative quest count

    Example:
        raise InvalidInputError(
            message="Unknown difficulty",
            field="difficulty",
            value="legendary"
        )
    """

    code = "invalid_input"
    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# Domain Errors
# ==========================================

class AlreadyCompletedTodayError(QuestHabitError):
    """A completion for this habit already exists for the calendar date"""

    code = "already_completed_today"
    log_level = logging.INFO

    def __init__(
        self,
        habit_id: str,
        completed_date: Optional[Any] = None,
        **kwargs
    ):
        self.habit_id = habit_id
        self.completed_date = completed_date
        super().__init__(
            message=f"Habit {habit_id} already completed on {completed_date}",
            user_message="Already completed today",
            context={"habit_id": habit_id, "completed_date": str(completed_date)},
            **kwargs
        )


class RecordNotFoundError(QuestHabitError):
    """Requested record does not exist"""

    code = "not_found"
    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


class HabitNotFoundError(RecordNotFoundError):
    """Habit does not exist, belongs to another user, or is archived"""

    code = "habit_not_found"

    def __init__(self, habit_id: str, **kwargs):
        super().__init__(
            message=f"Habit {habit_id} not found",
            record_type="Habit",
            record_id=habit_id,
            **kwargs
        )


class CompletionNotFoundError(RecordNotFoundError):
    """No completion to undo for the habit on the given date"""

    code = "completion_not_found"

    def __init__(self, habit_id: str, **kwargs):
        super().__init__(
            message=f"No completion found for habit {habit_id}",
            record_type="Completion",
            record_id=habit_id,
            **kwargs
        )


class QuestNotFoundError(RecordNotFoundError):
    """Quest instance does not exist in the user's active set"""

    code = "quest_not_found"

    def __init__(self, quest_id: str, **kwargs):
        super().__init__(
            message=f"Quest {quest_id} not found",
            record_type="Quest",
            record_id=quest_id,
            **kwargs
        )


class QuestNotReadyToClaimError(QuestHabitError):
    """Claim attempted on a quest that is not in the completed state"""

    code = "quest_not_ready_to_claim"
    log_level = logging.INFO

    def __init__(self, quest_id: str, status: Optional[str] = None, **kwargs):
        self.quest_id = quest_id
        self.status = status
        super().__init__(
            message=f"Quest {quest_id} cannot be claimed while {status}",
            user_message="Quest not completed yet",
            context={"quest_id": quest_id, "status": status},
            **kwargs
        )


# ==========================================
# Persistence Errors
# ==========================================

class PersistenceError(QuestHabitError):
    """
    The persistence service call failed or timed out

    ``transient`` marks failures that are safe to retry (connection loss,
    timeouts). Constraint violations are never transient.
    """

    code = "persistence_failure"

    def __init__(
        self,
        message: str = "Persistence service call failed",
        transient: bool = False,
        **kwargs
    ):
        self.transient = transient
        kwargs.setdefault(
            "user_message",
            "We couldn't save your progress. Please try again in a moment."
        )
        super().__init__(message=message, **kwargs)


class DuplicateRecordError(PersistenceError):
    """A unique constraint rejected the write"""

    code = "duplicate_record"
    log_level = logging.INFO

    def __init__(self, message: str, constraint: Optional[str] = None, **kwargs):
        self.constraint = constraint
        context = kwargs.pop("context", None) or {}
        context["constraint"] = constraint
        super().__init__(
            message=message,
            transient=False,
            user_message="This was already recorded.",
            context=context,
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(QuestHabitError):
    """System configuration is invalid or missing"""

    code = "configuration_error"

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> QuestHabitError:
    """
    Wrap external exceptions (psycopg, etc.) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate QuestHabitError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="record_completion",
                user_id="user-1",
            )
    """
    if isinstance(error, QuestHabitError):
        return error

    import psycopg
    from psycopg import errors as pg_errors

    if isinstance(error, pg_errors.UniqueViolation):
        constraint = getattr(getattr(error, "diag", None), "constraint_name", None)
        return DuplicateRecordError(
            message=f"Unique constraint violated: {constraint}",
            constraint=constraint,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.OperationalError):
        return PersistenceError(
            message=f"Database connection failed: {str(error)}",
            transient=True,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return PersistenceError(
            message=f"Database query failed: {str(error)}",
            transient=False,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, (TimeoutError, ConnectionError)):
        return PersistenceError(
            message=f"{operation} timed out: {str(error)}",
            transient=True,
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Generic fallback
    return PersistenceError(
        message=f"{operation} failed: {str(error)}",
        user_id=user_id,
        operation=operation,
        context=context,
        cause=error
    )
