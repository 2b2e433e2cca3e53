"""
Core Exception Hierarchy for feedengine

Provides error classification with error codes, recovery suggestions and
context information. Errors fall into four families that callers handle
differently:

- Compile-time errors: the filter tree cannot be built. Terminal.
- Store-level errors: a real conflict requiring a user decision. Terminal,
  never retried automatically.
- Evaluation-time errors: collaborator failures are recoverable (retryable),
  cancellations are expected control flow.
- Builder and configuration errors.
"""

import time
import traceback
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Standard error codes for different error categories."""

    # Compile-time errors (1000-1999)
    COMPILE_TOO_MANY_BLOCKS = 1001
    COMPILE_INVALID_VALUE_SHAPE = 1002
    COMPILE_UNKNOWN_FILTER_KIND = 1003
    COMPILE_UNSUPPORTED_OPERATOR = 1004

    # Store errors (2000-2999)
    STORE_DUPLICATE_NAME = 2001
    STORE_VERSION_CONFLICT = 2002
    STORE_CANNOT_DELETE_DEFAULT = 2003
    STORE_CANNOT_DELETE_LAST = 2004
    STORE_FEED_NOT_FOUND = 2005
    STORE_INVALID_NAME = 2006
    STORE_UNAVAILABLE = 2007

    # Evaluation errors (3000-3999)
    EVAL_CORPUS_UNAVAILABLE = 3001
    EVAL_CANCELLED = 3002
    EVAL_INVALID_CURSOR = 3003
    EVAL_INVALID_LIMIT = 3004

    # Builder errors (4000-4999)
    BUILDER_UNSAVED_CHANGES = 4001
    BUILDER_INVALID_STATE = 4002
    BUILDER_SESSION_NOT_FOUND = 4003

    # Configuration errors (5000-5999)
    CONFIG_INVALID_FORMAT = 5001
    CONFIG_INVALID_VALUE = 5002
    CONFIG_FILE_NOT_FOUND = 5003

    # Generic errors (9000-9999)
    UNKNOWN_ERROR = 9000
    INTERNAL_ERROR = 9001


@dataclass
class ErrorContext:
    """Contextual information about an error occurrence."""

    operation: str = ""
    feed_id: Optional[str] = None
    owner_id: Optional[str] = None
    block_index: Optional[int] = None
    correlation_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary for serialization."""
        return {
            'operation': self.operation,
            'feed_id': self.feed_id,
            'owner_id': self.owner_id,
            'block_index': self.block_index,
            'correlation_id': self.correlation_id,
            'timestamp': self.timestamp,
            'details': self.details,
        }


@dataclass
class RecoverySuggestion:
    """Structured recovery suggestion for error resolution."""

    action: str  # Brief action description
    description: str  # Detailed explanation
    automatic: bool = False  # Whether the caller may retry without asking the user
    priority: int = 1  # Priority order (1=highest)

    def to_dict(self) -> Dict[str, Any]:
        """Convert suggestion to dictionary."""
        return {
            'action': self.action,
            'description': self.description,
            'automatic': self.automatic,
            'priority': self.priority,
        }


class FeedEngineError(Exception):
    """
    Base exception for all feedengine errors.

    Carries an error code, a context object, the original cause and a list
    of recovery suggestions so the presentation layer can render the error
    without string matching.
    """

    default_code = ErrorCode.UNKNOWN_ERROR
    default_recoverable = False

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        recoverable: Optional[bool] = None,
        suggestions: Optional[List[RecoverySuggestion]] = None
    ):
        """
        Initialize feedengine error.

        Args:
            message: Human-readable error description
            error_code: Standardized error code (class default if omitted)
            context: Contextual information about the error
            cause: Original exception that caused this error
            recoverable: Whether retrying the operation can succeed
            suggestions: List of recovery suggestions
        """
        super().__init__(message)

        self.message = message
        self.error_code = error_code or self.default_code
        self.context = context or ErrorContext()
        self.cause = cause
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self.suggestions = suggestions or []
        self.stack_trace = traceback.format_exc() if cause else None

        if not self.context.correlation_id:
            self.context.correlation_id = str(uuid.uuid4())[:8]

    def add_suggestion(self, suggestion: RecoverySuggestion) -> None:
        """Add a recovery suggestion to the error."""
        self.suggestions.append(suggestion)
        self.suggestions.sort(key=lambda s: s.priority)

    def get_user_message(self) -> str:
        """Get user-friendly error message with suggestions."""
        lines = [f"Error: {self.message}"]

        if self.error_code != ErrorCode.UNKNOWN_ERROR:
            lines.append(f"Error Code: {self.error_code.value}")

        if self.suggestions:
            lines.append("\nSuggested solutions:")
            for i, suggestion in enumerate(self.suggestions[:3], 1):
                lines.append(f"  {i}. {suggestion.action}")
                lines.append(f"     {suggestion.description}")

        return "\n".join(lines)

    def get_debug_info(self) -> Dict[str, Any]:
        """Get comprehensive debug information."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'error_code': self.error_code.value,
            'recoverable': self.recoverable,
            'context': self.context.to_dict(),
            'cause': {
                'type': type(self.cause).__name__ if self.cause else None,
                'message': str(self.cause) if self.cause else None
            },
            'suggestions': [s.to_dict() for s in self.suggestions],
            'stack_trace': self.stack_trace
        }


# ---------------------------------------------------------------------------
# Compile-time errors
# ---------------------------------------------------------------------------

class CompileError(FeedEngineError):
    """Base class for errors raised while compiling a filter tree."""

    default_code = ErrorCode.COMPILE_INVALID_VALUE_SHAPE

    def __init__(self, message: str, block_index: Optional[int] = None, **kwargs):
        context = kwargs.get('context') or ErrorContext(operation="compile")
        if block_index is not None:
            context.block_index = block_index
        kwargs['context'] = context
        super().__init__(message, **kwargs)


class TooManyBlocksError(CompileError):
    """The filter tree has more blocks than the hard cap allows."""

    default_code = ErrorCode.COMPILE_TOO_MANY_BLOCKS

    def __init__(self, block_count: int, max_blocks: int, **kwargs):
        super().__init__(
            f"Feed has {block_count} filter blocks; at most {max_blocks} are allowed",
            **kwargs
        )
        self.block_count = block_count
        self.max_blocks = max_blocks
        self.add_suggestion(RecoverySuggestion(
            action="Remove filter blocks",
            description=f"Combine or remove blocks until the feed has {max_blocks} or fewer.",
        ))


class InvalidValueShapeError(CompileError):
    """A block value does not match the shape its kind expects."""

    default_code = ErrorCode.COMPILE_INVALID_VALUE_SHAPE


class UnsupportedOperatorError(InvalidValueShapeError):
    """The operator is not meaningful for the block's kind."""

    default_code = ErrorCode.COMPILE_UNSUPPORTED_OPERATOR


class UnknownFilterKindError(CompileError):
    """The block names a filter kind the compiler does not know."""

    default_code = ErrorCode.COMPILE_UNKNOWN_FILTER_KIND

    def __init__(self, kind: Any, **kwargs):
        super().__init__(f"Unknown filter kind '{kind}'", **kwargs)
        self.kind = kind


# ---------------------------------------------------------------------------
# Store-level errors
# ---------------------------------------------------------------------------

class StoreError(FeedEngineError):
    """Base class for feed definition store errors."""

    default_code = ErrorCode.STORE_FEED_NOT_FOUND

    def __init__(
        self,
        message: str,
        feed_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        **kwargs
    ):
        context = kwargs.get('context') or ErrorContext(operation="store")
        if feed_id is not None:
            context.feed_id = feed_id
        if owner_id is not None:
            context.owner_id = owner_id
        kwargs['context'] = context
        super().__init__(message, **kwargs)


class DuplicateFeedNameError(StoreError):
    """Another feed of the same owner already uses this name (case-insensitive)."""

    default_code = ErrorCode.STORE_DUPLICATE_NAME

    def __init__(self, name: str, owner_id: Optional[str] = None, **kwargs):
        super().__init__(f"A feed named '{name}' already exists", owner_id=owner_id, **kwargs)
        self.name = name


class VersionConflictError(StoreError):
    """The stored feed changed since the caller read it."""

    default_code = ErrorCode.STORE_VERSION_CONFLICT

    def __init__(self, feed_id: str, expected_version: int, actual_version: int, **kwargs):
        super().__init__(
            f"Feed {feed_id} is at version {actual_version}, expected {expected_version}",
            feed_id=feed_id,
            **kwargs
        )
        self.expected_version = expected_version
        self.actual_version = actual_version
        self.add_suggestion(RecoverySuggestion(
            action="Review the newer version",
            description="Discard your edits, re-apply them on the latest version, or save them as a new feed.",
        ))


class CannotDeleteDefaultFeedError(StoreError):
    """The owner's default feed can be renamed or edited but never deleted."""

    default_code = ErrorCode.STORE_CANNOT_DELETE_DEFAULT


class CannotDeleteLastFeedError(StoreError):
    """Every owner keeps at least one feed."""

    default_code = ErrorCode.STORE_CANNOT_DELETE_LAST


class FeedNotFoundError(StoreError):
    """The feed does not exist or is not owned by the caller."""

    default_code = ErrorCode.STORE_FEED_NOT_FOUND


class InvalidFeedNameError(StoreError):
    """The feed name is empty or too long."""

    default_code = ErrorCode.STORE_INVALID_NAME


class StoreUnavailableError(StoreError):
    """The persistence backend failed; the operation may be retried."""

    default_code = ErrorCode.STORE_UNAVAILABLE
    default_recoverable = True


# ---------------------------------------------------------------------------
# Evaluation-time errors
# ---------------------------------------------------------------------------

class EvaluationError(FeedEngineError):
    """Base class for errors raised while evaluating a feed."""

    default_code = ErrorCode.EVAL_CORPUS_UNAVAILABLE


class CorpusUnavailableError(EvaluationError):
    """The corpus reader or social context provider failed."""

    default_code = ErrorCode.EVAL_CORPUS_UNAVAILABLE
    default_recoverable = True

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.add_suggestion(RecoverySuggestion(
            action="Retry the request",
            description="The content source failed transiently; the engine holds no partial state.",
            automatic=True,
        ))


class EvaluationCancelledError(EvaluationError):
    """A newer request superseded this evaluation."""

    default_code = ErrorCode.EVAL_CANCELLED


class InvalidCursorError(EvaluationError):
    """The pagination cursor could not be decoded."""

    default_code = ErrorCode.EVAL_INVALID_CURSOR


class InvalidPageSizeError(EvaluationError):
    """The requested page size is outside the allowed range."""

    default_code = ErrorCode.EVAL_INVALID_LIMIT


# ---------------------------------------------------------------------------
# Builder and configuration errors
# ---------------------------------------------------------------------------

class BuilderError(FeedEngineError):
    """Base class for builder session errors."""

    default_code = ErrorCode.BUILDER_INVALID_STATE


class UnsavedChangesError(BuilderError):
    """Leaving a dirty session requires explicit confirmation."""

    default_code = ErrorCode.BUILDER_UNSAVED_CHANGES


class InvalidSessionStateError(BuilderError):
    """The requested transition is not allowed from the current state."""

    default_code = ErrorCode.BUILDER_INVALID_STATE


class SessionNotFoundError(BuilderError):
    """No active builder session with this id."""

    default_code = ErrorCode.BUILDER_SESSION_NOT_FOUND


class ConfigurationError(FeedEngineError):
    """Exception raised for configuration errors."""

    default_code = ErrorCode.CONFIG_INVALID_FORMAT

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs
    ):
        context = kwargs.get('context') or ErrorContext(operation="config")
        if config_key:
            context.details['config_key'] = config_key
            context.details['config_value'] = config_value
        kwargs['context'] = context
        super().__init__(message, **kwargs)
