"""Error taxonomy with retry logic for provider calls."""

import asyncio
import random
import re
from typing import Optional, Type, Tuple, Callable, Any
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for better handling."""
    VALIDATION = "validation"  # Malformed request payload or tool parameters
    AUTHENTICATION = "authentication"  # Missing/invalid credentials
    CONFIGURATION = "configuration"  # Provider credential absent
    ROUTING = "routing"  # Classification failed
    GENERATION = "generation"  # Model call for the answer failed
    TOOL_EXECUTION = "tool_execution"  # A tool's query or write failed
    PERSISTENCE = "persistence"  # Conversation store failure
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # Provider returned error response
    AUTH_ERROR = "auth_error"  # Provider rejected our credentials
    RATE_LIMIT = "rate_limit"  # Provider rate limit exceeded
    UNKNOWN = "unknown"


class AssistantError(Exception):
    """Base exception for all categorized errors."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = False, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)


class ValidationError(AssistantError):
    """Malformed or out-of-bounds request payload."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.VALIDATION)


class ToolArgumentsError(ValidationError):
    """Tool parameters rejected by the tool's schema."""
    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Invalid arguments for {tool_name}: {message}")


class AuthenticationError(AssistantError):
    """Missing or invalid credentials."""
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, ErrorCategory.AUTHENTICATION)


class ConfigurationError(AssistantError):
    """Required provider configuration is absent."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.CONFIGURATION)


class RoutingFailure(AssistantError):
    """Triage classification failed or was unparseable."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.ROUTING)


class GenerationFailure(AssistantError):
    """The answer-generating model call failed."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.GENERATION)


class ToolExecutionFailure(AssistantError):
    """A tool's data query or write failed."""
    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(message, ErrorCategory.TOOL_EXECUTION)


class PersistenceFailure(AssistantError):
    """Conversation store read/write failed."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.PERSISTENCE)


class NetworkError(AssistantError):
    """Network-related errors (connection, timeout)."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.NETWORK, retryable=True, retry_after=retry_after)


class APIError(AssistantError):
    """Provider returned an error response."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False, retry_after: Optional[float] = None):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.API_ERROR, retryable=retryable, retry_after=retry_after)


class AuthError(AssistantError):
    """Provider authentication/authorization errors."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH_ERROR, retryable=False)


class RateLimitError(AssistantError):
    """Provider rate limit exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, retryable=True, retry_after=retry_after)


def classify_error(error: Exception) -> Tuple[ErrorCategory, bool, Optional[float]]:
    """
    Classify an error into a category and determine if it's retryable.

    Args:
        error: The exception to classify

    Returns:
        Tuple of (category, retryable, retry_after_seconds)
    """
    if isinstance(error, AssistantError):
        return error.category, error.retryable, error.retry_after

    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return ErrorCategory.NETWORK, True, None

    error_str = str(error).lower()

    # Network errors
    if any(keyword in error_str for keyword in ['connection', 'timeout', 'network', 'dns', 'refused']):
        return ErrorCategory.NETWORK, True, None

    # Rate limit errors
    if 'rate limit' in error_str or '429' in error_str or 'too many requests' in error_str:
        retry_after = None
        match = re.search(r'retry[_-]after[:\s]+(\d+)', error_str, re.IGNORECASE)
        if match:
            retry_after = float(match.group(1))
        return ErrorCategory.RATE_LIMIT, True, retry_after

    # Auth errors
    if any(keyword in error_str for keyword in ['unauthorized', 'forbidden', '401', '403', 'authentication']):
        return ErrorCategory.AUTH_ERROR, False, None

    # API errors (non-retryable by default)
    if 'api' in error_str or 'http' in error_str:
        return ErrorCategory.API_ERROR, False, None

    return ErrorCategory.UNKNOWN, False, None


async def retry_with_backoff(
    func: Callable,
    max_retries: int = 2,
    initial_delay: float = 1.0,
    max_delay: float = 20.0,
    exponential_base: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    """
    Retry an async function with exponential backoff.

    Only errors classified as retryable are retried; everything else is
    raised immediately.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        retryable_exceptions: Tuple of exception types to retry
        on_retry: Optional callback called on each retry (exception, attempt_number)

    Returns:
        Result of the function call

    Raises:
        Last exception if all retries fail
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except retryable_exceptions as e:
            category, retryable, retry_after = classify_error(e)

            if not retryable or attempt >= max_retries:
                raise

            if retry_after:
                delay = min(retry_after, max_delay)
            else:
                delay = min(initial_delay * (exponential_base ** attempt), max_delay)

            # Add jitter to avoid thundering herd
            delay += random.uniform(0, delay * 0.1)

            if on_retry:
                # Handle both sync and async callbacks
                result = on_retry(e, attempt + 1)
                if asyncio.iscoroutine(result):
                    await result

            await asyncio.sleep(delay)


def wrap_llm_error(error: Exception, provider: str) -> AssistantError:
    """
    Wrap LLM API errors into our error types.

    Args:
        error: Original exception
        provider: LLM provider name

    Returns:
        AssistantError with appropriate category
    """
    if isinstance(error, AssistantError):
        return error

    error_str = str(error)
    error_lower = error_str.lower()
    status_code = getattr(error, 'status_code', None)

    if status_code == 429 or 'rate limit' in error_lower:
        retry_after = None
        response = getattr(error, 'response', None)
        headers = getattr(response, 'headers', None)
        if headers is not None:
            retry_after_header = headers.get('retry-after')
            if retry_after_header:
                try:
                    retry_after = float(retry_after_header)
                except ValueError:
                    retry_after = None
        return RateLimitError(f"{provider} rate limit exceeded", retry_after=retry_after)

    if status_code in (401, 403) or 'unauthorized' in error_lower or 'authentication' in error_lower:
        return AuthError(f"{provider} authentication failed: {error_str}")

    if isinstance(status_code, int):
        if status_code >= 500:
            # Server errors are retryable
            return APIError(f"{provider} server error ({status_code})", status_code=status_code, retryable=True)
        return APIError(f"{provider} API error ({status_code}): {error_str}", status_code=status_code, retryable=False)

    if isinstance(error, (asyncio.TimeoutError, ConnectionError)) or any(
        keyword in error_lower for keyword in ['connection', 'timeout', 'network']
    ):
        return NetworkError(f"{provider} network error: {error_str}")

    return APIError(f"{provider} error: {error_str}", retryable=False)
