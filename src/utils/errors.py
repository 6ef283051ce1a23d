"""Failure taxonomy and error-handling helpers for the ingestion pipeline.

Every failure that leaves the pipeline carries a stable ``category`` so callers
can tell "try again later" (timeout) apart from "this query is unrecoverable"
(schema violation). Raw provider text never goes into these messages.

Categories:
- timeout: completion call exceeded its deadline (CompletionTimeout)
- parse_failure: no JSON recoverable from the response text (ParseFailure)
- schema_violation: JSON parsed but failed validation after sanitizing (SchemaViolation)
- persistence_conflict: store-level write failure (PersistenceConflict)

EMPTY_RESULT is a reason code placed on a successful envelope, not an exception.

Helpers:
- safe_execute_async(): await a coroutine, log and degrade on failure
- safe_execute_sync(): same for plain callables
"""

from typing import Optional

from src.utils.logger import logger

EMPTY_RESULT = "empty_result"


class RecipePipelineError(Exception):
    """Base class for typed pipeline failures."""

    category = "unclassified"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.category}] {self.message}"


class CompletionTimeout(RecipePipelineError):
    """The completion service did not answer before the deadline."""

    category = "timeout"


class ParseFailure(RecipePipelineError):
    """No JSON value could be recovered from the response text."""

    category = "parse_failure"


class SchemaViolation(RecipePipelineError):
    """Parsed output failed structural validation after sanitization.

    Attributes:
        issues: Up to 5 human-readable validation issues.
        empty_recipes: True when the failure is "recipes must contain at least
            1 element" (nothing survived and there are no sources to hydrate).
    """

    category = "schema_violation"

    def __init__(
        self,
        message: str,
        issues: Optional[list[str]] = None,
        empty_recipes: bool = False,
    ) -> None:
        super().__init__(message)
        self.issues = issues or []
        self.empty_recipes = empty_recipes


class PersistenceConflict(RecipePipelineError):
    """The store rejected a write (e.g. a concurrent insert of the same source)."""

    category = "persistence_conflict"


def _log_error(operation_name: str, exception: Exception, log_level: str = "warning") -> None:
    """Log error with appropriate level. Helper to reduce duplication.

    Args:
        operation_name: Description for logging
        exception: Exception that occurred
        log_level: Logging level ("debug", "warning", "error"). Default: "warning".
    """
    msg = f"{operation_name}: {exception}"
    if log_level == "debug":
        logger.debug(msg)
    elif log_level == "error":
        logger.error(msg)
    else:
        logger.warning(msg)


async def safe_execute_async(
    coro,
    operation_name: str,
    log_level: str = "warning",
    default_return=None,
):
    """Safely execute async operation with consistent error logging.

    Used for optional stages that must degrade gracefully: a single source
    page that fails to fetch, an image provider that errors out.

    Args:
        coro: Awaitable coroutine to execute.
        operation_name: Description for logging (e.g., "Fetch source page").
        log_level: Logging level ("debug", "warning", "error"). Default: "warning".
        default_return: Value to return on exception. Default: None.

    Returns:
        Result of coroutine if successful, otherwise default_return.
    """
    try:
        return await coro
    except Exception as e:
        _log_error(operation_name, e, log_level)
        return default_return


def safe_execute_sync(
    func,
    operation_name: str,
    log_level: str = "warning",
    default_return=None,
):
    """Synchronous version of safe_execute_async.

    Args:
        func: Callable to execute (no args).
        operation_name: Description for logging.
        log_level: Logging level ("debug", "warning", "error"). Default: "warning".
        default_return: Value to return on exception. Default: None.

    Returns:
        Result of func if successful, otherwise default_return.
    """
    try:
        return func()
    except Exception as e:
        _log_error(operation_name, e, log_level)
        return default_return
