# ========================
# src/pipeline/errors.py
# ========================

"""
Pipeline Error Taxonomy

Structured error kinds raised by the configuration model, data sources and
engine stages. Every error carries a human-readable message and an optional
underlying cause, which is also chained as ``__cause__``.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def unwrap(self) -> Optional[BaseException]:
        """Return the underlying cause, if any."""
        return self.cause


class ConfigurationError(PipelineError):
    """Invalid or missing configuration field. Never retried."""

    def __init__(self, field: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"configuration error in field '{self.field}': {self.message}"
        return f"configuration error: {self.message}"


class AuthenticationError(PipelineError):
    """
    Credential failure raised by data source collaborators.

    The error only carries retry state; the caller decides whether and when
    to retry.
    """

    DEFAULT_MAX_RETRIES = 3

    def __init__(self,
                 message: str,
                 cause: Optional[BaseException] = None,
                 retry_attempt: int = 0,
                 max_retries: int = DEFAULT_MAX_RETRIES):
        super().__init__(message, cause)
        self.retry_attempt = retry_attempt
        self.max_retries = max_retries

    def __str__(self) -> str:
        return f"authentication error: {self.message}"

    def is_retryable(self) -> bool:
        return self.retry_attempt < self.max_retries

    def increment_retry_attempt(self) -> None:
        self.retry_attempt += 1


class DataProcessError(PipelineError):
    """
    Failure inside an engine stage.

    Fatal by default. A recoverable error carries a free-text recovery hint
    for the caller; the engine never acts on it.
    """

    def __init__(self,
                 step: str,
                 message: str,
                 cause: Optional[BaseException] = None,
                 recoverable: bool = False,
                 recovery_action: str = ""):
        super().__init__(message, cause)
        self.step = step
        self.recoverable = recoverable
        self.recovery_action = recovery_action

    def __str__(self) -> str:
        if self.step:
            return f"data process error in step '{self.step}': {self.message}"
        return f"data process error: {self.message}"

    def is_recoverable(self) -> bool:
        return self.recoverable

    def get_recovery_action(self) -> str:
        return self.recovery_action


class OperationCancelledError(DataProcessError):
    """A stage observed cancellation or an expired deadline."""


def recoverable_data_process_error(step: str,
                                   message: str,
                                   cause: Optional[BaseException] = None,
                                   recovery_action: str = "") -> DataProcessError:
    """Build a DataProcessError flagged as recoverable."""
    return DataProcessError(step, message, cause, recoverable=True, recovery_action=recovery_action)


def _find_in_chain(error: Optional[BaseException], error_type: type) -> bool:
    seen = set()
    while error is not None and id(error) not in seen:
        if isinstance(error, error_type):
            return True
        seen.add(id(error))
        error = error.__cause__ or error.__context__
    return False


def is_configuration_error(error: Optional[BaseException]) -> bool:
    """True if ``error`` is, or wraps, a ConfigurationError."""
    return _find_in_chain(error, ConfigurationError)


def is_authentication_error(error: Optional[BaseException]) -> bool:
    """True if ``error`` is, or wraps, an AuthenticationError."""
    return _find_in_chain(error, AuthenticationError)


def is_data_process_error(error: Optional[BaseException]) -> bool:
    """True if ``error`` is, or wraps, a DataProcessError."""
    return _find_in_chain(error, DataProcessError)
