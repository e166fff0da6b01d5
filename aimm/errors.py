"""Error codes and exception types shared by the pipeline."""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Error codes surfaced on Job rows and API responses."""

    UNKNOWN = "UNKNOWN"
    INVALID_PARAMS = "INVALID_PARAMS"
    TRACK_NOT_FOUND = "TRACK_NOT_FOUND"
    TRACK_ALREADY_GENERATING = "TRACK_ALREADY_GENERATING"
    TRACK_NO_INPUT = "TRACK_NO_INPUT"
    VARIANT_NOT_FOUND = "VARIANT_NOT_FOUND"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    GEN_PROVIDER_ERROR = "GEN_PROVIDER_ERROR"
    GEN_PROVIDER_TIMEOUT = "GEN_PROVIDER_TIMEOUT"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"


class AimmError(Exception):
    """Base error carrying a machine-readable code."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ProviderError(AimmError):
    """A music provider rejected a request or reported a failed task."""

    code = ErrorCode.GEN_PROVIDER_ERROR

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderChainError(AimmError):
    """Every provider in the chain exhausted its retries."""

    code = ErrorCode.GEN_PROVIDER_ERROR

    def __init__(self, last_error: Optional[Exception] = None):
        last_message = str(last_error) if last_error else "Unknown error"
        super().__init__(f"All providers failed. Last error: {last_message}")
        self.last_error = last_error


class ProviderTimeoutError(AimmError):
    """A provider task did not finish within the polling budget."""

    code = ErrorCode.GEN_PROVIDER_TIMEOUT

    def __init__(self, task_id: str, attempts: int):
        super().__init__(
            f"Provider task {task_id} did not complete after {attempts} polls"
        )
        self.task_id = task_id
        self.attempts = attempts


class DownloadError(AimmError):
    """Fetching or archiving a remote media file failed."""

    code = ErrorCode.DOWNLOAD_FAILED


class NotFoundError(AimmError):
    """A persisted entity does not exist."""

    def __init__(self, entity: str, entity_id: str, code: ErrorCode = ErrorCode.UNKNOWN):
        super().__init__(f"{entity} not found: {entity_id}", code)
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(AimmError):
    """A status change that the state machine does not allow."""

    code = ErrorCode.INVALID_PARAMS
