"""Error definitions for the mdtranslate pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence


class ErrorCategory(Enum):
    """Classifies a failed attempt to pick a retry policy."""

    RATE_LIMIT = "rate_limit"
    TRANSIENT_HTTP = "transient_http"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    TIMEOUT = "timeout"
    NETWORK = "network"
    RESPONSE_SHAPE = "response_shape"
    UNKNOWN = "unknown"


class MdTranslateError(Exception):
    """Base exception for all custom errors."""


class UnsupportedFileTypeError(MdTranslateError):
    """Raised when a given file extension is not supported."""


class OverwriteRefusedError(MdTranslateError):
    """Raised when attempting to overwrite an output without consent."""


class TranslationProviderConfigurationError(MdTranslateError):
    """Raised when the translation provider is misconfigured."""


class TranslationProviderError(MdTranslateError):
    """Raised when a chat completion call fails.

    ``status_code`` and ``retry_after`` carry the HTTP details the retry
    policy needs, when the failure came from an HTTP response.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retry_after = retry_after


class ResponseParseError(MdTranslateError):
    """Raised when no valid JSON object can be extracted from a reply."""


class CountMismatchError(MdTranslateError):
    """Raised when a reply does not align one-to-one with the requested ids."""

    def __init__(
        self,
        *,
        expected: int,
        actual: int,
        missing_ids: Sequence[int] = (),
    ) -> None:
        message = (
            "Model returned incorrect number of translations "
            f"(expected {expected}, got {actual})"
        )
        if missing_ids:
            message += "; missing ids: " + ", ".join(str(i) for i in missing_ids)
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.missing_ids: List[int] = list(missing_ids)


class BatchFailedError(MdTranslateError):
    """Raised when a batch produced no usable result after all attempts."""

    def __init__(
        self,
        *,
        attempts: int,
        pending_ids: Sequence[int],
        cause: Any = None,
    ) -> None:
        reason = str(cause) if cause is not None else "unknown error"
        super().__init__(
            f"Translation failed for {len(pending_ids)} segments "
            f"after {attempts} attempts: {reason}"
        )
        self.attempts = attempts
        self.pending_ids: List[int] = list(pending_ids)
        self.cause = cause


class UntranslatedAfterRetriesError(BatchFailedError):
    """Raised when segments still look untranslated once retries run out."""

    def __init__(self, *, attempts: int, pending_ids: Sequence[int]) -> None:
        super().__init__(
            attempts=attempts,
            pending_ids=pending_ids,
            cause="Some segments remained in the source language after all retries",
        )


class NonRetryableRequestError(MdTranslateError):
    """Raised when the remote service rejects a request permanently."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GlossaryJudgeError(MdTranslateError):
    """Raised when the glossary judge call or its reply is unusable."""


@dataclass
class ErrorRecord:
    """Stores context for a handled, non-fatal problem."""

    event: str
    message: str
    details: Optional[str] = None
