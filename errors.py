#!/usr/bin/env python3
"""
Exception types for TV Library Updater
Every failure the scan can surface to the user derives from LibraryScanError.
"""

from enum import Enum
from typing import Optional


class LibraryScanError(Exception):
    """Base class for all scan errors"""


class DatasourceUnavailableError(LibraryScanError):
    """Datasource root is missing, or empty in a way that looks unmounted"""

    def __init__(self, datasource: str, reason: str):
        super().__init__(f"Datasource unavailable: {datasource} ({reason})")
        self.datasource = datasource
        self.reason = reason


class AmbiguousMatchError(LibraryScanError):
    """Two or more candidates share the best score"""

    def __init__(self, item: str, candidates: list):
        super().__init__(f"Ambiguous match for '{item}': {len(candidates)} candidates tied")
        self.item = item
        self.candidates = candidates


class ScanCancelledError(LibraryScanError):
    """Raised when the shared cancellation flag is set mid-scan"""


class NfoParseError(LibraryScanError):
    """An NFO file could not be read or contains no usable data"""


class AIErrorKind(Enum):
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    PERMANENT = "permanent"

    @property
    def retryable(self) -> bool:
        return self is not AIErrorKind.PERMANENT


class AIRecognitionError(LibraryScanError):
    """AI classifier call failed after the retry policy gave up"""

    def __init__(self, kind: AIErrorKind, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.kind = kind
        self.cause = cause
