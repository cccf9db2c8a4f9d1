#!/usr/bin/env python3
"""
Retry policy with exponential backoff
One policy object serves every AI call site; what counts as retryable is
decided by an error classifier passed in by the caller.
"""

import logging
import socket
import time
from typing import Callable, Optional, TypeVar

import openai

from errors import AIErrorKind, AIRecognitionError


T = TypeVar('T')

# Backoff multiplier per error kind
BACKOFF_MULTIPLIERS = {
    AIErrorKind.RATE_LIMIT: 3,
    AIErrorKind.TIMEOUT: 2,
    AIErrorKind.TRANSIENT: 1,
}

PERMANENT_MARKERS = ('401', '403', '400', 'invalid', 'unauthorized', 'forbidden')
RATE_LIMIT_MARKERS = ('429', 'rate limit', 'rate_limit', 'too many requests')
TIMEOUT_MARKERS = ('timeout', 'timed out')
TRANSIENT_MARKERS = ('connection', 'connect', 'socket', 'network', '500', '502', '503', '504')


def classify_ai_error(error: BaseException) -> AIErrorKind:
    """
    Classify an exception raised by an AI classifier call

    OpenAI client exceptions are classified by type and HTTP status; anything
    else by its message. Unknown errors are treated as transient.
    """
    if isinstance(error, AIRecognitionError):
        return error.kind
    if isinstance(error, openai.RateLimitError):
        return AIErrorKind.RATE_LIMIT
    if isinstance(error, openai.APITimeoutError):
        return AIErrorKind.TIMEOUT
    if isinstance(error, openai.APIConnectionError):
        return AIErrorKind.TRANSIENT
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError,
                          openai.BadRequestError, openai.NotFoundError,
                          openai.UnprocessableEntityError)):
        return AIErrorKind.PERMANENT
    if isinstance(error, openai.APIStatusError):
        if error.status_code == 429:
            return AIErrorKind.RATE_LIMIT
        return AIErrorKind.TRANSIENT if error.status_code >= 500 else AIErrorKind.PERMANENT
    if isinstance(error, (TimeoutError, socket.timeout)):
        return AIErrorKind.TIMEOUT
    if isinstance(error, ConnectionError):
        return AIErrorKind.TRANSIENT

    message = str(error).lower()
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return AIErrorKind.RATE_LIMIT
    if any(marker in message for marker in TIMEOUT_MARKERS):
        return AIErrorKind.TIMEOUT
    if any(marker in message for marker in TRANSIENT_MARKERS):
        return AIErrorKind.TRANSIENT
    if any(marker in message for marker in PERMANENT_MARKERS):
        return AIErrorKind.PERMANENT
    return AIErrorKind.TRANSIENT


class RetryPolicy:
    """Calls a function up to max_attempts times, sleeping between attempts"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        classifier: Callable[[BaseException], AIErrorKind] = classify_ai_error,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None
    ):
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.classifier = classifier
        self.sleep = sleep
        self.logger = logger or logging.getLogger('TVLibrary')

    def delay_for(self, attempt: int, kind: AIErrorKind) -> float:
        """Seconds to wait after the given failed attempt (1-based)"""
        return self.base_delay * (2 ** (attempt - 1)) * BACKOFF_MULTIPLIERS.get(kind, 1)

    def call(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """
        Run fn with retries

        Raises:
            AIRecognitionError: With the kind of the last failure, once the
                failure is permanent or the attempts are used up
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                kind = self.classifier(e)
                if not kind.retryable:
                    self.logger.warning(f"Permanent error, not retrying: {e}")
                    raise AIRecognitionError(kind, str(e), e) from e
                if attempt == self.max_attempts:
                    self.logger.warning(f"Giving up after {attempt} attempts: {e}")
                    raise AIRecognitionError(kind, str(e), e) from e

                delay = self.delay_for(attempt, kind)
                self.logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed ({kind.value}): {e}; retrying in {delay:.1f}s"
                )
                self.sleep(delay)
        raise AIRecognitionError(AIErrorKind.TRANSIENT, "No attempt made")
