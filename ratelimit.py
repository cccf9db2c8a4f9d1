#!/usr/bin/env python3
"""
Process-wide rate limiter for AI classifier calls
Enforces a minimum interval between calls plus per-minute and per-hour
ceilings over a sliding window of recent calls.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Dict, Optional


class RateLimiter:
    """Sliding-window limiter shared by every AI batch in the process"""

    _instance: Optional['RateLimiter'] = None
    _instance_lock = threading.Lock()

    def __init__(
        self,
        max_calls_per_minute: int = 20,
        max_calls_per_hour: int = 300,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the limiter

        Args:
            max_calls_per_minute: Ceiling for calls within any 60 second window
            max_calls_per_hour: Ceiling for calls within any 3600 second window
            min_interval: Minimum seconds between two granted calls
            clock: Monotonic time source (injectable for tests)
            logger: Optional logger instance
        """
        self.max_calls_per_minute = max_calls_per_minute
        self.max_calls_per_hour = max_calls_per_hour
        self.min_interval = min_interval
        self.clock = clock
        self.logger = logger or logging.getLogger('TVLibrary')
        self._lock = threading.Lock()
        self._calls = deque()
        self._denied = 0
        self._granted = 0

    @classmethod
    def get_instance(cls) -> 'RateLimiter':
        """The process-wide limiter, created on first use"""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def configure(self, max_calls_per_minute: int, max_calls_per_hour: int, min_interval: float) -> None:
        with self._lock:
            self.max_calls_per_minute = max_calls_per_minute
            self.max_calls_per_hour = max_calls_per_hour
            self.min_interval = min_interval

    def _evict(self, now: float) -> None:
        while self._calls and now - self._calls[0] >= 3600:
            self._calls.popleft()

    def request_permission(self, service: str = 'ai') -> bool:
        """
        Ask for permission to make one call right now

        Returns:
            True and records the call if every limit allows it, False otherwise
        """
        with self._lock:
            now = self.clock()
            self._evict(now)

            if self._calls and now - self._calls[-1] < self.min_interval:
                reason = f"min interval {self.min_interval}s"
            elif sum(1 for t in self._calls if now - t < 60) >= self.max_calls_per_minute:
                reason = f"{self.max_calls_per_minute} calls/minute"
            elif len(self._calls) >= self.max_calls_per_hour:
                reason = f"{self.max_calls_per_hour} calls/hour"
            else:
                self._calls.append(now)
                self._granted += 1
                return True

            self._denied += 1
        self.logger.debug(f"Rate limit for {service} reached ({reason})")
        return False

    def wait_for_permission(self, service: str = 'ai', max_wait: float = 10.0,
                            sleep: Callable[[float], None] = time.sleep) -> bool:
        """
        Poll for permission for up to max_wait seconds

        Returns:
            True once permission is granted, False when max_wait elapsed
        """
        waited = 0.0
        step = max(min(self.min_interval, 1.0), 0.1)
        while True:
            if self.request_permission(service):
                return True
            if waited >= max_wait:
                return False
            sleep(step)
            waited += step

    def stats(self) -> Dict[str, int]:
        with self._lock:
            now = self.clock()
            self._evict(now)
            return {
                'calls_last_minute': sum(1 for t in self._calls if now - t < 60),
                'calls_last_hour': len(self._calls),
                'granted': self._granted,
                'denied': self._denied,
            }

    def reset(self) -> None:
        with self._lock:
            self._calls.clear()
            self._granted = 0
            self._denied = 0
