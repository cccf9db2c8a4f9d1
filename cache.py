#!/usr/bin/env python3
"""
Thread-safe in-memory cache for AI episode recognition results
Results are keyed by the stable id of the pending recognition so a retried or
re-triggered batch does not ask the classifier twice for the same file.

Author: Kilo Code
"""

import threading
from typing import Optional, Dict

from model import MatchResult


class RecognitionCache:
    """Thread-safe in-memory cache of MatchResults from the AI classifier"""

    def __init__(self):
        """
        Initialize the cache

        Cache is unbounded (no size limit) and thread-safe. It is cleared
        whenever the AI configuration (key, URL, enabled state) changes.
        """
        self._cache: Dict[str, MatchResult] = {}
        self._lock = threading.Lock()
        self.hits = 0

    def get(self, key: str) -> Optional[MatchResult]:
        """
        Get a cached recognition result

        Args:
            key: Stable id of the pending recognition

        Returns:
            MatchResult if found, None otherwise
        """
        with self._lock:
            result = self._cache.get(key)
            if result is not None:
                self.hits += 1
            return result

    def put(self, key: str, value: MatchResult) -> None:
        """
        Store a recognition result

        Args:
            key: Stable id of the pending recognition
            value: Resolved MatchResult
        """
        with self._lock:
            self._cache[key] = value

    def clear(self) -> None:
        """Clear all cached entries"""
        with self._lock:
            self._cache.clear()
            self.hits = 0

    def size(self) -> int:
        """
        Get the number of cached entries

        Returns:
            Number of entries in cache
        """
        with self._lock:
            return len(self._cache)
