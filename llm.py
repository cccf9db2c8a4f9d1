#!/usr/bin/env python3
"""
AI episode recognition for TV Library Updater
Sends video paths the filename heuristics could not resolve to an LLM and
reads back season/episode guesses. Calls are batched, rate limited, retried
with backoff and always degrade to heuristic-only episodes on failure.

Supports any OpenAI-compatible chat completions endpoint.

Author: Kilo Code
"""

import logging
import re
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

import psutil
from openai import OpenAI

from cache import RecognitionCache
from config import AIConfig
from errors import AIErrorKind, AIRecognitionError
from model import MatchResult, MatchSource, PendingAIRecognition
from ratelimit import RateLimiter
from retry import RetryPolicy


RATE_LIMIT_SERVICE = 'ai-episode-recognition'

DEFAULT_SYSTEM_PROMPT = """You identify TV episodes from file paths.
Each input line is "<show title>/<path of the file inside the show folder>".
Answer with exactly one line per input line, in the same order, formatted as:
<season number> <episode number> <episode title>
Use season 0 for specials. If you cannot tell, answer "0 0" for that line.
Do not number the lines and do not add any other text."""

# "1 5 Pilot", "01 05", "3. 1 5 Title" (numbered answers are tolerated)
RESPONSE_LINE = re.compile(r'^(?:\d+[.):]\s+)?(\d{1,4})\s+(\d{1,4})(?:\s+(.*))?$')


def build_batch_lines(items: List[PendingAIRecognition]) -> List[str]:
    """One path fragment per pending item: '<show title>/<relative path>'"""
    return [f"{item.show.title or item.show.path.name}/{item.relative_path}" for item in items]


def parse_batch_response(response_text: str, items: List[PendingAIRecognition],
                         logger: Optional[logging.Logger] = None) -> Dict[str, MatchResult]:
    """
    Map response lines to pending items by position

    Blank lines are ignored. Missing lines leave their items without a
    result; surplus lines are ignored. Lines answering '0 0' or not matching
    the expected format are failures for that item only.

    Returns:
        Results keyed by the stable id of each resolved item
    """
    logger = logger or logging.getLogger('TVLibrary')
    lines = [line.strip() for line in (response_text or '').splitlines() if line.strip()]
    if len(lines) != len(items):
        logger.warning(f"AI returned {len(lines)} lines for {len(items)} files")

    results = {}
    for item, line in zip(items, lines):
        match = RESPONSE_LINE.match(line)
        if not match:
            logger.debug(f"Unparseable AI line for {item.relative_path}: {line!r}")
            continue
        season, episode = int(match.group(1)), int(match.group(2))
        if episode <= 0:
            continue
        results[item.stable_id] = MatchResult(
            season=season,
            episodes=[episode],
            title=(match.group(3) or '').strip(),
            source=MatchSource.AI,
        )
    return results


def memory_pressure() -> float:
    """Fraction of system memory in use (0.0 - 1.0)"""
    return psutil.virtual_memory().percent / 100.0


class EpisodeClassifier:
    """Thin client for the external classifier (OpenAI-compatible chat API)"""

    def __init__(self, config: AIConfig, logger: Optional[logging.Logger] = None):
        """
        Initialize the client

        Args:
            config: AI configuration (key, base URL, model, timeout, prompt file)
            logger: Optional logger instance
        """
        self.model = config.model
        self.logger = logger or logging.getLogger('TVLibrary')

        # Retries are handled by RetryPolicy, not by the client
        client_kwargs = {"api_key": config.api_key, "timeout": config.timeout, "max_retries": 0}
        if config.base_url:
            client_kwargs["base_url"] = config.base_url
        self.client = OpenAI(**client_kwargs)

        self.system_prompt = DEFAULT_SYSTEM_PROMPT
        if config.system_prompt_file:
            prompt_path = Path(config.system_prompt_file)
            if not prompt_path.exists():
                raise FileNotFoundError(f"System prompt file not found: {prompt_path}")
            with open(prompt_path, 'r', encoding='utf-8') as f:
                self.system_prompt = f.read().strip()

    def classify(self, lines: List[str]) -> str:
        """Send one batch and return the raw response text"""
        user_prompt = '\n'.join(lines)

        self.logger.debug("=" * 80)
        self.logger.debug(f"AI request ({len(lines)} files, model {self.model}):")
        self.logger.debug(f"    {user_prompt}")

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            temperature=0.1  # Low temperature for consistent extraction
        )
        response_text = response.choices[0].message.content or ''

        self.logger.debug(f"AI response ({len(response_text)} chars):")
        self.logger.debug(f"    {response_text}")
        self.logger.debug("=" * 80)
        return response_text


class AIRecognitionBatcher:
    """
    Resolves PendingAIRecognitions through the external classifier

    Only one flush may run per process at a time; an overlapping flush is
    skipped and its items go straight to the heuristic fallback.
    """

    _flush_lock = threading.Lock()

    def __init__(
        self,
        config_provider: Callable[[], AIConfig],
        rate_limiter: Optional[RateLimiter] = None,
        cache: Optional[RecognitionCache] = None,
        classifier_factory: Optional[Callable[[AIConfig], EpisodeClassifier]] = None,
        memory_probe: Callable[[], float] = memory_pressure,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None
    ):
        self.config_provider = config_provider
        self.rate_limiter = rate_limiter or RateLimiter.get_instance()
        self.cache = cache or RecognitionCache()
        self.classifier_factory = classifier_factory or (lambda cfg: EpisodeClassifier(cfg, self.logger))
        self.memory_probe = memory_probe
        self.sleep = sleep
        self.logger = logger or logging.getLogger('TVLibrary')

        self._config: Optional[AIConfig] = None
        self._fingerprint: Optional[tuple] = None
        self._classifier = None
        self._permanent_failure = False
        self.metrics = self._empty_metrics()

    @staticmethod
    def _empty_metrics() -> Dict[str, int]:
        return {
            'requests': 0, 'recognized': 0, 'failed': 0, 'fallbacks': 0,
            'cache_hits': 0, 'skipped_batches': 0, 'individual_requests': 0,
        }

    def _refresh_config(self) -> AIConfig:
        """Snapshot the configuration; a changed key/URL/state drops cached results"""
        config = self.config_provider()
        fingerprint = config.fingerprint()
        if fingerprint != self._fingerprint:
            if self._fingerprint is not None:
                self.logger.info("AI configuration changed, clearing recognition cache")
            self.cache.clear()
            self._classifier = None
            self._fingerprint = fingerprint
        self._config = config
        return config

    def adaptive_batch_size(self, total: int) -> int:
        """Smaller batches under memory pressure: 10 above 80%, 25 above 60%"""
        try:
            ratio = self.memory_probe()
        except (OSError, RuntimeError) as e:
            self.logger.debug(f"Memory probe failed: {e}")
            ratio = 0.0
        if ratio > 0.8:
            return 10
        if ratio > 0.6:
            return 25
        return max(total, 1)

    def _send(self, items: List[PendingAIRecognition], policy: RetryPolicy) -> Dict[str, MatchResult]:
        """One permission-gated, retried classifier call for a sub-batch"""
        config = self._config
        if not self.rate_limiter.wait_for_permission(RATE_LIMIT_SERVICE, config.permission_wait, self.sleep):
            self.metrics['skipped_batches'] += 1
            self.logger.warning(f"Rate limit denied, skipping AI batch of {len(items)} files")
            return {}

        if self._classifier is None:
            self._classifier = self.classifier_factory(config)

        self.metrics['requests'] += 1
        try:
            response_text = policy.call(self._classifier.classify, build_batch_lines(items))
        except AIRecognitionError as e:
            self.metrics['failed'] += 1
            if e.kind is AIErrorKind.PERMANENT:
                self._permanent_failure = True
                self.logger.error(f"AI classifier rejected the request, skipping remaining AI batches: {e}")
            else:
                self.logger.warning(f"AI batch of {len(items)} files failed: {e}")
            return {}
        return parse_batch_response(response_text, items, self.logger)

    def recognize(self, batch: List[PendingAIRecognition]) -> Dict[str, MatchResult]:
        """
        Resolve a batch of pending recognitions

        Args:
            batch: Pending items; cached items are answered without a call

        Returns:
            Results keyed by stable id; absent ids are failures for that item
        """
        config = self._config or self._refresh_config()
        policy = RetryPolicy(config.max_attempts, config.base_delay, sleep=self.sleep, logger=self.logger)
        results: Dict[str, MatchResult] = {}

        to_send = []
        for item in batch:
            cached = self.cache.get(item.stable_id)
            if cached is not None:
                self.metrics['cache_hits'] += 1
                results[item.stable_id] = cached
            else:
                to_send.append(item)

        size = config.request_batch_size
        for start in range(0, len(to_send), size):
            if self._permanent_failure:
                break
            if start:
                self.sleep(config.batch_delay)
            sub_batch = to_send[start:start + size]
            sub_results = self._send(sub_batch, policy)
            for stable_id, result in sub_results.items():
                self.cache.put(stable_id, result)
            results.update(sub_results)

        if config.individual_fallback and not self._permanent_failure:
            missing = [item for item in to_send if item.stable_id not in results]
            for item in missing:
                if self._permanent_failure:
                    break
                self.metrics['individual_requests'] += 1
                self.sleep(config.batch_delay)
                single = self._send([item], policy)
                for stable_id, result in single.items():
                    self.cache.put(stable_id, result)
                results.update(single)
        return results

    def process(
        self,
        pending: List[PendingAIRecognition],
        apply_result: Callable[[PendingAIRecognition, MatchResult], bool],
        apply_fallback: Callable[[PendingAIRecognition], None]
    ) -> Dict[str, int]:
        """
        Flush the pending queue once

        Every item ends in exactly one of apply_result (returning True when the
        result was applied) or apply_fallback.

        Returns:
            Metrics of this flush
        """
        self.metrics = self._empty_metrics()
        if not pending:
            return self.metrics

        if not AIRecognitionBatcher._flush_lock.acquire(blocking=False):
            self.logger.warning(f"AI batch already running, {len(pending)} files use heuristic results")
            for item in pending:
                self._fallback(item, apply_fallback)
            return self.metrics

        try:
            config = self._refresh_config()
            self._permanent_failure = False
            if not config.is_valid:
                self.logger.info(f"AI recognition disabled, {len(pending)} files use heuristic results")
                for item in pending:
                    self._fallback(item, apply_fallback)
                return self.metrics

            batch_size = self.adaptive_batch_size(len(pending))
            self.logger.info(f"AI recognition of {len(pending)} files in batches of {batch_size}")
            for start in range(0, len(pending), batch_size):
                chunk = pending[start:start + batch_size]
                results = self.recognize(chunk)
                for item in chunk:
                    self._settle(item, results.get(item.stable_id), apply_result, apply_fallback)

            self.logger.info(
                f"AI recognition done: {self.metrics['recognized']} recognized, "
                f"{self.metrics['fallbacks']} fallbacks, {self.metrics['requests']} requests, "
                f"{self.metrics['cache_hits']} cache hits, {self.metrics['skipped_batches']} skipped batches"
            )
            return self.metrics
        finally:
            AIRecognitionBatcher._flush_lock.release()

    def _settle(self, item: PendingAIRecognition, result: Optional[MatchResult],
                apply_result: Callable[[PendingAIRecognition, MatchResult], bool],
                apply_fallback: Callable[[PendingAIRecognition], None]) -> None:
        """Apply one result; an item whose result cannot be applied falls back"""
        if result is not None:
            try:
                if apply_result(item, result):
                    self.metrics['recognized'] += 1
                    return
            except Exception as e:
                self.logger.error(f"Could not apply AI result for {item.relative_path}: {e}", exc_info=True)
        self._fallback(item, apply_fallback)

    def _fallback(self, item: PendingAIRecognition, apply_fallback: Callable[[PendingAIRecognition], None]) -> None:
        self.metrics['fallbacks'] += 1
        try:
            apply_fallback(item)
        except Exception as e:
            self.metrics['failed'] += 1
            self.logger.error(f"Fallback failed for {item.relative_path}: {e}", exc_info=True)
