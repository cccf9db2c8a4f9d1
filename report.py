#!/usr/bin/env python3
"""
Progress, messages and HTML reports for TV Library Updater
Progress events go to a pluggable sink; user-visible messages are collected
per task and rendered into an HTML report at the end of a run.
"""

import html
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


@dataclass(frozen=True)
class ProgressEvent:
    """One progress update: stage, current item and counts"""
    stage: str
    item: str
    processed: int
    total: int
    eta_seconds: Optional[float] = None

    @property
    def percentage(self) -> float:
        return 100.0 * self.processed / self.total if self.total else 0.0


class ProgressReporter:
    """
    Counts processed items of a stage and emits ProgressEvents with an ETA

    The ETA is linear: elapsed time per item times the remaining items.
    """

    def __init__(self, sink: Optional[Callable[[ProgressEvent], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.sink = sink or self._log_event
        self.clock = clock
        self._lock = threading.Lock()
        self.stage = ''
        self.total = 0
        self.processed = 0
        self._started = clock()

    @staticmethod
    def _log_event(event: ProgressEvent) -> None:
        eta = f", ETA {event.eta_seconds:.0f}s" if event.eta_seconds is not None else ''
        logging.getLogger('TVLibrary').debug(
            f"{event.stage}: {event.processed}/{event.total} ({event.percentage:.0f}%){eta} {event.item}"
        )

    def start(self, stage: str, total: int) -> None:
        with self._lock:
            self.stage = stage
            self.total = total
            self.processed = 0
            self._started = self.clock()
        self.sink(ProgressEvent(stage, '', 0, total))

    def advance(self, item: str) -> ProgressEvent:
        with self._lock:
            self.processed += 1
            elapsed = self.clock() - self._started
            remaining = max(self.total - self.processed, 0)
            eta = elapsed / self.processed * remaining if self.processed else None
            event = ProgressEvent(self.stage, item, self.processed, self.total, eta)
        self.sink(event)
        return event


class MessageLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    """User-visible message about a datasource, show or file"""
    level: MessageLevel
    source: str
    text: str


class MessageLog:
    """Collects user-visible messages of one task; also logs them"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('TVLibrary')
        self._lock = threading.Lock()
        self._messages: List[Message] = []

    def push(self, level: MessageLevel, source: str, text: str) -> None:
        with self._lock:
            self._messages.append(Message(level, source, text))
        log = {MessageLevel.INFO: self.logger.info, MessageLevel.WARNING: self.logger.warning}.get(
            level, self.logger.error
        )
        log(f"{source}: {text}")

    def error(self, source: str, text: str) -> None:
        self.push(MessageLevel.ERROR, source, text)

    def warning(self, source: str, text: str) -> None:
        self.push(MessageLevel.WARNING, source, text)

    @property
    def messages(self) -> List[Message]:
        with self._lock:
            return list(self._messages)

    @property
    def errors(self) -> List[Message]:
        return [m for m in self.messages if m.level is MessageLevel.ERROR]

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()


def generate_html_report(
    report_file: Path,
    stats: Dict[str, Any],
    shows: List[Dict[str, Any]],
    messages: List[Message],
    start_time: datetime,
    end_time: datetime,
    dry_run: bool,
    log_file: Optional[Path] = None
) -> None:
    """
    Generate an HTML report of an update run

    Args:
        report_file: Path where the HTML report should be saved
        stats: Counters of the run (files visited, shows, episodes, ...)
        shows: One dict per show with title, path, episodes and unresolved counts
        messages: User-visible messages of the run
        start_time: Start time of the run
        end_time: End time of the run
        dry_run: Whether the library file was left untouched
        log_file: Log file path
    """
    esc = html.escape
    cards = ''.join(
        f'<div class="card"><h3>{esc(key.replace("_", " ").title())}</h3><div class="value">{value}</div></div>'
        for key, value in stats.items()
    )
    rows = ''.join(
        f"<tr><td>{esc(show['title'])}</td><td><code>{esc(str(show['path']))}</code></td>"
        f"<td>{show['seasons']}</td><td>{show['episodes']}</td><td>{show['unresolved']}</td></tr>"
        for show in shows
    ) or '<tr><td colspan="5"><em>No shows in scope.</em></td></tr>'
    message_items = ''.join(
        f'<li class="{m.level.value}"><strong>{esc(m.source)}</strong>: {esc(m.text)}</li>'
        for m in messages
    ) or '<li><em>No messages.</em></li>'

    html_content = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>TV Library Update Report</title>
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; background: #121212; color: #e0e0e0; padding: 20px; }}
        .cards {{ display: flex; flex-wrap: wrap; gap: 12px; }}
        .card {{ background: #1e1e1e; border-radius: 8px; padding: 12px 18px; min-width: 160px; }}
        .card .value {{ font-size: 28px; color: #4caf50; }}
        table {{ border-collapse: collapse; width: 100%; margin-top: 12px; }}
        td, th {{ border-bottom: 1px solid #333; padding: 6px; text-align: left; }}
        code {{ color: #90caf9; }}
        li.error {{ color: #ff6b6b; }}
        li.warning {{ color: #f39c12; }}
    </style>
</head>
<body>
    <h1>TV Library Update Report</h1>
    <p><strong>Start:</strong> {start_time.strftime('%Y-%m-%d %H:%M:%S')}
       <strong>End:</strong> {end_time.strftime('%Y-%m-%d %H:%M:%S')}
       <strong>Duration:</strong> {str(end_time - start_time).split('.')[0]}
       <strong>Mode:</strong> {'DRY RUN' if dry_run else 'LIVE'}</p>
    <p><strong>Log File:</strong> <code>{esc(str(log_file or '-'))}</code></p>
    <div class="cards">{cards}</div>
    <h2>Shows</h2>
    <table>
        <tr><th>Title</th><th>Path</th><th>Seasons</th><th>Episodes</th><th>Unresolved</th></tr>
        {rows}
    </table>
    <h2>Messages</h2>
    <ul>{message_items}</ul>
</body>
</html>
"""
    with open(report_file, 'w', encoding='utf-8') as f:
        f.write(html_content)
