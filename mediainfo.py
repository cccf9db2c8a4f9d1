#!/usr/bin/env python3
"""
Technical media information for tracked files
Fills container format, codec and duration of video files using ffprobe
when it is installed; other files only get their size and mtime refreshed.
"""

import json
import logging
import shutil
import subprocess
from typing import Optional

from model import MediaFile


def ffprobe_available() -> bool:
    """Return True when ffprobe is available on PATH."""
    return shutil.which("ffprobe") is not None


class MediaInfoGatherer:
    """Gathers technical information for one MediaFile at a time"""

    def __init__(self, timeout: float = 30.0, logger: Optional[logging.Logger] = None):
        self.timeout = timeout
        self.logger = logger or logging.getLogger('TVLibrary')
        self.use_ffprobe = ffprobe_available()
        if not self.use_ffprobe:
            self.logger.debug("ffprobe not found, video details will be limited to the file extension")

    def needs_gathering(self, media_file: MediaFile, size: int, modified: float) -> bool:
        """True if never gathered or the file changed since the last scan"""
        return (
            not media_file.container_format
            or media_file.size != size
            or media_file.modified != modified
        )

    def gather(self, media_file: MediaFile, size: int, modified: float) -> None:
        media_file.size = size
        media_file.modified = modified
        media_file.container_format = media_file.path.suffix.lstrip('.').lower() or 'dir'
        if not media_file.is_video or not self.use_ffprobe or not media_file.path.is_file():
            return

        cmd = [
            "ffprobe", "-v", "error", "-print_format", "json",
            "-show_format", "-show_streams", str(media_file.path),
        ]
        try:
            completed = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.warning(f"ffprobe failed for {media_file.path}: {e}")
            return
        if completed.returncode != 0:
            self.logger.warning(f"ffprobe exited with {completed.returncode} for {media_file.path}")
            return

        try:
            payload = json.loads(completed.stdout or '{}')
        except json.JSONDecodeError as e:
            self.logger.warning(f"ffprobe returned invalid JSON for {media_file.path}: {e}")
            return

        fmt = payload.get('format') or {}
        if fmt.get('format_name'):
            media_file.container_format = fmt['format_name'].split(',')[0]
        try:
            media_file.duration = float(fmt.get('duration') or 0)
        except ValueError:
            media_file.duration = 0.0
        for stream in payload.get('streams') or []:
            if stream.get('codec_type') == 'video':
                media_file.video_codec = stream.get('codec_name') or ''
                break
