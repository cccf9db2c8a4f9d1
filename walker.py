#!/usr/bin/env python3
"""
Directory walking for TV Library Updater
Recursively collects the files of a show folder, applying skip-folder and
skip-file rules and treating disc layouts (BDMV, VIDEO_TS) as single units.
"""

import logging
import os
import re
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

from classifier import is_disc_folder_name, is_main_disc_identifier, make_discovered_file
from errors import ScanCancelledError
from model import DiscoveredFile
from util import ReadWriteLock


# System folders never scanned (compared upper-case)
SKIP_FOLDERS = {
    '.', '..', 'CERTIFICATE', '$RECYCLE.BIN', 'RECYCLER', 'SYSTEM VOLUME INFORMATION',
    '@EADIR', 'ADV_OBJ', 'EXTRATHUMB', 'PLEX VERSIONS',
}

# Hidden files and folders (.git, .@__thumb, .DS_Store)
SKIP_REGEX = re.compile(r'^[.][\w@]+.*')

# Marker files that exclude their whole folder
SKIP_FILES = ('.tmmignore', 'tmmignore', '.nomedia')


class ScanCounters:
    """Visit counters owned by one task instance, shared with its walkers"""

    def __init__(self):
        self._lock = threading.Lock()
        self.files_visited = 0
        self.directories_pre_visited = 0
        self.directories_post_visited = 0

    def file_visited(self) -> None:
        with self._lock:
            self.files_visited += 1

    def directory_pre_visited(self) -> None:
        with self._lock:
            self.directories_pre_visited += 1

    def directory_post_visited(self) -> None:
        with self._lock:
            self.directories_post_visited += 1

    def reset(self) -> None:
        with self._lock:
            self.files_visited = 0
            self.directories_pre_visited = 0
            self.directories_post_visited = 0

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {
                'files_visited': self.files_visited,
                'directories_pre_visited': self.directories_pre_visited,
                'directories_post_visited': self.directories_post_visited,
            }


class DiscoverySet:
    """
    Every path found during one scan plus its (size, mtime) attributes

    Workers write under the exclusive lock while they discover; cleanup and
    the MediaInfo pass read under the shared lock.
    """

    def __init__(self):
        self._lock = ReadWriteLock()
        self._files: Set[Path] = set()
        self._attributes: Dict[Path, Tuple[int, float]] = {}

    def add(self, discovered: Iterable[DiscoveredFile]) -> None:
        with self._lock.write_locked():
            for df in discovered:
                self._files.add(df.path)
                self._attributes[df.path] = (df.size, df.modified)

    def add_path(self, path: Path, size: int = 0, modified: float = 0.0) -> None:
        with self._lock.write_locked():
            self._files.add(path)
            self._attributes[path] = (size, modified)

    def contains(self, path: Path) -> bool:
        with self._lock.read_locked():
            return path in self._files

    def attributes(self, path: Path) -> Optional[Tuple[int, float]]:
        with self._lock.read_locked():
            return self._attributes.get(path)

    def clear(self) -> None:
        with self._lock.write_locked():
            self._files.clear()
            self._attributes.clear()

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._files)


class SkipRules:
    """
    Decides whether a folder is excluded from scanning

    User patterns are tried as regular expressions first; a pattern that does
    not compile is matched as a literal substring of the folder name.
    An absolute-path pattern also skips the folder at exactly that path.
    """

    def __init__(self, user_patterns: Optional[List[str]] = None):
        self.user_patterns = list(user_patterns or [])
        self._regexes: List[Tuple[str, Optional[re.Pattern]]] = []
        for pattern in self.user_patterns:
            try:
                self._regexes.append((pattern, re.compile(pattern)))
            except re.error:
                self._regexes.append((pattern, None))

    def is_skip_folder(self, directory: Path) -> bool:
        name = directory.name
        if name.upper() in SKIP_FOLDERS or SKIP_REGEX.match(name):
            return True

        for pattern, regex in self._regexes:
            if regex is not None:
                if regex.fullmatch(name):
                    return True
            elif pattern in name:
                return True
            # Absolute path entries; \Q..\E quoting is accepted for compatibility
            literal = pattern.replace('\\Q', '').replace('\\E', '')
            if os.path.isabs(literal) and Path(literal) == directory:
                return True
        return False


def _stat_entry(path: Path) -> Tuple[int, float]:
    stat = path.stat()
    return stat.st_size, stat.st_mtime


def list_entries(directory: Path, logger: logging.Logger) -> List[Tuple[Path, bool]]:
    """
    Single-level listing of a directory as (path, is_dir) pairs

    Uses os.scandir; on failure falls back to os.listdir plus a stat per
    entry. Errors of the fallback are logged and yield an empty listing.
    """
    try:
        with os.scandir(directory) as it:
            return sorted(
                (Path(entry.path), entry.is_dir(follow_symlinks=True)) for entry in it
            )
    except OSError as e:
        logger.warning(f"Listing {directory} failed ({e}), retrying with fallback")

    entries = []
    try:
        names = os.listdir(directory)
    except OSError as e:
        logger.error(f"Cannot list {directory}: {e}")
        return entries
    for name in sorted(names):
        path = directory / name
        try:
            entries.append((path, path.is_dir()))
        except OSError as e:
            logger.warning(f"Cannot stat {path}: {e}")
    return entries


def list_files_and_dirs(directory: Path, skip_rules: SkipRules,
                        logger: Optional[logging.Logger] = None) -> List[Path]:
    """Sorted direct children of a datasource, without skip folders"""
    logger = logger or logging.getLogger('TVLibrary')
    result = []
    for path, is_dir in list_entries(directory, logger):
        if is_dir and skip_rules.is_skip_folder(path):
            continue
        if not is_dir and path.name.upper() in SKIP_FOLDERS:
            continue
        result.append(path)
    return result


def is_folder_empty(directory: Path) -> bool:
    """Explicit emptiness check, used to double check an empty listing"""
    try:
        with os.scandir(directory) as it:
            return next(it, None) is None
    except OSError:
        return True


class DirectoryWalker:
    """Walks one show folder and returns its sorted DiscoveredFiles"""

    def __init__(
        self,
        skip_rules: SkipRules,
        counters: ScanCounters,
        cancel_event: Optional[threading.Event] = None,
        skip_nomedia: bool = True,
        logger: Optional[logging.Logger] = None
    ):
        self.skip_rules = skip_rules
        self.counters = counters
        self.cancel_event = cancel_event or threading.Event()
        self.skip_files = tuple(f for f in SKIP_FILES if skip_nomedia or f != '.nomedia')
        self.logger = logger or logging.getLogger('TVLibrary')

    def walk(self, root: Path) -> List[DiscoveredFile]:
        """
        Collect every file below root, following symlinks

        Raises:
            ScanCancelledError: If the cancel flag is set during the walk
        """
        files_per_dir: Dict[Path, List[DiscoveredFile]] = {}
        visited: Set[str] = set()
        self._visit_directory(root, root, files_per_dir, visited)

        result = [df for files in files_per_dir.values() for df in files]
        result.sort(key=lambda df: str(df.path))
        return result

    def _check_cancel(self) -> None:
        if self.cancel_event.is_set():
            raise ScanCancelledError("Walk cancelled")

    def _add(self, files_per_dir: Dict[Path, List[DiscoveredFile]], root: Path, path: Path,
             is_dir: bool = False) -> None:
        try:
            size, modified = (0, path.stat().st_mtime) if is_dir else _stat_entry(path)
        except OSError as e:
            self.logger.warning(f"Cannot read attributes of {path}: {e}")
            size, modified = 0, 0.0
        files_per_dir.setdefault(path.parent, []).append(
            make_discovered_file(path, root, size, modified, is_dir=is_dir)
        )

    def _visit_directory(self, directory: Path, root: Path,
                         files_per_dir: Dict[Path, List[DiscoveredFile]], visited: Set[str]) -> None:
        self._check_cancel()
        self.counters.directory_pre_visited()

        if directory != root and self.skip_rules.is_skip_folder(directory):
            self.logger.debug(f"Skipping folder {directory}")
            return
        if directory != root and is_disc_folder_name(directory.parent.name):
            # Disc internals (BDMV/STREAM, ...) are never classified
            return

        real = os.path.realpath(directory)
        if real in visited:
            self.logger.warning(f"Symlink loop detected at {directory}")
            return
        visited.add(real)

        files_per_dir.setdefault(directory, [])
        if directory != root and is_disc_folder_name(directory.name):
            # Disc layout is one synthetic entry; only NFOs below it are collected
            self._add(files_per_dir, root, directory, is_dir=True)

        in_disc_folder = is_disc_folder_name(directory.name)
        for path, is_dir in list_entries(directory, self.logger):
            if is_dir:
                self._visit_directory(path, root, files_per_dir, visited)
                continue
            if self._visit_file(path, root, files_per_dir, in_disc_folder):
                break

        self._post_visit_directory(directory, files_per_dir)

    def _visit_file(self, path: Path, root: Path, files_per_dir: Dict[Path, List[DiscoveredFile]],
                    in_disc_folder: bool) -> bool:
        """Record one file; returns True when the rest of the folder can be skipped"""
        self._check_cancel()
        name = path.name

        if name in self.skip_files:
            self._add(files_per_dir, root, path)
            return True

        self.counters.file_visited()
        if in_disc_folder:
            if path.suffix.lower() == '.nfo':
                self._add(files_per_dir, root, path)
            return False
        if is_main_disc_identifier(name):
            self._add(files_per_dir, root, path)
            return False
        if not SKIP_REGEX.match(name) and path.is_file():
            self._add(files_per_dir, root, path)
        return False

    def _post_visit_directory(self, directory: Path, files_per_dir: Dict[Path, List[DiscoveredFile]]) -> None:
        self._check_cancel()
        files = files_per_dir.get(directory, [])
        if any(df.path.name in self.skip_files for df in files):
            self.logger.debug(f"Skip file found in {directory}, dropping it and its subfolders")
            for key in list(files_per_dir):
                if key == directory or directory in key.parents:
                    del files_per_dir[key]
        self.counters.directory_post_visited()
