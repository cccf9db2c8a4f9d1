#!/usr/bin/env python3
"""
Collaborators of the reconciliation engine
The show library (persistence), the image cache and the VSMETA artwork
extractor. The engine only relies on the small interfaces defined here.
"""

import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from model import MediaFile, MediaFileType, Show, Episode


class ShowLibrary:
    """
    In-memory show library, optionally backed by a JSON file

    Saves only mark the library dirty; flush() writes the file once at the
    end of a task so a dry run can skip it.
    """

    def __init__(self, path: Optional[Path] = None, logger: Optional[logging.Logger] = None):
        self.path = path
        self.logger = logger or logging.getLogger('TVLibrary')
        self._lock = threading.RLock()
        self._shows: Dict[Path, Show] = {}
        self._dirty = False
        self.saved_shows = 0
        self.saved_episodes = 0

    @classmethod
    def load(cls, path: Path, logger: Optional[logging.Logger] = None) -> 'ShowLibrary':
        """Load a library file; a missing file yields an empty library"""
        library = cls(path, logger)
        if path.exists():
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            for show_data in data.get('shows', []):
                show = Show.from_dict(show_data)
                library._shows[show.path] = show
            library.logger.info(f"Loaded {len(library._shows)} shows from {path}")
        return library

    def find_show_by_path(self, path: Path) -> Optional[Show]:
        with self._lock:
            return self._shows.get(path)

    def get_shows(self) -> List[Show]:
        with self._lock:
            return sorted(self._shows.values(), key=lambda s: str(s.path))

    def shows_in_datasource(self, datasource: Path) -> List[Show]:
        return [s for s in self.get_shows() if s.datasource == datasource]

    def add_show(self, show: Show) -> None:
        with self._lock:
            self._shows[show.path] = show
            self._dirty = True

    def remove_show(self, show: Show) -> None:
        with self._lock:
            if self._shows.pop(show.path, None) is not None:
                self._dirty = True
                self.logger.info(f"Removed show {show.title or show.path.name}")

    def save_show(self, show: Show) -> None:
        with self._lock:
            self._shows[show.path] = show
            self._dirty = True
            self.saved_shows += 1

    def save_episode(self, show: Show, episode: Episode) -> None:
        with self._lock:
            show.add_episode(episode)
            self._dirty = True
            self.saved_episodes += 1

    @property
    def dirty(self) -> bool:
        return self._dirty

    def flush(self) -> None:
        """Write the library file if anything changed"""
        with self._lock:
            if not self._dirty or self.path is None:
                return
            data = {'shows': [show.to_dict() for show in self.get_shows()]}
            tmp = self.path.with_suffix(self.path.suffix + '.tmp')
            with open(tmp, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            tmp.replace(self.path)
            self._dirty = False
            self.logger.info(f"Library saved to {self.path} ({len(data['shows'])} shows)")


class ImageCache:
    """Cache of resized artwork, one file per source image path"""

    def __init__(self, cache_dir: Path, logger: Optional[logging.Logger] = None):
        self.cache_dir = cache_dir
        self.logger = logger or logging.getLogger('TVLibrary')

    def cache_file_for(self, media_file: MediaFile) -> Path:
        digest = hashlib.md5(str(media_file.path).encode('utf-8')).hexdigest()
        return self.cache_dir / digest[:2] / f"{digest}{media_file.path.suffix.lower()}"

    def invalidate(self, media_file: MediaFile) -> None:
        cached = self.cache_file_for(media_file)
        try:
            cached.unlink()
            self.logger.debug(f"Invalidated cached image for {media_file.path}")
        except FileNotFoundError:
            pass


JPEG_START = b'\xff\xd8\xff'
JPEG_END = b'\xff\xd9'

# Order of the embedded images in an episode .vsmeta
VSMETA_IMAGE_INDEX = {
    MediaFileType.THUMB: 0,
    MediaFileType.POSTER: 1,
    MediaFileType.FANART: 2,
}


class VsmetaArtworkExtractor:
    """Extracts JPEG artwork embedded in Synology .vsmeta sidecar files"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('TVLibrary')

    def images(self, vsmeta: Path) -> List[bytes]:
        data = vsmeta.read_bytes()
        images = []
        position = data.find(JPEG_START)
        while position >= 0:
            end = data.find(JPEG_END, position + len(JPEG_START))
            if end < 0:
                break
            images.append(data[position:end + len(JPEG_END)])
            position = data.find(JPEG_START, end + len(JPEG_END))
        return images

    def extract(self, vsmeta: Path, artwork_type: MediaFileType, destination: Path) -> Optional[MediaFile]:
        """
        Write one embedded image to destination

        Returns:
            MediaFile for the written file, None if the sidecar has no such image
        """
        index = VSMETA_IMAGE_INDEX.get(artwork_type)
        if index is None:
            return None
        try:
            images = self.images(vsmeta)
        except OSError as e:
            self.logger.warning(f"Cannot read {vsmeta}: {e}")
            return None
        if index >= len(images):
            return None

        destination.write_bytes(images[index])
        stat = destination.stat()
        self.logger.info(f"Extracted {artwork_type.value} from {vsmeta.name} to {destination.name}")
        return MediaFile(path=destination, type=artwork_type, size=stat.st_size, modified=stat.st_mtime)
