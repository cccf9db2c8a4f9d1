#!/usr/bin/env python3
"""
Data models for TV Library Updater
Defines the media files, match results and the Show/Season/Episode aggregates
that a datasource scan reconciles against.
"""

import threading
import uuid
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


class MediaFileType(Enum):
    VIDEO = "video"
    NFO = "nfo"
    POSTER = "poster"
    FANART = "fanart"
    BANNER = "banner"
    THUMB = "thumb"
    GRAPHIC = "graphic"  # Artwork without a role marker
    SEASON_POSTER = "season_poster"
    SEASON_FANART = "season_fanart"
    SEASON_BANNER = "season_banner"
    SEASON_THUMB = "season_thumb"
    SUBTITLE = "subtitle"
    DISC_MARKER = "disc_marker"  # Disc structure files other than the main identifier
    VSMETA = "vsmeta"
    UNKNOWN = "unknown"


GRAPHIC_TYPES = frozenset({
    MediaFileType.POSTER, MediaFileType.FANART, MediaFileType.BANNER,
    MediaFileType.THUMB, MediaFileType.GRAPHIC, MediaFileType.SEASON_POSTER,
    MediaFileType.SEASON_FANART, MediaFileType.SEASON_BANNER, MediaFileType.SEASON_THUMB,
})

SEASON_ARTWORK_TYPES = frozenset({
    MediaFileType.SEASON_POSTER, MediaFileType.SEASON_FANART,
    MediaFileType.SEASON_BANNER, MediaFileType.SEASON_THUMB,
})


class MatchSource(Enum):
    NFO = "nfo"
    FILENAME_HEURISTIC = "filename_heuristic"
    AI = "ai"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class DiscoveredFile:
    """A file found by the walker; immutable for the duration of one scan"""
    path: Path
    relative_path: Path  # Relative to the show root
    size: int
    modified: float
    type: MediaFileType
    is_disc_file: bool = False
    basename_without_stacking: str = ""
    stacking_marker: str = ""
    stacking_part: int = 0

    def to_media_file(self) -> 'MediaFile':
        return MediaFile(
            path=self.path,
            type=self.type,
            size=self.size,
            modified=self.modified,
            disc=self.is_disc_file,
            stacking_marker=self.stacking_marker,
            stacking_part=self.stacking_part,
        )


@dataclass(unsafe_hash=True)
class MediaFile:
    """A file tracked by a Show, Season or Episode; identified by its path"""
    path: Path
    type: MediaFileType = field(default=MediaFileType.UNKNOWN, compare=False)
    size: int = field(default=0, compare=False)
    modified: float = field(default=0.0, compare=False)
    disc: bool = field(default=False, compare=False)
    stacking_marker: str = field(default="", compare=False)
    stacking_part: int = field(default=0, compare=False)
    stacking: int = field(default=0, compare=False)  # Applied part number, 0 = not stacked
    container_format: str = field(default="", compare=False)  # Filled by the MediaInfo pass
    video_codec: str = field(default="", compare=False)
    duration: float = field(default=0.0, compare=False)

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def basename(self) -> str:
        return self.path.stem

    @property
    def is_graphic(self) -> bool:
        return self.type in GRAPHIC_TYPES

    @property
    def is_video(self) -> bool:
        return self.type is MediaFileType.VIDEO

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': str(self.path),
            'type': self.type.value,
            'size': self.size,
            'modified': self.modified,
            'disc': self.disc,
            'stacking_marker': self.stacking_marker,
            'stacking_part': self.stacking_part,
            'stacking': self.stacking,
            'container_format': self.container_format,
            'video_codec': self.video_codec,
            'duration': self.duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MediaFile':
        return cls(
            path=Path(data['path']),
            type=MediaFileType(data.get('type', 'unknown')),
            size=data.get('size', 0),
            modified=data.get('modified', 0.0),
            disc=data.get('disc', False),
            stacking_marker=data.get('stacking_marker', ''),
            stacking_part=data.get('stacking_part', 0),
            stacking=data.get('stacking', 0),
            container_format=data.get('container_format', ''),
            video_codec=data.get('video_codec', ''),
            duration=data.get('duration', 0.0),
        )


@dataclass
class EpisodeFileGroup:
    """A video plus the non-video files that share its basename or disc root"""
    video: MediaFile
    related: List[MediaFile] = field(default_factory=list)

    @property
    def files(self) -> List[MediaFile]:
        return [self.video] + [mf for mf in self.related if mf != self.video]


@dataclass
class MatchResult:
    """Season/episode guess for one video file"""
    season: int = -1
    episodes: List[int] = field(default_factory=list)
    title: str = ""
    air_date: Optional[date] = None
    stacking_marker_found: bool = False
    source: MatchSource = MatchSource.UNRESOLVED

    @property
    def resolved(self) -> bool:
        return self.season > -1 and bool(self.episodes)


@dataclass
class ShowDraft:
    """Show data read from a tvshow.nfo"""
    title: str = ""
    year: Optional[int] = None
    plot: str = ""
    ids: Dict[str, str] = field(default_factory=dict)


@dataclass
class SeasonDraft:
    title: str = ""
    plot: str = ""


@dataclass
class EpisodeDraft:
    """Episode data read from an episode NFO; -1 means unknown"""
    season: int = -1
    episode: int = -1
    title: str = ""
    plot: str = ""
    aired: Optional[date] = None
    ids: Dict[str, str] = field(default_factory=dict)


def _add_unique(media_files: List[MediaFile], new_files) -> bool:
    changed = False
    for mf in new_files:
        if mf not in media_files:
            media_files.append(mf)
            changed = True
    return changed


@dataclass(eq=False)
class Season:
    """Represents a season of a show with its own artwork and NFO"""
    number: int
    title: str = ""
    plot: str = ""
    media_files: List[MediaFile] = field(default_factory=list)

    def add_media_files(self, *media_files: MediaFile) -> bool:
        return _add_unique(self.media_files, media_files)

    def remove_media_file(self, media_file: MediaFile) -> None:
        self.media_files.remove(media_file)

    def merge(self, draft: SeasonDraft) -> None:
        if draft.title and not self.title:
            self.title = draft.title
        if draft.plot and not self.plot:
            self.plot = draft.plot

    def to_dict(self) -> Dict[str, Any]:
        return {
            'number': self.number,
            'title': self.title,
            'plot': self.plot,
            'media_files': [mf.to_dict() for mf in self.media_files],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Season':
        return cls(
            number=data['number'],
            title=data.get('title', ''),
            plot=data.get('plot', ''),
            media_files=[MediaFile.from_dict(mf) for mf in data.get('media_files', [])],
        )


@dataclass(eq=False)
class Episode:
    """Represents one episode; a multi-episode file yields one Episode per number"""
    season: int = -1
    episode: int = -1
    title: str = ""
    plot: str = ""
    path: Optional[Path] = None
    first_aired: Optional[date] = None
    ids: Dict[str, str] = field(default_factory=dict)
    media_files: List[MediaFile] = field(default_factory=list)
    multi_episode: bool = False
    disc: bool = False
    newly_added: bool = True
    original_filename: str = ""
    db_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def video_files(self) -> List[MediaFile]:
        return [mf for mf in self.media_files if mf.is_video]

    def main_video_file(self) -> Optional[MediaFile]:
        videos = self.video_files()
        return videos[0] if videos else None

    def has_file(self, path: Path) -> bool:
        return any(mf.path == path for mf in self.media_files)

    def add_media_files(self, *media_files: MediaFile) -> bool:
        return _add_unique(self.media_files, media_files)

    def remove_media_file(self, media_file: MediaFile) -> None:
        self.media_files.remove(media_file)

    def merge(self, draft: EpisodeDraft) -> None:
        """Fill empty fields from an NFO draft"""
        if draft.title and not self.title:
            self.title = draft.title
        if draft.plot and not self.plot:
            self.plot = draft.plot
        if draft.aired and not self.first_aired:
            self.first_aired = draft.aired
        for key, value in draft.ids.items():
            self.ids.setdefault(key, value)

    def re_evaluate_disc_folder(self) -> None:
        self.disc = any(mf.disc for mf in self.video_files())

    def re_evaluate_stacking(self) -> None:
        """Apply stacking part numbers only when several non-disc videos carry markers"""
        videos = self.video_files()
        stacked = (
            len(videos) > 1
            and not self.disc
            and all(mf.stacking_part > 0 for mf in videos)
        )
        for mf in videos:
            mf.stacking = mf.stacking_part if stacked else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'db_id': self.db_id,
            'season': self.season,
            'episode': self.episode,
            'title': self.title,
            'plot': self.plot,
            'path': str(self.path) if self.path else None,
            'first_aired': self.first_aired.isoformat() if self.first_aired else None,
            'ids': dict(self.ids),
            'media_files': [mf.to_dict() for mf in self.media_files],
            'multi_episode': self.multi_episode,
            'disc': self.disc,
            'newly_added': self.newly_added,
            'original_filename': self.original_filename,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Episode':
        aired = data.get('first_aired')
        return cls(
            db_id=data.get('db_id') or str(uuid.uuid4()),
            season=data.get('season', -1),
            episode=data.get('episode', -1),
            title=data.get('title', ''),
            plot=data.get('plot', ''),
            path=Path(data['path']) if data.get('path') else None,
            first_aired=date.fromisoformat(aired) if aired else None,
            ids=dict(data.get('ids', {})),
            media_files=[MediaFile.from_dict(mf) for mf in data.get('media_files', [])],
            multi_episode=data.get('multi_episode', False),
            disc=data.get('disc', False),
            newly_added=data.get('newly_added', False),
            original_filename=data.get('original_filename', ''),
        )


def show_id_for(datasource: Path, path: Path) -> str:
    """Deterministic show id derived from datasource and show path"""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{datasource}|{path}"))


@dataclass(eq=False)
class Show:
    """A show folder below a datasource, aggregating seasons and episodes"""
    path: Path
    datasource: Path
    title: str = ""
    year: Optional[int] = None
    plot: str = ""
    ids: Dict[str, str] = field(default_factory=dict)
    locked: bool = False
    newly_added: bool = True
    media_files: List[MediaFile] = field(default_factory=list)
    episodes: List[Episode] = field(default_factory=list)
    seasons: Dict[int, Season] = field(default_factory=dict)
    db_id: str = ""
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def __post_init__(self):
        if not self.db_id:
            self.db_id = show_id_for(self.datasource, self.path)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # seasons

    def get_or_create_season(self, number: int) -> Season:
        with self._lock:
            season = self.seasons.get(number)
            if season is None:
                season = Season(number=number)
                self.seasons[number] = season
            return season

    # episodes

    def add_episode(self, episode: Episode) -> None:
        with self._lock:
            if episode not in self.episodes:
                self.episodes.append(episode)

    def remove_episode(self, episode: Episode) -> None:
        with self._lock:
            if episode in self.episodes:
                self.episodes.remove(episode)

    def get_episodes(self, season: int, episode: int) -> List[Episode]:
        with self._lock:
            return [ep for ep in self.episodes if ep.season == season and ep.episode == episode]

    def episodes_for_file(self, path: Path) -> List[Episode]:
        with self._lock:
            return [ep for ep in self.episodes if ep.has_file(path)]

    def episodes_media_files(self) -> List[MediaFile]:
        seen = []
        with self._lock:
            for ep in self.episodes:
                _add_unique(seen, ep.media_files)
        return seen

    # media files

    def add_media_files(self, *media_files: MediaFile) -> bool:
        with self._lock:
            return _add_unique(self.media_files, media_files)

    def remove_media_file(self, media_file: MediaFile) -> None:
        with self._lock:
            self.media_files.remove(media_file)

    def media_files_of(self, file_type: MediaFileType) -> List[MediaFile]:
        return [mf for mf in self.media_files if mf.type is file_type]

    def all_media_files(self) -> List[MediaFile]:
        """Every MediaFile tracked by the show, its seasons and its episodes"""
        files = list(self.media_files)
        for season in self.seasons.values():
            _add_unique(files, season.media_files)
        _add_unique(files, self.episodes_media_files())
        return files

    def merge(self, draft: ShowDraft) -> None:
        if draft.title:
            self.title = draft.title
        if draft.year:
            self.year = draft.year
        if draft.plot and not self.plot:
            self.plot = draft.plot
        for key, value in draft.ids.items():
            self.ids.setdefault(key, value)

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'db_id': self.db_id,
                'path': str(self.path),
                'datasource': str(self.datasource),
                'title': self.title,
                'year': self.year,
                'plot': self.plot,
                'ids': dict(self.ids),
                'locked': self.locked,
                'newly_added': self.newly_added,
                'media_files': [mf.to_dict() for mf in self.media_files],
                'seasons': [s.to_dict() for s in sorted(self.seasons.values(), key=lambda s: s.number)],
                'episodes': [ep.to_dict() for ep in self.episodes],
            }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Show':
        seasons = [Season.from_dict(s) for s in data.get('seasons', [])]
        return cls(
            db_id=data.get('db_id', ''),
            path=Path(data['path']),
            datasource=Path(data['datasource']),
            title=data.get('title', ''),
            year=data.get('year'),
            plot=data.get('plot', ''),
            ids=dict(data.get('ids', {})),
            locked=data.get('locked', False),
            newly_added=data.get('newly_added', False),
            media_files=[MediaFile.from_dict(mf) for mf in data.get('media_files', [])],
            episodes=[Episode.from_dict(ep) for ep in data.get('episodes', [])],
            seasons={s.number: s for s in seasons},
        )


@dataclass
class PendingAIRecognition:
    """A video the filename heuristics could not resolve, queued for the AI batch"""
    show: Show
    relative_path: str
    video: MediaFile
    files: List[MediaFile] = field(default_factory=list)  # Whole group, video included
    heuristic: MatchResult = field(default_factory=MatchResult)

    @property
    def stable_id(self) -> str:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{self.show.db_id}/{self.relative_path}"))
