#!/usr/bin/env python3
"""
Reconciliation of show folders against the show library
For one show folder: walk, identify the show, read season NFOs, group files
into episodes and match them (NFO, filename heuristics, AI queue), assign the
remaining files, re-evaluate stacking, backfill artwork and persist. Cleanup
of orphaned files and episodes runs separately once all shows were walked.

The engine instance is shared by the worker threads of a task; everything
specific to one show lives in local variables.
"""

import dataclasses
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Set

from classifier import (
    basename_without_stacking, find_disc_root, is_disc_file, is_disc_folder_name, is_season_artwork, is_season_nfo,
    has_extra_suffix, name_without_type,
)
from collaborators import ImageCache, ShowLibrary, VsmetaArtworkExtractor
from config import ScanConfig
from errors import AmbiguousMatchError, NfoParseError, ScanCancelledError
from logger import get_task_logger
from model import (
    DiscoveredFile, Episode, EpisodeDraft, EpisodeFileGroup, MatchResult, MatchSource, MediaFile, MediaFileType,
    PendingAIRecognition, Show,
)
from nfo import NfoParser
from pattern import (
    clean_episode_title, detect_clean_title_and_year, detect_episode, detect_ids, detect_ids_in_nfo_text,
    detect_season_from_file_and_folder, pick_best_candidate,
)
from report import MessageLog
from walker import SKIP_REGEX, DirectoryWalker, DiscoverySet, is_folder_empty


SHOW_NFO_NAME = 'tvshow.nfo'


class ReconciliationEngine:
    """Reconciles show folders with the library; one instance per update task"""

    def __init__(
        self,
        library: ShowLibrary,
        walker: DirectoryWalker,
        discovery: DiscoverySet,
        scan_config: ScanConfig,
        messages: MessageLog,
        nfo_parser: Optional[NfoParser] = None,
        cancel_event: Optional[threading.Event] = None,
        image_cache: Optional[ImageCache] = None,
        artwork_extractor: Optional[VsmetaArtworkExtractor] = None,
        task_id: str = '-',
        logger: Optional[logging.Logger] = None
    ):
        self.library = library
        self.walker = walker
        self.discovery = discovery
        self.scan_config = scan_config
        self.messages = messages
        self.nfo_parser = nfo_parser or NfoParser()
        self.cancel_event = cancel_event or threading.Event()
        self.image_cache = image_cache
        self.artwork_extractor = artwork_extractor
        self.task_id = task_id
        self.logger = logger or logging.getLogger('TVLibrary')

        self._lock = threading.Lock()
        self._pending_ai: Optional[List[PendingAIRecognition]] = None
        self._skipped_shows: Set[Path] = set()

    # shared state

    def enable_ai_queue(self) -> None:
        """Queue unresolved videos for the AI batch instead of creating unknown episodes"""
        with self._lock:
            if self._pending_ai is None:
                self._pending_ai = []

    def drain_ai_queue(self) -> List[PendingAIRecognition]:
        with self._lock:
            pending = self._pending_ai or []
            if self._pending_ai is not None:
                self._pending_ai = []
            return pending

    def mark_skipped(self, show_dir: Path) -> None:
        """Exclude a show from cleanup; its discovery set is incomplete"""
        with self._lock:
            self._skipped_shows.add(show_dir)

    def is_skipped(self, show_dir: Path) -> bool:
        with self._lock:
            return show_dir in self._skipped_shows

    def _check_cancel(self) -> None:
        if self.cancel_event.is_set():
            raise ScanCancelledError("Update cancelled")

    # per show

    def reconcile_show(self, show_dir: Path, datasource: Path) -> Optional[Show]:
        """
        Run all per-show stages for one show folder

        Args:
            show_dir: Show folder below the datasource
            datasource: Datasource root the folder belongs to

        Returns:
            The reconciled Show, or None if the folder was skipped

        Raises:
            ScanCancelledError: If the task was cancelled between stages
        """
        log = get_task_logger(self.logger, self.task_id, show_dir.name)
        self._check_cancel()

        if SKIP_REGEX.match(show_dir.name):
            log.debug("Hidden folder, skipping")
            return None

        show = self.library.find_show_by_path(show_dir)
        if show is not None and show.locked:
            log.info("Show is locked, skipping")
            self.mark_skipped(show_dir)
            return None

        discovered = self._walk(show_dir, log)
        if discovered is None:
            self.mark_skipped(show_dir)
            return None

        self.discovery.add(discovered)
        self.discovery.add_path(show_dir)

        media_files = [df.to_media_file() for df in discovered]
        relative = {df.path: df.relative_path.as_posix() for df in discovered}
        if not any(mf.is_video for mf in media_files):
            log.info("No video file found, skipping")
            return show

        if show is None:
            show = self._identify_show(show_dir, datasource, media_files, log)
        self._check_cancel()

        self._apply_season_nfos(show, media_files, log)
        queued = self._match_episodes(show, show_dir, media_files, relative, log)
        self._check_cancel()

        self._assign_remainder(show, show_dir, media_files, relative, queued, log)
        self._check_cancel()

        for episode in show.episodes:
            episode.re_evaluate_disc_folder()
            episode.re_evaluate_stacking()

        if self.scan_config.extract_artwork_from_vsmeta and self.artwork_extractor is not None:
            self._backfill_artwork(show, show_dir, log)
        self._check_cancel()

        self.library.save_show(show)
        log.debug(f"Reconciled: {len(show.episodes)} episodes, {len(show.seasons)} seasons")
        return show

    def _walk(self, show_dir: Path, log) -> Optional[List[DiscoveredFile]]:
        """Walk the show; None when the folder looks empty or unavailable"""
        discovered = self.walker.walk(show_dir)
        if discovered:
            return discovered

        if not show_dir.is_dir() or is_folder_empty(show_dir):
            self.messages.warning(str(show_dir), "Show folder is empty or unavailable, skipped")
            return None

        # Entries exist, so the empty walk may be a transient listing failure
        discovered = self.walker.walk(show_dir)
        if not discovered:
            log.debug("Folder only contains skipped content")
        return discovered

    # stage: identify show

    def _identify_show(self, show_dir: Path, datasource: Path, media_files: List[MediaFile], log) -> Show:
        show = Show(path=show_dir, datasource=datasource)
        show_nfo = next(
            (mf for mf in media_files
             if mf.type is MediaFileType.NFO and mf.filename.lower() == SHOW_NFO_NAME and mf.path.parent == show_dir),
            None,
        )
        if show_nfo is not None:
            try:
                show.merge(self.nfo_parser.parse_show_nfo(show_nfo.path))
            except NfoParseError as e:
                log.warning(f"Could not parse {show_nfo.filename}: {e}")

        if not show.title:
            title, year = detect_clean_title_and_year(show_dir.name, self.scan_config.bad_words)
            show.title = title
            show.year = show.year or year

        if show_nfo is not None and not ('imdb' in show.ids and 'tmdb' in show.ids):
            try:
                content = show_nfo.path.read_text(encoding='utf-8', errors='replace')
            except OSError as e:
                log.warning(f"Could not read {show_nfo.filename}: {e}")
            else:
                for provider, value in detect_ids_in_nfo_text(content).items():
                    show.ids.setdefault(provider, value)

        for provider, value in detect_ids(show_dir.name).items():
            show.ids.setdefault(provider, value)

        show.newly_added = True
        self.library.add_show(show)
        log.info(f"New show: {show.title}" + (f" ({show.year})" if show.year else ''))
        return show

    # stage: season NFOs

    def _apply_season_nfos(self, show: Show, media_files: List[MediaFile], log) -> None:
        for mf in media_files:
            if mf.type is not MediaFileType.NFO or not is_season_nfo(mf.filename):
                continue
            try:
                number, draft = self.nfo_parser.parse_season_nfo(mf.path)
            except NfoParseError as e:
                log.warning(f"Could not parse {mf.filename}: {e}")
                continue
            if number < 0:
                log.debug(f"{mf.filename} has no season number, ignoring")
                continue
            season = show.get_or_create_season(number)
            season.merge(draft)
            season.add_media_files(mf)

    # stage: group and match

    @staticmethod
    def _group_key(mf: MediaFile, show_dir: Path, extras: Optional[bool] = None) -> str:
        """Folder and de-stacked basename; extra suffixes only fold into the key of non-video files"""
        if extras is None:
            extras = not mf.is_video
        try:
            parent = mf.path.parent.relative_to(show_dir).as_posix()
        except ValueError:
            parent = str(mf.path.parent)
        return f"{parent}/{basename_without_stacking(name_without_type(mf.filename, extras))}".lower()

    def _group_files(self, video: MediaFile, media_files: List[MediaFile], show_dir: Path) -> EpisodeFileGroup:
        """Files sharing the video's de-stacked basename (type infix removed)"""
        key = self._group_key(video, show_dir)
        group = EpisodeFileGroup(video)
        for mf in media_files:
            if mf is video:
                continue
            other = self._group_key(mf, show_dir)
            if other == key or (not mf.is_video and other.startswith(key + '.')):
                if mf.type in (MediaFileType.POSTER, MediaFileType.GRAPHIC):
                    mf.type = MediaFileType.THUMB
                group.related.append(mf)
        return group

    @staticmethod
    def _disc_group(disc_root: Path, video: MediaFile, show_dir: Path,
                    media_files: List[MediaFile]) -> EpisodeFileGroup:
        """Files of a disc layout; a layout in the show root only owns its disc folder and disc files"""
        if disc_root == show_dir:
            folder = video.path if is_disc_folder_name(video.path.name) else video.path.parent
            return EpisodeFileGroup(video, [
                mf for mf in media_files
                if mf is not video and mf.type is not MediaFileType.UNKNOWN
                and ((folder != show_dir and folder in mf.path.parents) or is_disc_file(mf.filename))
            ])
        return EpisodeFileGroup(video, [
            mf for mf in media_files
            if mf is not video and mf.type is not MediaFileType.UNKNOWN
            and (mf.path == disc_root or disc_root in mf.path.parents)
        ])

    def _match_episodes(self, show: Show, show_dir: Path, media_files: List[MediaFile],
                        relative: Dict[Path, str], log) -> Set[Path]:
        """
        Create or update episodes for every video

        Returns:
            Paths of files queued for AI recognition
        """
        queued: Set[Path] = set()
        disc_roots: Set[Path] = set()

        videos = [mf for mf in media_files if mf.is_video]
        episode_keys = {self._group_key(mf, show_dir) for mf in videos if not has_extra_suffix(mf.filename)}

        for video in videos:
            self._check_cancel()
            if video.path in queued:
                continue
            # extras of an episode video are attached with the remainder
            if has_extra_suffix(video.filename) and self._group_key(video, show_dir, extras=True) in episode_keys:
                continue

            if video.disc:
                disc_root = find_disc_root(video.path) or video.path.parent
                # Only the first file of a disc layout is matched
                if disc_root in disc_roots:
                    continue
                disc_roots.add(disc_root)
                group = self._disc_group(disc_root, video, show_dir, media_files).files
            else:
                group = self._group_files(video, media_files, show_dir).files
            group = [mf for mf in group if mf.type is not MediaFileType.UNKNOWN]

            existing = show.episodes_for_file(video.path)
            if existing:
                for episode in existing:
                    if episode.add_media_files(*[mf for mf in group if not mf.is_video]):
                        self.library.save_episode(show, episode)
                    episode.disc = video.disc
                    episode.multi_episode = len(existing) > 1
                continue

            relative_path = relative.get(video.path, video.filename)

            if self._match_from_nfo(show, video, group, relative, log):
                continue

            result = detect_episode(relative_path, show.title)
            if not result.resolved:
                if self._queue_for_ai(show, relative_path, video, group, result):
                    queued.update(mf.path for mf in group)
                    log.debug(f"Queued for AI recognition: {relative_path}")
                else:
                    self._create_unresolved_episode(show, video, group, result)
                continue

            if len(result.episodes) == 1 and result.stacking_marker_found:
                if self._merge_stacked(show, video, group, result):
                    log.debug(f"Merged stacked part {video.filename}")
                    continue

            self._create_episodes(show, video, group, result)
            log.debug(
                f"{relative_path}: S{result.season:02d}E"
                + '/'.join(f"{n:02d}" for n in result.episodes)
            )
        return queued

    def _parse_episode_nfo(self, nfo: MediaFile, log) -> List[EpisodeDraft]:
        try:
            return self.nfo_parser.parse_episode_nfo(nfo.path)
        except NfoParseError as e:
            log.warning(f"Could not parse {nfo.filename}: {e}")
            return []

    def _match_from_nfo(self, show: Show, video: MediaFile, group: List[MediaFile],
                        relative: Dict[Path, str], log) -> bool:
        """Create episodes from the episode NFO of the group; False if there is no usable NFO"""
        nfo = next(
            (mf for mf in group
             if mf.type is MediaFileType.NFO and not is_season_nfo(mf.filename)
             and mf.filename.lower() != SHOW_NFO_NAME),
            None,
        )
        if nfo is None:
            return False
        drafts = self._parse_episode_nfo(nfo, log)
        if not drafts:
            return False

        if all(d.episode == -1 for d in drafts):
            heuristic = detect_episode(relative.get(nfo.path, nfo.filename), show.title)
            if heuristic.resolved and len(heuristic.episodes) == len(drafts):
                for draft, number in zip(drafts, heuristic.episodes):
                    draft.season = heuristic.season
                    draft.episode = number
                    if not draft.title:
                        draft.title = clean_episode_title(heuristic.title, show.title)

        if not any(d.episode > -1 or d.title for d in drafts):
            log.debug(f"{nfo.filename} holds no episode data")
            return False

        for draft in drafts:
            result = MatchResult(season=draft.season, episodes=[draft.episode], source=MatchSource.NFO)
            if draft.episode > -1 and self._merge_stacked(show, video, group, result):
                continue
            episode = self._new_episode(show, video, group, draft.season, draft.episode, multi=len(drafts) > 1)
            episode.merge(draft)
            self._save_new_episode(show, episode)
        return True

    def _queue_for_ai(self, show: Show, relative_path: str, video: MediaFile,
                      group: List[MediaFile], heuristic: MatchResult) -> bool:
        with self._lock:
            if self._pending_ai is None:
                return False
            self._pending_ai.append(PendingAIRecognition(
                show=show, relative_path=relative_path, video=video, files=list(group), heuristic=heuristic,
            ))
            return True

    def _merge_stacked(self, show: Show, video: MediaFile, group: List[MediaFile], result: MatchResult) -> bool:
        """Add the files to an existing episode with the same number and de-stacked basename"""
        video_basename = basename_without_stacking(video.filename)
        for number in result.episodes:
            for episode in show.get_episodes(result.season, number):
                main = episode.main_video_file()
                if main is not None and basename_without_stacking(main.filename) == video_basename:
                    episode.add_media_files(*group)
                    self.library.save_episode(show, episode)
                    return True
        return False

    @staticmethod
    def _new_episode(show: Show, video: MediaFile, group: List[MediaFile], season: int, number: int,
                     multi: bool = False) -> Episode:
        episode_dir = find_disc_root(video.path) if video.disc else video.path.parent
        episode = Episode(
            season=season,
            episode=number,
            path=episode_dir or video.path.parent,
            original_filename=video.filename,
            multi_episode=multi,
            disc=video.disc,
        )
        episode.ids.update(detect_ids(video.filename))
        episode.add_media_files(*group)
        return episode

    def _save_new_episode(self, show: Show, episode: Episode) -> None:
        show.add_episode(episode)
        self.library.save_episode(show, episode)

    def _create_episodes(self, show: Show, video: MediaFile, group: List[MediaFile], result: MatchResult) -> List[Episode]:
        """One Episode per number; a multi-episode file links all of them to the same files"""
        title = clean_episode_title(result.title, show.title) if result.title else ''
        created = []
        for number in result.episodes:
            episode = self._new_episode(show, video, group, result.season, number, multi=len(result.episodes) > 1)
            episode.title = title
            episode.first_aired = result.air_date
            self._save_new_episode(show, episode)
            created.append(episode)
        return created

    def _create_unresolved_episode(self, show: Show, video: MediaFile, group: List[MediaFile],
                                   result: MatchResult) -> Episode:
        """Episode without numbers so the files stay represented; a dated file keeps its year as season"""
        season = result.season if result.air_date is not None else -1
        episode = self._new_episode(show, video, group, season, -1)
        episode.title = clean_episode_title(result.title or video.basename, show.title)
        episode.first_aired = result.air_date
        self._save_new_episode(show, episode)
        return episode

    # stage: remainder

    def _assign_remainder(self, show: Show, show_dir: Path, media_files: List[MediaFile],
                          relative: Dict[Path, str], queued: Set[Path], log) -> None:
        used = {mf.path for mf in show.all_media_files()} | queued
        for mf in media_files:
            if mf.path in used:
                continue

            if mf.type is MediaFileType.POSTER and mf.path.parent != show_dir:
                mf.type = MediaFileType.SEASON_POSTER

            if is_season_artwork(mf.type):
                number = detect_season_from_file_and_folder(mf.filename, mf.path.parent.name)
                if number > -1:
                    show.get_or_create_season(number).add_media_files(mf)
                else:
                    show.add_media_files(mf)
            elif mf.is_video:
                self._assign_remaining_video(show, mf, relative.get(mf.path, mf.filename), log)
            else:
                show.add_media_files(mf)

    def _assign_remaining_video(self, show: Show, video: MediaFile, relative_path: str, log) -> None:
        result = detect_episode(relative_path, show.title)
        candidates = []
        if result.resolved:
            for number in result.episodes:
                candidates.extend(ep for ep in show.get_episodes(result.season, number) if ep not in candidates)

        if len(candidates) == 1:
            candidates[0].add_media_files(video)
            self.library.save_episode(show, candidates[0])
            return
        if not candidates:
            show.add_media_files(video)
            return

        video_basename = basename_without_stacking(video.filename).lower()

        def score(episode: Episode) -> int:
            main = episode.main_video_file()
            if main is None:
                return 0
            main_basename = basename_without_stacking(main.filename).lower()
            if video_basename.startswith(main_basename):
                return 2
            if video.path.parent.name.lower() == main_basename:
                return 1
            return 0

        try:
            best = pick_best_candidate(video.filename, candidates, score)
        except AmbiguousMatchError as e:
            self.messages.error(str(video.path), f"{e}; file left unassigned")
            return
        if best is None:
            show.add_media_files(video)
        else:
            best.add_media_files(video)
            self.library.save_episode(show, best)

    # stage: artwork backfill

    def _extract(self, vsmeta: MediaFile, artwork_type: MediaFileType, destination: Path) -> Optional[MediaFile]:
        if destination.exists():
            return None
        media_file = self.artwork_extractor.extract(vsmeta.path, artwork_type, destination)
        if media_file is not None:
            self.discovery.add_path(media_file.path, media_file.size, media_file.modified)
        return media_file

    def _backfill_artwork(self, show: Show, show_dir: Path, log) -> None:
        for episode in sorted(show.episodes, key=lambda e: (e.season, e.episode)):
            vsmeta = next((mf for mf in episode.media_files if mf.type is MediaFileType.VSMETA), None)
            video = episode.main_video_file()
            if vsmeta is None or video is None:
                continue

            if not any(mf.type is MediaFileType.THUMB for mf in episode.media_files):
                thumb = self._extract(vsmeta, MediaFileType.THUMB, video.path.with_name(f"{video.basename}-thumb.jpg"))
                if thumb is not None:
                    episode.add_media_files(thumb)
                    self.library.save_episode(show, episode)

            # Show artwork comes from the first episode that provides it
            for artwork_type in (MediaFileType.POSTER, MediaFileType.FANART):
                if show.media_files_of(artwork_type):
                    continue
                artwork = self._extract(vsmeta, artwork_type, show_dir / f"{artwork_type.value}.jpg")
                if artwork is not None:
                    show.add_media_files(artwork)

    # AI results

    def apply_ai_result(self, item: PendingAIRecognition, result: MatchResult) -> bool:
        """
        Create the episode(s) for an AI result

        Returns:
            False if an episode with that number already exists for another
            file; the caller then falls back to the heuristic result
        """
        show = item.show
        log = get_task_logger(self.logger, self.task_id, show.path.name)
        with show.lock:
            if self._merge_stacked(show, item.video, item.files, result):
                return True
            for number in result.episodes:
                if show.get_episodes(result.season, number):
                    log.warning(f"S{result.season:02d}E{number:02d} already exists, not using AI result for {item.relative_path}")
                    return False
            if not result.title:
                result = dataclasses.replace(result, title=item.heuristic.title)
            self._create_episodes(show, item.video, item.files, result)
        self.library.save_show(show)
        log.info(f"AI recognized {item.relative_path} as S{result.season:02d}E{result.episodes[0]:02d}")
        return True

    def apply_fallback(self, item: PendingAIRecognition) -> None:
        show = item.show
        with show.lock:
            self._create_unresolved_episode(show, item.video, item.files, item.heuristic)
        self.library.save_show(show)

    # cleanup

    def cleanup_shows(self, shows: List[Show]) -> None:
        """Remove files, episodes and shows that are gone from disk"""
        for show in shows:
            if show.locked or self.is_skipped(show.path):
                self.logger.debug(f"Not cleaning up {show.path.name}, it was skipped during discovery")
                continue
            if not show.path.is_dir():
                self.library.remove_show(show)
                continue
            self._cleanup_show(show)

    def _remove_missing(self, owner, show_name: str) -> bool:
        changed = False
        for mf in list(owner.media_files):
            if self.discovery.contains(mf.path):
                continue
            owner.remove_media_file(mf)
            changed = True
            self.logger.debug(f"{show_name}: removed missing file {mf.path}")
            if mf.is_graphic and self.image_cache is not None:
                self.image_cache.invalidate(mf)
        return changed

    def _cleanup_show(self, show: Show) -> None:
        name = show.path.name
        changed = self._remove_missing(show, name)
        for season in show.seasons.values():
            changed = self._remove_missing(season, name) or changed

        for episode in list(show.episodes):
            changed = self._remove_missing(episode, name) or changed
            if not episode.video_files():
                show.remove_episode(episode)
                changed = True
                self.logger.info(f"{name}: removed episode S{episode.season:02d}E{episode.episode:02d} without video")

        # Files attached to an episode do not belong to the show itself
        episode_files = set(show.episodes_media_files())
        for mf in list(show.media_files):
            if mf in episode_files:
                show.remove_media_file(mf)
                changed = True

        if changed:
            self.library.save_show(show)
