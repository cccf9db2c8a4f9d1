#!/usr/bin/env python3
"""
TV Library Updater
Scans datasource folders of TV shows and reconciles what is on disk with the
show library: shows, seasons and episodes together with their video, NFO,
artwork and subtitle files. Episode files the filename heuristics cannot
resolve are identified in one AI batch at the end of a datasource update.
"""

import argparse
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from classifier import classify
from collaborators import ImageCache, ShowLibrary, VsmetaArtworkExtractor
from config import Config, load_config
from errors import DatasourceUnavailableError, ScanCancelledError
from llm import AIRecognitionBatcher
from logger import Colors, get_task_logger, setup_logging
from mediainfo import MediaInfoGatherer
from model import MatchResult, MediaFileType, PendingAIRecognition, Show
from ratelimit import RateLimiter
from reconciler import ReconciliationEngine
from report import MessageLog, ProgressReporter, generate_html_report
from walker import DirectoryWalker, DiscoverySet, ScanCounters, SkipRules, is_folder_empty, list_files_and_dirs

__version__ = '1.0.0'


class UpdateDatasourceTask:
    """
    One library update: whole datasources, or a selection of known shows

    Shows are reconciled in parallel by a small worker pool; cleanup of
    orphaned files, the AI flush and the MediaInfo pass run afterwards.
    """

    def __init__(
        self,
        config: Config,
        library: ShowLibrary,
        datasources: Optional[Sequence[Path]] = None,
        shows: Optional[Sequence[Show]] = None,
        dry_run: bool = False,
        batcher: Optional[AIRecognitionBatcher] = None,
        mediainfo: Optional[MediaInfoGatherer] = None,
        progress: Optional[ProgressReporter] = None,
        logger=None
    ):
        """
        Initialize the task

        Args:
            config: Application configuration
            library: Show library to reconcile against
            datasources: Datasource roots to update (default: config.datasources)
            shows: Update only these shows instead of whole datasources
            dry_run: Walk and reconcile without writing the library file
            batcher: AI batcher (created from the config when needed)
            mediainfo: MediaInfo gatherer (created when needed)
            progress: Progress reporter (default: DEBUG log)
            logger: Optional logger instance
        """
        self.task_id = uuid.uuid4().hex[:8]
        self.config = config
        self.library = library
        self.datasources = [Path(d) for d in (datasources if datasources is not None else config.datasources)]
        self.shows = list(shows) if shows is not None else None
        self.dry_run = dry_run
        self.log = get_task_logger(logger or library.logger, self.task_id)

        self.cancel_event = threading.Event()
        self.counters = ScanCounters()
        self.discovery = DiscoverySet()
        self.messages = MessageLog(self.log.logger)
        self.progress = progress or ProgressReporter()
        self.skip_rules = SkipRules(config.scan.skip_folders)
        self.walker = DirectoryWalker(
            self.skip_rules, self.counters, self.cancel_event,
            skip_nomedia=config.scan.skip_folders_with_nomedia, logger=self.log.logger,
        )
        image_cache_dir = config.library.image_cache_dir
        self.engine = ReconciliationEngine(
            library=library,
            walker=self.walker,
            discovery=self.discovery,
            scan_config=config.scan,
            messages=self.messages,
            cancel_event=self.cancel_event,
            image_cache=ImageCache(image_cache_dir) if image_cache_dir else None,
            # a dry run leaves the datasource untouched
            artwork_extractor=None if dry_run else VsmetaArtworkExtractor(self.log.logger),
            task_id=self.task_id,
            logger=self.log.logger,
        )
        self._batcher = batcher
        self._mediainfo = mediainfo

        self.updated_shows: List[Show] = []
        self.stats: Dict[str, int] = {}

    def cancel(self) -> None:
        """Ask the workers to stop; checked between stages and while walking"""
        self.cancel_event.set()

    def _check_cancel(self) -> None:
        if self.cancel_event.is_set():
            raise ScanCancelledError("Update cancelled")

    # run

    def run(self) -> bool:
        """
        Run the update

        Returns:
            True if the task completed, False if it was cancelled or crashed
        """
        self.counters.reset()
        self.discovery.clear()
        self.updated_shows = []
        self.stats = {'shows_processed': 0, 'shows_failed': 0}
        self.log.info(f"Update started ({'shows' if self.shows is not None else 'datasources'}"
                      f"{', dry run' if self.dry_run else ''})")
        try:
            if self.shows is not None:
                self._update_shows()
            else:
                self._update_datasources()
            self._check_cancel()
            self._gather_media_info()
            if not self.dry_run:
                self.library.flush()
            return True
        except DatasourceUnavailableError as e:
            self.messages.error(self.task_id, str(e))
            return False
        except ScanCancelledError:
            self.log.warning("Update cancelled")
            self.messages.warning(self.task_id, "Update cancelled")
            return False
        except Exception as e:
            self.log.error(f"Update task crashed: {e}", exc_info=True)
            self.messages.error(self.task_id, f"Update task crashed: {e}")
            return False
        finally:
            self.stats.update(self.counters.snapshot())
            self.counters.reset()
            self.log.info(
                f"Update finished: {self.stats.get('shows_processed', 0)} shows, "
                f"{self.stats.get('files_visited', 0)} files visited, {len(self.messages.errors)} errors"
            )

    # datasources

    def _update_datasources(self) -> None:
        if not self.datasources:
            raise DatasourceUnavailableError('-', "no datasource configured")

        if self.config.scan.reset_new_flag_on_update:
            for datasource in self.datasources:
                for show in self.library.shows_in_datasource(datasource):
                    show.newly_added = False
                    for episode in show.episodes:
                        episode.newly_added = False

        if self.config.ai.enabled:
            self.engine.enable_ai_queue()

        unavailable = 0
        for datasource in self.datasources:
            self._check_cancel()
            try:
                self._update_datasource(datasource)
            except DatasourceUnavailableError as e:
                self.messages.error(str(datasource), str(e))
                unavailable += 1
        if unavailable == len(self.datasources):
            raise DatasourceUnavailableError('all', "no datasource could be scanned")

        self._check_cancel()
        self._flush_ai_queue()

    def _list_show_dirs(self, datasource: Path) -> List[Path]:
        entries = list_files_and_dirs(datasource, self.skip_rules, self.log.logger)
        if not entries:
            if is_folder_empty(datasource):
                raise DatasourceUnavailableError(datasource, "datasource is empty or not mounted")
            entries = list_files_and_dirs(datasource, self.skip_rules, self.log.logger)

        show_dirs = []
        for path in entries:
            if path.is_dir():
                # Alphabetical grouping folders (A/, B/, ...) hold the shows one level down
                if len(path.name) == 1:
                    show_dirs.extend(p for p in list_files_and_dirs(path, self.skip_rules, self.log.logger) if p.is_dir())
                else:
                    show_dirs.append(path)
            elif classify(path) is MediaFileType.VIDEO:
                self.messages.error(str(path), "Video file in the datasource root is not part of a show folder")
        return show_dirs

    def _update_datasource(self, datasource: Path) -> None:
        if self.skip_rules.is_skip_folder(datasource):
            self.log.info(f"Datasource {datasource} is a skip folder, ignoring")
            return
        if not datasource.is_dir():
            raise DatasourceUnavailableError(datasource, "datasource not found")

        show_dirs = self._list_show_dirs(datasource)
        # New shows first so they appear in the library early
        new_dirs = [d for d in show_dirs if self.library.find_show_by_path(d) is None]
        known_dirs = [d for d in show_dirs if self.library.find_show_by_path(d) is not None]
        self.log.info(f"Datasource {datasource}: {len(new_dirs)} new, {len(known_dirs)} known show folders")

        self._reconcile(new_dirs + known_dirs, datasource)
        self._check_cancel()
        self.engine.cleanup_shows(self.library.shows_in_datasource(datasource))

    # selected shows

    def _update_shows(self) -> None:
        by_datasource: Dict[Path, List[Show]] = {}
        for show in self.shows:
            if show.locked:
                self.log.info(f"Show {show.title or show.path.name} is locked, skipping")
                continue
            by_datasource.setdefault(show.datasource, []).append(show)

        for datasource, shows in by_datasource.items():
            self._check_cancel()
            self._reconcile([show.path for show in shows], datasource)
            self._check_cancel()
            self.engine.cleanup_shows(shows)

    # workers

    def _reconcile_show(self, show_dir: Path, datasource: Path) -> Optional[Show]:
        self._check_cancel()
        return self.engine.reconcile_show(show_dir, datasource)

    def _reconcile(self, show_dirs: List[Path], datasource: Path) -> None:
        """Reconcile show folders on the worker pool"""
        if not show_dirs:
            return
        self.progress.start('update', len(show_dirs))
        with ThreadPoolExecutor(max_workers=self.config.scan.workers) as executor:
            future_to_show = {
                executor.submit(self._reconcile_show, show_dir, datasource): show_dir
                for show_dir in show_dirs
            }

            for future in as_completed(future_to_show):
                show_dir = future_to_show[future]
                try:
                    show = future.result()
                    if show is not None:
                        self.updated_shows.append(show)
                        self.stats['shows_processed'] += 1
                except ScanCancelledError:
                    self.engine.mark_skipped(show_dir)
                except Exception as e:
                    # Its discovery set is incomplete, keep cleanup away from it
                    self.engine.mark_skipped(show_dir)
                    self.stats['shows_failed'] += 1
                    self.log.error(f"Error processing show {show_dir.name}: {e}", exc_info=True)
                    self.messages.error(str(show_dir), f"Show update failed: {e}")
                self.progress.advance(show_dir.name)
        self._check_cancel()

    # AI batch

    @property
    def batcher(self) -> AIRecognitionBatcher:
        if self._batcher is None:
            limiter = RateLimiter.get_instance()
            limiter.configure(
                self.config.rate_limit.max_calls_per_minute,
                self.config.rate_limit.max_calls_per_hour,
                self.config.rate_limit.min_interval,
            )
            self._batcher = AIRecognitionBatcher(lambda: self.config.ai, rate_limiter=limiter, logger=self.log.logger)
        return self._batcher

    def _apply_ai_result(self, item: PendingAIRecognition, result: MatchResult) -> bool:
        applied = self.engine.apply_ai_result(item, result)
        self.progress.advance(item.relative_path)
        return applied

    def _apply_fallback(self, item: PendingAIRecognition) -> None:
        self.engine.apply_fallback(item)
        self.progress.advance(item.relative_path)

    def _flush_ai_queue(self) -> None:
        pending = self.engine.drain_ai_queue()
        if not pending:
            return
        self.progress.start('ai', len(pending))
        metrics = self.batcher.process(pending, self._apply_ai_result, self._apply_fallback)
        self.stats['ai_recognized'] = metrics.get('recognized', 0)
        self.stats['ai_fallbacks'] = metrics.get('fallbacks', 0)

    # media information

    @property
    def mediainfo(self) -> MediaInfoGatherer:
        if self._mediainfo is None:
            self._mediainfo = MediaInfoGatherer(logger=self.log.logger)
        return self._mediainfo

    def _gather_media_info(self) -> None:
        if not self.config.scan.fetch_video_info_on_update:
            return

        jobs = []
        changed_shows = []
        for show in self.updated_shows:
            if show.locked:
                continue
            show_jobs = []
            for media_file in show.all_media_files():
                attributes = self.discovery.attributes(media_file.path)
                if attributes is not None and self.mediainfo.needs_gathering(media_file, *attributes):
                    show_jobs.append((media_file, attributes))
            if show_jobs:
                jobs.extend(show_jobs)
                changed_shows.append(show)
        if not jobs:
            return

        self.log.info(f"Gathering media information for {len(jobs)} files")
        self.progress.start('mediainfo', len(jobs))
        with ThreadPoolExecutor(max_workers=self.config.scan.mediainfo_workers) as executor:
            future_to_file = {
                executor.submit(self.mediainfo.gather, media_file, *attributes): media_file
                for media_file, attributes in jobs
            }
            for future in as_completed(future_to_file):
                media_file = future_to_file[future]
                try:
                    future.result()
                except Exception as e:
                    self.log.warning(f"Media information failed for {media_file.path}: {e}")
                self.progress.advance(media_file.filename)

        for show in changed_shows:
            self.library.save_show(show)

    # reporting

    def show_summaries(self) -> List[Dict]:
        return [
            {
                'title': show.title or show.path.name,
                'path': show.path,
                'seasons': len({ep.season for ep in show.episodes if ep.season > -1}),
                'episodes': len(show.episodes),
                'unresolved': sum(1 for ep in show.episodes if ep.episode < 0),
            }
            for show in sorted(self.updated_shows, key=lambda s: str(s.path))
        ]


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="TV Library Updater - Reconcile TV show folders with the show library",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  update every datasource in config.yaml
  %(prog)s /media/tv --dry-run --verbose
  %(prog)s --show "/media/tv/Some Show" --show "/media/tv/Other Show"
        """
    )

    parser.add_argument('datasources', nargs='*', help='Datasource folders to update (default: from config.yaml)')
    parser.add_argument('--config', '-c', help='Path to config.yaml')
    parser.add_argument('--show', action='append', default=[], help='Update only this show folder (repeatable)')
    parser.add_argument('--dry-run', action='store_true', help='Scan without writing the library file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--log-dir', help='Directory to save log files (default: project_root/logs)')
    parser.add_argument('--no-report', action='store_true', help='Do not write the HTML report')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args()

    log_dir = Path(args.log_dir).resolve() if args.log_dir else Path(__file__).parent / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"tv_library_{timestamp}.log"
    report_file = log_dir / f"tv_library_report_{timestamp}.html"
    logger = setup_logging(log_file, args.verbose)

    try:
        config = load_config(args.config)
        if config.proxy:
            config.proxy.apply()
        library = ShowLibrary.load(config.library.path, logger)

        shows = None
        if args.show:
            shows = []
            for show_path in args.show:
                show = library.find_show_by_path(Path(show_path).resolve())
                if show is None:
                    logger.error(f"{Colors.RED}{show_path} is not in the library, update its datasource instead{Colors.RESET}")
                    continue
                shows.append(show)

        datasources = [Path(d).resolve() for d in args.datasources] or None
        task = UpdateDatasourceTask(config, library, datasources=datasources, shows=shows,
                                    dry_run=args.dry_run, logger=logger)
        start_time = datetime.now()
        try:
            success = task.run()
        except KeyboardInterrupt:
            task.cancel()
            raise

        if not args.no_report:
            try:
                generate_html_report(
                    report_file=report_file,
                    stats=task.stats,
                    shows=task.show_summaries(),
                    messages=task.messages.messages,
                    start_time=start_time,
                    end_time=datetime.now(),
                    dry_run=args.dry_run,
                    log_file=log_file,
                )
                logger.info(f"{Colors.CYAN}Report saved to: {report_file}{Colors.RESET}")
            except OSError as e:
                logger.error(f"Failed to generate HTML report: {e}")

        if args.dry_run:
            logger.info(f"{Colors.YELLOW}This was a DRY RUN - the library file was not written.{Colors.RESET}")

        if success:
            print(f"\n{Colors.GREEN}✓ Update completed{Colors.RESET}")
            return 0
        print(f"\n{Colors.RED}✗ Update failed or was cancelled{Colors.RESET}")
        return 1

    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Operation cancelled by user.{Colors.RESET}")
        return 1
    except (FileNotFoundError, ValueError) as e:
        print(f"\n{Colors.RED}Configuration error: {e}{Colors.RESET}")
        return 1


if __name__ == '__main__':
    exit(main())
