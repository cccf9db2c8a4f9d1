#!/usr/bin/env python3
"""
Update task tests.

Runs whole datasource updates over folder trees in tmp_path; the AI batcher
is replaced by a stub so no network access happens.
"""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from collaborators import ShowLibrary
from config import Config
from mediainfo import MediaInfoGatherer
from model import MatchResult, MatchSource
from report import MessageLevel
from update_task import UpdateDatasourceTask


def make_tree(root: Path, files):
    for relative in files:
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("video", encoding='utf-8')


def make_config(datasources, library_path, ai=None, **scan):
    scan.setdefault('fetch_video_info_on_update', False)
    scan.setdefault('workers', 2)
    return Config.from_dict({
        'datasources': [str(d) for d in datasources],
        'scan': scan,
        'ai': ai or {'enabled': False},
        'library': {'path': str(library_path)},
    })


def stub_batcher(season=1, episode=7, recognize=True):
    """Batcher whose process() resolves every item to the same episode, or falls back"""
    def process(pending, apply_result, apply_fallback):
        recognized = 0
        for item in pending:
            if recognize and apply_result(item, MatchResult(season=season, episodes=[episode], source=MatchSource.AI)):
                recognized += 1
            else:
                apply_fallback(item)
        return {'recognized': recognized, 'fallbacks': len(pending) - recognized}

    batcher = MagicMock()
    batcher.process.side_effect = process
    return batcher


@pytest.fixture
def datasource(tmp_path):
    ds = tmp_path / "Shows"
    ds.mkdir()
    return ds


@pytest.fixture
def library_path(tmp_path):
    return tmp_path / "library.json"


def titles(library):
    return [show.title for show in library.get_shows()]


class TestDatasourceUpdate:
    """Tests for full datasource runs"""

    def test_run_builds_and_saves_library(self, datasource, library_path):
        make_tree(datasource, ["Foo/Season 01/Foo.S01E01.mkv", "Bar (2019)/Bar.S02E03.mkv"])
        library = ShowLibrary(library_path)

        task = UpdateDatasourceTask(make_config([datasource], library_path), library)

        assert task.run()
        assert titles(library) == ["Bar", "Foo"]
        assert task.stats['shows_processed'] == 2
        assert task.stats['shows_failed'] == 0
        assert task.stats['files_visited'] == 2

        data = json.loads(library_path.read_text(encoding='utf-8'))
        assert sorted(show['title'] for show in data['shows']) == ["Bar", "Foo"]
        bar = next(show for show in data['shows'] if show['title'] == "Bar")
        assert bar['year'] == 2019
        assert [(ep['season'], ep['episode']) for ep in bar['episodes']] == [(2, 3)]

    def test_dry_run_does_not_write(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)

        task = UpdateDatasourceTask(make_config([datasource], library_path), library, dry_run=True)

        assert task.run()
        assert titles(library) == ["Foo"]
        assert not library_path.exists()

    def test_dry_run_does_not_extract_artwork(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        (datasource / "Foo" / "Foo.S01E01.mkv.vsmeta").write_bytes(b"header\xff\xd8\xffthumb\xff\xd9")
        library = ShowLibrary(library_path)
        config = make_config([datasource], library_path, extract_artwork_from_vsmeta=True)

        assert UpdateDatasourceTask(config, library, dry_run=True).run()

        assert sorted(p.name for p in (datasource / "Foo").iterdir()) == ["Foo.S01E01.mkv", "Foo.S01E01.mkv.vsmeta"]

        assert UpdateDatasourceTask(config, library).run()
        assert (datasource / "Foo" / "Foo.S01E01-thumb.jpg").exists()

    def test_missing_datasource(self, tmp_path, library_path):
        library = ShowLibrary(library_path)

        task = UpdateDatasourceTask(make_config([tmp_path / "missing"], library_path), library)

        assert not task.run()
        texts = [m.text for m in task.messages.errors]
        assert any("datasource not found" in text for text in texts)
        assert any("no datasource could be scanned" in text for text in texts)

    def test_one_unavailable_datasource_does_not_stop_the_others(self, tmp_path, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)

        task = UpdateDatasourceTask(make_config([tmp_path / "missing", datasource], library_path), library)

        assert task.run()
        assert titles(library) == ["Foo"]
        assert len(task.messages.errors) == 1

    def test_video_in_datasource_root_is_reported(self, datasource, library_path):
        make_tree(datasource, ["stray.mkv", "Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)

        task = UpdateDatasourceTask(make_config([datasource], library_path), library)

        assert task.run()
        assert [m.source for m in task.messages.errors] == [str(datasource / "stray.mkv")]
        assert titles(library) == ["Foo"]

    def test_alphabetical_grouping_folders(self, datasource, library_path):
        make_tree(datasource, ["F/Foo/Foo.S01E01.mkv", "B/Bar/Bar.S01E01.mkv"])
        library = ShowLibrary(library_path)

        task = UpdateDatasourceTask(make_config([datasource], library_path), library)

        assert task.run()
        assert sorted(show.path for show in library.get_shows()) == [datasource / "B" / "Bar", datasource / "F" / "Foo"]
        assert all(show.datasource == datasource for show in library.get_shows())

    def test_deleted_show_is_removed_on_next_run(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv", "Bar/Bar.S01E01.mkv"])
        library = ShowLibrary(library_path)
        config = make_config([datasource], library_path)
        UpdateDatasourceTask(config, library).run()

        (datasource / "Bar" / "Bar.S01E01.mkv").unlink()
        (datasource / "Bar").rmdir()

        assert UpdateDatasourceTask(config, library).run()
        assert titles(library) == ["Foo"]

    def test_library_survives_reload(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        config = make_config([datasource], library_path)
        UpdateDatasourceTask(config, ShowLibrary(library_path)).run()

        reloaded = ShowLibrary.load(library_path)
        task = UpdateDatasourceTask(config, reloaded)

        assert task.run()
        show = reloaded.get_shows()[0]
        assert [(ep.season, ep.episode) for ep in show.episodes] == [(1, 1)]
        assert len(show.episodes[0].media_files) == 1

    def test_reset_new_flag(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)
        UpdateDatasourceTask(make_config([datasource], library_path), library).run()

        config = make_config([datasource], library_path, reset_new_flag_on_update=True)
        assert UpdateDatasourceTask(config, library).run()

        show = library.get_shows()[0]
        assert not show.newly_added
        assert not show.episodes[0].newly_added


class TestSelectedShows:
    """Tests for updating a selection of known shows"""

    def test_only_selected_shows_are_updated(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)
        config = make_config([datasource], library_path)
        UpdateDatasourceTask(config, library).run()

        make_tree(datasource, ["Foo/Foo.S01E02.mkv", "Baz/Baz.S01E01.mkv"])
        foo = library.find_show_by_path(datasource / "Foo")
        task = UpdateDatasourceTask(config, library, shows=[foo])

        assert task.run()
        assert sorted(ep.episode for ep in foo.episodes) == [1, 2]
        assert library.find_show_by_path(datasource / "Baz") is None

    def test_locked_show_is_not_touched(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)
        config = make_config([datasource], library_path)
        UpdateDatasourceTask(config, library).run()

        foo = library.find_show_by_path(datasource / "Foo")
        foo.locked = True
        make_tree(datasource, ["Foo/Foo.S01E02.mkv"])

        assert UpdateDatasourceTask(config, library, shows=[foo]).run()
        assert [ep.episode for ep in foo.episodes] == [1]


class TestAIRecognition:
    """Tests for the AI flush at the end of a datasource update"""

    AI = {'enabled': True, 'api_key': 'test-key'}

    def test_queued_files_are_recognized(self, datasource, library_path):
        make_tree(datasource, ["Foo/Making of.mkv", "Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)
        batcher = stub_batcher(season=1, episode=7)

        task = UpdateDatasourceTask(make_config([datasource], library_path, ai=self.AI), library, batcher=batcher)

        assert task.run()
        assert batcher.process.call_count == 1
        pending = batcher.process.call_args.args[0]
        assert [item.relative_path for item in pending] == ["Making of.mkv"]

        show = library.get_shows()[0]
        assert sorted((ep.season, ep.episode) for ep in show.episodes) == [(1, 1), (1, 7)]
        assert task.stats['ai_recognized'] == 1
        assert task.stats['ai_fallbacks'] == 0

    def test_fallback_keeps_unnumbered_episode(self, datasource, library_path):
        make_tree(datasource, ["Foo/Making of.mkv"])
        library = ShowLibrary(library_path)
        batcher = stub_batcher(recognize=False)

        task = UpdateDatasourceTask(make_config([datasource], library_path, ai=self.AI), library, batcher=batcher)

        assert task.run()
        show = library.get_shows()[0]
        assert [(ep.season, ep.episode, ep.title) for ep in show.episodes] == [(-1, -1, "Making of")]
        assert task.stats['ai_fallbacks'] == 1

    def test_result_for_existing_episode_falls_back(self, datasource, library_path):
        make_tree(datasource, ["Foo/Making of.mkv", "Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)
        batcher = stub_batcher(season=1, episode=1)

        task = UpdateDatasourceTask(make_config([datasource], library_path, ai=self.AI), library, batcher=batcher)

        assert task.run()
        show = library.get_shows()[0]
        assert sorted((ep.season, ep.episode) for ep in show.episodes) == [(-1, -1), (1, 1)]

    def test_no_queue_without_ai(self, datasource, library_path):
        make_tree(datasource, ["Foo/Making of.mkv"])
        library = ShowLibrary(library_path)
        batcher = stub_batcher()

        task = UpdateDatasourceTask(make_config([datasource], library_path), library, batcher=batcher)

        assert task.run()
        batcher.process.assert_not_called()
        assert [ep.episode for ep in library.get_shows()[0].episodes] == [-1]


class TestFailures:
    """Tests for failing shows, crashes and cancellation"""

    def test_failing_show_does_not_stop_the_task(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv", "Bar/Bar.S01E01.mkv"])
        library = ShowLibrary(library_path)
        task = UpdateDatasourceTask(make_config([datasource], library_path), library)
        original = task.engine.reconcile_show

        def reconcile(show_dir, ds):
            if show_dir.name == "Bar":
                raise RuntimeError("disk error")
            return original(show_dir, ds)

        with patch.object(task.engine, 'reconcile_show', side_effect=reconcile):
            assert task.run()

        assert titles(library) == ["Foo"]
        assert task.stats['shows_failed'] == 1
        assert task.engine.is_skipped(datasource / "Bar")
        assert [m.source for m in task.messages.errors] == [str(datasource / "Bar")]

    def test_crash_is_reported(self, datasource, library_path):
        library = ShowLibrary(library_path)
        task = UpdateDatasourceTask(make_config([datasource], library_path), library)

        with patch.object(task, '_update_datasources', side_effect=RuntimeError("boom")):
            assert not task.run()

        assert any("Update task crashed: boom" in m.text for m in task.messages.errors)

    def test_cancelled_task(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)
        task = UpdateDatasourceTask(make_config([datasource], library_path), library)
        task.cancel()

        assert not task.run()
        assert [m.level for m in task.messages.messages] == [MessageLevel.WARNING]
        assert library.get_shows() == []
        assert not library_path.exists()


class TestMediaInfo:
    """Tests for the media information pass"""

    def test_gathers_changed_files_only(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv"])
        library = ShowLibrary(library_path)
        config = make_config([datasource], library_path, fetch_video_info_on_update=True)
        gatherer = MediaInfoGatherer()
        gatherer.use_ffprobe = False

        task = UpdateDatasourceTask(config, library, mediainfo=gatherer)
        assert task.run()

        video = library.get_shows()[0].episodes[0].media_files[0]
        assert video.container_format == "mkv"
        assert video.size == len("video")

        with patch.object(gatherer, 'gather') as gather:
            assert UpdateDatasourceTask(config, library, mediainfo=gatherer).run()
        gather.assert_not_called()

    def test_summaries(self, datasource, library_path):
        make_tree(datasource, ["Foo/Foo.S01E01.mkv", "Foo/Foo.S02E01.mkv", "Foo/Making of.mkv"])
        library = ShowLibrary(library_path)
        task = UpdateDatasourceTask(make_config([datasource], library_path), library)

        task.run()

        assert task.show_summaries() == [{
            'title': "Foo", 'path': datasource / "Foo", 'seasons': 2, 'episodes': 3, 'unresolved': 1,
        }]
