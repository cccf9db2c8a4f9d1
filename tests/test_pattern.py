#!/usr/bin/env python3
"""
Episode pattern matching tests.

Tests the functions of pattern.py:
- detect_episode: season/episode/date detection from relative paths
- clean_episode_title: episode title from a filename
- detect_clean_title_and_year: show title and year from a folder name
- detect_season_from_file_and_folder: season of season artwork
- detect_ids / detect_ids_in_nfo_text: provider ids
- pick_best_candidate: scored candidate selection with tie detection
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import AmbiguousMatchError
from model import MatchSource
from pattern import (
    clean_episode_title,
    detect_clean_title_and_year,
    detect_episode,
    detect_ids,
    detect_ids_in_nfo_text,
    detect_season_from_file_and_folder,
    normalize_metadata,
    pick_best_candidate,
)


class TestDetectEpisode:
    """Tests for detect_episode"""

    @pytest.mark.parametrize("relative_path, show_title, season, episodes", [
        ("Season 01/Foo.S01E01.Pilot.mkv", "Foo", 1, [1]),
        ("Foo.S02E05.mkv", "Foo", 2, [5]),
        ("Foo.S01E01E02.mkv", "Foo", 1, [1, 2]),
        ("Foo.S01E01-03.mkv", "Foo", 1, [1, 2, 3]),
        ("Foo.1x02.mkv", "Foo", 1, [2]),
        ("第一季/第02集.mp4", "某剧", 1, [2]),
        ("Foo.S03E04.1080p.x264.mkv", "Foo", 3, [4]),
    ])
    def test_resolved(self, relative_path, show_title, season, episodes):
        result = detect_episode(relative_path, show_title)
        assert result.season == season
        assert result.episodes == episodes
        assert result.source is MatchSource.FILENAME_HEURISTIC
        assert result.resolved

    def test_season_from_folder(self):
        result = detect_episode("Season 2/Foo.E03.mkv", "Foo")
        assert (result.season, result.episodes) == (2, [3])

    def test_season_defaults_to_one(self):
        result = detect_episode("Foo.E07.mkv", "Foo")
        assert (result.season, result.episodes) == (1, [7])

    def test_date_is_unresolved_with_year_as_season(self):
        result = detect_episode("Foo.2020-05-17.mkv", "Foo")
        assert result.air_date == date(2020, 5, 17)
        assert result.season == 2020
        assert result.episodes == []
        assert result.source is MatchSource.UNRESOLVED

    def test_unresolved(self):
        result = detect_episode("Behind the scenes.mkv", "Foo")
        assert not result.resolved
        assert result.source is MatchSource.UNRESOLVED

    def test_stacking_marker_found(self):
        assert detect_episode("Foo.S01E01.cd2.mkv", "Foo").stacking_marker_found
        assert not detect_episode("Foo.S01E01.mkv", "Foo").stacking_marker_found

    def test_title_kept_for_cleanup(self):
        assert detect_episode("Foo.S01E01.Pilot.mkv", "Foo").title == "Foo.S01E01.Pilot"


class TestTitles:
    """Tests for episode and show title cleanup"""

    @pytest.mark.parametrize("name, show_title, expected", [
        ("Foo.S01E01.Pilot.mkv", "Foo", "Pilot"),
        ("Foo.S01E01.Pilot", "Foo", "Pilot"),
        ("The Show - S02E03 - The Return.avi", "The Show", "The Return"),
        ("Foo.S01E01.mkv", "Foo", "S01E01"),
    ])
    def test_clean_episode_title(self, name, show_title, expected):
        assert clean_episode_title(name, show_title) == expected

    @pytest.mark.parametrize("name, title, year", [
        ("The.Show.2019.1080p.WEB-DL", "The Show", 2019),
        ("Foo (2010)", "Foo", 2010),
        ("Foo", "Foo", None),
        ("2012.Doomsday", "2012 Doomsday", None),
    ])
    def test_detect_clean_title_and_year(self, name, title, year):
        assert detect_clean_title_and_year(name) == (title, year)

    def test_bad_words(self):
        assert detect_clean_title_and_year("Foo.COMPLETE", ["complete"]) == ("Foo", None)

    def test_normalize_metadata(self):
        assert normalize_metadata("Foo 1080p x264 AAC") == "Foo"


class TestSeasonArtwork:
    """Tests for detect_season_from_file_and_folder"""

    @pytest.mark.parametrize("filename, folder, expected", [
        ("season02-poster.jpg", "Foo", 2),
        ("poster.jpg", "Season 3", 3),
        ("poster.jpg", "Specials", 0),
        ("season-specials-poster.jpg", "Foo", 0),
        ("poster.jpg", "第二季", 2),
        ("poster.jpg", "Artwork", -1),
    ])
    def test_season_numbers(self, filename, folder, expected):
        assert detect_season_from_file_and_folder(filename, folder) == expected


class TestIds:
    """Tests for provider id detection"""

    def test_ids_in_folder_name(self):
        assert detect_ids("Foo (2010) {tmdb-1234} [imdbid-tt0123456]") == {"imdb": "tt0123456", "tmdb": "1234"}
        assert detect_ids("Foo [tvdbid-81189]") == {"tvdb": "81189"}
        assert detect_ids("Foo") == {}

    def test_ids_in_nfo_text(self):
        content = "https://www.themoviedb.org/tv/1399\nhttps://thetvdb.com/series/121361\nimdb tt0944947"
        assert detect_ids_in_nfo_text(content) == {"imdb": "tt0944947", "tmdb": "1399", "tvdb": "121361"}


class TestPickBestCandidate:
    """Tests for pick_best_candidate"""

    def test_highest_score_wins(self):
        assert pick_best_candidate("x", ["a", "bb", "ccc"], len) == "ccc"

    def test_no_positive_score(self):
        assert pick_best_candidate("x", ["a", "b"], lambda c: 0) is None

    def test_tie_is_ambiguous(self):
        with pytest.raises(AmbiguousMatchError) as excinfo:
            pick_best_candidate("Foo.S01E01.mkv", ["a", "b", "cc"], lambda c: 2 if c in ("a", "b") else 1)
        assert excinfo.value.candidates == ["a", "b"]
