#!/usr/bin/env python3
"""
File classification tests.

Covers classify(), the disc helpers, stacking markers and the basename
normalization used to group an episode's files.
"""

import sys
from pathlib import Path

import pytest

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from classifier import (
    basename_without_stacking,
    classify,
    find_disc_root,
    get_stacking_info,
    has_extra_suffix,
    is_disc_file,
    is_season_nfo,
    make_discovered_file,
    name_without_type,
)
from model import MediaFileType


class TestClassify:
    """Tests for classify"""

    @pytest.mark.parametrize("name, expected", [
        ("Foo.S01E01.Pilot.mkv", MediaFileType.VIDEO),
        ("Foo.S01E01.Pilot.nfo", MediaFileType.NFO),
        ("tvshow.nfo", MediaFileType.NFO),
        ("Foo.S01E01.Pilot.en.srt", MediaFileType.SUBTITLE),
        ("Foo.S01E01.Pilot.mkv.vsmeta", MediaFileType.VSMETA),
        ("poster.jpg", MediaFileType.POSTER),
        ("folder.jpg", MediaFileType.POSTER),
        ("fanart.png", MediaFileType.FANART),
        ("banner.jpg", MediaFileType.BANNER),
        ("Foo.S01E01.Pilot-thumb.jpg", MediaFileType.THUMB),
        ("season01-poster.jpg", MediaFileType.SEASON_POSTER),
        ("season-specials-fanart.jpg", MediaFileType.SEASON_FANART),
        ("season02-banner.png", MediaFileType.SEASON_BANNER),
        ("random-picture.jpg", MediaFileType.GRAPHIC),
        ("VIDEO_TS.IFO", MediaFileType.VIDEO),
        ("index.bdmv", MediaFileType.VIDEO),
        ("VTS_01_0.BUP", MediaFileType.DISC_MARKER),
        ("notes.txt", MediaFileType.UNKNOWN),
    ])
    def test_file_types(self, name, expected):
        assert classify(Path("/tv/Foo") / name) is expected

    def test_disc_folder_is_video(self):
        assert classify(Path("/tv/Foo/Ep1/BDMV"), is_dir=True) is MediaFileType.VIDEO
        assert classify(Path("/tv/Foo/Ep1/VIDEO_TS"), is_dir=True) is MediaFileType.VIDEO

    def test_plain_folder_is_unknown(self):
        assert classify(Path("/tv/Foo/Season 1"), is_dir=True) is MediaFileType.UNKNOWN


class TestDiscHelpers:
    """Tests for disc detection and disc roots"""

    def test_disc_files(self):
        assert is_disc_file("VIDEO_TS")
        assert is_disc_file("bdmv")
        assert is_disc_file("VTS_01_1.VOB")
        assert is_disc_file("00000.m2ts")
        assert not is_disc_file("Foo.S01E01.mkv")

    def test_find_disc_root(self):
        assert find_disc_root(Path("/tv/Foo/Ep1/BDMV")) == Path("/tv/Foo/Ep1")
        assert find_disc_root(Path("/tv/Foo/Ep1/VIDEO_TS/VIDEO_TS.IFO")) == Path("/tv/Foo/Ep1")
        assert find_disc_root(Path("/tv/Foo/Ep1/VIDEO_TS.IFO")) == Path("/tv/Foo/Ep1")
        assert find_disc_root(Path("/tv/Foo/Ep1/episode.mkv")) is None

    def test_season_nfo(self):
        assert is_season_nfo("season01.nfo")
        assert is_season_nfo("Season.nfo")
        assert is_season_nfo("season-specials.nfo")
        assert not is_season_nfo("tvshow.nfo")


class TestStacking:
    """Tests for stacking markers and basename normalization"""

    @pytest.mark.parametrize("name, destacked, marker, part", [
        ("Show S01E01.cd2.mkv", "Show S01E01.mkv", "cd2", 2),
        ("Show S01E01 - part 1.avi", "Show S01E01.avi", "part 1", 1),
        ("Show.S01E01.disc-b.mkv", "Show.S01E01.mkv", "disc-b", 2),
        ("Show S01E01.mkv", "Show S01E01.mkv", "", 0),
    ])
    def test_stacking_info(self, name, destacked, marker, part):
        assert get_stacking_info(name) == (destacked, marker, part)

    def test_basename_without_stacking(self):
        assert basename_without_stacking("Show S01E01.cd2.mkv") == "Show S01E01"
        assert basename_without_stacking("Show S01E01.mkv") == "Show S01E01"

    def test_name_without_type(self):
        assert name_without_type("episode1-poster.jpg") == "episode1.jpg"
        assert name_without_type("Foo.S01E01.Pilot-thumb.jpg") == "Foo.S01E01.Pilot.jpg"
        assert name_without_type("episode1-trailer.mkv") == "episode1.mkv"
        assert name_without_type("episode1.mkv") == "episode1.mkv"
        assert name_without_type("episode1-trailer.mkv", extras=False) == "episode1-trailer.mkv"

    def test_has_extra_suffix(self):
        assert has_extra_suffix("Foo.S01E01-trailer.mkv")
        assert has_extra_suffix("Foo.S01E01 featurette2.mkv")
        assert not has_extra_suffix("Foo.S01E01.mkv")
        assert not has_extra_suffix("Foo.S01E01-thumb.jpg")


class TestDiscoveredFile:
    """Tests for make_discovered_file"""

    def test_relative_path_and_stacking(self):
        df = make_discovered_file(
            Path("/tv/Foo/Season 1/Foo.S01E01.cd1.mkv"), Path("/tv/Foo"), size=10, modified=1.0,
        )
        assert df.relative_path == Path("Season 1/Foo.S01E01.cd1.mkv")
        assert df.type is MediaFileType.VIDEO
        assert df.stacking_part == 1
        assert df.basename_without_stacking == "Foo.S01E01"

        media_file = df.to_media_file()
        assert media_file.path == df.path
        assert media_file.size == 10
        assert media_file.stacking_part == 1
        assert media_file.stacking == 0
