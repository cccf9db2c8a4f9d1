#!/usr/bin/env python3
"""
NFO parsing tests.
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import NfoParseError
from nfo import NfoParser


class TestNfoParser:
    """Tests for NfoParser"""

    def test_show_nfo(self, tmp_path):
        nfo = tmp_path / "tvshow.nfo"
        nfo.write_text(
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'
            '<tvshow>\n'
            '  <title>Foo</title>\n'
            '  <premiered>2010-04-01</premiered>\n'
            '  <plot>A show about foo.</plot>\n'
            '  <uniqueid type="tmdb" default="true">1234</uniqueid>\n'
            '  <uniqueid type="imdb">tt0123456</uniqueid>\n'
            '</tvshow>\n'
            'https://www.themoviedb.org/tv/1234\n',
            encoding='utf-8',
        )
        draft = NfoParser().parse_show_nfo(nfo)
        assert draft.title == "Foo"
        assert draft.year == 2010
        assert draft.plot == "A show about foo."
        assert draft.ids == {"tmdb": "1234", "imdb": "tt0123456"}

    def test_season_nfo(self, tmp_path):
        nfo = tmp_path / "season01.nfo"
        nfo.write_text("<season><seasonnumber>1</seasonnumber><title>First</title></season>", encoding='utf-8')
        number, draft = NfoParser().parse_season_nfo(nfo)
        assert number == 1
        assert draft.title == "First"

    def test_season_nfo_without_number(self, tmp_path):
        nfo = tmp_path / "season.nfo"
        nfo.write_text("<season><title>Unknown</title></season>", encoding='utf-8')
        number, _ = NfoParser().parse_season_nfo(nfo)
        assert number == -1

    def test_multi_episode_nfo(self, tmp_path):
        nfo = tmp_path / "Foo.S01E01E02.nfo"
        nfo.write_text(
            "<episodedetails><title>One</title><season>1</season><episode>1</episode>"
            "<aired>2010-04-01</aired></episodedetails>\n"
            "<episodedetails><title>Two</title><season>1</season><episode>2</episode></episodedetails>\n",
            encoding='utf-8',
        )
        drafts = NfoParser().parse_episode_nfo(nfo)
        assert [(d.season, d.episode, d.title) for d in drafts] == [(1, 1, "One"), (1, 2, "Two")]
        assert drafts[0].aired == date(2010, 4, 1)
        assert drafts[1].aired is None

    def test_episode_nfo_without_numbers(self, tmp_path):
        nfo = tmp_path / "Foo.S01E01.Pilot.nfo"
        nfo.write_text("<episodedetails><plot>Something happens.</plot></episodedetails>", encoding='utf-8')
        drafts = NfoParser().parse_episode_nfo(nfo)
        assert len(drafts) == 1
        assert (drafts[0].season, drafts[0].episode, drafts[0].title) == (-1, -1, "")

    def test_url_only_nfo_raises(self, tmp_path):
        nfo = tmp_path / "tvshow.nfo"
        nfo.write_text("https://www.themoviedb.org/tv/1234\n", encoding='utf-8')
        with pytest.raises(NfoParseError):
            NfoParser().parse_show_nfo(nfo)

    def test_broken_xml_raises(self, tmp_path):
        nfo = tmp_path / "Foo.S01E01.nfo"
        nfo.write_text("<episodedetails><title>Broken</episodedetails>", encoding='utf-8')
        with pytest.raises(NfoParseError):
            NfoParser().parse_episode_nfo(nfo)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(NfoParseError):
            NfoParser().parse_episode_nfo(tmp_path / "missing.nfo")
