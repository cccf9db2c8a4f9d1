#!/usr/bin/env python3
"""
NFO reading for TV Library Updater
Reads Kodi-style tvshow.nfo, season NFOs and episode NFOs (an episode NFO may
hold several <episodedetails> blocks for multi-episode files).
"""

import re
import xml.etree.ElementTree as ET
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from errors import NfoParseError
from model import ShowDraft, SeasonDraft, EpisodeDraft


XML_DECLARATION = re.compile(r'<\?xml[^>]*\?>')


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        raise NfoParseError(f"Cannot read {path}: {e}") from e


def _parse_roots(path: Path, tag: str) -> List[ET.Element]:
    """All top-level elements named tag; trailing URL lines are ignored"""
    content = XML_DECLARATION.sub('', _read(path))
    start = content.find(f'<{tag}')
    end = content.rfind(f'</{tag}>')
    if start < 0 or end < 0:
        raise NfoParseError(f"No <{tag}> element in {path}")
    body = content[start:end + len(tag) + 3]
    try:
        wrapper = ET.fromstring(f'<nfo>{body}</nfo>')
    except ET.ParseError as e:
        raise NfoParseError(f"Invalid XML in {path}: {e}") from e
    return wrapper.findall(tag)


def _text(element: ET.Element, name: str) -> str:
    child = element.find(name)
    return (child.text or '').strip() if child is not None and child.text else ''


def _int(element: ET.Element, name: str, default: int = -1) -> int:
    value = _text(element, name)
    try:
        return int(value)
    except ValueError:
        return default


def _date(element: ET.Element, name: str) -> Optional[date]:
    value = _text(element, name)
    try:
        return date.fromisoformat(value[:10]) if value else None
    except ValueError:
        return None


def _ids(element: ET.Element) -> Dict[str, str]:
    ids = {}
    for uniqueid in element.findall('uniqueid'):
        provider = (uniqueid.get('type') or '').lower()
        if provider and uniqueid.text:
            ids[provider] = uniqueid.text.strip()
    for name, provider in (('imdb_id', 'imdb'), ('imdbid', 'imdb'), ('tmdbid', 'tmdb'), ('tvdbid', 'tvdb')):
        value = _text(element, name)
        if value:
            ids.setdefault(provider, value)
    legacy = _text(element, 'id')
    if legacy:
        ids.setdefault('imdb' if legacy.startswith('tt') else 'tvdb', legacy)
    return ids


class NfoParser:
    """Reads show, season and episode NFO files into drafts"""

    def parse_show_nfo(self, path: Path) -> ShowDraft:
        """
        Read a tvshow.nfo

        Raises:
            NfoParseError: If the file is unreadable or has no <tvshow> element
        """
        root = _parse_roots(path, 'tvshow')[0]
        year = _int(root, 'year', default=0)
        if not year:
            premiered = _date(root, 'premiered')
            year = premiered.year if premiered else 0
        return ShowDraft(
            title=_text(root, 'title'),
            year=year or None,
            plot=_text(root, 'plot'),
            ids=_ids(root),
        )

    def parse_season_nfo(self, path: Path) -> Tuple[int, SeasonDraft]:
        """
        Read a season NFO

        Returns:
            (season number, draft); the number is -1 when the NFO has none

        Raises:
            NfoParseError: If the file is unreadable or has no <season> element
        """
        root = _parse_roots(path, 'season')[0]
        return _int(root, 'seasonnumber'), SeasonDraft(title=_text(root, 'title'), plot=_text(root, 'plot'))

    def parse_episode_nfo(self, path: Path) -> List[EpisodeDraft]:
        """
        Read an episode NFO, one draft per <episodedetails> block

        Raises:
            NfoParseError: If the file is unreadable or has no <episodedetails>
        """
        drafts = []
        for element in _parse_roots(path, 'episodedetails'):
            drafts.append(EpisodeDraft(
                season=_int(element, 'season'),
                episode=_int(element, 'episode'),
                title=_text(element, 'title'),
                plot=_text(element, 'plot'),
                aired=_date(element, 'aired'),
                ids=_ids(element),
            ))
        return drafts
