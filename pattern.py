#!/usr/bin/env python3
"""
Episode pattern matching for TV Library Updater
Extracts season/episode numbers, air dates and titles from relative paths,
plus show title/year and provider ids from folder names. Pure string
functions, no I/O.
"""

import re
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from classifier import (
    is_disc_file, get_stacking_marker, VIDEO_EXTENSIONS, SUBTITLE_EXTENSIONS, ARTWORK_EXTENSIONS,
)
from errors import AmbiguousMatchError
from model import MatchResult, MatchSource
from util import CHINESE_NUMERAL_CHARS, parse_chinese_number, parse_roman_number


SEASON_TRANSLATIONS = (
    'series', 'season', 'sezóna', 'sæson', 'staffel', 'σεζόν', 'temporada', 'kausi',
    'saison', 'sezona', 'évad', 'þáttaröð', 'stagione', '시즌', 'seizoen', 'sesong',
    'sezon', 'сезон', 'сезона', 'säsong',
)
SEASON_LONG = re.compile(r'(?:' + '|'.join(SEASON_TRANSLATIONS) + r')[\s_.-]?(\d{1,4})', re.IGNORECASE)
SEASON_ONLY = re.compile(r'[\s_.-]s[\s_.-]?(\d{1,4})', re.IGNORECASE)
SEASON_MULTI_EP = re.compile(r's(\d{1,4})[ _]?((?:[epx.-]+\d{1,4})+)', re.IGNORECASE)
SEASON_MULTI_EP_2 = re.compile(r'(\d{1,4})(?=x)((?:[epx]+\d{1,4})+)', re.IGNORECASE)
EPISODE_IN_GROUP = re.compile(r'([epx_.-]+)(\d{1,4})', re.IGNORECASE)
EPISODE_OF = re.compile(r'(\d{1,2})\s*(?:⧸|/|of)\s*(\d{1,2})', re.IGNORECASE)
EPISODE_LONG = re.compile(r'(?:episode|ep)[. _-]*(\d{1,4})', re.IGNORECASE)
EPISODE_ONLY = re.compile(r'[\s_.-]ep?[\s_.-]?(\d{1,4})', re.IGNORECASE)
ROMAN_PATTERN = re.compile(r'(?:part|pt)[._\s]+([MDCLXVI]+)\b', re.IGNORECASE)
DATE_1 = re.compile(r'(\d{4})[.-](\d{2})[.-](\d{2})')
DATE_2 = re.compile(r'(\d{2})[.-](\d{2})[.-](\d{4})')

CHINESE_SEASON = re.compile(r'第\s*([' + CHINESE_NUMERAL_CHARS + r'\d]{1,4})\s*季')
CHINESE_EPISODE = re.compile(r'第\s*([' + CHINESE_NUMERAL_CHARS + r'\d]{1,4})\s*[集话話]')
CHINESE_EPISODE_SHORT = re.compile(r'(?<![全共总\d])(\d{1,4})\s*集')

EXTENSION = re.compile(r'\.\w{1,4}$')
KNOWN_EXTENSIONS = VIDEO_EXTENSIONS | SUBTITLE_EXTENSIONS | ARTWORK_EXTENSIONS | {'.nfo', '.vsmeta'}
KNOWN_EXTENSION = re.compile(
    r'(?:' + '|'.join(re.escape(e) for e in sorted(KNOWN_EXTENSIONS)) + r')$', re.IGNORECASE
)
YEAR_IN_BRACKETS = re.compile(r'[(\[]\d{4}[)\]]')
CRC_IN_BRACKETS = re.compile(r'[(\[][A-Fa-f0-9]{8}[)\]]')
OPTIONALS = re.compile(r'[\[{](.*?)[\]}]')
DELIMITERS = re.compile(r'[\s|_.-]')

SEASON_ARTWORK_NUMBER = re.compile(r'season[ _.-]?(\d{1,4}|specials)', re.IGNORECASE)
SPECIALS_FOLDER = re.compile(r'^(specials?|extras?|sp)$', re.IGNORECASE)

IMDB_ID = re.compile(r'\b(tt\d{7,8})\b')
TMDB_IN_NAME = re.compile(r'tmdb(?:id)?[ _=:-]+(\d+)', re.IGNORECASE)
TVDB_IN_NAME = re.compile(r'tvdb(?:id)?[ _=:-]+(\d+)', re.IGNORECASE)
TMDB_URL = re.compile(r'themoviedb\.org/tv/(\d+)')
TVDB_URL = re.compile(r'thetvdb\.com/(?:series/|\?tab=series&id=)(\d+)')

# Metadata removed before numbers are interpreted; (pattern, flags, description)
METADATA_PATTERNS = [
    (r'全\s*\d+\s*集', 0, 'Episode count'),
    (r'\b(?:1080|720|576|480|360|240|2160|1440|4320)[pi]?\b', re.IGNORECASE, 'Video resolutions'),
    (r'[248]K(?![a-zA-Z0-9])', re.IGNORECASE, '2K/4K/8K resolution'),
    (r'\b(?:H|X)\.?26[456]\b', re.IGNORECASE, 'Video codecs (H264/H265)'),
    (r'\b(?:HEVC|AVC|VP9|AV1|Xvid|DivX|MPEG-?[24])\b', re.IGNORECASE, 'Video codecs'),
    (r'\b(?:AAC|AC3|DTS(?:-HD)?|DDP|E-?AC-?3|FLAC|TrueHD|Atmos)(?:\d\.\d)?\b', re.IGNORECASE, 'Audio codecs'),
    (r'\b\d+Audios?\b', re.IGNORECASE, 'Audio track count'),
    (r'\b(?:HDR10\+?|HDR|Dolby\s*Vision|DV)\b', re.IGNORECASE, 'HDR formats'),
    (r'\b(?:WEB-DL|WEBRip|UHD|BluRay|BDRip|DVDRip|HDTV|Remux)\b', re.IGNORECASE, 'Quality indicators'),
    (r'\b(?:NF|DSNP|AMZN|HMAX|HULU|ATVP)\b', 0, 'Streaming services'),
    (r'\b\d+(?:\.\d+)?\s*(?:GB|MB)\b', re.IGNORECASE, 'File sizes'),
    (r'\b\d+fps\b', re.IGNORECASE, 'Frame rates'),
]


def normalize_metadata(text: str) -> str:
    """Remove codecs, resolutions and release tags that would read as numbers.

    Args:
        text: Filename or folder name without extension

    Returns:
        Text with metadata replaced by spaces and whitespace collapsed
    """
    normalized = text
    for pattern, flags, _description in METADATA_PATTERNS:
        normalized = re.sub(pattern, ' ', normalized, flags=flags)
    return re.sub(r'\s+', ' ', normalized).strip()


def _add_episode(result: MatchResult, episode: int, allow_zero: bool = False) -> None:
    if (episode > 0 or (allow_zero and episode == 0)) and episode not in result.episodes:
        result.episodes.append(episode)


def _parse_episode_group(result: MatchResult, group: str) -> None:
    """Parse 'E01E02', 'E01-E03' or 'E01-03' (range) into episode numbers"""
    for match in EPISODE_IN_GROUP.finditer(group):
        separator, number = match.group(1), int(match.group(2))
        if separator == '-' and result.episodes and 0 < number - result.episodes[-1] <= 20:
            for ep in range(result.episodes[-1] + 1, number + 1):
                _add_episode(result, ep)
        else:
            _add_episode(result, number, allow_zero=True)


def _parse_season_multi_ep(result: MatchResult, text: str) -> None:
    for pattern in (SEASON_MULTI_EP, SEASON_MULTI_EP_2):
        for match in pattern.finditer(text):
            season = int(match.group(1))
            if result.season < 0:
                result.season = season
            # Mixing seasons inside one name is not supported
            if result.season == season:
                _parse_episode_group(result, match.group(2))
        if result.episodes:
            return


def _parse_chinese(result: MatchResult, text: str) -> None:
    if result.season < 0:
        match = CHINESE_SEASON.search(text)
        if match:
            result.season = parse_chinese_number(match.group(1))
    for pattern in (CHINESE_EPISODE, CHINESE_EPISODE_SHORT):
        for match in pattern.finditer(text):
            _add_episode(result, parse_chinese_number(match.group(1)))
        if result.episodes:
            return


def _parse_episode_pattern(result: MatchResult, text: str) -> None:
    for match in EPISODE_OF.finditer(text):
        episode, total = int(match.group(1)), int(match.group(2))
        if episode <= total:
            _add_episode(result, episode)
    if not result.episodes:
        for match in EPISODE_LONG.finditer(text):
            _add_episode(result, int(match.group(1)))


def _parse_date(result: MatchResult, text: str) -> None:
    for pattern, fmt, year_group in ((DATE_1, '%Y-%m-%d', 1), (DATE_2, '%d-%m-%Y', 3)):
        match = pattern.search(text)
        if not match:
            continue
        try:
            result.air_date = datetime.strptime('-'.join(match.groups()), fmt).date()
        except ValueError:
            continue
        result.season = int(match.group(year_group))
        return


def _remove_show_name(text: str, show_title: str) -> str:
    # "24" or "440" must not eat S24/E24
    text = re.sub(r'(?i)[^ES]' + re.escape(show_title), '', text)
    delimited = '[ _.-]'.join(re.escape(token) for token in re.split(r'[ _.-]+', show_title) if token)
    if delimited:
        text = re.sub(r'(?i)' + delimited, '', text)
    return text


def _numbers_only(text: str) -> List[str]:
    tokens = [t for t in DELIMITERS.split(OPTIONALS.sub('', text)) if t.isdigit()]
    if not tokens:
        for match in OPTIONALS.finditer(text):
            tokens.extend(t for t in DELIMITERS.split(match.group(1)) if t.isdigit())
    # Later numbers are more likely the episode
    tokens.reverse()
    return tokens


def _parse_numbers(result: MatchResult, numbers: List[str]) -> None:
    # SSEE only when the season is already known, otherwise every year would match
    for num in numbers:
        if len(num) == 4 and result.season == int(num[:2]):
            _add_episode(result, int(num[2:]))
    if result.episodes:
        return

    # SEE, possibly several with the same season
    for num in numbers:
        if len(num) == 3:
            season = int(num[0])
            if result.season in (-1, season):
                _add_episode(result, int(num[1:]))
                result.season = season
    if result.episodes:
        return

    for length in (2, 1):
        for num in numbers:
            if len(num) == length:
                _add_episode(result, int(num))
                return


def _detect(name: str, show_title: Optional[str]) -> MatchResult:
    """Single detection pass over a filename or a relative path"""
    result = MatchResult()
    path = name.replace('\\', '/')
    filename = path.rsplit('/', 1)[-1]
    if is_disc_file(filename):
        path = path[:-len(filename)]

    folder, _, basename = path.rpartition('/')
    if not folder and not basename:
        return result

    basename = EXTENSION.sub('', basename)
    basename = YEAR_IN_BRACKETS.sub('', basename, count=1)
    basename = CRC_IN_BRACKETS.sub('', basename, count=1)
    result.stacking_marker_found = bool(get_stacking_marker(filename))
    result.title = basename.strip()

    basename = f" {normalize_metadata(basename)} "
    folder = f" {folder} "

    match = SEASON_LONG.search(basename + folder)
    if match:
        result.season = int(match.group(1))
        basename = SEASON_LONG.sub('', basename)
        folder = SEASON_LONG.sub('', folder)

    _parse_season_multi_ep(result, basename + folder)
    _parse_chinese(result, basename + folder)
    if not result.episodes:
        _parse_episode_pattern(result, basename)

    if result.season == -1 and folder.strip():
        match = SEASON_ONLY.search(folder)
        if match:
            result.season = int(match.group(1))
    if result.episodes:
        return result

    if show_title:
        basename = _remove_show_name(basename, show_title)
        folder = _remove_show_name(folder, show_title)

    for match in ROMAN_PATTERN.finditer(basename):
        _add_episode(result, parse_roman_number(match.group(1)))
    if result.episodes:
        return result

    _parse_date(result, basename)
    if result.air_date is not None or is_disc_file(filename):
        return result

    if result.season == -1:
        match = SEASON_ONLY.search(basename + folder)
        if match:
            result.season = int(match.group(1))
            basename = SEASON_ONLY.sub(' ', basename)

    match = EPISODE_ONLY.search(basename)
    if match:
        _add_episode(result, int(match.group(1)))
        return result

    _parse_numbers(result, _numbers_only(basename))
    return result


def detect_episode(relative_path: str, show_title: Optional[str] = None) -> MatchResult:
    """
    Detect season and episode numbers for a file of a show

    The filename is parsed first; the folders of the relative path are only
    consulted for a missing season, or when the filename alone yields nothing.

    Args:
        relative_path: Path of the file relative to the show folder
        show_title: Show title, removed before bare numbers are interpreted

    Returns:
        MatchResult with source FILENAME_HEURISTIC when season and episodes
        were found, UNRESOLVED otherwise
    """
    relative_path = relative_path.replace('\\', '/')
    filename = relative_path.rsplit('/', 1)[-1]

    result = _detect(filename, show_title)
    if result.episodes and result.season == -1:
        with_folder = _detect(relative_path, show_title)
        result.season = with_folder.season
    elif not result.episodes and result.air_date is None:
        result = _detect(relative_path, show_title)

    # Episodes without a season belong to season 1
    if result.episodes and result.season == -1:
        result.season = 1

    result.source = MatchSource.FILENAME_HEURISTIC if result.resolved else MatchSource.UNRESOLVED
    return result


def detect_season_from_file_and_folder(filename: str, folder_name: str) -> int:
    """
    Season number for season artwork: from 'season02-poster.jpg' or from a
    'Season 2' / 'Specials' / '第二季' folder; -1 if none
    """
    for text in (filename, folder_name):
        match = SEASON_ARTWORK_NUMBER.search(text) or SEASON_LONG.search(text)
        if match:
            value = match.group(1)
            return 0 if value.lower() == 'specials' else int(value)
        match = CHINESE_SEASON.search(text)
        if match:
            return parse_chinese_number(match.group(1))
    if SPECIALS_FOLDER.match(folder_name.strip()):
        return 0
    return -1


EPISODE_VARIANTS = [
    r'[Ss]([0-9]+)[\]\[ _.-]*[Ee]([0-9]+)',
    r'[ _.-][Ee][Pp]?_?([0-9]+)',
    r'([0-9]{4})[.-]([0-9]{2})[.-]([0-9]{2})',
    r'([0-9]{2})[.-]([0-9]{2})[.-]([0-9]{4})',
    r'[\\/._ \[(-]([0-9]+)x([0-9]+)',
    r'[/ _.-]p(?:ar)?t[ _.-]([ivx]+)',
    r'(?i)episode[. _-]*(\d{1,3})',
    r'(?i)(?:part|pt)[._\s]+([MDCLXVI]+)\b',
    r'第\s*[' + CHINESE_NUMERAL_CHARS + r'\d]+\s*[季集话話]',
]


def clean_episode_title(title: str, show_title: Optional[str] = None) -> str:
    """
    Reduce a filename to its episode title

    'Foo.S01E01.Pilot.mkv' with show 'Foo' -> 'Pilot'. Falls back to the
    whole cleaned name if removing episode markers leaves nothing.
    """
    basename = re.sub(r'[":<>|?*]', '', title).replace('\\', '/').rsplit('/', 1)[-1] + ' '
    if show_title:
        basename = re.sub(r'(?i)^' + re.escape(show_title), '', basename)
        delimited = '[ _.-]'.join(re.escape(token) for token in re.split(r'[ _.-]+', show_title) if token)
        if delimited:
            basename = re.sub(r'(?i)^' + delimited, '', basename)

    basename = KNOWN_EXTENSION.sub('', basename.strip())
    basename = YEAR_IN_BRACKETS.sub('', basename, count=1)
    basename = CRC_IN_BRACKETS.sub('', basename, count=1)
    backup = basename

    for pattern in EPISODE_VARIANTS:
        basename = re.sub(pattern, '', basename)
    basename = SEASON_LONG.sub('', basename)

    tokens = [t for t in re.split(r'[\[\]() _,.-]+', basename) if t and not IMDB_ID.fullmatch(t)]
    cleaned = ' '.join(tokens).strip()
    if not cleaned:
        cleaned = ' '.join(t for t in re.split(r'[\[\]() _,.-]+', backup) if t)
    return cleaned


def detect_clean_title_and_year(name: str, bad_words: Sequence[str] = ()) -> Tuple[str, Optional[int]]:
    """
    Show title and year from a folder name

    'The.Show.2019.1080p.WEB-DL' -> ('The Show', 2019), 'Foo (2010)' -> ('Foo', 2010)
    """
    text = re.sub(r'[\[{(](?:tmdb|tvdb|imdb)(?:id)?[ _=:-]+\w+[\]})]', ' ', name, flags=re.IGNORECASE)
    year = None

    match = re.search(r'[(\[]((?:19|20)\d{2})[)\]]', text)
    if not match:
        candidates = list(re.finditer(r'(?<!\d)((?:19|20)\d{2})(?!\d)', text))
        # A leading number is part of the title ("2012.Doomsday")
        candidates = [m for m in candidates if m.start() > 0]
        match = candidates[-1] if candidates else None
    if match:
        year = int(match.group(1))
        text = text[:match.start()]

    text = normalize_metadata(text)
    text = re.sub(r'[\[{].*?[\]}]', ' ', text)
    text = re.sub(r'[._]', ' ', text)
    for word in bad_words:
        text = re.sub(r'(?i)\b' + re.escape(word) + r'\b', ' ', text)
    text = re.sub(r'\s+', ' ', text).strip(' -')
    return text or name, year


def detect_ids(text: str) -> Dict[str, str]:
    """Provider ids embedded in a folder or file name"""
    ids = {}
    match = IMDB_ID.search(text)
    if match:
        ids['imdb'] = match.group(1)
    match = TMDB_IN_NAME.search(text)
    if match:
        ids['tmdb'] = match.group(1)
    match = TVDB_IN_NAME.search(text)
    if match:
        ids['tvdb'] = match.group(1)
    return ids


def detect_ids_in_nfo_text(content: str) -> Dict[str, str]:
    """Provider ids from NFO content that is not parseable XML (URL style NFOs)"""
    ids = {}
    match = IMDB_ID.search(content)
    if match:
        ids['imdb'] = match.group(1)
    match = TMDB_URL.search(content)
    if match:
        ids['tmdb'] = match.group(1)
    match = TVDB_URL.search(content)
    if match:
        ids['tvdb'] = match.group(1)
    return ids


T = TypeVar('T')


def pick_best_candidate(item: str, candidates: Sequence[T], scorer: Callable[[T], int]) -> Optional[T]:
    """
    Highest scoring candidate, None if nothing scores above zero

    Raises:
        AmbiguousMatchError: If several candidates share the top score
    """
    scored = [(scorer(c), c) for c in candidates]
    scored = [(score, c) for score, c in scored if score > 0]
    if not scored:
        return None
    top = max(score for score, _ in scored)
    best = [c for score, c in scored if score == top]
    if len(best) > 1:
        raise AmbiguousMatchError(item, best)
    return best[0]
