#!/usr/bin/env python3
"""
File classification for TV Library Updater
Maps a path to its media-file role (video, NFO, artwork, subtitle, disc
structure) from its name, extension and parent folder. Every decision point
in the scan consults these helpers instead of re-deriving file roles.
"""

import re
from pathlib import Path
from typing import Optional, Tuple

from model import MediaFileType, DiscoveredFile, GRAPHIC_TYPES, SEASON_ARTWORK_TYPES


VIDEO_EXTENSIONS = {
    '.mp4', '.mkv', '.avi', '.mov', '.wmv', '.flv', '.webm', '.m4v', '.mpg', '.mpeg',
    '.ts', '.m2ts', '.mts', '.vob', '.iso', '.rmvb', '.rm', '.3gp', '.divx', '.ogm',
    '.strm', '.wtv', '.dvr-ms', '.f4v',
}
SUBTITLE_EXTENSIONS = {'.srt', '.ass', '.ssa', '.vtt', '.sub', '.idx', '.sup', '.smi', '.pgs'}
ARTWORK_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.tbn', '.webp', '.gif', '.bmp'}
DISC_STRUCTURE_EXTENSIONS = {'.ifo', '.bup', '.bdmv', '.clpi', '.mpls', '.bdjo', '.jar'}

# Directory names that mark an optical disc layout
DISC_FOLDER_REGEX = re.compile(r'^(VIDEO_TS|BDMV|HVDVD_TS)$', re.IGNORECASE)

# The one file per disc layout that identifies it
MAIN_DISC_IDENTIFIERS = {'video_ts.ifo', 'index.bdmv', 'hv000i01.ifo'}

DISC_FILE_REGEX = re.compile(
    r'^(video_ts|vts_\d\d_\d)\.(vob|bup|ifo)$'
    r'|^(index|movieobject)\.bdmv$'
    r'|^\d{5}\.(m2ts|clpi|mpls)$'
    r'|^hv\d{3}[ip]\d{2}\.(evo|ifo|bup)$',
    re.IGNORECASE,
)

SEASON_NFO_REGEX = re.compile(r'^season(\d{1,4}|-specials)?\.nfo$', re.IGNORECASE)

# season01-poster.jpg, season-specials-fanart.png, season02.tbn
SEASON_ARTWORK_REGEX = re.compile(
    r'^season[ _.-]?(\d{1,4}|specials|all)?[ _.-]?(poster|fanart|banner|thumb|landscape)?$',
    re.IGNORECASE,
)

ARTWORK_ROLES = {
    'poster': MediaFileType.POSTER,
    'folder': MediaFileType.POSTER,
    'cover': MediaFileType.POSTER,
    'fanart': MediaFileType.FANART,
    'backdrop': MediaFileType.FANART,
    'background': MediaFileType.FANART,
    'banner': MediaFileType.BANNER,
    'thumb': MediaFileType.THUMB,
    'landscape': MediaFileType.THUMB,
}

SEASON_ARTWORK_ROLES = {
    'poster': MediaFileType.SEASON_POSTER,
    'fanart': MediaFileType.SEASON_FANART,
    'banner': MediaFileType.SEASON_BANNER,
    'thumb': MediaFileType.SEASON_THUMB,
    'landscape': MediaFileType.SEASON_THUMB,
}

# Stacking markers: "Show S01E01.cd2.mkv", "Show - part 1.avi", "Show.disc-b.mkv"
STACKING_PATTERNS = [
    re.compile(r'^(.*?)[ _.-]+((?:cd|dvd|p(?:ar)?t|dis[ck])[ _.-]*([0-9]{1,2}))(\.[^.]+)$', re.IGNORECASE),
    re.compile(r'^(.*?)[ _.-]+((?:cd|dvd|p(?:ar)?t|dis[ck])[ _.-]*([a-d]))(\.[^.]+)$', re.IGNORECASE),
]

EXTRA_SUFFIXES = (
    'behindthescenes', 'deleted', 'deletedscenes', 'featurette', 'featurettes',
    'interview', 'interviews', 'scene', 'scenes', 'short', 'shorts', 'trailer',
    'trailers', 'extra', 'extras', 'other', 'others',
)

EXTRA_PATTERNS = [
    re.compile(r'[ _.-]+(?:' + '|'.join(EXTRA_SUFFIXES) + r')\d*(?=\.[^.]+$)', re.IGNORECASE),
]

TYPE_INFIXES = ('poster', 'fanart', 'banner', 'thumb', 'landscape', 'clearart', 'clearlogo', 'logo', 'discart')
TYPE_INFIX_PATTERN = re.compile(r'[_.-](?:' + '|'.join(TYPE_INFIXES) + r')(?=\.[^.]+$)', re.IGNORECASE)


def is_disc_folder_name(name: str) -> bool:
    return bool(DISC_FOLDER_REGEX.match(name))


def is_main_disc_identifier(name: str) -> bool:
    return name.lower() in MAIN_DISC_IDENTIFIERS


def is_disc_file(name: str) -> bool:
    """True for disc folders and for files that belong to a disc layout"""
    return is_disc_folder_name(name) or bool(DISC_FILE_REGEX.match(name))


def is_season_nfo(name: str) -> bool:
    return bool(SEASON_NFO_REGEX.match(name))


def is_graphic(file_type: MediaFileType) -> bool:
    return file_type in GRAPHIC_TYPES


def is_season_artwork(file_type: MediaFileType) -> bool:
    return file_type in SEASON_ARTWORK_TYPES


def get_stacking_info(filename: str) -> Tuple[str, str, int]:
    """
    Detect a stacking marker in a filename

    Returns:
        (de-stacked filename, marker, part number); marker is '' and part is 0
        when the name carries no marker
    """
    for pattern in STACKING_PATTERNS:
        match = pattern.match(filename)
        if match:
            marker = match.group(2)
            part = match.group(3)
            number = int(part) if part.isdigit() else ord(part.lower()) - ord('a') + 1
            return match.group(1) + match.group(4), marker, number
    return filename, '', 0


def get_stacking_marker(filename: str) -> str:
    return get_stacking_info(filename)[1]


def clean_stacking_markers(filename: str) -> str:
    return get_stacking_info(filename)[0]


def basename_without_stacking(filename: str) -> str:
    """De-stacked basename without extension, e.g. 'Show S01E01.cd2.mkv' -> 'Show S01E01'"""
    return Path(clean_stacking_markers(filename)).stem


def name_without_type(filename: str, extras: bool = True) -> str:
    """
    Strip the artwork role infix and, unless extras is False, extra suffixes from a filename

    'episode1-poster.jpg' -> 'episode1.jpg', 'episode1-trailer.mkv' -> 'episode1.mkv'
    """
    name = TYPE_INFIX_PATTERN.sub('', filename)
    if not extras:
        return name
    for pattern in EXTRA_PATTERNS:
        name = pattern.sub('', name)
    return name


def has_extra_suffix(filename: str) -> bool:
    """True for names like 'Show S01E01-trailer.mkv'"""
    return any(pattern.search(filename) for pattern in EXTRA_PATTERNS)


def _classify_artwork(stem: str) -> MediaFileType:
    season_match = SEASON_ARTWORK_REGEX.match(stem)
    if season_match:
        role = (season_match.group(2) or 'poster').lower()
        return SEASON_ARTWORK_ROLES[role]

    lowered = stem.lower()
    if lowered in ARTWORK_ROLES:
        return ARTWORK_ROLES[lowered]

    suffix_match = re.search(r'[_.-]([a-z]+)$', lowered)
    if suffix_match and suffix_match.group(1) in ARTWORK_ROLES:
        return ARTWORK_ROLES[suffix_match.group(1)]
    return MediaFileType.GRAPHIC


def classify(path: Path, is_dir: bool = False) -> MediaFileType:
    """
    Classify a path into its media-file role

    Args:
        path: File or directory path
        is_dir: True when the path is a directory (only disc folders classify)

    Returns:
        The MediaFileType for the path
    """
    name = path.name
    if is_dir:
        return MediaFileType.VIDEO if is_disc_folder_name(name) else MediaFileType.UNKNOWN

    lowered = name.lower()
    extension = path.suffix.lower()

    if extension == '.nfo':
        return MediaFileType.NFO
    if extension == '.vsmeta':
        return MediaFileType.VSMETA
    if is_main_disc_identifier(lowered):
        return MediaFileType.VIDEO
    if extension in VIDEO_EXTENSIONS:
        return MediaFileType.VIDEO
    if extension in SUBTITLE_EXTENSIONS:
        return MediaFileType.SUBTITLE
    if extension in DISC_STRUCTURE_EXTENSIONS:
        return MediaFileType.DISC_MARKER
    if extension in ARTWORK_EXTENSIONS:
        return _classify_artwork(path.stem)
    return MediaFileType.UNKNOWN


def make_discovered_file(path: Path, show_root: Path, size: int, modified: float,
                         is_dir: bool = False) -> DiscoveredFile:
    """Build the immutable DiscoveredFile record for a walked path"""
    try:
        relative = path.relative_to(show_root)
    except ValueError:
        relative = Path(path.name)
    de_stacked, marker, part = get_stacking_info(path.name)
    return DiscoveredFile(
        path=path,
        relative_path=relative,
        size=size,
        modified=modified,
        type=classify(path, is_dir=is_dir),
        is_disc_file=is_disc_file(path.name),
        basename_without_stacking=Path(de_stacked).stem if not is_dir else path.name,
        stacking_marker=marker,
        stacking_part=part,
    )


def find_disc_root(path: Path) -> Optional[Path]:
    """
    Folder that holds a disc layout for the given disc file

    'Show/Ep1/BDMV' -> 'Show/Ep1', 'Show/Ep1/VIDEO_TS/VIDEO_TS.IFO' -> 'Show/Ep1',
    'Show/Ep1/VIDEO_TS.IFO' (no VIDEO_TS folder) -> 'Show/Ep1'
    """
    if is_disc_folder_name(path.name):
        return path.parent
    if is_disc_folder_name(path.parent.name):
        return path.parent.parent
    if is_disc_file(path.name):
        return path.parent
    return None
