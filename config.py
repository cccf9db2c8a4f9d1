#!/usr/bin/env python3
"""
Configuration loader for TV Library Updater
Loads configuration from config.yaml file.

Author: Kilo Code
"""

import os
import yaml
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


def _as_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    return default


@dataclass
class ScanConfig:
    """Directory scanning configuration"""
    skip_folders: List[str] = field(default_factory=list)
    skip_folders_with_nomedia: bool = True
    workers: int = 3
    mediainfo_workers: int = 2
    fetch_video_info_on_update: bool = True
    extract_artwork_from_vsmeta: bool = False
    reset_new_flag_on_update: bool = False
    bad_words: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScanConfig':
        """Create ScanConfig from dictionary"""
        data = data or {}
        skip_folders = data.get('skip_folders') or []
        if not isinstance(skip_folders, list):
            skip_folders = [str(skip_folders)]
        return cls(
            skip_folders=[str(s) for s in skip_folders],
            skip_folders_with_nomedia=bool(data.get('skip_folders_with_nomedia', True)),
            workers=max(1, _as_int(data.get('workers'), 3)),
            mediainfo_workers=max(1, _as_int(data.get('mediainfo_workers'), 2)),
            fetch_video_info_on_update=bool(data.get('fetch_video_info_on_update', True)),
            extract_artwork_from_vsmeta=bool(data.get('extract_artwork_from_vsmeta', False)),
            reset_new_flag_on_update=bool(data.get('reset_new_flag_on_update', False)),
            bad_words=[str(w) for w in data.get('bad_words') or []],
        )


@dataclass
class AIConfig:
    """AI episode recognition configuration"""
    enabled: bool = False
    api_key: str = ''
    base_url: Optional[str] = None
    model: str = 'gpt-4o-mini'
    request_batch_size: int = 10
    max_attempts: int = 3
    base_delay: float = 1.0
    timeout: float = 60.0
    batch_delay: float = 1.0
    permission_wait: float = 10.0
    individual_fallback: bool = False
    system_prompt_file: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.enabled and bool(self.api_key)

    def fingerprint(self) -> tuple:
        """Settings that invalidate cached recognition results when changed"""
        return (self.enabled, self.api_key, self.base_url, self.model)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AIConfig':
        """Create AIConfig from dictionary"""
        data = data or {}
        # Get API key from config or environment
        api_key = data.get('api_key', '')
        if not api_key:
            api_key = os.getenv('OPENAI_API_KEY', '')

        # Get base_url, convert empty string to None
        base_url = data.get('base_url')
        if base_url == '' or base_url == 'null':
            base_url = None

        return cls(
            enabled=bool(data.get('enabled', False)),
            api_key=api_key,
            base_url=base_url,
            model=data.get('model', 'gpt-4o-mini'),
            request_batch_size=max(1, _as_int(data.get('request_batch_size'), 10)),
            max_attempts=max(1, _as_int(data.get('max_attempts'), 3)),
            base_delay=_as_float(data.get('base_delay'), 1.0),
            timeout=_as_float(data.get('timeout'), 60.0),
            batch_delay=_as_float(data.get('batch_delay'), 1.0),
            permission_wait=_as_float(data.get('permission_wait'), 10.0),
            individual_fallback=bool(data.get('individual_fallback', False)),
            system_prompt_file=data.get('system_prompt_file') or None,
        )


@dataclass
class RateLimitConfig:
    """Limits for calls to the AI classifier"""
    max_calls_per_minute: int = 20
    max_calls_per_hour: int = 300
    min_interval: float = 1.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RateLimitConfig':
        """Create RateLimitConfig from dictionary"""
        data = data or {}
        return cls(
            max_calls_per_minute=_as_int(data.get('max_calls_per_minute'), 20),
            max_calls_per_hour=_as_int(data.get('max_calls_per_hour'), 300),
            min_interval=_as_float(data.get('min_interval'), 1.0),
        )


@dataclass
class ProxyConfig:
    """Proxy configuration"""
    http: Optional[str] = None
    https: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional['ProxyConfig']:
        """Create ProxyConfig from dictionary"""
        if not data:
            return None
        http = data.get('http')
        https = data.get('https') or http
        if not http and not https:
            return None
        return cls(http=http, https=https)

    def apply(self) -> None:
        """Export the proxy to the environment used by the HTTP client"""
        if self.http:
            os.environ['HTTP_PROXY'] = self.http
        if self.https:
            os.environ['HTTPS_PROXY'] = self.https


@dataclass
class LibraryConfig:
    """Where the show library and the image cache live"""
    path: Path = Path('library.json')
    image_cache_dir: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LibraryConfig':
        """Create LibraryConfig from dictionary"""
        data = data or {}
        image_cache_dir = data.get('image_cache_dir')
        return cls(
            path=Path(data.get('path', 'library.json')),
            image_cache_dir=Path(image_cache_dir) if image_cache_dir else None,
        )


@dataclass
class Config:
    """Complete application configuration"""
    datasources: List[Path] = field(default_factory=list)
    scan: ScanConfig = field(default_factory=ScanConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)
    proxy: Optional[ProxyConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Config':
        """Create Config from dictionary"""
        datasources = data.get('datasources') or []
        if not isinstance(datasources, list):
            raise ValueError("'datasources' in config.yaml must be a list of directories")

        ai_config = AIConfig.from_dict(data.get('ai', {}))
        if ai_config.enabled and not ai_config.api_key:
            raise ValueError(
                "AI recognition is enabled but no API key was found in config.yaml or the "
                "OPENAI_API_KEY environment variable.\n"
                "Please set ai.api_key or disable ai.enabled."
            )

        proxy_data = data.get('proxy')
        return cls(
            datasources=[Path(d) for d in datasources],
            scan=ScanConfig.from_dict(data.get('scan', {})),
            ai=ai_config,
            rate_limit=RateLimitConfig.from_dict(data.get('rate_limit', {})),
            library=LibraryConfig.from_dict(data.get('library', {})),
            proxy=ProxyConfig.from_dict(proxy_data) if proxy_data else None,
        )


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load complete configuration from YAML file

    Args:
        config_path: Path to config.yaml file. If None, looks for config.yaml
                     in the current directory or script directory.

    Returns:
        Config object with datasources, scan, AI and library settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        ValueError: If the configuration is empty or inconsistent
    """
    # Find config file
    if config_path is None:
        # Try current directory first
        config_file = Path.cwd() / 'config.yaml'

        # If not found, try script directory
        if not config_file.exists():
            config_file = Path(__file__).parent / 'config.yaml'
    else:
        config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_file}\n"
            f"Please create config.yaml from config.example.yaml."
        )

    with open(config_file, 'r', encoding='utf-8') as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError("Configuration file is empty")

    return Config.from_dict(config_data)
