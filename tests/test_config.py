#!/usr/bin/env python3
"""
Configuration loading tests.
"""

import sys
from pathlib import Path

import pytest

# Add parent directory to path to import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Config, load_config


class TestLoadConfig:
    """Tests for load_config and the config dataclasses"""

    def test_full_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv('OPENAI_API_KEY', raising=False)
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "datasources:\n"
            "  - /media/tv\n"
            "scan:\n"
            "  skip_folders: ['Sample', '/media/tv/Incoming']\n"
            "  workers: 2\n"
            "  extract_artwork_from_vsmeta: true\n"
            "ai:\n"
            "  enabled: true\n"
            "  api_key: sk-test\n"
            "  base_url: ''\n"
            "  request_batch_size: 5\n"
            "rate_limit:\n"
            "  max_calls_per_minute: 10\n"
            "library:\n"
            "  path: /var/lib/tv/library.json\n"
            "proxy:\n"
            "  http: http://127.0.0.1:7890\n",
            encoding='utf-8',
        )
        config = load_config(str(config_file))

        assert config.datasources == [Path("/media/tv")]
        assert config.scan.skip_folders == ['Sample', '/media/tv/Incoming']
        assert config.scan.workers == 2
        assert config.scan.mediainfo_workers == 2
        assert config.scan.extract_artwork_from_vsmeta
        assert config.ai.is_valid
        assert config.ai.base_url is None
        assert config.ai.request_batch_size == 5
        assert config.rate_limit.max_calls_per_minute == 10
        assert config.rate_limit.max_calls_per_hour == 300
        assert config.library.path == Path("/var/lib/tv/library.json")
        assert config.proxy.https == "http://127.0.0.1:7890"

    def test_defaults(self):
        config = Config.from_dict({'datasources': ['/media/tv']})
        assert config.scan.workers == 3
        assert config.scan.skip_folders_with_nomedia
        assert not config.scan.extract_artwork_from_vsmeta
        assert not config.ai.enabled
        assert not config.ai.individual_fallback
        assert config.ai.max_attempts == 3
        assert config.rate_limit.min_interval == 1.0
        assert config.proxy is None

    def test_api_key_from_environment(self, monkeypatch):
        monkeypatch.setenv('OPENAI_API_KEY', 'sk-env')
        config = Config.from_dict({'ai': {'enabled': True}})
        assert config.ai.api_key == 'sk-env'

    def test_enabled_ai_without_key(self, monkeypatch):
        monkeypatch.delenv('OPENAI_API_KEY', raising=False)
        with pytest.raises(ValueError):
            Config.from_dict({'ai': {'enabled': True}})

    def test_fingerprint_changes_with_key(self):
        config = Config.from_dict({'ai': {'api_key': 'a'}})
        other = Config.from_dict({'ai': {'api_key': 'b'}})
        assert config.ai.fingerprint() != other.ai.fingerprint()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_empty_file(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("", encoding='utf-8')
        with pytest.raises(ValueError):
            load_config(str(config_file))
