"""
tests/test_config.py — YAML Configuration Loader Tests
=======================================================
"""

from __future__ import annotations

import pytest

from atelier.config import AtelierConfig, load_config


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_minimal_file_uses_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, 'platform_name: "Atelier Dev"\napi_port: 8000\n'))
        assert cfg == AtelierConfig(platform_name="Atelier Dev", api_port=8000)
        assert cfg.environment == "development"
        assert cfg.is_production is False
        assert cfg.job_lock_refresh_seconds == 8
        assert cfg.job_lock_buffer_seconds == 2
        assert cfg.moderator_ids == ()

    def test_full_file(self, tmp_path):
        cfg = load_config(_write(tmp_path, "\n".join([
            "platform_name: Atelier",
            'api_port: "9000"',
            "environment: production",
            "job_lock_refresh_seconds: 4",
            "job_lock_buffer_seconds: 1",
            "moderator_ids: [7, '12']",
        ])))
        assert cfg.api_port == 9000
        assert cfg.is_production is True
        assert (cfg.job_lock_refresh_seconds, cfg.job_lock_buffer_seconds) == (4, 1)
        assert cfg.moderator_ids == (7, 12)

    def test_null_moderator_ids(self, tmp_path):
        cfg = load_config(_write(tmp_path, "platform_name: a\napi_port: 1\nmoderator_ids:\n"))
        assert cfg.moderator_ids == ()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "absent.yaml")

    def test_missing_required_key(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, "api_port: 8000\n"))

    def test_empty_file(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, ""))

    def test_config_is_frozen(self):
        cfg = AtelierConfig(platform_name="a", api_port=1)
        with pytest.raises(AttributeError):
            cfg.environment = "production"
