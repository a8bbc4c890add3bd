"""
tests/test_config.py — config.yaml Loader Tests
================================================
"""

from __future__ import annotations

import pytest

from quietwatch.config import DEFAULT_REMINDER_CHANNEL_KEYWORD, load_config

BASE_YAML = """\
community_name: "Quietwatch Dev"
bot_prefix: "!"
guild_id: 1468816181854081229
dashboard_port: 8000
admin_role_id: 77
"""


class TestLoadConfig:
    def test_loads_required_fields(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(BASE_YAML, encoding="utf-8")

        cfg = load_config(path)

        assert cfg.community_name == "Quietwatch Dev"
        assert cfg.guild_id == 1468816181854081229
        assert cfg.admin_role_id == 77
        assert cfg.reminder_channel_keyword == DEFAULT_REMINDER_CHANNEL_KEYWORD

    def test_keyword_override_lowercased(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(BASE_YAML + 'reminder_channel_keyword: "Reminders"\n', encoding="utf-8")
        assert load_config(path).reminder_channel_keyword == "reminders"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_missing_key(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text('community_name: "x"\n', encoding="utf-8")
        with pytest.raises(KeyError):
            load_config(path)

    def test_config_is_frozen(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(BASE_YAML, encoding="utf-8")
        cfg = load_config(path)
        with pytest.raises(AttributeError):
            cfg.guild_id = 1
