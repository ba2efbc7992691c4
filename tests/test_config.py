"""Tests for configuration resolution."""

import stat
from pathlib import Path

import pytest

from drivesync.config import DEFAULT_API_URL, Config
from drivesync.exceptions import ConfigError

ENV_VARS = (
    "DRIVESYNC_API_KEY",
    "DRIVESYNC_API_URL",
    "DRIVESYNC_STATE_DIR",
    "DRIVESYNC_POLL_INTERVAL",
    "DRIVESYNC_WORKERS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    """Tests for the Config class."""

    def test_defaults(self, tmp_path):
        config = Config(config_dir=tmp_path)
        assert config.api_key is None
        assert not config.is_configured()
        assert config.api_url == DEFAULT_API_URL
        assert config.state_dir == tmp_path / "tracked_files"
        assert config.poll_interval == 30.0
        assert config.workers == 1

    def test_reads_config_file(self, tmp_path):
        (tmp_path / "config").write_text(
            "# drivesync\n"
            'DRIVESYNC_API_KEY="file_key"\n'
            "export DRIVESYNC_POLL_INTERVAL=12.5\n"
            "\n"
            "DRIVESYNC_STATE_DIR='~/sync state'  # quoted, with a space\n"
            "DRIVESYNC_UNKNOWN=ignored\n"
        )
        config = Config(config_dir=tmp_path)
        assert config.api_key == "file_key"
        assert config.is_configured()
        assert config.poll_interval == 12.5
        assert config.state_dir == Path("~/sync state").expanduser()

    def test_invalid_value_in_config_file(self, tmp_path):
        (tmp_path / "config").write_text("DRIVESYNC_WORKERS=none\n")
        with pytest.raises(ConfigError, match="DRIVESYNC_WORKERS"):
            Config(config_dir=tmp_path).workers

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        (tmp_path / "config").write_text("DRIVESYNC_API_KEY=file_key\n")
        monkeypatch.setenv("DRIVESYNC_API_KEY", "env_key")
        monkeypatch.setenv("DRIVESYNC_STATE_DIR", str(tmp_path / "elsewhere"))
        config = Config(config_dir=tmp_path)
        assert config.api_key == "env_key"
        assert config.state_dir == tmp_path / "elsewhere"

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_poll_interval(self, tmp_path, monkeypatch, value):
        monkeypatch.setenv("DRIVESYNC_POLL_INTERVAL", value)
        with pytest.raises(ConfigError):
            Config(config_dir=tmp_path).poll_interval

    @pytest.mark.parametrize("value", ["many", "0"])
    def test_invalid_workers(self, tmp_path, monkeypatch, value):
        monkeypatch.setenv("DRIVESYNC_WORKERS", value)
        with pytest.raises(ConfigError):
            Config(config_dir=tmp_path).workers

    def test_save_api_key(self, tmp_path):
        config_dir = tmp_path / "drivesync"
        config = Config(config_dir=config_dir)
        config.save_api_key("new_key")

        config_path = config.get_config_path()
        assert config_path.read_text().startswith("DRIVESYNC_API_KEY=")
        assert stat.S_IMODE(config_path.stat().st_mode) == 0o600
        assert Config(config_dir=config_dir).api_key == "new_key"

    def test_save_api_key_keeps_other_settings(self, tmp_path):
        (tmp_path / "config").write_text(
            "DRIVESYNC_API_KEY=old\nDRIVESYNC_WORKERS=4\n"
        )
        config = Config(config_dir=tmp_path)
        config.save_api_key("new")

        reloaded = Config(config_dir=tmp_path)
        assert reloaded.api_key == "new"
        assert reloaded.workers == 4
