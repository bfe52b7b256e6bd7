"""
Unit tests for configuration loading.
"""

from pathlib import Path

from roundbid.core.config import EngineConfig, load_config


def test_defaults():
    config = EngineConfig()
    assert config.round_length == 900
    assert config.total_rounds == 4
    assert config.early_finish_threshold == 3
    assert config.cancel_window == 720
    assert config.claim_window == 900
    assert config.winner_ranks == 3
    assert config.banner_visibility == 2700
    assert config.time_source_url is None


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ROUNDBID_CLAIM_WINDOW", "600")
    monkeypatch.setenv("ROUNDBID_TIME_SOURCE_TIMEOUT", "2.5")
    monkeypatch.setenv("ROUNDBID_TIME_SOURCE_URL", "http://time.test/now")
    monkeypatch.setenv("ROUNDBID_DATA_DIR", str(tmp_path / "db"))

    config = load_config()
    assert config.claim_window == 600
    assert config.time_source_timeout == 2.5
    assert config.time_source_url == "http://time.test/now"
    assert config.data_dir == tmp_path / "db"


def test_env_file(monkeypatch, tmp_path):
    # dotenv writes into os.environ; register the key so it is removed afterwards
    monkeypatch.setenv("ROUNDBID_ROUND_LENGTH", "0")
    monkeypatch.delenv("ROUNDBID_ROUND_LENGTH")
    env_file = tmp_path / "test.env"
    env_file.write_text("ROUNDBID_ROUND_LENGTH=60\n")

    config = load_config(str(env_file))
    assert config.round_length == 60


def test_ensure_directories(tmp_path):
    config = EngineConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs")
    config.ensure_directories()
    assert Path(config.data_dir).is_dir()
    assert Path(config.log_dir).is_dir()


def test_log_level_override(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ROUNDBID_LOG_LEVEL", "DEBUG")
    assert load_config().log_level == "DEBUG"
