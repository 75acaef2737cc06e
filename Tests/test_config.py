# test_config.py
#
#
# Imports
from pathlib import Path
#
# Third-Party Imports
import pytest
import toml
#
# Local Imports
from pos_sync import config
from pos_sync.DB.POS_DB import POSDatabase
from pos_sync.Sync.service import create_sync_service, resolve_device_id
#
#######################################################################################################################
#
# Functions:


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Points the config loader at a throwaway file and clears overrides from the environment."""
    for env_var in list(config.ENV_OVERRIDES) + ["POS_SYNC_CONFIG"]:
        monkeypatch.delenv(env_var, raising=False)
    config_path = tmp_path / "config.toml"
    monkeypatch.setenv("POS_SYNC_CONFIG", str(config_path))
    monkeypatch.setattr(config, "_CONFIG_CACHE", None)
    return config_path


def test_default_file_is_created(isolated_config):
    settings = config.load_settings(force_reload=True)
    assert isolated_config.exists()
    assert settings["sync"]["reconnect_debounce_seconds"] == 1.0
    assert settings["api"]["base_url"] == "http://localhost:8000"


def test_user_file_is_merged_over_defaults(isolated_config):
    isolated_config.write_text('[sync]\nenqueue_sync_delay_seconds = 2\n[api]\nbase_url = "https://pos.example"\n')
    settings = config.load_settings(force_reload=True)
    sync_settings = config.get_sync_settings(settings)
    assert sync_settings["enqueue_sync_delay_seconds"] == 2.0
    assert sync_settings["reconnect_debounce_seconds"] == 1.0
    assert config.get_api_settings(settings)["connectivity_check_url"] == "https://pos.example"


def test_broken_file_falls_back_to_defaults(isolated_config):
    isolated_config.write_text("[sync\nthis is not toml")
    settings = config.load_settings(force_reload=True)
    assert settings["sync"]["history_max_entries"] == 20


def test_environment_overrides_file(isolated_config, monkeypatch):
    isolated_config.write_text('[api]\ntoken = "from-file"\n')
    monkeypatch.setenv("POS_API_TOKEN", "from-env")
    monkeypatch.setenv("POS_DEVICE_ID", "till-3")
    settings = config.load_settings(force_reload=True)
    assert config.get_api_settings(settings)["token"] == "from-env"
    assert config.get_sync_settings(settings)["device_id"] == "till-3"


def test_settings_are_cached_until_reload(isolated_config):
    first = config.load_settings(force_reload=True)
    isolated_config.write_text('[sync]\nhistory_max_entries = 5\n')
    assert config.load_settings() is first
    assert config.load_settings(force_reload=True)["sync"]["history_max_entries"] == 5


def test_bad_value_uses_default(isolated_config):
    isolated_config.write_text('[sync]\nremote_timeout_seconds = "soon"\n')
    settings = config.load_settings(force_reload=True)
    assert config.get_sync_settings(settings)["remote_timeout_seconds"] == 30.0


def test_save_settings_round_trip(isolated_config):
    settings = config.load_settings(force_reload=True)
    settings["general"]["device_id"] = "till-9"
    config.save_settings(settings)
    assert toml.load(isolated_config)["general"]["device_id"] == "till-9"
    assert config.get_setting("general", "device_id") == "till-9"


def test_empty_token_means_no_session(isolated_config):
    settings = config.load_settings(force_reload=True)
    assert config.get_api_settings(settings)["token"] is None


def test_log_paths_follow_database_location(tmp_path):
    settings = {"database": {"db_path": str(tmp_path / "data" / "pos.db")}, "logging": {}}
    paths = config.get_log_file_paths(settings)
    assert paths["app"] == (tmp_path / "data" / "Logs" / "pos_sync.log").resolve()
    assert config.get_log_file_paths({"logging": {"log_to_file": False}}) == {"app": None, "metrics": None}


def test_device_id_is_generated_once(tmp_path):
    db = POSDatabase(tmp_path / "pos.db")
    try:
        first = resolve_device_id(db)
        assert first.startswith("device-")
        assert resolve_device_id(db) == first
        assert resolve_device_id(db, "till-1") == "till-1"
        assert resolve_device_id(db) == "till-1"
    finally:
        db.close_connection()


async def test_history_bound_from_settings_is_capped(tmp_path):
    settings = config.deep_merge_dicts(config.DEFAULT_CONFIG_FROM_TOML, {
        "database": {"db_path": str(tmp_path / "pos.db")},
        "sync": {"history_max_entries": 500},
    })
    service = create_sync_service(settings)
    try:
        assert service.history_log.max_entries == 20
    finally:
        await service.close()


async def test_create_sync_service_from_settings(tmp_path):
    settings = config.deep_merge_dicts(config.DEFAULT_CONFIG_FROM_TOML, {
        "database": {"db_path": str(tmp_path / "pos.db")},
        "api": {"base_url": "https://pos.example/", "token": "abc"},
        "sync": {"history_max_entries": 7},
    })
    service = create_sync_service(settings)
    try:
        assert service.client.base_url == "https://pos.example"
        assert service.client.has_session
        assert service.history_log.max_entries == 7
        assert Path(service.db.db_path) == (tmp_path / "pos.db").resolve()
        assert not service.network.currently_online()
    finally:
        await service.close()

#
# End of test_config.py
########################################################################################################################
