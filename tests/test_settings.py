"""Tests for global configuration settings powered by Pydantic."""

from pathlib import Path

import pytest
import yaml

from car_sync.utils.config import (
    ConfigurationError,
    GlobalSettings,
    apply_yaml_overrides,
    ensure_runtime_configuration,
    get_settings,
    load_yaml_config,
)

REQUIRED = ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "API_BASE_URL", "API_KEY")


def test_global_settings_defaults() -> None:
    """Default settings should reflect the documented tuning values."""

    settings = get_settings(reload=True)

    assert settings.environment == "development"
    assert settings.concurrency == 20
    assert settings.rps == 35.0
    assert settings.page_size == 200
    assert settings.batch_size == 500
    assert settings.parallel_batches == 8
    assert settings.max_retries == 3
    assert settings.max_consecutive_empty_pages == 5
    assert settings.max_pages == 5000
    assert settings.max_total_errors == 50
    assert settings.checkpoint_backend == "file"


def test_global_settings_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    """Environment variables should override default configuration values."""

    monkeypatch.setenv("CONCURRENCY", "8")
    monkeypatch.setenv("RPS", "12.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("API_BASE_URL", "https://api.cars.test/v2/")

    settings = get_settings(reload=True)

    assert settings.concurrency == 8
    assert settings.rps == 12.5
    assert settings.log_level == "DEBUG"
    assert settings.api_base_url == "https://api.cars.test/v2"


def test_invalid_env_value_raises_configuration_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CONCURRENCY", "0")

    with pytest.raises(ConfigurationError):
        get_settings(reload=True)


def test_invalid_checkpoint_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHECKPOINT_BACKEND", "redis")

    with pytest.raises(ConfigurationError):
        get_settings(reload=True)


def test_settings_are_cached() -> None:
    assert get_settings() is get_settings()
    first = get_settings()
    assert get_settings(reload=True) is not first


class TestDerivedValues:
    """Computed properties and URL construction."""

    def test_bucket_capacity_defaults_to_rps(self, settings_factory) -> None:
        assert settings_factory(rps=35.0).effective_bucket_capacity == 35
        assert settings_factory(rps=0.5).effective_bucket_capacity == 1
        assert settings_factory(rps=35.0, bucket_capacity=10).effective_bucket_capacity == 10

    def test_pending_pages_defaults_to_twice_concurrency(self, settings_factory) -> None:
        assert settings_factory(concurrency=20).effective_max_pending_pages == 40
        assert settings_factory(concurrency=20, max_pending_pages=5).effective_max_pending_pages == 5

    def test_cars_url(self, settings_factory) -> None:
        settings = settings_factory(api_base_url="https://api.cars.test/v1/", page_size=200)

        assert settings.cars_url(7) == "https://api.cars.test/v1/cars?page=7&per_page=200"


class TestYamlOverrides:
    """Optional YAML tuning file."""

    def test_yaml_values_fill_unset_fields(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        config_file = tmp_path / "sync.yaml"
        config_file.write_text(yaml.safe_dump({"page_size": 100, "batch_size": 250}))
        monkeypatch.setenv("SYNC_CONFIG_FILE", str(config_file))

        settings = get_settings(reload=True)

        assert settings.page_size == 100
        assert settings.batch_size == 250

    def test_environment_beats_yaml(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        config_file = tmp_path / "sync.yaml"
        config_file.write_text(yaml.safe_dump({"concurrency": 4}))
        monkeypatch.setenv("SYNC_CONFIG_FILE", str(config_file))
        monkeypatch.setenv("CONCURRENCY", "16")

        assert get_settings(reload=True).concurrency == 16

    def test_unknown_keys_are_ignored(self, settings_factory) -> None:
        settings = settings_factory()

        updated = apply_yaml_overrides(settings, {"not_a_setting": 1, "rps": 10})

        assert updated.rps == 10
        assert not hasattr(updated, "not_a_setting")

    def test_invalid_yaml_value(self, settings_factory) -> None:
        with pytest.raises(ConfigurationError):
            apply_yaml_overrides(settings_factory(), {"page_size": -1})

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_yaml_config(tmp_path / "missing.yaml")

    def test_non_mapping_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "list.yaml"
        config_file.write_text("- 1\n- 2\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_yaml_config(config_file)


class TestRuntimeConfiguration:
    """Required variable validation."""

    def test_complete_environment_passes(self) -> None:
        settings = ensure_runtime_configuration(get_settings(reload=True))

        assert settings.api_key == "api-key"

    @pytest.mark.parametrize("missing", REQUIRED)
    def test_each_required_variable(self, monkeypatch: pytest.MonkeyPatch, missing: str) -> None:
        monkeypatch.delenv(missing)

        with pytest.raises(ConfigurationError) as excinfo:
            ensure_runtime_configuration(get_settings(reload=True))

        assert missing in str(excinfo.value)

    def test_database_checkpoints_need_database_url(self, settings_factory) -> None:
        settings = settings_factory(checkpoint_backend="database", database_url=None)

        with pytest.raises(ConfigurationError, match="DATABASE_URL"):
            ensure_runtime_configuration(settings)

    def test_blank_values_count_as_missing(self) -> None:
        settings = GlobalSettings(
            supabase_url="https://project.supabase.test",
            supabase_service_role_key="",
            api_base_url="https://api.cars.test",
            api_key="key",
        )

        with pytest.raises(ConfigurationError, match="SUPABASE_SERVICE_ROLE_KEY"):
            ensure_runtime_configuration(settings)
