"""Unit tests for core.settings module."""

import pytest

from src.core.errors import ConfigError
from src.core.settings import EngineSettings


class TestDefaults:

    def test_watchdog_defaults(self):
        settings = EngineSettings()
        assert settings.watchdog_timeout_seconds == 900.0
        assert settings.watchdog_interval_seconds == 60.0

    def test_one_approval_by_default(self):
        assert EngineSettings().approvals_required_for("any-space") == 1

    def test_space_override_may_be_zero(self):
        settings = EngineSettings(space_required_approvals={"open": 0})
        assert settings.approvals_required_for("open") == 0
        assert settings.approvals_required_for("other") == 1


class TestFromDict:
    """Test cases for EngineSettings.from_dict."""

    def test_none_gives_defaults(self):
        assert EngineSettings.from_dict(None) == EngineSettings()

    def test_values_are_coerced(self):
        settings = EngineSettings.from_dict({
            'watchdog_timeout_seconds': '120',
            'required_approvals': '2',
            'space_required_approvals': {'handbook': '0'},
        })
        assert settings.watchdog_timeout_seconds == 120.0
        assert settings.required_approvals == 2
        assert settings.space_required_approvals == {'handbook': 0}

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError) as exc_info:
            EngineSettings.from_dict({'watchdog_timout': 5})
        assert 'watchdog_timout' in str(exc_info.value)

    def test_non_dict_rejected(self):
        with pytest.raises(ConfigError):
            EngineSettings.from_dict(['required_approvals'])

    def test_bad_number_rejected(self):
        with pytest.raises(ConfigError):
            EngineSettings.from_dict({'max_retries': 'many'})

    def test_negative_approvals_rejected(self):
        with pytest.raises(ConfigError) as exc_info:
            EngineSettings.from_dict({'required_approvals': -1})
        assert exc_info.value.config_field == 'required_approvals'


class TestValidate:

    @pytest.mark.parametrize("overrides", [
        {'watchdog_timeout_seconds': 0},
        {'watchdog_interval_seconds': -1},
        {'max_retries': -1},
        {'max_workers': 0},
        {'file_extension': 'md'},
        {'space_required_approvals': {'s': -2}},
    ])
    def test_out_of_range(self, overrides):
        with pytest.raises(ConfigError):
            EngineSettings(**overrides).validate()


class TestApplyEnvironment:
    """DOCSYNC_* variables override file settings."""

    def test_overrides_applied(self, monkeypatch, tmp_path):
        monkeypatch.setenv('DOCSYNC_WATCHDOG_TIMEOUT', '30')
        monkeypatch.setenv('DOCSYNC_REQUIRED_APPROVALS', '0')
        monkeypatch.setenv('DOCSYNC_WEBHOOK_SECRET', 's3cret')
        monkeypatch.delenv('DOCSYNC_MAX_RETRIES', raising=False)

        settings = EngineSettings().apply_environment(str(tmp_path / "missing.env"))

        assert settings.watchdog_timeout_seconds == 30.0
        assert settings.required_approvals == 0
        assert settings.webhook_secret == 's3cret'
        assert settings.max_retries == 3

    def test_env_file_is_loaded(self, monkeypatch, tmp_path):
        # Registers a restore point so the value load_dotenv sets is removed afterwards
        monkeypatch.setenv('DOCSYNC_MAX_RETRIES', '1')
        monkeypatch.delenv('DOCSYNC_MAX_RETRIES')
        env_file = tmp_path / ".env"
        env_file.write_text("DOCSYNC_MAX_RETRIES=7\n")

        settings = EngineSettings().apply_environment(str(env_file))

        assert settings.max_retries == 7

    def test_invalid_override_rejected(self, monkeypatch, tmp_path):
        monkeypatch.setenv('DOCSYNC_WATCHDOG_TIMEOUT', 'soon')
        with pytest.raises(ConfigError):
            EngineSettings().apply_environment(str(tmp_path / "missing.env"))
