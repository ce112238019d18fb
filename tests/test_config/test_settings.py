"""
Tests for config/settings.py

Environment variables are set with monkeypatch; the project .env is never
read (the loaded flag is forced on).
"""

import pytest
from pathlib import Path

import config.settings as settings
from config.settings import EngineSettings


@pytest.fixture
def loaded(monkeypatch):
    """Skip .env loading so only monkeypatched variables apply."""
    monkeypatch.setattr(settings, '_CONFIG_LOADED', True)
    for var in ('EXIT_MODEL_PATH', 'TRADE_STORE_PATH', 'AUDIT_LOG_DIR', 'ENTRY_THRESHOLD',
                'DRIFT_RECENT_DAYS', 'PRICE_RATE_LIMIT_CALLS', 'PRICE_RATE_LIMIT_WINDOW'):
        monkeypatch.delenv(var, raising=False)


class TestLoadConfig:
    """Tests for load_config()."""

    def test_loads_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / '.env'
        env_file.write_text('TIINGO_API_KEY=from_file\n')
        monkeypatch.setattr(settings, '_CONFIG_LOADED', False)
        # Registered so teardown removes the value loaded from the file
        monkeypatch.setenv('TIINGO_API_KEY', 'placeholder')
        monkeypatch.delenv('TIINGO_API_KEY')

        settings.load_config(env_path=env_file)

        assert settings.is_config_loaded()
        assert settings.get_tiingo_key() == 'from_file'

    def test_warns_on_missing_optional_vars(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, '_CONFIG_LOADED', False)
        monkeypatch.delenv('TIINGO_API_KEY', raising=False)
        with pytest.warns(UserWarning, match='TIINGO_API_KEY'):
            settings.load_config(env_path=tmp_path / 'missing.env')

    def test_loads_once(self, tmp_path, monkeypatch):
        """Subsequent calls are no-ops unless forced."""
        monkeypatch.setattr(settings, '_CONFIG_LOADED', True)
        env_file = tmp_path / '.env'
        env_file.write_text('TIINGO_API_KEY=ignored\n')
        monkeypatch.setenv('TIINGO_API_KEY', 'original')

        settings.load_config(env_path=env_file)

        assert settings.get_tiingo_key() == 'original'


class TestGetters:
    """Tests for the individual getters."""

    def test_missing_tiingo_key(self, loaded, monkeypatch):
        monkeypatch.delenv('TIINGO_API_KEY', raising=False)
        with pytest.raises(ValueError, match='TIINGO_API_KEY'):
            settings.get_tiingo_key()

    def test_relative_paths_resolve_to_project_root(self, loaded, monkeypatch):
        monkeypatch.setenv('TRADE_STORE_PATH', 'data/custom.json')
        assert settings.get_store_path() == settings.PROJECT_ROOT / 'data/custom.json'

    def test_absolute_paths_kept(self, loaded, monkeypatch, tmp_path):
        monkeypatch.setenv('EXIT_MODEL_PATH', str(tmp_path / 'model.json'))
        assert settings.get_model_path() == tmp_path / 'model.json'

    def test_rate_limit_defaults(self, loaded):
        assert settings.get_rate_limit_config() == {'max_calls': 250, 'window_seconds': 60.0}


class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self):
        s = EngineSettings()
        assert s.default_entry_threshold == 0.50
        assert s.drift_recent_days == 30
        assert s.store_path == settings.PROJECT_ROOT / 'data/trade_store.json'

    def test_immutable(self):
        s = EngineSettings()
        with pytest.raises(AttributeError):
            s.drift_recent_days = 7

    @pytest.mark.parametrize('kwargs', [
        {'default_entry_threshold': 0.0},
        {'default_entry_threshold': 1.0},
        {'drift_recent_days': 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            EngineSettings(**kwargs)

    def test_from_env(self, loaded, monkeypatch, tmp_path):
        monkeypatch.setenv('TRADE_STORE_PATH', str(tmp_path / 'store.json'))
        monkeypatch.setenv('AUDIT_LOG_DIR', str(tmp_path / 'audit'))
        monkeypatch.setenv('ENTRY_THRESHOLD', '0.6')
        monkeypatch.setenv('DRIFT_RECENT_DAYS', '14')
        monkeypatch.setenv('PRICE_RATE_LIMIT_CALLS', '100')

        s = EngineSettings.from_env()

        assert s.store_path == Path(tmp_path / 'store.json')
        assert s.audit_log_dir == tmp_path / 'audit'
        assert s.default_entry_threshold == 0.6
        assert s.drift_recent_days == 14
        assert s.rate_limit_calls == 100
        assert s.rate_limit_window == 60.0

    def test_from_env_rejects_bad_threshold(self, loaded, monkeypatch):
        monkeypatch.setenv('ENTRY_THRESHOLD', '1.5')
        with pytest.raises(ValueError):
            EngineSettings.from_env()
