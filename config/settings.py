"""
Centralized Configuration Loading for Trade Outcome Lab.

- Single source of truth for all environment variables
- Loads the project-root .env once per process
- Builds the immutable EngineSettings handed to services at startup

Usage:
    from config.settings import load_config, EngineSettings

    # At app startup (call once)
    load_config()
    settings = EngineSettings.from_env()

    coefficients = load_coefficients(settings.model_path)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

# Flag to track if config has been loaded
_CONFIG_LOADED = False

PROJECT_ROOT = Path(__file__).parent.parent

DEFAULT_MODEL_PATH = 'models/exit_model.json'
DEFAULT_STORE_PATH = 'data/trade_store.json'
DEFAULT_AUDIT_LOG_DIR = 'logs/'


def load_config(force_reload: bool = False, env_path: Optional[Path] = None) -> None:
    """
    Load environment variables from the project root .env file.

    A missing .env is fine (variables may come from the process
    environment); missing optional variables only produce a warning.

    Args:
        force_reload: If True, reload even if already loaded
        env_path: Alternative .env location (tests)
    """
    global _CONFIG_LOADED

    if _CONFIG_LOADED and not force_reload:
        return

    # Import here to avoid circular imports
    from dotenv import load_dotenv

    env_path = env_path or PROJECT_ROOT / '.env'
    if env_path.exists():
        load_dotenv(env_path, override=True)

    _CONFIG_LOADED = True

    _validate_optional_vars()


def _validate_optional_vars() -> None:
    """Warn about variables whose absence disables a feature."""
    import warnings

    optional_vars = [
        'TIINGO_API_KEY',      # Price backfill / open trade marking
    ]

    missing = [var for var in optional_vars if not (os.getenv(var) or '').strip()]
    if missing:
        warnings.warn(
            f"Missing environment variables: {missing}. Some features may be unavailable.",
            UserWarning,
        )


def is_config_loaded() -> bool:
    return _CONFIG_LOADED


def get_tiingo_key() -> str:
    """
    Get Tiingo API key.

    Raises:
        ValueError: If TIINGO_API_KEY is not set
    """
    load_config()
    key = os.getenv('TIINGO_API_KEY')
    if not key:
        raise ValueError(
            "TIINGO_API_KEY not found in environment. "
            "Add it to the root .env file."
        )
    return key


def _resolve(path_str: str) -> Path:
    path = Path(path_str)
    return path if path.is_absolute() else PROJECT_ROOT / path


def get_model_path() -> Path:
    """Location of the trained exit model coefficients (EXIT_MODEL_PATH)."""
    load_config()
    return _resolve(os.getenv('EXIT_MODEL_PATH', DEFAULT_MODEL_PATH))


def get_store_path() -> Path:
    """Location of the JSON trade store (TRADE_STORE_PATH)."""
    load_config()
    return _resolve(os.getenv('TRADE_STORE_PATH', DEFAULT_STORE_PATH))


def get_rate_limit_config() -> Dict[str, float]:
    """
    Price provider rate limit.

    Returns:
        Dict with max_calls and window_seconds
    """
    load_config()
    return {
        'max_calls': int(os.getenv('PRICE_RATE_LIMIT_CALLS', '250')),
        'window_seconds': float(os.getenv('PRICE_RATE_LIMIT_WINDOW', '60')),
    }


@dataclass(frozen=True)
class EngineSettings:
    """
    Immutable runtime settings, built once at startup and passed to services.

    Attributes:
        model_path: Trained exit model coefficients (JSON)
        store_path: JSON trade store
        audit_log_dir: Directory for the lifecycle audit trail
        rate_limit_calls: Provider calls allowed per window
        rate_limit_window: Window length in seconds
        default_entry_threshold: Probability threshold used when none is given
        drift_recent_days: Recent window for drift detection
    """
    model_path: Path = PROJECT_ROOT / DEFAULT_MODEL_PATH
    store_path: Path = PROJECT_ROOT / DEFAULT_STORE_PATH
    audit_log_dir: Path = PROJECT_ROOT / DEFAULT_AUDIT_LOG_DIR
    rate_limit_calls: int = 250
    rate_limit_window: float = 60.0
    default_entry_threshold: float = 0.50
    drift_recent_days: int = 30

    def __post_init__(self):
        if not 0.0 < self.default_entry_threshold < 1.0:
            raise ValueError(
                f"default_entry_threshold must be in (0, 1), got {self.default_entry_threshold}"
            )
        if self.drift_recent_days < 1:
            raise ValueError(f"drift_recent_days must be >= 1, got {self.drift_recent_days}")

    @classmethod
    def from_env(cls) -> 'EngineSettings':
        """Build settings from the environment (loads .env first)."""
        load_config()
        rate_limit = get_rate_limit_config()
        return cls(
            model_path=get_model_path(),
            store_path=get_store_path(),
            audit_log_dir=_resolve(os.getenv('AUDIT_LOG_DIR', DEFAULT_AUDIT_LOG_DIR)),
            rate_limit_calls=rate_limit['max_calls'],
            rate_limit_window=rate_limit['window_seconds'],
            default_entry_threshold=float(os.getenv('ENTRY_THRESHOLD', '0.50')),
            drift_recent_days=int(os.getenv('DRIFT_RECENT_DAYS', '30')),
        )
