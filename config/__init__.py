"""
Config package for Trade Outcome Lab.

Provides centralized configuration loading from root .env file.
"""

from config.settings import (
    EngineSettings,
    load_config,
    is_config_loaded,
    get_tiingo_key,
    get_model_path,
    get_store_path,
    get_rate_limit_config,
)

__all__ = [
    'EngineSettings',
    'load_config',
    'is_config_loaded',
    'get_tiingo_key',
    'get_model_path',
    'get_store_path',
    'get_rate_limit_config',
]
