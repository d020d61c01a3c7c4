"""Configuration module for loading and managing application settings"""
import logging
import os
from typing import Dict, Any

from .lib.load_settings_conf import (
    load_settings_conf,
    validate_settings,
    SettingsError,
    DEFAULTS,
    STORAGE_BACKENDS,
)

__all__ = [
    'settings_conf',
    'load_settings_conf',
    'validate_settings',
    'SettingsError',
    'DEFAULTS',
    'STORAGE_BACKENDS',
]

logger = logging.getLogger(__name__)

SETTINGS_PATH_ENV = 'CONTRACT_MARKET_SETTINGS'


def _load() -> Dict[str, Any]:
    settings_path = os.environ.get(SETTINGS_PATH_ENV, '.')
    try:
        return load_settings_conf(settings_path)
    except FileNotFoundError:
        logger.warning(
            f"No settings.conf found in {settings_path}, using default settings"
        )
        return validate_settings(DEFAULTS)
    except SettingsError as e:
        # Re-raise the error but provide more context
        raise SettingsError(
            f"Configuration Error\n"
            "=================\n\n"
            f"{str(e)}\n\n"
            "Please ensure settings.conf is properly configured.\n"
            "See settings.conf.example for the available settings."
        )


settings_conf: Dict[str, Any] = _load()
