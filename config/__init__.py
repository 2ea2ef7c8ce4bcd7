"""Configuration module for loading and managing application settings"""
from typing import Dict, Any, Optional
from .lib.load_settings_conf import load_settings_conf, SettingsError, DEFAULTS
import os

__all__ = ['settings_conf', 'load_config', 'SettingsError', 'DEFAULTS']

SETTINGS_PATH_ENV = 'BEST_ORDERS_SETTINGS_PATH'

def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from file.

    Args:
        config_path: Optional directory holding settings.conf. If not provided,
                    uses $BEST_ORDERS_SETTINGS_PATH or the current directory.

    Returns:
        Dictionary with validated settings
    """
    return load_settings_conf(config_path or os.environ.get(SETTINGS_PATH_ENV, '.'))

try:
    settings_conf: Dict[str, Any] = load_config()

except SettingsError as e:
    # Re-raise the error but provide more context
    raise type(e)(
        f"Configuration Error\n"
        "=================\n\n"
        f"{str(e)}\n\n"
        "Please ensure settings.conf is properly configured.\n"
        "Run `python -m config` to write an example file."
    )
