"""
config.py
~~~~~~~~~

Environment-driven settings shared by the CLI and the API server.
"""

import os


def _env_flag(name: str, default: bool) -> bool:
    """Read a boolean flag such as ``1``/``0`` or ``true``/``false``."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO').upper()
IS_PRODUCTION: bool = os.getenv('FLASK_ENV') == 'production'
PORT: int = int(os.getenv('PORT', '8000'))

# Where downloaded datasets and trained models live
DATA_DIR: str = os.getenv('BASICNETS_DATA_DIR', 'data')
MODEL_DIR: str = os.getenv('BASICNETS_MODEL_DIR', 'models')

# Saved models older than this are removed by the cleanup task
CLEANUP_DAYS: int = int(os.getenv('BASICNETS_CLEANUP_DAYS', '2'))

# Reload saved models and start the cleanup greenlet on import
BACKGROUND_TASKS: bool = _env_flag('BASICNETS_BACKGROUND_TASKS', True)

DOWNLOAD_TIMEOUT: float = float(os.getenv('BASICNETS_DOWNLOAD_TIMEOUT', '60'))
