from __future__ import annotations
import logging
import os
from typing import Any, Dict, Optional

# env var -> (config key, cast, default)
_ENV_SETTINGS = (
    ('JWT_SECRET_KEY', str, 'dev-secret'),
    ('DATABASE_URL', str, 'sqlite:///dev.db'),
    ('LOG_LEVEL', str, 'INFO'),
    ('PAGINATION_DEFAULT_LIMIT', int, 50),
    ('PAGINATION_MAX_LIMIT', int, 200),
    ('DEFAULT_PAYMENT_PLACE', str, 'DAMEN'),
)


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Settings from the environment (``.env`` already loaded), then ``overrides`` on top."""
    settings: Dict[str, Any] = {}
    for key, cast, default in _ENV_SETTINGS:
        raw = os.getenv(key)
        settings[key] = cast(raw) if raw is not None else default
    if overrides:
        settings.update(overrides)
    return settings


def apply_log_level(app) -> None:
    level = logging.getLevelName(str(app.config['LOG_LEVEL']).upper())
    if isinstance(level, int):
        app.logger.setLevel(level)
        logging.getLogger('app').setLevel(level)
