"""
Portal-wide settings stored in the ``portal_settings`` table.

Visibility toggles are exposed over the API by camelCase names and stored by
snake_case keys. Defaults for unset keys can be supplied from a YAML file.
"""
import logging
import os

import yaml

from core.db import fetch_one, utcnow

logger = logging.getLogger(__name__)

SCORES_VISIBILITY = 'participants_can_view_scores'
SCRATCH_MASTERS_VISIBILITY = 'participants_can_view_scratch_masters'
OPTIONAL_EVENTS_VISIBILITY = 'participants_can_view_optional_events'

# API name -> (storage key, admin action logged on change)
VISIBILITY_SETTINGS = {
    'participantsCanViewScores': (SCORES_VISIBILITY, 'set_scores_visibility'),
    'participantsCanViewScratchMasters': (SCRATCH_MASTERS_VISIBILITY,
                                          'set_scratch_masters_visibility'),
    'participantsCanViewOptionalEvents': (OPTIONAL_EVENTS_VISIBILITY,
                                          'set_optional_events_visibility'),
}

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}
_FALSE_VALUES = {'0', 'false', 'no', 'off'}


def normalize_boolean_setting(value, fallback=False) -> bool:
    if value is None:
        return fallback
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return fallback


def load_setting_defaults(path) -> dict:
    """Read ``{setting_key: value}`` defaults from YAML; missing file means none."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f'Failed to parse {path}: {e}')
        return {}
    return data if isinstance(data, dict) else {}


def get_setting_value(conn, key, fallback=None):
    row = fetch_one(conn, 'SELECT setting_value FROM portal_settings WHERE setting_key = ? LIMIT 1',
                    (key,))
    if row is None:
        return fallback
    return row['setting_value']


def set_setting_value(conn, key, value):
    conn.execute(
        """
        INSERT INTO portal_settings (setting_key, setting_value, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(setting_key) DO UPDATE SET
            setting_value = excluded.setting_value,
            updated_at = excluded.updated_at
        """,
        (key, str(value), utcnow()),
    )


def get_boolean_setting(conn, key, fallback=False) -> bool:
    raw = get_setting_value(conn, key, '1' if fallback else '0')
    return normalize_boolean_setting(raw, fallback)


def set_boolean_setting(conn, key, enabled: bool):
    set_setting_value(conn, key, '1' if enabled else '0')
