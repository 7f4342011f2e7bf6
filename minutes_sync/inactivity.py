"""
Inactivity classification for directory users.

Each directory entry returned by a user search is tagged as active or inactive
according to the strategy configured under ``ldap.inactive_users``:

- ``userAccountControl``: the ACCOUNTDISABLE bit (2) of the numeric
  userAccountControl attribute is set.
- ``property``: any configured attribute/value pair matches the entry exactly.
- ``none``: nobody is inactive. Unknown strategy names behave the same way.
"""

import logging
from enum import Enum
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

ACCOUNT_CONTROL_ATTRIBUTE = 'userAccountControl'
ACCOUNTDISABLE = 2


class InactivityStrategy(Enum):
    """Supported inactivity classification strategies."""

    USER_ACCOUNT_CONTROL = 'userAccountControl'
    PROPERTY = 'property'
    NONE = 'none'

    @classmethod
    def from_config(cls, name: Optional[str]) -> 'InactivityStrategy':
        """Resolve a configured strategy name, falling back to NONE."""
        if not name:
            return cls.NONE
        try:
            return cls(name)
        except ValueError:
            logger.warning(f"Unknown inactivity strategy '{name}', treating all users as active")
            return cls.NONE


def _account_control_value(entry: Dict[str, Any]) -> int:
    value = entry.get(ACCOUNT_CONTROL_ATTRIBUTE) or 0
    if isinstance(value, (list, tuple)):
        value = value[0] if value else 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _has_disabled_flag(entry: Dict[str, Any]) -> bool:
    return bool(_account_control_value(entry) & ACCOUNTDISABLE)


def _matches_any_property(properties: Optional[Dict[str, Any]], entry: Dict[str, Any]) -> bool:
    if not properties:
        return False
    return any(key in entry and entry[key] == value for key, value in properties.items())


def is_inactive(inactivity_settings: Optional[Dict[str, Any]], entry: Dict[str, Any]) -> bool:
    """
    Decide whether a directory entry belongs to an inactive user.

    Pure function of its arguments; neither the settings nor the entry are modified.

    Args:
        inactivity_settings: The ``inactive_users`` configuration (may be None)
        entry: Flat mapping of the entry's attributes

    Returns:
        True if the configured strategy classifies the user as inactive
    """
    settings = inactivity_settings or {}
    strategy = InactivityStrategy.from_config(settings.get('strategy'))

    if strategy is InactivityStrategy.USER_ACCOUNT_CONTROL:
        return _has_disabled_flag(entry)
    elif strategy is InactivityStrategy.PROPERTY:
        return _matches_any_property(settings.get('properties'), entry)
    elif strategy is InactivityStrategy.NONE:
        return False
    raise AssertionError(f"Unhandled inactivity strategy: {strategy}")
