"""
Meeting minutes access for Minutes Sync.

The meeting-minutes application owns the real data model. This module only
provides the read-only view the notification dispatcher needs: a minutes
aggregate exposing its open action items, and stores that resolve a minutes
identifier to such an aggregate.
"""

import os
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional

import yaml

logger = logging.getLogger(__name__)


class MinutesNotFoundError(Exception):
    """Raised when a minutes identifier cannot be resolved."""
    pass


class ActionItem:
    """An action item recorded in a meeting's minutes."""

    def __init__(self, subject: str, responsible: Optional[List[str]] = None,
                 is_open: bool = True, priority: Optional[str] = None,
                 duedate: Optional[str] = None, details: Optional[List[str]] = None):
        self.subject = subject
        self.responsible = list(responsible or [])
        self.is_open = is_open
        self.priority = priority
        self.duedate = duedate
        self.details = list(details or [])

    def get_responsible_array(self) -> List[str]:
        """Recipients responsible for this item, in the order they were assigned."""
        return list(self.responsible)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActionItem':
        responsible = data.get('responsible') or []
        if isinstance(responsible, str):
            responsible = [responsible]
        duedate = data.get('duedate')
        return cls(
            subject=data.get('subject', ''),
            responsible=responsible,
            is_open=data.get('is_open', True),
            priority=data.get('priority'),
            duedate=str(duedate) if duedate is not None else None,
            details=data.get('details')
        )

    def __repr__(self):
        return f"ActionItem(subject={self.subject!r}, responsible={self.responsible!r}, is_open={self.is_open})"


class Minutes:
    """Minutes of a single meeting."""

    def __init__(self, minutes_id: str, meeting_name: str = '', date: Optional[str] = None,
                 action_items: Optional[List[ActionItem]] = None):
        self.id = minutes_id
        self.meeting_name = meeting_name
        self.date = date
        self.action_items = list(action_items or [])

    def get_open_action_items(self) -> List[ActionItem]:
        """Action items that are still open, in recorded order."""
        return [item for item in self.action_items if item.is_open]

    @classmethod
    def from_dict(cls, minutes_id: str, data: Dict[str, Any]) -> 'Minutes':
        date = data.get('date')
        return cls(
            minutes_id=data.get('id', minutes_id),
            meeting_name=data.get('meeting_name', ''),
            date=str(date) if date is not None else None,
            action_items=[ActionItem.from_dict(item) for item in data.get('action_items') or []]
        )

    def __repr__(self):
        return f"Minutes(id={self.id!r}, meeting_name={self.meeting_name!r})"


class MinutesStore(ABC):
    """Resolves minutes identifiers to Minutes aggregates."""

    @abstractmethod
    def load(self, minutes_id: str) -> Minutes:
        """
        Load the minutes with the given identifier.

        Raises:
            MinutesNotFoundError: If no minutes exist for the identifier
        """
        pass


class YamlMinutesStore(MinutesStore):
    """
    Minutes store backed by a directory of YAML files.

    Each file is named ``<minutes_id>.yaml`` and holds a mapping with
    ``meeting_name``, ``date`` and a list of ``action_items``.
    """

    def __init__(self, store_dir: str):
        self.store_dir = store_dir

    def _path_for(self, minutes_id: str) -> str:
        if not minutes_id or os.path.basename(minutes_id) != minutes_id or minutes_id.startswith('.'):
            raise MinutesNotFoundError(f"Invalid minutes id: {minutes_id!r}")
        return os.path.join(self.store_dir, f"{minutes_id}.yaml")

    def load(self, minutes_id: str) -> Minutes:
        path = self._path_for(minutes_id)
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise MinutesNotFoundError(f"Minutes not found: {minutes_id} ({path})")
        except yaml.YAMLError as e:
            raise MinutesNotFoundError(f"Invalid YAML in minutes file {path}: {e}")

        if not isinstance(data, dict):
            raise MinutesNotFoundError(f"Minutes file {path} must contain a mapping")

        minutes = Minutes.from_dict(minutes_id, data)
        logger.debug(f"Loaded minutes {minutes_id} with {len(minutes.action_items)} action items")
        return minutes
