"""
Mail dispatch performed when meeting minutes are finalized.

Every person responsible for at least one open action item receives exactly
one email listing all of their open items from that meeting. Grouping and
sending are separate steps: ``build_recipient_map`` produces the
recipient -> items mapping, and ``FinalizeMailHandler`` hands each group to
its own mail handler.

Dispatching twice for the same minutes sends the mails twice.
"""

import logging
from typing import Callable, Dict, List, Any, Optional, Tuple

from minutes_sync.config import ConfigurationError
from minutes_sync.minutes import MinutesStore
from minutes_sync.notifications import ActionItemsMailHandler

logger = logging.getLogger(__name__)


class MailDispatchError(Exception):
    """Raised after dispatch when sending to one or more recipients failed."""

    def __init__(self, failures: List[Tuple[Any, Exception]]):
        self.failures = failures
        recipients = ', '.join(str(recipient) for recipient, _ in failures)
        super().__init__(f"Failed to send action items to {len(failures)} recipient(s): {recipients}")


def build_recipient_map(action_items) -> Dict[Any, List[Any]]:
    """
    Group action items by responsible recipient.

    Recipients appear in the order they are first seen; each recipient's items
    keep the order of ``action_items``. An item with several responsible
    recipients is listed under each of them.

    Args:
        action_items: Iterable of items exposing ``get_responsible_array()``

    Returns:
        Insertion-ordered mapping of recipient to list of items
    """
    recipient_map = {}
    for item in action_items:
        for recipient in item.get_responsible_array():
            recipient_map.setdefault(recipient, []).append(item)
    return recipient_map


class FinalizeMailHandler:
    """Sends the mails that go out when a meeting's minutes are finalized."""

    def __init__(self, minutes, minutes_store: Optional[MinutesStore] = None,
                 mail_handler_factory: Optional[Callable[[Any], Any]] = None,
                 notifications_config: Optional[Dict[str, Any]] = None):
        """
        Initialize the handler for one set of minutes.

        Args:
            minutes: Minutes object, or a minutes id resolved via ``minutes_store``
            minutes_store: Store used to resolve a minutes id
            mail_handler_factory: Callable creating a mail handler for a recipient;
                defaults to ActionItemsMailHandler
            notifications_config: SMTP settings for the default mail handler

        Raises:
            ConfigurationError: If no minutes are given, or an id is given without a store
        """
        if not minutes:
            raise ConfigurationError("Minutes id or object required")
        if isinstance(minutes, str):
            if minutes_store is None:
                raise ConfigurationError(f"A minutes store is required to resolve minutes id {minutes!r}")
            minutes = minutes_store.load(minutes)

        self.minutes = minutes
        self.notifications_config = notifications_config or {}
        self.mail_handler_factory = mail_handler_factory or self._default_mail_handler

    def _default_mail_handler(self, recipient) -> ActionItemsMailHandler:
        return ActionItemsMailHandler(recipient, self.minutes, self.notifications_config)

    def send_mails(self) -> int:
        """
        Send all finalize mails.

        Returns:
            Number of recipients notified about their action items
        """
        # TODO: send the finalized protocol to all participants once it can be rendered
        return self._send_action_items()

    def _send_action_items(self) -> int:
        recipient_map = build_recipient_map(self.minutes.get_open_action_items())

        mail_handlers = []
        for recipient, items in recipient_map.items():
            mail_handler = self.mail_handler_factory(recipient)
            for item in items:
                mail_handler.add_action_item(item)
            mail_handlers.append((recipient, mail_handler))

        sent = 0
        failures = []
        for recipient, mail_handler in mail_handlers:
            try:
                if mail_handler.send():
                    sent += 1
            except Exception as e:
                logger.error(f"Failed to send action items to {recipient}: {e}")
                failures.append((recipient, e))

        logger.info(f"Action item mails for minutes {getattr(self.minutes, 'id', '?')}: "
                    f"{sent} sent, {len(failures)} failed")

        if failures:
            raise MailDispatchError(failures) from failures[0][1]
        return sent
