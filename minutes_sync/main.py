"""
Command-line entry point for Minutes Sync.

Two commands are available:

    minutes-sync fetch-users              fetch and classify directory users
    minutes-sync send-action-items ID     mail open action items of finalized minutes

Exit codes: 0 success, 2 configuration error, 3 LDAP connection error,
4 any other failure.
"""

import sys
import json
import logging
import argparse
from typing import Dict, Any, Optional

from minutes_sync.config import load_config, ConfigurationError
from minutes_sync.logging_setup import setup_logging
from minutes_sync.ldap_client import get_ldap_users, LDAPConnectionError, LDAPSearchError
from minutes_sync.minutes import YamlMinutesStore
from minutes_sync.finalize import FinalizeMailHandler
from minutes_sync.notifications import send_ldap_failure

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
EXIT_LDAP_CONNECTION_ERROR = 3
EXIT_FAILURE = 4


def _send_ldap_failure_alert(config: Dict[str, Any], error_message: str):
    """Alert administrators about a failed fetch; alert errors are only logged."""
    try:
        send_ldap_failure(
            error_message,
            config.get('notifications', {}),
            config.get('ldap', {}).get('server_url', '')
        )
    except Exception as e:
        logger.error(f"Failed to send LDAP failure notification: {e}")


def fetch_users(config: Dict[str, Any], output: Optional[str] = None) -> int:
    """Fetch directory users and write them as JSON to stdout or ``output``."""
    try:
        result = get_ldap_users(config['ldap'])
    except LDAPConnectionError as e:
        logger.error(f"LDAP connection error: {e}")
        _send_ldap_failure_alert(config, str(e))
        return EXIT_LDAP_CONNECTION_ERROR
    except LDAPSearchError as e:
        logger.error(f"LDAP search error: {e}")
        _send_ldap_failure_alert(config, str(e))
        return EXIT_FAILURE

    users = result['users']
    inactive = sum(1 for user in users if user['isInactive'])
    logger.info(f"Fetched {len(users)} users ({inactive} inactive)")

    payload = json.dumps(users, indent=2, default=str)
    if output:
        with open(output, 'w') as f:
            f.write(payload + '\n')
    else:
        print(payload)
    return EXIT_OK


def send_action_items(config: Dict[str, Any], minutes_id: str) -> int:
    """Send one action item mail per responsible recipient of the given minutes."""
    store = YamlMinutesStore(config.get('minutes', {}).get('store_dir', 'minutes'))
    handler = FinalizeMailHandler(
        minutes_id,
        minutes_store=store,
        notifications_config=config.get('notifications', {})
    )
    sent = handler.send_mails()
    logger.info(f"Sent action item mails to {sent} recipients")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='minutes-sync',
        description='Directory user fetching and action item mails for meeting minutes'
    )
    parser.add_argument('--config', '-c', help='Path to configuration file')

    subparsers = parser.add_subparsers(dest='command')
    subparsers.required = True

    fetch_parser = subparsers.add_parser('fetch-users', help='Fetch and classify LDAP users')
    fetch_parser.add_argument('--output', '-o', help='Write users to this file instead of stdout')

    send_parser = subparsers.add_parser('send-action-items',
                                        help='Mail open action items to their responsible recipients')
    send_parser.add_argument('minutes_id', help='Identifier of the finalized minutes')

    return parser


def main(argv=None) -> int:
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    setup_logging(config.get('logging', {}))

    try:
        if args.command == 'fetch-users':
            return fetch_users(config, args.output)
        return send_action_items(config, args.minutes_id)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
