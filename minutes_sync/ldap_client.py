"""
Directory user fetching for Minutes Sync.

This module connects to an LDAP directory, runs a single paged subtree search
for users, tags each returned entry with an ``isInactive`` flag and disconnects.
The three stages run strictly one after the other:

    connect -> search -> disconnect

A failed connect or search aborts the fetch and no partial user list is ever
returned. A failed disconnect is logged and otherwise ignored, because the
users have already been collected at that point.
"""

import logging
import ssl
from enum import Enum
from typing import Dict, List, Any, Optional
from ldap3 import Server, Connection, SUBTREE, SCHEMA, Tls, AUTO_BIND_NO_TLS, AUTO_BIND_TLS_BEFORE_BIND
from ldap3.core.exceptions import LDAPException
from ldap3.core.results import RESULT_SUCCESS

from minutes_sync.inactivity import is_inactive, ACCOUNT_CONTROL_ATTRIBUTE

logger = logging.getLogger(__name__)

DEFAULT_USERNAME_ATTRIBUTE = 'cn'
PAGED_RESULTS_CONTROL = '1.2.840.113556.1.4.319'


class LDAPConnectionError(Exception):
    """Raised when the LDAP client cannot be created or bound."""
    pass


class LDAPSearchError(Exception):
    """Raised when the user search cannot be started or fails while streaming."""
    pass


class FetchState(Enum):
    """Pipeline state of a DirectoryUserFetcher."""

    DISCONNECTED = 'disconnected'
    CONNECTED = 'connected'
    SEARCHING = 'searching'
    DONE = 'done'
    FAILED = 'failed'


class DirectoryUserFetcher:
    """
    Fetches users from an LDAP directory and classifies their activity.

    One instance performs one fetch. The settings dictionary is the ``ldap``
    section of the application configuration.
    """

    def __init__(self, settings: Dict[str, Any]):
        """
        Initialize the fetcher with directory settings.

        Args:
            settings: LDAP settings (server_url, server_dn, search_filter,
                property_map, whitelisted_fields, inactive_users, ...)
        """
        self.settings = settings
        self.server_url = settings['server_url']
        self.server_dn = settings.get('server_dn', '')
        self.search_filter = settings.get('search_filter') or ''
        self.whitelisted_fields = list(settings.get('whitelisted_fields') or [])
        self.inactive_users = settings.get('inactive_users')

        property_map = settings.get('property_map') or {}
        self.username_attribute = property_map.get('username') or DEFAULT_USERNAME_ATTRIBUTE

        self.bind_dn = settings.get('bind_dn')
        self.bind_password = settings.get('bind_password')

        # SSL/TLS configuration
        self.use_ssl = settings.get('use_ssl', self.server_url.lower().startswith('ldaps://'))
        self.start_tls = settings.get('start_tls', False)
        self.verify_ssl = settings.get('verify_ssl', True)
        self.ca_cert_file = settings.get('ca_cert_file')

        self.connection_timeout = settings.get('connection_timeout', 10)
        self.receive_timeout = settings.get('receive_timeout', 10)
        self.page_size = settings.get('page_size', 1000)

        self.server = None
        self.connection = None
        self.state = FetchState.DISCONNECTED

    @property
    def filter(self) -> str:
        """Search filter requiring the username attribute plus the configured filter."""
        return f"(&({self.username_attribute}=*){self.search_filter})"

    @property
    def attributes(self) -> List[str]:
        """Requested attributes; the account control attribute is always included."""
        attributes = list(self.whitelisted_fields)
        if ACCOUNT_CONTROL_ATTRIBUTE not in attributes:
            attributes.append(ACCOUNT_CONTROL_ATTRIBUTE)
        return attributes

    def fetch(self) -> Dict[str, Any]:
        """
        Run the complete connect -> search -> disconnect pipeline.

        Returns:
            Dictionary with the original ``settings`` and the list of ``users``

        Raises:
            LDAPConnectionError: If the client cannot be created
            LDAPSearchError: If the search fails
        """
        self.connect()
        try:
            users = self.search()
        except LDAPSearchError:
            self.disconnect()
            raise
        self.disconnect()
        return {'settings': self.settings, 'users': users}

    def connect(self):
        """
        Create the LDAP client and bind. Single attempt, no retry.

        Raises:
            LDAPConnectionError: If the server or connection cannot be created
        """
        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=SCHEMA,
                connect_timeout=self.connection_timeout
            )
            # check_names is off so userAccountControl can be requested from
            # servers whose schema does not define it
            self.connection = Connection(
                self.server,
                user=self.bind_dn,
                password=self.bind_password,
                auto_bind=AUTO_BIND_TLS_BEFORE_BIND if self.start_tls else AUTO_BIND_NO_TLS,
                receive_timeout=self.receive_timeout,
                read_only=True,
                check_names=False
            )
        except Exception as e:
            self.state = FetchState.FAILED
            self.server = None
            self.connection = None
            raise LDAPConnectionError(f"Error creating client: {e}")

        self.state = FetchState.CONNECTED
        logger.info(f"Connected to LDAP server {self.server_url}")

    def _create_tls_config(self) -> Optional[Tls]:
        """Create TLS configuration when LDAPS or StartTLS is in use."""
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {'validate': ssl.CERT_REQUIRED if self.verify_ssl else ssl.CERT_NONE}
        if not self.verify_ssl:
            logger.warning("SSL certificate verification disabled")
        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
        return Tls(**tls_config)

    def search(self) -> List[Dict[str, Any]]:
        """
        Search the directory and classify every returned user.

        Pages are requested one after another with the simple paged results
        control, and entries are kept in the order the server sends them.

        Returns:
            List of user records, each carrying an ``isInactive`` flag

        Raises:
            LDAPSearchError: If the search cannot be started or any page fails.
                Entries received before the failure are discarded.
        """
        if self.state is not FetchState.CONNECTED:
            raise LDAPSearchError(f"Search failed: client is {self.state.value}, not connected")

        self.state = FetchState.SEARCHING
        logger.debug(f"Searching with filter: {self.filter} in base: {self.server_dn}")

        users = []
        page_count = 0
        cookie = None
        try:
            while True:
                self.connection.search(
                    search_base=self.server_dn,
                    search_filter=self.filter,
                    search_scope=SUBTREE,
                    attributes=self.attributes,
                    paged_size=self.page_size,
                    paged_cookie=cookie
                )

                result = self.connection.result or {}
                if result.get('result') != RESULT_SUCCESS:
                    raise LDAPSearchError(
                        f"Search failed on page {page_count + 1}: "
                        f"{result.get('description')} {result.get('message') or ''}".rstrip()
                    )

                page_count += 1
                for entry in self.connection.response or []:
                    if entry.get('type') != 'searchResEntry':
                        continue
                    users.append(self._build_user_record(entry))
                logger.debug(f"Page {page_count}: {len(users)} users so far")

                cookie = self._next_page_cookie(result)
                if not cookie:
                    break
        except LDAPSearchError:
            self.state = FetchState.FAILED
            raise
        except LDAPException as e:
            self.state = FetchState.FAILED
            raise LDAPSearchError(f"Search failed: {e}")
        except Exception as e:
            self.state = FetchState.FAILED
            raise LDAPSearchError(f"Unexpected error during search: {e}")

        self.state = FetchState.DONE
        logger.info(f"Retrieved {len(users)} users from {self.server_dn} across {page_count} pages")
        return users

    @staticmethod
    def _next_page_cookie(result: Dict[str, Any]) -> Optional[bytes]:
        """Cookie of the paged results control, empty once the last page was sent."""
        control = (result.get('controls') or {}).get(PAGED_RESULTS_CONTROL) or {}
        return (control.get('value') or {}).get('cookie')

    def _build_user_record(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """Flatten a search result entry and add its inactivity flag."""
        record = {'dn': result.get('dn')}
        for name, value in (result.get('attributes') or {}).items():
            if isinstance(value, list):
                if not value:
                    continue
                if len(value) == 1:
                    value = value[0]
            record[name] = value

        record['isInactive'] = is_inactive(self.inactive_users, record)
        return record

    def disconnect(self):
        """Unbind from the server. Failures are logged and never raised."""
        if self.connection is None:
            return
        try:
            self.connection.unbind()
            logger.debug("LDAP connection closed")
        except Exception as e:
            # The users are already collected, so the fetch still succeeds
            logger.warning(f"Ignoring error while closing LDAP connection: {e}")
        finally:
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()


def get_ldap_users(settings: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convenience function to fetch and classify directory users.

    Args:
        settings: LDAP settings dictionary

    Returns:
        Dictionary with ``settings`` and ``users``
    """
    return DirectoryUserFetcher(settings).fetch()
