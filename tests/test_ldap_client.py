#!/usr/bin/env python3
"""
Unit tests for the directory user fetcher.

The ldap3 Server and Connection classes are mocked. Each search call leaves
one page of entries and its result on the connection, the way ldap3 does.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from ldap3 import Server, Connection, MOCK_SYNC, SUBTREE
from ldap3.core.exceptions import LDAPException, LDAPSocketOpenError

from minutes_sync.ldap_client import (
    DirectoryUserFetcher, FetchState, LDAPConnectionError, LDAPSearchError,
    PAGED_RESULTS_CONTROL, get_ldap_users
)


def make_entry(dn, **attributes):
    """Build a search result entry as left in connection.response."""
    return {'type': 'searchResEntry', 'dn': dn, 'attributes': attributes}

def make_result(code=0, description='success', cookie=b''):
    """Build the connection result of one search page."""
    return {
        'result': code,
        'description': description,
        'message': '',
        'controls': {PAGED_RESULTS_CONTROL: {'value': {'size': 0, 'cookie': cookie}}}
    }



class FetcherTestCase(unittest.TestCase):
    """Shared fixtures with ldap3 patched out."""

    def setUp(self):
        """Set up test fixtures."""
        self.settings = {
            'server_url': 'ldap://ldap.example.com:389',
            'server_dn': 'ou=users,dc=example,dc=com',
            'search_filter': '(objectClass=person)',
            'property_map': {'username': 'uid'},
            'whitelisted_fields': ['uid', 'mail'],
            'inactive_users': {'strategy': 'userAccountControl'}
        }

        server_patcher = patch('minutes_sync.ldap_client.Server')
        connection_patcher = patch('minutes_sync.ldap_client.Connection')
        self.mock_server_class = server_patcher.start()
        self.mock_connection_class = connection_patcher.start()
        self.addCleanup(server_patcher.stop)
        self.addCleanup(connection_patcher.stop)

        self.mock_connection = MagicMock()
        self.mock_connection_class.return_value = self.mock_connection
        self.mock_search = self.mock_connection.search

    def set_pages(self, *pages):
        """Serve one (entries, result) pair per search call."""
        remaining = list(pages)

        def search(**kwargs):
            entries, result = remaining.pop(0)
            self.mock_connection.response = entries
            self.mock_connection.result = result
            return result['result'] == 0 and bool(entries)

        self.mock_search.side_effect = search

    def set_results(self, *entries):
        self.set_pages((list(entries), make_result()))


class TestFetcherConfiguration(FetcherTestCase):
    """Test cases for filter and attribute construction."""

    def test_filter_uses_username_attribute(self):
        """Test the filter requires the mapped username attribute."""
        fetcher = DirectoryUserFetcher(self.settings)
        self.assertEqual(fetcher.filter, '(&(uid=*)(objectClass=person))')

    def test_filter_defaults_to_cn(self):
        """Test the username attribute defaults to cn."""
        del self.settings['property_map']
        self.settings['search_filter'] = ''
        fetcher = DirectoryUserFetcher(self.settings)
        self.assertEqual(fetcher.filter, '(&(cn=*))')

    def test_attributes_include_account_control(self):
        """Test userAccountControl is always requested."""
        fetcher = DirectoryUserFetcher(self.settings)
        self.assertEqual(fetcher.attributes, ['uid', 'mail', 'userAccountControl'])

    def test_attributes_not_duplicated(self):
        """Test a whitelist already containing userAccountControl is kept as is."""
        self.settings['whitelisted_fields'] = ['userAccountControl', 'uid']
        fetcher = DirectoryUserFetcher(self.settings)
        self.assertEqual(fetcher.attributes, ['userAccountControl', 'uid'])

    def test_attributes_with_empty_whitelist(self):
        """Test a missing whitelist still requests userAccountControl."""
        del self.settings['whitelisted_fields']
        fetcher = DirectoryUserFetcher(self.settings)
        self.assertEqual(fetcher.attributes, ['userAccountControl'])

    def test_ssl_detection(self):
        """Test LDAPS URLs enable SSL."""
        self.settings['server_url'] = 'ldaps://ldap.example.com:636'
        self.assertTrue(DirectoryUserFetcher(self.settings).use_ssl)
        self.settings['server_url'] = 'ldap://ldap.example.com:389'
        self.assertFalse(DirectoryUserFetcher(self.settings).use_ssl)

    def test_no_tls_config_for_plain_ldap(self):
        """Test TLS is only configured for LDAPS or StartTLS."""
        fetcher = DirectoryUserFetcher(self.settings)
        self.assertIsNone(fetcher._create_tls_config())


class TestConnect(FetcherTestCase):
    """Test cases for connection establishment."""

    def test_connect_success(self):
        """Test a successful connect moves to CONNECTED."""
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()

        self.assertIs(fetcher.state, FetchState.CONNECTED)
        self.assertIs(fetcher.connection, self.mock_connection)
        self.mock_server_class.assert_called_once()
        self.assertEqual(self.mock_server_class.call_args[0][0], 'ldap://ldap.example.com:389')

    def test_connect_anonymous_by_default(self):
        """Test no bind credentials are passed when none are configured."""
        DirectoryUserFetcher(self.settings).connect()

        kwargs = self.mock_connection_class.call_args[1]
        self.assertIsNone(kwargs['user'])
        self.assertIsNone(kwargs['password'])
        self.assertTrue(kwargs['read_only'])

    def test_connect_with_bind_credentials(self):
        """Test configured bind credentials are used."""
        self.settings['bind_dn'] = 'cn=reader,dc=example,dc=com'
        self.settings['bind_password'] = 'secret'
        DirectoryUserFetcher(self.settings).connect()

        kwargs = self.mock_connection_class.call_args[1]
        self.assertEqual(kwargs['user'], 'cn=reader,dc=example,dc=com')
        self.assertEqual(kwargs['password'], 'secret')

    def test_connect_failure_is_single_attempt(self):
        """Test a connection failure raises LDAPConnectionError without retrying."""
        self.mock_connection_class.side_effect = LDAPSocketOpenError('unable to open socket')

        fetcher = DirectoryUserFetcher(self.settings)
        with self.assertRaises(LDAPConnectionError) as context:
            fetcher.connect()

        self.assertIn('Error creating client', str(context.exception))
        self.assertIn('unable to open socket', str(context.exception))
        self.assertEqual(self.mock_connection_class.call_count, 1)
        self.assertIs(fetcher.state, FetchState.FAILED)
        self.assertIsNone(fetcher.connection)

    def test_server_creation_failure(self):
        """Test errors constructing the server object are connection errors."""
        self.mock_server_class.side_effect = ValueError('invalid server address')

        with self.assertRaises(LDAPConnectionError):
            DirectoryUserFetcher(self.settings).connect()
        self.mock_connection_class.assert_not_called()


class TestSearch(FetcherTestCase):
    """Test cases for searching and classification."""

    def test_search_parameters(self):
        """Test the paged search is issued with the expected parameters."""
        self.set_results()
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()
        fetcher.search()

        self.mock_search.assert_called_once_with(
            search_base='ou=users,dc=example,dc=com',
            search_filter='(&(uid=*)(objectClass=person))',
            search_scope=SUBTREE,
            attributes=['uid', 'mail', 'userAccountControl'],
            paged_size=1000,
            paged_cookie=None
        )

    def test_entries_are_flattened_and_classified(self):
        """Test each entry becomes a flat record with isInactive."""
        self.set_results(
            make_entry('uid=alice,ou=users,dc=example,dc=com',
                       uid=['alice'], mail=['alice@example.com'], userAccountControl=512),
            make_entry('uid=bob,ou=users,dc=example,dc=com',
                       uid=['bob'], mail=[], userAccountControl=514),
        )
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()
        users = fetcher.search()

        self.assertEqual(users, [
            {
                'dn': 'uid=alice,ou=users,dc=example,dc=com',
                'uid': 'alice',
                'mail': 'alice@example.com',
                'userAccountControl': 512,
                'isInactive': False
            },
            {
                'dn': 'uid=bob,ou=users,dc=example,dc=com',
                'uid': 'bob',
                'userAccountControl': 514,
                'isInactive': True
            },
        ])
        self.assertIs(fetcher.state, FetchState.DONE)

    def test_multi_valued_attributes_kept_as_lists(self):
        """Test attributes with several values stay lists."""
        self.set_results(make_entry('uid=carol,dc=example,dc=com',
                                    uid='carol', mail=['carol@example.com', 'c@example.com']))
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()
        users = fetcher.search()

        self.assertEqual(users[0]['mail'], ['carol@example.com', 'c@example.com'])
        self.assertFalse(users[0]['isInactive'])

    def test_referrals_are_skipped(self):
        """Test non-entry responses are ignored."""
        self.set_results(
            {'type': 'searchResRef', 'uri': ['ldap://other.example.com/']},
            make_entry('uid=alice,dc=example,dc=com', uid='alice'),
        )
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()

        self.assertEqual(len(fetcher.search()), 1)

    def test_search_requires_connection(self):
        """Test searching before connecting fails."""
        fetcher = DirectoryUserFetcher(self.settings)
        with self.assertRaises(LDAPSearchError):
            fetcher.search()
        self.mock_search.assert_not_called()

    def test_search_initiation_failure(self):
        """Test an error starting the search raises LDAPSearchError."""
        self.mock_search.side_effect = LDAPException('invalid filter')
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()

        with self.assertRaises(LDAPSearchError) as context:
            fetcher.search()
        self.assertIn('invalid filter', str(context.exception))
        self.assertIs(fetcher.state, FetchState.FAILED)

    def test_error_result_raises(self):
        """Test a non-success search result is an error, not an empty result."""
        self.set_pages(([], make_result(32, 'noSuchObject', cookie=None)))
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()

        with self.assertRaises(LDAPSearchError) as context:
            fetcher.search()
        self.assertIn('noSuchObject', str(context.exception))
        self.assertIs(fetcher.state, FetchState.FAILED)

    def test_pages_are_followed_in_server_order(self):
        """Test every page is requested with the previous cookie and order is kept."""
        self.set_pages(
            ([make_entry('uid=user0,dc=example,dc=com', uid='user0'),
              make_entry('uid=user1,dc=example,dc=com', uid='user1')], make_result(cookie=b'page2')),
            ([make_entry('uid=user2,dc=example,dc=com', uid='user2'),
              make_entry('uid=user3,dc=example,dc=com', uid='user3')], make_result(cookie=b'page3')),
            ([make_entry('uid=user4,dc=example,dc=com', uid='user4')], make_result()),
        )
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()
        users = fetcher.search()

        self.assertEqual([user['uid'] for user in users], ['user0', 'user1', 'user2', 'user3', 'user4'])
        cookies = [call[1]['paged_cookie'] for call in self.mock_search.call_args_list]
        self.assertEqual(cookies, [None, b'page2', b'page3'])
        self.assertIs(fetcher.state, FetchState.DONE)

    def test_property_strategy(self):
        """Test the property strategy is applied to fetched entries."""
        self.settings['inactive_users'] = {
            'strategy': 'property',
            'properties': {'employeeStatus': 'terminated'}
        }
        self.set_results(
            make_entry('uid=a,dc=example,dc=com', uid='a', employeeStatus=['terminated']),
            make_entry('uid=b,dc=example,dc=com', uid='b', employeeStatus=['active']),
        )
        fetcher = DirectoryUserFetcher(self.settings)
        fetcher.connect()
        users = fetcher.search()

        self.assertEqual([user['isInactive'] for user in users], [True, False])


class TestFetchPipeline(FetcherTestCase):
    """Test cases for the complete connect -> search -> disconnect pipeline."""

    def test_fetch_returns_settings_and_all_users(self):
        """Test N entries give N users and the original settings."""
        entries = [make_entry(f'uid=user{i},dc=example,dc=com', uid=f'user{i}') for i in range(5)]
        self.set_results(*entries)

        result = get_ldap_users(self.settings)

        self.assertIs(result['settings'], self.settings)
        self.assertEqual(len(result['users']), 5)
        for user in result['users']:
            self.assertIn('isInactive', user)
        self.mock_connection.unbind.assert_called_once()

    def test_stages_run_in_order(self):
        """Test connect, search and unbind happen strictly in sequence."""
        calls = []
        self.mock_connection_class.side_effect = lambda *a, **kw: calls.append('connect') or self.mock_connection

        self.set_results()
        serve_page = self.mock_search.side_effect

        def search(**kwargs):
            calls.append('search')
            return serve_page(**kwargs)

        self.mock_search.side_effect = search
        self.mock_connection.unbind.side_effect = lambda: calls.append('unbind')

        get_ldap_users(self.settings)

        self.assertEqual(calls, ['connect', 'search', 'unbind'])

    def test_error_mid_stream_discards_partial_results(self):
        """Test an error after k entries rejects the fetch without returning them."""
        self.set_pages(
            ([make_entry('uid=a,dc=example,dc=com', uid='a'),
              make_entry('uid=b,dc=example,dc=com', uid='b')], make_result(cookie=b'page2')),
            ([], make_result(4, 'sizeLimitExceeded', cookie=None)),
        )

        fetcher = DirectoryUserFetcher(self.settings)
        with self.assertRaises(LDAPSearchError) as context:
            fetcher.fetch()

        self.assertIn('sizeLimitExceeded', str(context.exception))
        self.assertFalse(hasattr(context.exception, 'users'))
        self.assertIs(fetcher.state, FetchState.FAILED)
        # The connection is still released after a failed search
        self.mock_connection.unbind.assert_called_once()

    def test_disconnect_failure_is_ignored(self):
        """Test a failing unbind still returns the collected users."""
        self.set_results(make_entry('uid=a,dc=example,dc=com', uid='a'))
        self.mock_connection.unbind.side_effect = LDAPException('connection reset')

        fetcher = DirectoryUserFetcher(self.settings)
        result = fetcher.fetch()

        self.assertEqual([user['uid'] for user in result['users']], ['a'])
        self.assertIsNone(fetcher.connection)
        self.assertIs(fetcher.state, FetchState.DONE)

    def test_connection_failure_skips_search(self):
        """Test no search happens when the client cannot be created."""
        self.mock_connection_class.side_effect = LDAPException('bind failed')

        with self.assertRaises(LDAPConnectionError):
            get_ldap_users(self.settings)
        self.mock_search.assert_not_called()

    def test_context_manager_disconnects(self):
        """Test leaving the context manager closes the connection."""
        with DirectoryUserFetcher(self.settings) as fetcher:
            fetcher.connect()
        self.mock_connection.unbind.assert_called_once()
        self.assertIsNone(fetcher.connection)

class TestMockDirectory(unittest.TestCase):
    """Test cases against ldap3's in-memory MOCK_SYNC directory."""

    def setUp(self):
        """Set up test fixtures."""
        self.settings = {
            'server_url': 'ldap://ldap.example.com:389',
            'server_dn': 'ou=users,dc=example,dc=com',
            'property_map': {'username': 'uid'},
            'whitelisted_fields': ['uid', 'mail'],
            'inactive_users': {'strategy': 'userAccountControl'},
            'bind_dn': 'cn=reader,dc=example,dc=com',
            'bind_password': 'secret'
        }

        self.connection = Connection(
            Server('ldap.example.com'),
            user='cn=reader,dc=example,dc=com',
            password='secret',
            client_strategy=MOCK_SYNC
        )
        self.connection.strategy.add_entry('cn=reader,dc=example,dc=com', {
            'objectClass': 'person', 'sn': 'reader', 'userPassword': 'secret'
        })
        self.connection.strategy.add_entry('uid=alice,ou=users,dc=example,dc=com', {
            'objectClass': 'person', 'sn': 'alice', 'uid': 'alice', 'mail': 'alice@example.com'
        })
        self.connection.bind()

        connection_patcher = patch('minutes_sync.ldap_client.Connection', return_value=self.connection)
        connection_patcher.start()
        self.addCleanup(connection_patcher.stop)

    def test_missing_base_dn_raises(self):
        """Test searching a base that does not exist fails the fetch."""
        self.settings['server_dn'] = 'ou=missing,dc=nowhere,dc=org'
        fetcher = DirectoryUserFetcher(self.settings)

        with self.assertRaises(LDAPSearchError) as context:
            fetcher.fetch()
        self.assertIn('noSuchObject', str(context.exception))
        self.assertIs(fetcher.state, FetchState.FAILED)

    def test_existing_base_returns_users(self):
        """Test users below the base are returned and classified."""
        result = DirectoryUserFetcher(self.settings).fetch()

        self.assertEqual(len(result['users']), 1)
        user = result['users'][0]
        self.assertEqual(user['dn'], 'uid=alice,ou=users,dc=example,dc=com')
        self.assertEqual(user['uid'], 'alice')
        self.assertFalse(user['isInactive'])



if __name__ == '__main__':
    unittest.main()
