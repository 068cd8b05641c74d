#!/usr/bin/env python3
"""Test suite for the authentication probe."""

import unittest
from unittest.mock import patch
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fakes import FakeClientFactory, FakeDescriptor
from scanners.auth_probe import AuthenticationProbe
from scanners.errors import KeyMaterialError
from scanners.ledger import AccessCell, AuthMethod, Credential, EndpointIdentity, Privilege, PrivilegeLedger
from utils.credentials import COMMON_CREDENTIALS
from utils.opcua_client import Failure

CREDENTIALS = [
    Credential("admin", "admin"),
    Credential("user", "user"),
    Credential("operator", "operator"),
    Credential("guest", "guest"),
    Credential("root", "root"),
]


class AuthTestBase(unittest.TestCase):

    def setUp(self):
        self.descriptor = FakeDescriptor("opc.tcp://10.0.0.5:4840", "None", 1)
        self.identity = EndpointIdentity.from_descriptor(self.descriptor)
        self.ledger = PrivilegeLedger()
        self.ledger.ensure(self.identity)

    def make_probe(self, factory, credentials=CREDENTIALS, **kwargs):
        return AuthenticationProbe(self.ledger, factory, credentials=credentials, **kwargs)

    def authenticate(self, factory, method):
        authenticator = self.make_probe(factory)
        authenticator.probe(self.identity, self.descriptor, method)
        return authenticator

    def cell(self, privilege, method):
        return self.ledger.get(self.identity).cell(privilege, method)


class TestAnonymousPhase(AuthTestBase):
    """Test cases for the anonymous phase."""

    def test_anonymous_connect_and_read(self):
        factory = FakeClientFactory(anonymous={self.identity})
        probe = self.make_probe(factory)

        probe.probe(self.identity, self.descriptor, AuthMethod.ANONYMOUS)

        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.ANONYMOUS), AccessCell(True, True))
        self.assertEqual(self.cell(Privilege.READ, AuthMethod.ANONYMOUS), AccessCell(True, True))
        # WRITE/DELETE are not exercised when connected
        self.assertEqual(self.cell(Privilege.WRITE, AuthMethod.ANONYMOUS), AccessCell(False, False))
        self.assertEqual(self.cell(Privilege.DELETE, AuthMethod.ANONYMOUS), AccessCell(False, False))
        self.assertEqual(factory.connect_calls, [(self.identity, None)])
        self.assertTrue(all(s.closed for s in factory.sessions))

    def test_anonymous_connect_without_read(self):
        factory = FakeClientFactory(anonymous={self.identity}, unreadable={self.identity})
        probe = self.make_probe(factory)

        probe.probe(self.identity, self.descriptor, AuthMethod.ANONYMOUS)

        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.ANONYMOUS), AccessCell(True, True))
        self.assertEqual(self.cell(Privilege.READ, AuthMethod.ANONYMOUS), AccessCell(False, False))

    def test_anonymous_rejected_propagates_skip(self):
        factory = FakeClientFactory()
        probe = self.make_probe(factory)

        probe.probe(self.identity, self.descriptor, AuthMethod.ANONYMOUS)

        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.ANONYMOUS), AccessCell(True, False))
        for privilege in (Privilege.READ, Privilege.WRITE, Privilege.DELETE):
            self.assertEqual(self.cell(privilege, AuthMethod.ANONYMOUS), AccessCell(True, False))
        # Other methods untouched
        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.COMMON_CREDENTIALS), AccessCell(False, False))
        self.assertEqual(probe.attempts_for(self.identity)[0].failure, Failure.AUTH_REJECTED)

    def test_session_released_on_exception(self):
        factory = FakeClientFactory(anonymous={self.identity})

        with patch.object(factory, 'read_values', side_effect=RuntimeError("boom")):
            authenticator = self.authenticate(factory, AuthMethod.ANONYMOUS)

        self.assertEqual(len(factory.sessions), 1)
        self.assertTrue(factory.sessions[0].closed)
        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.ANONYMOUS), AccessCell(True, True))
        self.assertEqual(self.cell(Privilege.READ, AuthMethod.ANONYMOUS), AccessCell(False, False))

    def test_session_setup_error_counts_as_failed_attempt(self):
        factory = FakeClientFactory(anonymous={self.identity})

        with patch.object(factory, 'session', side_effect=TypeError("policy setup fault")):
            authenticator = self.authenticate(factory, AuthMethod.ANONYMOUS)

        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.ANONYMOUS), AccessCell(True, False))
        for privilege in Privilege.dependents():
            self.assertEqual(self.cell(privilege, AuthMethod.ANONYMOUS), AccessCell(True, False))
        self.assertEqual([a.failure for a in authenticator.attempts_for(self.identity)], [Failure.PROTOCOL_FAULT])

    def test_readable_server_state_is_logged(self):
        factory = FakeClientFactory(anonymous={self.identity})

        with self.assertLogs('UAScanner.AuthenticationProbe', level='INFO') as logs:
            self.authenticate(factory, AuthMethod.ANONYMOUS)

        self.assertTrue(any("state is Running" in line for line in logs.output))

    def test_key_material_error_propagates_and_leaves_untested(self):
        factory = FakeClientFactory()
        probe = self.make_probe(factory)

        with patch.object(factory, 'session', side_effect=KeyMaterialError("no entropy")):
            with self.assertRaises(KeyMaterialError):
                probe.probe(self.identity, self.descriptor, AuthMethod.ANONYMOUS)

        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.ANONYMOUS), AccessCell(False, False))

    def test_same_identity_shares_record(self):
        factory = FakeClientFactory(anonymous={self.identity})
        probe = self.make_probe(factory)
        twin = FakeDescriptor("opc.tcp://10.0.0.5:4840", "None", 1)

        probe.probe(EndpointIdentity.from_descriptor(twin), twin, AuthMethod.ANONYMOUS)

        self.assertEqual(len(self.ledger), 1)
        self.assertTrue(self.ledger.get(self.identity).is_granted(Privilege.CONNECT, AuthMethod.ANONYMOUS))


class TestCommonCredentialsPhase(AuthTestBase):
    """Test cases for the common-credentials phase."""

    def test_third_credential_short_circuits(self):
        factory = FakeClientFactory(accepted={self.identity: {"operator", "root"}})
        probe = self.make_probe(factory)

        probe.probe(self.identity, self.descriptor, AuthMethod.COMMON_CREDENTIALS)

        self.assertEqual(factory.usernames_tried(self.identity), ["admin", "user", "operator"])
        self.assertEqual(
            self.cell(Privilege.CONNECT, AuthMethod.COMMON_CREDENTIALS), AccessCell(True, True)
        )
        self.assertEqual(self.cell(Privilege.READ, AuthMethod.COMMON_CREDENTIALS), AccessCell(True, True))
        attempts = probe.attempts_for(self.identity, AuthMethod.COMMON_CREDENTIALS)
        self.assertEqual([a.failure for a in attempts],
                         [Failure.AUTH_REJECTED, Failure.AUTH_REJECTED, None])
        self.assertTrue(all(s.closed for s in factory.sessions))

    def test_read_is_recorded_for_credentials_not_anonymous(self):
        factory = FakeClientFactory(accepted={self.identity: {"admin"}})
        probe = self.make_probe(factory)

        probe.probe(self.identity, self.descriptor, AuthMethod.COMMON_CREDENTIALS)

        self.assertTrue(self.ledger.get(self.identity).is_granted(Privilege.READ, AuthMethod.COMMON_CREDENTIALS))
        self.assertFalse(self.ledger.get(self.identity).is_granted(Privilege.READ, AuthMethod.ANONYMOUS))

    def test_connect_without_read_still_short_circuits(self):
        factory = FakeClientFactory(accepted={self.identity: {"admin", "user"}}, unreadable={self.identity})
        probe = self.make_probe(factory)

        probe.probe(self.identity, self.descriptor, AuthMethod.COMMON_CREDENTIALS)

        self.assertEqual(factory.usernames_tried(self.identity), ["admin"])
        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.COMMON_CREDENTIALS), AccessCell(True, True))
        self.assertEqual(self.cell(Privilege.READ, AuthMethod.COMMON_CREDENTIALS), AccessCell(False, False))

    def test_setup_error_moves_on_to_next_credential(self):
        factory = FakeClientFactory(accepted={self.identity: {"user"}})
        original_session = factory.session

        def fail_for_admin(descriptor, credential=None):
            if credential.username == "admin":
                raise TypeError("policy setup fault")
            return original_session(descriptor, credential)

        with patch.object(factory, 'session', side_effect=fail_for_admin):
            authenticator = self.authenticate(factory, AuthMethod.COMMON_CREDENTIALS)

        self.assertEqual(factory.usernames_tried(self.identity), ["user"])
        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.COMMON_CREDENTIALS), AccessCell(True, True))
        attempts = authenticator.attempts_for(self.identity, AuthMethod.COMMON_CREDENTIALS)
        self.assertEqual([(a.username, a.failure) for a in attempts],
                         [("admin", Failure.PROTOCOL_FAULT), ("user", None)])

    def test_exhausted_list(self):
        factory = FakeClientFactory()
        probe = self.make_probe(factory)

        probe.probe(self.identity, self.descriptor, AuthMethod.COMMON_CREDENTIALS)

        self.assertEqual(factory.usernames_tried(self.identity), [c.username for c in CREDENTIALS])
        for privilege in Privilege:
            self.assertEqual(self.cell(privilege, AuthMethod.COMMON_CREDENTIALS), AccessCell(True, False))

    def test_empty_credential_list(self):
        factory = FakeClientFactory()
        probe = self.make_probe(factory, credentials=[])

        probe.probe(self.identity, self.descriptor, AuthMethod.COMMON_CREDENTIALS)

        self.assertEqual(factory.connect_calls, [])
        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.COMMON_CREDENTIALS), AccessCell(True, False))

    def test_default_credential_list(self):
        probe = AuthenticationProbe(self.ledger, FakeClientFactory())
        self.assertEqual(probe.credentials, COMMON_CREDENTIALS)

    def test_abort_mid_list_leaves_connect_untested(self):
        factory = FakeClientFactory()
        probe = self.make_probe(factory)
        original_session = factory.session

        def abort_after_first(descriptor, credential=None):
            probe.abort()
            return original_session(descriptor, credential)

        with patch.object(factory, 'session', side_effect=abort_after_first):
            probe.probe(self.identity, self.descriptor, AuthMethod.COMMON_CREDENTIALS)

        self.assertEqual(factory.usernames_tried(self.identity), ["admin"])
        self.assertEqual(self.cell(Privilege.CONNECT, AuthMethod.COMMON_CREDENTIALS), AccessCell(False, False))

    @patch('scanners.auth_probe.AuthenticationProbe.rate_limit')
    def test_rate_limit_between_attempts(self, mock_rate_limit):
        factory = FakeClientFactory()
        probe = self.make_probe(factory, request_delay=0.5)

        probe.probe(self.identity, self.descriptor, AuthMethod.COMMON_CREDENTIALS)

        self.assertEqual(mock_rate_limit.call_count, len(CREDENTIALS) - 1)

    def test_certificate_method_not_probed(self):
        probe = self.make_probe(FakeClientFactory())
        with self.assertRaises(NotImplementedError):
            probe.probe(self.identity, self.descriptor, AuthMethod.CERTIFICATE)


if __name__ == '__main__':
    unittest.main()
