#!/usr/bin/env python3
"""
Authentication probe: determines which privileges an endpoint grants to an
anonymous client and to a client presenting common default credentials.
"""

import threading
from typing import List, NamedTuple, Optional

from opcua import ua

from scanners.base_scanner import BaseScanner
from scanners.errors import ScanAbortedError
from scanners.ledger import AuthMethod, EndpointIdentity, Privilege
from utils.credentials import COMMON_CREDENTIALS
from utils.opcua_client import SERVER_STATE_NODES, Failure


class Attempt(NamedTuple):
    """One connection attempt made by the probe."""
    identity: EndpointIdentity
    method: AuthMethod
    username: Optional[str]
    failure: Optional[Failure]


class AuthenticationProbe(BaseScanner):
    """
    Connects to endpoints with a given authentication method and records the
    obtained privileges in the ledger.

    Attempts against one endpoint are strictly sequential. Every session is
    released before the probe returns.

    Args:
        ledger (PrivilegeLedger): Store holding the access records
        client_factory (UaClientFactory): OPC UA client wrapper
        credentials (list): Ordered (username, password) pairs for the
            common-credentials phase; defaults to the built-in list
    """

    def __init__(self, ledger, client_factory, credentials=None, **kwargs):
        super().__init__(**kwargs)
        self.ledger = ledger
        self.client_factory = client_factory
        self.credentials = list(COMMON_CREDENTIALS if credentials is None else credentials)
        self.attempts: List[Attempt] = []
        self._attempts_lock = threading.Lock()

    def probe(self, identity, descriptor, method):
        """
        Probe *identity* with *method* and update its access record.

        Args:
            identity (EndpointIdentity): Endpoint key in the ledger
            descriptor: EndpointDescription advertised by the server
            method (AuthMethod): Authentication method to try

        Raises:
            NotImplementedError: for AuthMethod.CERTIFICATE
            KeyMaterialError: if a secured endpoint needs key material that
                cannot be generated
        """
        record = self.ledger.ensure(identity)
        if method is AuthMethod.ANONYMOUS:
            self._probe_anonymous(identity, descriptor, record)
        elif method is AuthMethod.COMMON_CREDENTIALS:
            self._probe_common_credentials(identity, descriptor, record)
        else:
            raise NotImplementedError(f"Authentication method {method.name} is not probed")

    def attempts_for(self, identity, method=None):
        """Connection attempts made against *identity*, in order."""
        with self._attempts_lock:
            return [
                a for a in self.attempts
                if a.identity == identity and (method is None or a.method is method)
            ]

    # ------------------------------------------------------------------ #
    # Phases                                                              #
    # ------------------------------------------------------------------ #

    def _probe_anonymous(self, identity, descriptor, record):
        self._attempt(identity, descriptor, record, AuthMethod.ANONYMOUS)
        record.mark_tested(Privilege.CONNECT, AuthMethod.ANONYMOUS)
        record.propagate_skip(AuthMethod.ANONYMOUS)

    def _probe_common_credentials(self, identity, descriptor, record):
        method = AuthMethod.COMMON_CREDENTIALS
        for index, credential in enumerate(self.credentials):
            if index:
                self.rate_limit()
            if self.aborted:
                # CONNECT stays untested for an interrupted list
                self.logger.info(f"Scan aborted, credential test of {identity} left incomplete")
                return
            if self._attempt(identity, descriptor, record, method, credential):
                # First working login ends the list
                break

        record.mark_tested(Privilege.CONNECT, method)
        record.propagate_skip(method)

    # ------------------------------------------------------------------ #
    # Helper methods                                                      #
    # ------------------------------------------------------------------ #

    def _attempt(self, identity, descriptor, record, method, credential=None):
        """
        Connect once and, when connected, read the server diagnostics.

        An unexpected error counts as a failed attempt; only ScanAbortedError
        propagates.

        Returns:
            bool: True if the connection succeeded
        """
        username = credential.username if credential is not None else None
        connected = False
        remembered = False
        try:
            with self.client_factory.session(descriptor, credential) as outcome:
                self._remember(Attempt(identity, method, username, outcome.failure))
                remembered = True
                if not outcome.ok:
                    self.logger.info(
                        f"Could not connect to endpoint {identity}{self._as_user(username)}: "
                        f"{outcome.failure.value} {outcome.message}"
                    )
                    return False

                connected = True
                record.grant(Privilege.CONNECT, method)
                self.logger.info(f"Succeeded in making a connection to {identity}{self._as_user(username)}")

                read = self.client_factory.read_values(outcome.value, SERVER_STATE_NODES)
                if read.ok:
                    record.grant(Privilege.READ, method)
                    self.logger.info(f"Could read from {identity}, state is {self._state_name(read.value[0])}")
                else:
                    self.logger.info(f"Could not read from {identity}: {read.failure.value} {read.message}")
                return True
        except ScanAbortedError:
            raise
        except Exception as e:
            self.logger.warning(f"Unexpected error testing {identity}{self._as_user(username)}: {e}")
            if not remembered:
                self._remember(Attempt(identity, method, username, Failure.PROTOCOL_FAULT))
            return connected

    def _remember(self, attempt):
        with self._attempts_lock:
            self.attempts.append(attempt)

    @staticmethod
    def _state_name(value):
        try:
            return ua.ServerState(value).name
        except (TypeError, ValueError):
            return value

    @staticmethod
    def _as_user(username):
        return f" using username \"{username}\"" if username is not None else " anonymously"
