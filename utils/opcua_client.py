#!/usr/bin/env python3
"""
Thin wrapper around python-opcua used by the scan components.

Every network operation returns an Outcome instead of raising, so callers can
branch on the failure kind. Sessions are handed out through a context manager
that always disconnects.
"""

import concurrent.futures
import logging
import socket
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from opcua import Client, ua
from opcua.crypto import security_policies, uacrypto

from scanners.errors import KeyMaterialError
from scanners.ledger import policy_name_from_uri
from utils.certificates import APPLICATION_URI, get_key_material

# Diagnostic values read to prove READ access: server run-state and current time
SERVER_STATE_NODES = (
    ua.ObjectIds.Server_ServerStatus_State,
    ua.ObjectIds.Server_ServerStatus_CurrentTime,
)

# Security policies python-opcua can negotiate, keyed by URI fragment
POLICY_CLASSES = {
    "Basic128Rsa15": security_policies.SecurityPolicyBasic128Rsa15,
    "Basic256": security_policies.SecurityPolicyBasic256,
    "Basic256Sha256": security_policies.SecurityPolicyBasic256Sha256,
}


def _status_codes(*names):
    return {getattr(ua.StatusCodes, name) for name in names if hasattr(ua.StatusCodes, name)}


AUTH_REJECTED_CODES = _status_codes(
    "BadIdentityTokenInvalid",
    "BadIdentityTokenRejected",
    "BadUserAccessDenied",
    "BadUserSignatureInvalid",
)

HANDSHAKE_CODES = _status_codes(
    "BadSecurityChecksFailed",
    "BadSecurityPolicyRejected",
    "BadSecurityModeRejected",
    "BadCertificateInvalid",
    "BadCertificateUntrusted",
    "BadCertificateUriInvalid",
    "BadApplicationSignatureInvalid",
    "BadNonceInvalid",
)


class Failure(Enum):
    TIMEOUT = "timeout"
    REFUSED = "refused"
    AUTH_REJECTED = "auth_rejected"
    HANDSHAKE_FAILURE = "handshake_failure"
    PROTOCOL_FAULT = "protocol_fault"
    SERVICE_FAULT = "service_fault"


@dataclass(frozen=True)
class Outcome:
    """Result of one network operation: a value or a failure kind."""
    value: Any = None
    failure: Optional[Failure] = None
    message: str = ""

    @property
    def ok(self):
        return self.failure is None

    @classmethod
    def success(cls, value=None):
        return cls(value=value)

    @classmethod
    def fail(cls, failure, message=""):
        return cls(failure=failure, message=message)


def classify_failure(exc, default=Failure.PROTOCOL_FAULT):
    """Map an exception raised by python-opcua or the socket layer to a Failure."""
    if isinstance(exc, (socket.timeout, TimeoutError, concurrent.futures.TimeoutError)):
        return Failure.TIMEOUT
    if isinstance(exc, ConnectionRefusedError):
        return Failure.REFUSED
    if isinstance(exc, ua.UaStatusCodeError):
        if exc.code in AUTH_REJECTED_CODES:
            return Failure.AUTH_REJECTED
        if exc.code in HANDSHAKE_CODES:
            return Failure.HANDSHAKE_FAILURE
        return default
    if isinstance(exc, OSError):
        return Failure.REFUSED
    return default


class UaClientFactory:
    """
    Creates python-opcua clients configured for one endpoint and identity.

    Args:
        timeout (float): Seconds applied to socket connect and every request
    """

    def __init__(self, timeout=5, key_material_provider=get_key_material):
        self.timeout = timeout
        self.key_material_provider = key_material_provider
        self.logger = logging.getLogger("UAScanner.UaClientFactory")

    def discover_endpoints(self, url):
        """
        Ask the server at *url* for its endpoint descriptions.

        Returns:
            Outcome: list of EndpointDescription on success
        """
        client = Client(url, timeout=self.timeout)
        try:
            endpoints = client.connect_and_get_server_endpoints()
            return Outcome.success(list(endpoints or []))
        except Exception as e:
            return Outcome.fail(classify_failure(e), str(e) or e.__class__.__name__)
        finally:
            self.disconnect(client)

    def connect(self, descriptor, credential=None):
        """
        Open a session on *descriptor* using *credential* or no identity.

        Security settings follow the advertised policy and mode. On failure the
        client is released before returning.

        Raises:
            KeyMaterialError: if client key material cannot be generated
        """
        client = Client(str(descriptor.EndpointUrl), timeout=self.timeout)
        client.application_uri = APPLICATION_URI
        if credential is not None:
            client.set_user(credential.username)
            client.set_password(credential.password)

        policy_name = policy_name_from_uri(descriptor.SecurityPolicyUri)
        if policy_name != "None":
            try:
                problem = self._apply_security(client, descriptor, policy_name)
            except KeyMaterialError:
                raise
            except Exception as e:
                problem = f"Security setup for {policy_name} failed: {str(e) or e.__class__.__name__}"
            if problem:
                return Outcome.fail(Failure.HANDSHAKE_FAILURE, problem)

        try:
            client.connect()
        except Exception as e:
            self.disconnect(client)
            return Outcome.fail(classify_failure(e), str(e) or e.__class__.__name__)
        return Outcome.success(client)

    def read_values(self, client, node_ids=SERVER_STATE_NODES):
        """Read the Value attribute of each node id; fails on any bad status."""
        try:
            values = [client.get_node(ua.NodeId(node_id)).get_value() for node_id in node_ids]
        except Exception as e:
            return Outcome.fail(classify_failure(e, default=Failure.SERVICE_FAULT),
                                str(e) or e.__class__.__name__)
        return Outcome.success(values)

    def disconnect(self, client):
        """Release *client*. Safe on clients that never fully connected."""
        if client is None:
            return
        try:
            client.disconnect()
        except Exception as e:
            self.logger.debug(f"Disconnect failed, closing socket: {e}")
            try:
                client.disconnect_socket()
            except Exception as e:
                self.logger.debug(f"Closing socket failed: {e}")

    @contextmanager
    def session(self, descriptor, credential=None):
        """
        Scoped session: yields the connect Outcome and disconnects on exit.

        Usage::

            with factory.session(descriptor) as outcome:
                if outcome.ok:
                    factory.read_values(outcome.value)
        """
        outcome = self.connect(descriptor, credential)
        try:
            yield outcome
        finally:
            if outcome.ok:
                self.disconnect(outcome.value)

    def _apply_security(self, client, descriptor, policy_name):
        policy_cls = POLICY_CLASSES.get(policy_name)
        if policy_cls is None:
            return f"Unsupported security policy {policy_name}"
        if not descriptor.ServerCertificate:
            return "Endpoint does not advertise a server certificate"
        try:
            server_cert = uacrypto.x509_from_der(descriptor.ServerCertificate)
        except ValueError as e:
            return f"Invalid server certificate: {e}"

        key_material = self.key_material_provider()
        client.security_policy = policy_cls(
            server_cert, key_material.certificate, key_material.private_key, descriptor.SecurityMode
        )
        client.uaclient.set_security(client.security_policy)
        return None
