#!/usr/bin/env python3
"""
Scan orchestrator: runs host discovery, endpoint enumeration and the two
probing phases, and returns the finalized ScanResult.
"""

import ipaddress
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum

from scanners.auth_probe import AuthenticationProbe
from scanners.base_scanner import BaseScanner
from scanners.endpoint_scanner import EndpointScanner
from scanners.errors import ScanAbortedError
from scanners.ledger import AuthMethod, PrivilegeLedger
from scanners.subnet_scanner import SubnetScanner
from utils.network import DEFAULT_PREFIX_LENGTH, get_own_ipv4_addresses, validate_prefix_length
from utils.opcua_client import UaClientFactory


class ScanState(Enum):
    INIT = "init"
    DISCOVERING_HOSTS = "discovering_hosts"
    ENUMERATING_ENDPOINTS = "enumerating_endpoints"
    PROBING_ANONYMOUS = "probing_anonymous"
    PROBING_CREDENTIALS = "probing_credentials"
    DONE = "done"


class ScanOrchestrator(BaseScanner):
    """
    Sequences the scan phases. Each phase finishes for every target before
    the next one starts, so every endpoint in the report went through the
    same phases.

    Args:
        prefix_length (int): Default block size used by ``run``
        credentials (list): Ordered credentials for the common-credentials phase
        client_factory (UaClientFactory): OPC UA client wrapper; built from
            ``timeout`` when omitted
        deadline (float): Overall scan budget in seconds; None for no limit
        timeout, workers, request_delay, port: see BaseScanner
    """

    def __init__(self, prefix_length=DEFAULT_PREFIX_LENGTH, credentials=None,
                 client_factory=None, deadline=None, **kwargs):
        super().__init__(**kwargs)
        self.prefix_length = validate_prefix_length(prefix_length)
        self.deadline = deadline
        self.ledger = PrivilegeLedger()
        self.client_factory = client_factory or UaClientFactory(timeout=self.timeout)
        self.state = ScanState.INIT
        self.hosts = []
        self.targets = []

        shared = dict(timeout=self.timeout, workers=self.workers, request_delay=self.request_delay,
                      port=self.port, abort_event=self._abort)
        self.subnet_scanner = SubnetScanner(**shared)
        self.endpoint_scanner = EndpointScanner(self.ledger, self.client_factory, **shared)
        self.probe = AuthenticationProbe(self.ledger, self.client_factory, credentials, **shared)

    def run(self, local_addresses=None, prefix_length=None):
        """
        Run the full discovery-and-probe cycle.

        Args:
            local_addresses (list): Own IPv4 addresses; detected when None
            prefix_length (int): Overrides the configured prefix length

        Returns:
            ScanResult: Finalized results, also when the scan was aborted
        """
        prefix_length = validate_prefix_length(prefix_length or self.prefix_length)
        self.start_scan_timer()
        timer = self._start_deadline_timer()
        abort_reason = None

        try:
            self._transition(ScanState.DISCOVERING_HOSTS)
            self.hosts = self._discover_hosts(local_addresses, prefix_length)

            self._transition(ScanState.ENUMERATING_ENDPOINTS)
            self.targets = self._unique_targets(self.endpoint_scanner.enumerate_all(self.hosts))
            self.logger.info(f"{len(self.targets)} endpoint(s) on {len(self.hosts)} host(s)")

            self._transition(ScanState.PROBING_ANONYMOUS)
            self.logger.info("Trying anonymous connections to all endpoints.")
            self._probe_all(AuthMethod.ANONYMOUS)

            self._transition(ScanState.PROBING_CREDENTIALS)
            self.logger.info("Trying connections with common credentials to all endpoints.")
            self._probe_all(AuthMethod.COMMON_CREDENTIALS)
        except ScanAbortedError as e:
            abort_reason = str(e)
            self.logger.error(f"Scan aborted: {abort_reason}")
            self.abort()
        finally:
            if timer is not None:
                timer.cancel()

        if self.aborted and abort_reason is None:
            abort_reason = "cancelled or deadline reached"
        self._transition(ScanState.DONE)
        duration = self.stop_scan_timer()
        self.logger.info(f"Scan finished in {duration:.2f}s with {len(self.ledger)} endpoint(s)")
        return self.ledger.snapshot(aborted=self.aborted, abort_reason=abort_reason,
                                    order=[identity for identity, _ in self.targets])

    # ------------------------------------------------------------------ #
    # Phases                                                              #
    # ------------------------------------------------------------------ #

    def _discover_hosts(self, local_addresses, prefix_length):
        if local_addresses is None:
            local_addresses = get_own_ipv4_addresses()

        own = []
        for address in local_addresses:
            try:
                own.append(ipaddress.IPv4Address(address))
            except ValueError:
                self.logger.warning(f"Ignoring non-IPv4 local address {address!r}")
        for address in own:
            self.logger.info(f"Own ip: {address}")

        hosts = set()
        for address in own:
            if self.aborted:
                break
            hosts.update(self.subnet_scanner.discover_reachable_hosts(str(address), prefix_length))

        hosts.difference_update(str(address) for address in own)
        return sorted(hosts, key=ipaddress.IPv4Address)

    def _unique_targets(self, targets):
        unique = {}
        for identity, descriptor in targets:
            unique.setdefault(identity, descriptor)
        return list(unique.items())

    def _probe_all(self, method):
        """Probe every target with *method*; returns once all probes are done."""
        fatal = None
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [
                executor.submit(self._probe_one, identity, descriptor, method)
                for identity, descriptor in self.targets
            ]
            for future in futures:
                try:
                    future.result()
                except ScanAbortedError as e:
                    # Let in-flight probes finish, start no new ones
                    self.abort()
                    fatal = fatal or e
        if fatal is not None:
            raise fatal

    def _probe_one(self, identity, descriptor, method):
        if self.aborted:
            self.logger.debug(f"Scan aborted, skipping {method.name} probe of {identity}")
            return
        try:
            self.probe.probe(identity, descriptor, method)
        except ScanAbortedError:
            raise
        except Exception as e:
            self.logger.error(f"Unexpected error probing {identity} ({method.name}): {e}")

    # ------------------------------------------------------------------ #
    # Helper methods                                                      #
    # ------------------------------------------------------------------ #

    def _transition(self, state):
        self.logger.debug(f"State {self.state.name} -> {state.name}")
        self.state = state

    def _start_deadline_timer(self):
        if not self.deadline:
            return None
        timer = threading.Timer(self.deadline, self._deadline_reached)
        timer.daemon = True
        timer.start()
        return timer

    def _deadline_reached(self):
        self.logger.warning(f"Scan deadline of {self.deadline}s reached, no new probes will start")
        self.abort()
