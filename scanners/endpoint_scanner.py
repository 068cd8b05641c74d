#!/usr/bin/env python3
"""
Endpoint scanner: asks reachable hosts for their OPC UA endpoints and
registers each endpoint in the privilege ledger.
"""

from concurrent.futures import ThreadPoolExecutor

from scanners.base_scanner import BaseScanner
from scanners.ledger import EndpointIdentity, mode_name, policy_name_from_uri


class EndpointScanner(BaseScanner):
    """
    Enumerates the endpoints advertised by each host.

    Args:
        ledger (PrivilegeLedger): Store the discovered endpoints are registered in
        client_factory (UaClientFactory): OPC UA client wrapper
    """

    def __init__(self, ledger, client_factory, **kwargs):
        super().__init__(**kwargs)
        self.ledger = ledger
        self.client_factory = client_factory

    def enumerate_endpoints(self, host):
        """
        Discover the endpoints of *host* and register them.

        Args:
            host (str): Reachable host address

        Returns:
            list: (EndpointIdentity, EndpointDescription) pairs, empty on failure
        """
        url = self.service_url(host)
        self.logger.info(f"Trying to get endpoints for reachable host {url}")

        outcome = self.client_factory.discover_endpoints(url)
        if not outcome.ok:
            self.logger.info(f"Exception while getting endpoints from {url}: "
                             f"{outcome.failure.value} {outcome.message}")
            return []

        targets = []
        seen = set()
        for descriptor in outcome.value:
            try:
                identity = EndpointIdentity.from_descriptor(descriptor)
            except AttributeError as e:
                self.logger.info(f"Malformed endpoint description from {url}: {e}")
                continue
            if identity in seen:
                continue
            seen.add(identity)
            self.ledger.ensure(identity)
            targets.append((identity, descriptor))
            self.logger.info(
                f"Found endpoint {descriptor.EndpointUrl} with SecurityPolicy "
                f"{policy_name_from_uri(descriptor.SecurityPolicyUri)} and "
                f"MessageSecurityMode {mode_name(descriptor.SecurityMode)}"
            )
        return targets

    def enumerate_all(self, hosts):
        """Enumerate every host in parallel; results keep the host order."""
        hosts = list(hosts)
        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            per_host = list(executor.map(self._enumerate_unless_aborted, hosts))
        return [target for targets in per_host for target in targets]

    def _enumerate_unless_aborted(self, host):
        if self.aborted:
            self.logger.debug(f"Scan aborted, not enumerating {host}")
            return []
        return self.enumerate_endpoints(host)
