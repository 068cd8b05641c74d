#!/usr/bin/env python3
"""
Subnet scanner: finds hosts of the local block that answer on the OPC UA port.
"""

from concurrent.futures import ThreadPoolExecutor

from scanners.base_scanner import BaseScanner
from utils.network import subnet_candidates


class SubnetScanner(BaseScanner):
    """
    Walks the address block around a local address and keeps the hosts that
    accept a TCP connection on the service port within the timeout.
    """

    def candidates(self, own_address, prefix_length):
        """Candidate addresses before the reachability filter."""
        return subnet_candidates(own_address, prefix_length)

    def discover_reachable_hosts(self, own_address, prefix_length):
        """
        Return the reachable hosts of the block in ascending address order.

        Args:
            own_address (str): Local IPv4 address the block is derived from
            prefix_length (int): Prefix length of the block (20..30)

        Returns:
            list: Addresses responding on ``self.port``
        """
        candidates = self.candidates(own_address, prefix_length)
        self.logger.info(
            f"Checking {len(candidates)} address(es) around {own_address}/{prefix_length} "
            f"on port {self.port}"
        )

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            reachable = list(executor.map(self._check_candidate, candidates))

        hosts = [ip for ip, is_up in zip(candidates, reachable) if is_up]
        self.logger.info(f"{len(hosts)} reachable host(s) around {own_address}")
        return hosts

    def _check_candidate(self, ip):
        if self.aborted:
            return False
        if self.check_port_open(ip):
            self.logger.info(f"Host {ip} answers on port {self.port}")
            return True
        self.logger.debug(f"Host {ip} not reachable on port {self.port}")
        return False
