#!/usr/bin/env python3
"""
Network helpers for the UA Privilege Scanner: local address detection and
subnet candidate computation.
"""

import ipaddress
import logging
import socket
from typing import List

import psutil

logger = logging.getLogger("UAScanner.network")

# Smallest and largest block the scanner will walk (4096 .. 4 addresses)
MIN_PREFIX_LENGTH = 20
MAX_PREFIX_LENGTH = 30
DEFAULT_PREFIX_LENGTH = 28


def get_own_ipv4_addresses() -> List[str]:
    """
    Return the non-loopback IPv4 addresses of all local interfaces.

    Order follows the interface order reported by the OS; duplicates are dropped.
    """
    addresses = []
    for ifname, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            try:
                ip = ipaddress.IPv4Address(addr.address)
            except ValueError:
                logger.debug(f"Ignoring unparsable address {addr.address!r} on {ifname}")
                continue
            if ip.is_loopback or str(ip) in addresses:
                continue
            addresses.append(str(ip))
    return addresses


def validate_prefix_length(prefix_length):
    """Raise ValueError unless *prefix_length* is within the supported bounds."""
    if not isinstance(prefix_length, int) or isinstance(prefix_length, bool):
        raise ValueError(f"Prefix length must be an integer, got {prefix_length!r}")
    if not MIN_PREFIX_LENGTH <= prefix_length <= MAX_PREFIX_LENGTH:
        raise ValueError(
            f"Prefix length {prefix_length} out of range "
            f"({MIN_PREFIX_LENGTH}..{MAX_PREFIX_LENGTH})"
        )
    return prefix_length


def subnet_candidates(own_address, prefix_length) -> List[str]:
    """
    Return the candidate hosts of the block around *own_address*.

    The network address, the broadcast address and *own_address* itself are
    excluded. Addresses are returned in ascending order.

    Args:
        own_address (str): Local IPv4 address
        prefix_length (int): Number of fixed leading bits of the block

    Returns:
        list: Candidate IPv4 addresses as strings
    """
    validate_prefix_length(prefix_length)
    own = ipaddress.IPv4Address(own_address)
    network = ipaddress.IPv4Network(f"{own}/{prefix_length}", strict=False)

    first = int(network.network_address) + 1
    last = int(network.broadcast_address)
    return [
        str(ipaddress.IPv4Address(value))
        for value in range(first, last)
        if value != int(own)
    ]
