#!/usr/bin/env python3
"""
Privilege ledger for the UA Privilege Scanner.

Holds one AccessRecord per discovered endpoint. Each record is a matrix of
Privilege x AuthMethod cells, every cell a (tested, granted) pair. Flags only
ever move from False to True; a finished scan is handed out as a frozen
ScanResult.
"""

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple


# Security modes mapped to human-readable names
SECURITY_MODE_NAMES = {
    0: "Invalid",
    1: "None",
    2: "Sign",
    3: "SignAndEncrypt",
}


class Privilege(Enum):
    """Capabilities tested against an endpoint, in dependency order."""
    CONNECT = "connect"
    READ = "read"
    WRITE = "write"
    DELETE = "delete"

    @classmethod
    def dependents(cls):
        """Privileges that cannot be exercised without CONNECT."""
        return (cls.READ, cls.WRITE, cls.DELETE)


class AuthMethod(Enum):
    """Identity presented when connecting."""
    ANONYMOUS = "anonymous"
    COMMON_CREDENTIALS = "common_credentials"
    # Extension point: never probed, always reported untested
    CERTIFICATE = "certificate"


class Credential(NamedTuple):
    username: str
    password: str


class AccessCell(NamedTuple):
    tested: bool = False
    granted: bool = False


def policy_name_from_uri(policy_uri):
    """Return the short policy name (``Basic256Sha256``) of a policy URI."""
    policy_uri = str(policy_uri) if policy_uri else ""
    if not policy_uri:
        return "Unknown"
    return policy_uri.split("#")[-1]


def mode_name(security_mode):
    """Return the readable name of a MessageSecurityMode value."""
    try:
        return SECURITY_MODE_NAMES.get(int(security_mode), str(security_mode))
    except (TypeError, ValueError):
        return str(security_mode)


@dataclass(frozen=True)
class EndpointIdentity:
    """Composite key of a scan target: (URL, security policy, security mode)."""
    url: str
    security_policy: str
    security_mode: str

    @classmethod
    def from_descriptor(cls, descriptor):
        """Build the identity of an OPC UA EndpointDescription."""
        return cls(
            url=str(descriptor.EndpointUrl),
            security_policy=policy_name_from_uri(descriptor.SecurityPolicyUri),
            security_mode=mode_name(descriptor.SecurityMode),
        )

    def __str__(self):
        return f"{self.url}#{self.security_policy}#{self.security_mode}"


class AccessRecord:
    """
    Privilege x authentication-method matrix of a single endpoint.

    Mutations take the record's own lock.
    """

    def __init__(self, identity):
        self.identity = identity
        self._cells: Dict[Tuple[Privilege, AuthMethod], AccessCell] = {
            (privilege, method): AccessCell()
            for privilege in Privilege
            for method in AuthMethod
        }
        self._lock = threading.Lock()
        self._frozen = False

    def cell(self, privilege, method):
        return self._cells[(privilege, method)]

    def is_tested(self, privilege, method):
        return self._cells[(privilege, method)].tested

    def is_granted(self, privilege, method):
        return self._cells[(privilege, method)].granted

    def mark_tested(self, privilege, method):
        """Record that an attempt for this cell concluded."""
        with self._lock:
            self._check_writable()
            current = self._cells[(privilege, method)]
            self._cells[(privilege, method)] = AccessCell(True, current.granted)

    def grant(self, privilege, method):
        """Record a successful attempt. Granting always implies tested."""
        with self._lock:
            self._check_writable()
            self._cells[(privilege, method)] = AccessCell(True, True)

    def propagate_skip(self, method):
        """
        Mark READ/WRITE/DELETE as tested-and-denied when CONNECT was not granted.
        """
        if self.is_granted(Privilege.CONNECT, method):
            return
        for privilege in Privilege.dependents():
            self.mark_tested(privilege, method)

    def items(self):
        """Yield ((privilege, method), cell) in Privilege then AuthMethod order."""
        for privilege in Privilege:
            for method in AuthMethod:
                yield (privilege, method), self._cells[(privilege, method)]

    def frozen_copy(self):
        copy = AccessRecord(self.identity)
        with self._lock:
            copy._cells = dict(self._cells)
        copy._frozen = True
        return copy

    @property
    def frozen(self):
        return self._frozen

    def _check_writable(self):
        if self._frozen:
            raise RuntimeError(f"Access record for {self.identity} is finalized")

    def __repr__(self):
        granted = [
            f"{p.name}/{m.name}" for (p, m), c in self.items() if c.granted
        ]
        return f"AccessRecord({self.identity}, granted={granted})"


class ScanResult:
    """Finalized, read-only mapping of EndpointIdentity to AccessRecord."""

    def __init__(self, records, started_at=None, finished_at=None,
                 aborted=False, abort_reason=None):
        self._records = MappingProxyType(dict(records))
        self.started_at = started_at
        self.finished_at = finished_at or datetime.now()
        self.aborted = aborted
        self.abort_reason = abort_reason

    @property
    def records(self):
        return self._records

    def __getitem__(self, identity):
        return self._records[identity]

    def __contains__(self, identity):
        return identity in self._records

    def __iter__(self) -> Iterator[EndpointIdentity]:
        return iter(self._records)

    def __len__(self):
        return len(self._records)

    def items(self):
        return self._records.items()

    def count_granted(self, privilege, method):
        """Number of endpoints where the given cell is granted."""
        return sum(1 for r in self._records.values() if r.is_granted(privilege, method))


class PrivilegeLedger:
    """
    Result store owned by the orchestrator and shared with the probes.

    ``ensure`` is the only operation that touches the shared mapping; it is
    guarded by a short registration lock. Updates go through the per-record
    locks of AccessRecord.
    """

    def __init__(self):
        self._records: Dict[EndpointIdentity, AccessRecord] = {}
        self._register_lock = threading.Lock()
        self.started_at = datetime.now()

    def get(self, identity):
        """Return the record of *identity*; KeyError if it was never registered."""
        return self._records[identity]

    def ensure(self, identity):
        """Return the record of *identity*, creating an empty one if absent."""
        record = self._records.get(identity)
        if record is not None:
            return record
        with self._register_lock:
            record = self._records.get(identity)
            if record is None:
                record = AccessRecord(identity)
                self._records[identity] = record
            return record

    def identities(self) -> List[EndpointIdentity]:
        return list(self._records)

    def snapshot(self, aborted=False, abort_reason: Optional[str] = None, order=None):
        """
        Freeze every record into a ScanResult.

        Identities listed in *order* come first, the rest follow in
        registration order.
        """
        with self._register_lock:
            frozen = {i: self._records[i].frozen_copy() for i in (order or []) if i in self._records}
            for identity, record in self._records.items():
                if identity not in frozen:
                    frozen[identity] = record.frozen_copy()
        return ScanResult(frozen, started_at=self.started_at,
                          aborted=aborted, abort_reason=abort_reason)

    def __contains__(self, identity):
        return identity in self._records

    def __len__(self):
        return len(self._records)
