"""
Scan components of the UA Privilege Scanner.

Discovery and probing flow strictly downward:
SubnetScanner -> EndpointScanner -> AuthenticationProbe -> PrivilegeLedger.
ScanOrchestrator (scanners.orchestrator) wires them together.
"""
