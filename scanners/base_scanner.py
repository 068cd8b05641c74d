#!/usr/bin/env python3
"""
Base scanner class for the UA Privilege Scanner components.
Every component that talks to the network inherits from this class.
"""

import logging
import socket
import threading
import time

# Standard OPC UA port
OPCUA_PORT = 4840


class BaseScanner:
    """
    Base scanner class that provides common functionality for all scan components.

    Holds the per-operation timeout, the worker pool size, the shared abort
    signal and the rate limiter.
    """

    def __init__(self, timeout=5, workers=10, request_delay=0.0, port=OPCUA_PORT, abort_event=None):
        """
        Initialize the scanner.

        Args:
            timeout (float): Timeout in seconds applied to every network operation
            workers (int): Maximum number of concurrently outstanding network operations
            request_delay (float): Seconds to wait between operations against one target
            port (int): Service port of the OPC UA servers
            abort_event (threading.Event): Shared cancellation signal (optional)
        """
        self.timeout = timeout
        self.workers = max(1, int(workers))
        self.request_delay = request_delay
        self.port = port
        self.name = self.__class__.__name__
        self.scan_start_time = None
        self.scan_end_time = None
        self._abort = abort_event if abort_event is not None else threading.Event()

        # Setup logging
        self.logger = logging.getLogger(f"UAScanner.{self.name}")

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def abort(self):
        """Stop issuing new network operations. In-flight ones finish normally."""
        self._abort.set()

    @property
    def aborted(self):
        return self._abort.is_set()

    # ------------------------------------------------------------------
    # Network helpers
    # ------------------------------------------------------------------

    def check_port_open(self, target, port=None):
        """
        Check if a specific port is open on the target.

        Args:
            target (str): Target IP address
            port (int): Port number to check (defaults to ``self.port``)

        Returns:
            bool: True if port is open, False otherwise
        """
        port = port or self.port
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.settimeout(self.timeout)
            try:
                result = sock.connect_ex((target, port))
            finally:
                sock.close()
            return result == 0
        except OSError as e:
            self.logger.debug(f"Port check error on {target}:{port}: {e}")
            return False

    def service_url(self, host):
        """Return the OPC UA discovery URL of *host*."""
        return f"opc.tcp://{host}:{self.port}"

    # ------------------------------------------------------------------
    # Timing helpers
    # ------------------------------------------------------------------

    def start_scan_timer(self):
        """Start the scan timer to measure scan duration."""
        self.scan_start_time = time.time()

    def stop_scan_timer(self):
        """Stop the scan timer and return the duration in seconds."""
        if self.scan_start_time:
            self.scan_end_time = time.time()
            return self.scan_end_time - self.scan_start_time
        return None

    def get_scan_duration(self):
        """Get the scan duration in seconds."""
        if self.scan_start_time and self.scan_end_time:
            return self.scan_end_time - self.scan_start_time
        return None

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def rate_limit(self):
        """
        Sleep for ``self.request_delay`` seconds (if > 0).

        Call this between successive attempts against the same endpoint to
        avoid overwhelming fragile ICS devices.
        """
        if self.request_delay > 0:
            self._safe_sleep(self.request_delay)

    def _safe_sleep(self, seconds):
        """
        Sleep for *seconds*, but return early if the scan is aborted.
        """
        self._abort.wait(seconds)
