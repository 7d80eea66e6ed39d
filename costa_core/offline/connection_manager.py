# =============================================================================
# costa_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionManager - Detects and monitors internet/Supabase connectivity.

Features:
- Internet probe (TCP to public DNS resolvers) plus backend health probe
- Periodic health checks on a daemon thread
- External signals via set_online()
- Listeners notified on every status transition
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple
import logging

import requests

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Full connectivity (Internet + Supabase)
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Internet OK but Supabase unavailable
    CHECKING = "checking"       # First probe running, no result yet
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    internet_available: bool = False
    supabase_available: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None
    previous_status: Optional[ConnectionStatus] = None

    @property
    def is_online(self) -> bool:
        return self.status == ConnectionStatus.ONLINE


Listener = Callable[[ConnectionState], None]


class ConnectionManager:
    """
    Connectivity monitor.

    Usage:
        manager = ConnectionManager(settings.supabase_url, settings.supabase_key)
        unsubscribe = manager.subscribe(lambda state: print(state.status))
        manager.check_connection()
        manager.start_monitoring()
        if manager.is_online:
            # Use cloud services
        else:
            # Use local fallback
    """

    # Configuration
    CHECK_INTERVAL_ONLINE = 30      # Seconds between checks when online
    CHECK_INTERVAL_OFFLINE = 10     # Seconds between checks when offline
    CONNECTION_TIMEOUT = 5          # Timeout for connection tests
    INTERNET_HOSTS: Sequence[Tuple[str, int]] = (
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    )
    HEALTH_PATH = "/auth/v1/health"

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        check_interval_online: float = CHECK_INTERVAL_ONLINE,
        check_interval_offline: float = CHECK_INTERVAL_OFFLINE,
        timeout: float = CONNECTION_TIMEOUT,
    ):
        """
        Args:
            supabase_url: Project URL; without it the backend counts as unavailable
            supabase_key: Anon key sent with the health probe
            check_interval_online: Seconds between checks while online
            check_interval_offline: Seconds between checks while offline
            timeout: Probe timeout in seconds
        """
        self.supabase_url = supabase_url
        self.supabase_key = supabase_key
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self.timeout = timeout

        self._state = ConnectionState()
        self._state_lock = threading.Lock()
        self._callbacks: List[Listener] = []
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    @property
    def state(self) -> ConnectionState:
        """Snapshot of the current connection state."""
        with self._state_lock:
            return replace(self._state)

    @property
    def status(self) -> ConnectionStatus:
        """Get current status."""
        return self._state.status

    @property
    def is_online(self) -> bool:
        """Check if we have full connectivity."""
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        """Check if we're completely offline."""
        return self._state.status == ConnectionStatus.OFFLINE

    # =========================================================================
    # CHECKS
    # =========================================================================

    def check_connection(self) -> ConnectionState:
        """
        Perform a connection check and update state.

        Returns:
            Updated ConnectionState snapshot
        """
        with self._state_lock:
            if self._state.status == ConnectionStatus.UNKNOWN:
                self._state.status = ConnectionStatus.CHECKING

        internet_ok = self._check_internet()
        supabase_ok, error = (self._check_supabase() if internet_ok
                              else (False, "No internet connection"))

        if internet_ok and supabase_ok:
            status = ConnectionStatus.ONLINE
        elif internet_ok:
            status = ConnectionStatus.DEGRADED
        else:
            status = ConnectionStatus.OFFLINE

        return self._apply(status, internet_ok, supabase_ok, error)

    def _check_internet(self) -> bool:
        """
        Check internet connectivity by attempting to reach well-known hosts.

        Returns:
            True if internet is available
        """
        for host, port in self.INTERNET_HOSTS:
            try:
                with socket.create_connection((host, port), timeout=self.timeout):
                    return True
            except OSError:
                continue

        return False

    def _check_supabase(self) -> Tuple[bool, Optional[str]]:
        """
        Check Supabase availability via its auth health endpoint.

        Returns:
            (available, error message)
        """
        if not self.supabase_url:
            return False, "Supabase not configured"

        url = f"{self.supabase_url.rstrip('/')}{self.HEALTH_PATH}"
        headers = {"apikey": self.supabase_key} if self.supabase_key else {}

        try:
            response = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug(f"Supabase check failed: {e}")
            return False, str(e)

        # Any answer below 500 means the service is up and reachable
        if response.status_code >= 500:
            return False, f"Supabase health returned HTTP {response.status_code}"
        return True, None

    def set_online(self, online: bool) -> ConnectionState:
        """
        Apply a connectivity signal from outside the monitor.

        Args:
            online: True when the runtime reports connectivity restored
        """
        if online:
            return self._apply(ConnectionStatus.ONLINE, True, True, None)
        return self._apply(ConnectionStatus.OFFLINE, False, False, "Reported offline")

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self._apply(ConnectionStatus.OFFLINE, False, False, "Forced offline")
        logger.info("Forced offline mode")

    def _apply(
        self,
        status: ConnectionStatus,
        internet_ok: bool,
        supabase_ok: bool,
        error: Optional[str],
    ) -> ConnectionState:
        """Store a probe result and notify listeners on transition."""
        now = datetime.now()
        with self._state_lock:
            old_status = self._state.status
            if old_status == ConnectionStatus.CHECKING:
                old_status = self._state.previous_status or ConnectionStatus.UNKNOWN

            self._state.last_check = now
            self._state.internet_available = internet_ok
            self._state.supabase_available = supabase_ok
            if status == ConnectionStatus.ONLINE:
                self._state.last_online = now
                self._state.consecutive_failures = 0
                self._state.error_message = None
            else:
                self._state.consecutive_failures += 1
                self._state.error_message = error

            changed = old_status != status
            if changed:
                self._state.previous_status = old_status
            self._state.status = status
            snapshot = replace(self._state)

        if changed:
            logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
            self._notify_callbacks(snapshot)

        return snapshot

    # =========================================================================
    # MONITORING
    # =========================================================================

    def start_monitoring(self) -> None:
        """Start background connection monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
            self._monitor_thread = None
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        """Background monitoring loop."""
        while not self._stop_monitoring.is_set():
            # Determine check interval based on current status
            interval = (
                self.check_interval_online
                if self.is_online
                else self.check_interval_offline
            )

            # Wait for interval or stop signal
            if self._stop_monitoring.wait(timeout=interval):
                break

            try:
                self.check_connection()
            except Exception as e:
                logger.error(f"Error in connection check: {e}")

    # =========================================================================
    # LISTENERS
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for status transitions.

        Returns:
            Callable that removes the listener
        """
        self.register_callback(listener)
        return lambda: self.unregister_callback(listener)

    def register_callback(self, callback: Listener) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Listener) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, state: ConnectionState) -> None:
        """Notify all registered callbacks of status change."""
        for callback in list(self._callbacks):
            try:
                callback(state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        state = self.state
        return {
            "status": state.status.value,
            "is_online": state.is_online,
            "internet": state.internet_available,
            "supabase": state.supabase_available,
            "last_check": state.last_check.isoformat() if state.last_check else None,
            "last_online": state.last_online.isoformat() if state.last_online else None,
            "failures": state.consecutive_failures,
            "error": state.error_message,
        }
