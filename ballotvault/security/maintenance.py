"""
Background Maintenance
======================

Daemon thread that periodically sweeps expired sessions and prunes audit
entries past the retention window.

Both jobs are timestamp-guarded bulk deletes, so they run safely alongside
live logins.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from ballotvault.core.auth.session_control import SessionManager
from ballotvault.db import StorageUnavailableError
from ballotvault.security.audit import AuditLog


@dataclass(frozen=True, slots=True)
class MaintenanceReport:
    sessions_swept: int = 0
    audit_entries_pruned: int = 0


class MaintenanceScheduler:
    """
    Periodic session sweep and audit pruning.

    Usage:
        scheduler = MaintenanceScheduler(sessions, audit, interval=60, retention_days=365)
        scheduler.start()
        ...
        scheduler.stop()

    ``run_once`` performs one pass synchronously.
    """

    __slots__ = (
        "_sessions", "_audit", "_interval", "_retention_days",
        "_stop_event", "_thread", "_log",
    )

    def __init__(
        self,
        sessions: SessionManager,
        audit: AuditLog,
        interval: float = 60.0,
        retention_days: Optional[int] = 365,
    ) -> None:
        """
        Args:
            sessions: Session manager to sweep
            audit: Audit log to prune
            interval: Seconds between passes
            retention_days: Audit retention window; None disables pruning
        """
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._sessions = sessions
        self._audit = audit
        self._interval = interval
        self._retention_days = retention_days
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._log = logging.getLogger("ballotvault.maintenance")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the maintenance thread."""
        if self.running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="BallotVault-Maintenance",
        )
        self._thread.start()
        self._log.info("Maintenance scheduler started (interval %.0fs)", self._interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the maintenance thread and wait for the current pass to finish."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout if timeout is not None else self._interval * 2)
            self._thread = None
        self._log.info("Maintenance scheduler stopped")

    def run_once(self) -> MaintenanceReport:
        """One sweep and prune pass. Storage failures are logged, not raised."""
        swept = 0
        pruned = 0

        try:
            swept = self._sessions.sweep_expired()
        except StorageUnavailableError as e:
            self._log.error("Session sweep failed: %s", e)

        if self._retention_days is not None:
            try:
                pruned = self._audit.prune_older_than(self._retention_days)
            except StorageUnavailableError as e:
                self._log.error("Audit pruning failed: %s", e)

        return MaintenanceReport(sessions_swept=swept, audit_entries_pruned=pruned)

    def _loop(self) -> None:
        # Event.wait doubles as an interruptible sleep
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self._interval)
