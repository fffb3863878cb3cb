from __future__ import annotations

# Print job slot polled by the receipt printer (CloudPRNT model).
#
# The printer drives the conversation:
#   1. CHECK  -> "is there a job?"           -> has_job()
#   2. FETCH  -> "give me the bytes"          -> fetch()
#   3. ACK    -> "printed, you can drop it"   -> acknowledge()
#
# A fetched job stays staged until acknowledged, so a printer that lost the
# download can simply fetch again.
#
# There is exactly one slot. Staging a job while another is still pending
# replaces it: if registrations outrun the printer's polling, the latest
# ticket wins and the earlier one is never printed. This keeps a slow or
# offline printer from printing a backlog of stale tickets when it comes back;
# the guest can always read the number from the kiosk screen.

import logging
import threading

logger = logging.getLogger(__name__)


class PrintJobChannel:
    """Single-slot staging area for printer payloads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._payload: bytes | None = None
        self._label: str | None = None
        self._overwritten = 0

    def stage(self, payload: bytes, *, label: str | None = None) -> bool:
        """Stage `payload`. Returns True if a pending job was overwritten."""
        if not payload:
            raise ValueError("payload must not be empty")
        with self._lock:
            replaced = self._payload is not None
            if replaced:
                self._overwritten += 1
                logger.warning("print job %s replaced before pickup by %s", self._label, label)
            self._payload = bytes(payload)
            self._label = label
            return replaced

    def has_job(self) -> bool:
        with self._lock:
            return self._payload is not None

    def fetch(self) -> bytes | None:
        """Return the staged payload without clearing it, or None."""
        with self._lock:
            if self._payload is not None:
                logger.info("printer downloading job %s", self._label)
            return self._payload

    def acknowledge(self) -> bool:
        """Drop the staged payload. Returns True if there was one."""
        with self._lock:
            had_job = self._payload is not None
            if had_job:
                logger.info("printer completed job %s", self._label)
            self._payload = None
            self._label = None
            return had_job

    @property
    def overwritten_count(self) -> int:
        with self._lock:
            return self._overwritten
