"""Run lock record.

A run directory holds at most one ``run.lock``. It names the process
executing the run; the state directory may live on shared storage, so the
holder's host is recorded as well.
"""

import os
import socket
from datetime import datetime

from pydantic import BaseModel, Field


class Lock(BaseModel):
    """Contents of runs/<run_id>/run.lock.

    Attributes:
        pid: Process ID of the holder.
        hostname: Host the holder runs on.
        run_id: Run being executed.
        command: CLI command that took the lock.
        started_at: When the lock was taken.
        last_heartbeat: Refreshed at every step boundary.
    """

    pid: int = Field(description="Process ID holding the lock")
    hostname: str = Field(default_factory=socket.gethostname, description="Holder's host")
    run_id: str = Field(description="Run being executed")
    command: str = Field(description="Command that took the lock")
    started_at: datetime = Field(default_factory=datetime.now)
    last_heartbeat: datetime = Field(default_factory=datetime.now)

    @property
    def is_local(self) -> bool:
        """True when the holder runs on this host (its PID can be probed)."""
        return self.hostname == socket.gethostname()

    @property
    def is_mine(self) -> bool:
        return self.is_local and self.pid == os.getpid()
