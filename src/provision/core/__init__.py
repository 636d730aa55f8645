"""Core engine for provision.

This package contains the step engine, independent of any platform:
- registry: Step definitions and dependency ordering
- orchestrator: Step execution, retry and blocking
- retry: Retry policy and backoff
- readiness: Polling steps for services coming up
- progress_store: Durable run snapshots and journals
- lock_manager: Per-run PID locks
- run_manager: Run IDs and state directory layout
- audit: Repository security audit
"""

from .audit import AuditReport, Finding, Severity, run_audit
from .context import StepContext
from .lock_manager import acquire_lock, release_lock, update_heartbeat
from .orchestrator import Orchestrator
from .progress_store import ProgressStore
from .readiness import readiness_step
from .registry import Step, StepRegistry
from .retry import NO_RETRY, RetryPolicy, compute_backoff
from .run_manager import generate_run_id, get_log_path, get_run_dir, get_state_dir, list_runs

__all__ = [
    "NO_RETRY",
    "AuditReport",
    "Finding",
    "Orchestrator",
    "ProgressStore",
    "RetryPolicy",
    "Severity",
    "Step",
    "StepContext",
    "StepRegistry",
    "acquire_lock",
    "compute_backoff",
    "generate_run_id",
    "get_log_path",
    "get_run_dir",
    "get_state_dir",
    "list_runs",
    "readiness_step",
    "release_lock",
    "run_audit",
    "update_heartbeat",
]
