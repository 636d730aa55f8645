"""CLI command implementations for provision.

This package contains the implementation of each CLI command,
separated from the CLI framework setup in cli.py.
"""

from .audit import audit
from .init import init
from .install import install
from .plan import plan
from .resume import resume
from .status import runs, status

__all__ = [
    "audit",
    "init",
    "install",
    "plan",
    "resume",
    "runs",
    "status",
]
