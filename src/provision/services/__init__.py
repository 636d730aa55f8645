"""Host-facing services for provision.

This package provides the interfaces to the machine being provisioned:
- runner: External command execution with redaction and cancellation
- platform: OS detection and platform profiles
- credentials: Credential collection from environment and prompts
"""

from .credentials import Credentials, gather_credentials
from .platform import detect_facts, profile_for
from .runner import CancelToken, CommandRunner, format_command, redact_args

__all__ = [
    "CancelToken",
    "CommandRunner",
    "Credentials",
    "detect_facts",
    "format_command",
    "gather_credentials",
    "profile_for",
    "redact_args",
]
