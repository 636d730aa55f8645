"""Provision: idempotent, resumable installer for ESET PROTECT On-Prem."""

__version__ = "0.1.0"
