"""Audit logging package."""

from stashway.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
