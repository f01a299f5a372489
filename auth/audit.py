"""
auth/audit.py -- Audit sinks.

The orchestrator appends one event at the tail of every flow. Sinks are
fire-and-forget from its point of view: a failing sink is logged and ignored,
never allowed to fail the login or reset that produced the event. See
AuthService._audit().
"""

from __future__ import annotations

from typing import Protocol

from auth.models import AuditEvent
from auth.store import AuthStore


class AuditSink(Protocol):
    def append(self, event: AuditEvent) -> None: ...


class StoreAuditSink:
    """Writes audit events to the audit_logs table of an AuthStore."""

    def __init__(self, store: AuthStore) -> None:
        self._store = store

    def append(self, event: AuditEvent) -> None:
        self._store.append_audit(event)
