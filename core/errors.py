"""
Error taxonomy shared by fields, the relationship graph and the lifecycle state machine.

- ValidationError: blocking rule failure; shown to the user as a list.
- ConflictError: the record moved underneath the caller; refetch, do not blindly retry.
- TransientError: I/O failure with no semantic meaning; eligible for rollback / retry.
- GuardViolation: event dispatched from a state (or by a role) that does not allow it.
"""

from __future__ import annotations

from typing import Any


class WorkbenchError(Exception):
    code = "workbench_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(WorkbenchError):
    code = "validation_error"

    def __init__(self, message: str, results: list | None = None, issues: list[str] | None = None):
        self.results = list(results or [])
        self.issues = list(issues or [])
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["issues"] = self.issues or [r.rule.description for r in self.results]
        payload["failed_rules"] = [r.rule.id for r in self.results]
        return payload


class ConflictError(WorkbenchError):
    code = "conflict"


class NotFoundError(ConflictError):
    code = "not_found"


class TransientError(WorkbenchError):
    code = "transient"


class GuardViolation(WorkbenchError):
    code = "guard_violation"
