"""
Typed failures raised by the store client and the read engines.

"Nothing visible" and "zero" are legitimate results; these exceptions exist so
that a failed read can never be mistaken for either.
"""
from typing import Optional


class StoreUnavailable(Exception):
    """The document store could not answer (database error or timeout)."""

    def __init__(self, operation: str, reason: Optional[str] = None):
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}" if reason else f"{operation} failed")


class ScopeResolutionFailure(Exception):
    def __init__(self, uid: str, role: Optional[str], cause: Optional[BaseException] = None):
        self.uid = uid
        self.role = role
        super().__init__(f"Could not resolve scope for {uid} ({role}): {cause}")


class AggregationUnavailable(Exception):
    def __init__(self, entity_id: str, cause: Optional[BaseException] = None):
        self.entity_id = entity_id
        super().__init__(f"Aggregates for {entity_id} are unavailable: {cause}")


class TimelineUnavailable(Exception):
    def __init__(self, entity_id: str, cause: Optional[BaseException] = None):
        self.entity_id = entity_id
        super().__init__(f"Timeline for {entity_id} is unavailable: {cause}")


class InvalidHierarchyError(Exception):
    """A child references a parent that lives in a different project."""

    def __init__(self, child_kind: str, child_id: str, parent_id: str, expected_project_id: str, actual_project_id: str):
        self.child_kind = child_kind
        self.child_id = child_id
        self.parent_id = parent_id
        self.expected_project_id = expected_project_id
        self.actual_project_id = actual_project_id
        super().__init__(
            f"{child_kind} {child_id} is in project {expected_project_id} "
            f"but its parent {parent_id} is in project {actual_project_id}"
        )


class OrphanedEntityWarning(UserWarning):
    """Tag for log records about children whose parent is missing. Never raised."""


class EntityNotFound(Exception):
    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class AccessDenied(Exception):
    pass
