"""
Feature engine exceptions.

Hierarchy:
    FeatureError
    ├── InvalidSpecification
    │   ├── InvalidVariantWeights
    │   └── UnsupportedContextType
    ├── MissingPrerequisites
    ├── StorageFailure
    └── NotFound
        ├── SnapshotNotFound
        ├── GroupNotFound
        └── ScheduleNotFound
"""

from typing import Any, Iterable


class FeatureError(Exception):
    """Base class for all feature engine errors."""


class InvalidSpecification(FeatureError):
    """A definition or context was malformed. Raised where it was introduced."""


class InvalidVariantWeights(InvalidSpecification):
    """Variant weights are empty, negative, or do not sum to 100."""

    def __init__(self, feature: str, total: int | None = None, reason: str | None = None):
        self.feature = feature
        self.total = total
        if reason is None:
            reason = f"weights must sum to 100, got {total}"
        super().__init__(f"Invalid variant weights for '{feature}': {reason}")


class UnsupportedContextType(InvalidSpecification):
    """The object cannot be resolved to a ContextIdentity."""

    def __init__(self, context: Any, reason: str | None = None):
        self.context_type = type(context).__name__
        message = f"Cannot resolve feature context from {self.context_type}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class MissingPrerequisites(FeatureError):
    """
    Activation refused because prerequisites are inactive.

    Carries every missing prerequisite, not just the first one found.
    Feature names only appear in the message when ``display_names`` is set,
    so they don't leak into user-facing error output by default.
    """

    def __init__(self, dependent: str, missing: Iterable[str], display_names: bool = False):
        self.dependent = dependent
        self.missing = list(missing)
        if display_names:
            message = (
                f"Cannot activate '{dependent}': missing prerequisites "
                f"[{', '.join(self.missing)}]"
            )
        else:
            message = "Cannot activate feature: missing prerequisites"
        super().__init__(message)


class StorageFailure(FeatureError):
    """The storage layer failed to read or write a feature value."""

    def __init__(self, operation: str, feature: str | None = None, cause: Exception | None = None):
        self.operation = operation
        self.feature = feature
        detail = f"Feature store {operation} failed"
        if feature:
            detail = f"{detail} for '{feature}'"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)


class NotFound(FeatureError):
    """A requested record does not exist."""


class SnapshotNotFound(NotFound):
    """No snapshot with this id exists for the context."""

    def __init__(self, snapshot_id: str):
        self.snapshot_id = snapshot_id
        super().__init__(f"Snapshot '{snapshot_id}' not found")


class GroupNotFound(NotFound):
    """No group with this name is defined."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Feature group '{name}' not found")


class ScheduleNotFound(NotFound):
    """No schedule with this id exists for the context."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule '{schedule_id}' not found")
