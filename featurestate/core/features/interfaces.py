"""
Feature Engine Interfaces - Core abstractions.

Value types shared by the engine components, and the contracts that
storage collaborators implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from .errors import InvalidVariantWeights

# Feature names starting with this prefix are engine bookkeeping
# (schedules, audit trails) and never appear in snapshots.
INTERNAL_PREFIX = "__"


def is_internal(feature: str) -> bool:
    return feature.startswith(INTERNAL_PREFIX)


@dataclass(frozen=True)
class FeatureScope:
    """
    Multi-dimensional scope constraint.

    A ``None`` constraint value is a wildcard that matches any value.

    Example:
        FeatureScope("user", {"company_id": 10, "org_id": None})
    """
    kind: str
    constraints: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "constraints", MappingProxyType(dict(self.constraints)))

    def defined_constraints(self) -> dict[str, Any]:
        """Constraints that are not wildcards."""
        return {k: v for k, v in self.constraints.items() if v is not None}

    @property
    def wildcard_count(self) -> int:
        return sum(1 for v in self.constraints.values() if v is None)

    def cache_key(self) -> str:
        """Deterministic key, e.g. 'user:company_id=int:10|org_id=null'."""
        parts = [
            f"{k}={'null' if v is None else f'{type(v).__name__}:{v}'}"
            for k, v in sorted(self.constraints.items())
        ]
        return f"{self.kind}:{'|'.join(parts)}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "scopes": dict(self.constraints)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeatureScope":
        return cls(kind=data["kind"], constraints=data.get("scopes") or {})

    def __hash__(self) -> int:
        return hash(self.cache_key())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FeatureScope):
            return NotImplemented
        return self.cache_key() == other.cache_key()


@dataclass(frozen=True)
class ScopedRecord:
    """A scoped value as held by a store. Higher sequence = more recent write."""
    feature: str
    scope: FeatureScope
    value: Any
    sequence: int = 0


@dataclass(frozen=True)
class VariantSpec:
    """
    Weighted variant split.

    Weights are percentages and must sum to exactly 100. Definition order
    is significant: it fixes how the bucket space is partitioned.
    """
    feature: str
    weights: Mapping[str, int]

    def __post_init__(self):
        weights = dict(self.weights)
        if not weights:
            raise InvalidVariantWeights(self.feature, reason="weights cannot be empty")
        for name, weight in weights.items():
            if isinstance(weight, bool) or not isinstance(weight, int):
                raise InvalidVariantWeights(
                    self.feature, reason=f"weight for '{name}' must be an integer"
                )
            if weight < 0:
                raise InvalidVariantWeights(
                    self.feature, reason=f"weight for '{name}' cannot be negative"
                )
        total = sum(weights.values())
        if total != 100:
            raise InvalidVariantWeights(self.feature, total=total)
        object.__setattr__(self, "weights", MappingProxyType(weights))

    @property
    def names(self) -> list[str]:
        return list(self.weights)


@dataclass(frozen=True)
class RolloutSpec:
    """
    Percentage rollout.

    Percentage is clamped into [0, 100]. A sticky rollout gives every
    context a fixed bucket, so raising the percentage only ever adds
    contexts. A non-sticky rollout re-rolls on every evaluation.
    """
    feature: str
    percentage: int
    sticky: bool = True
    seed: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "percentage", max(0, min(100, int(self.percentage))))

    def to_percentage(self, percentage: int) -> "RolloutSpec":
        return RolloutSpec(self.feature, percentage, self.sticky, self.seed)

    def with_seed(self, seed: str | None) -> "RolloutSpec":
        return RolloutSpec(self.feature, self.percentage, self.sticky, seed)

    def with_stickiness(self, sticky: bool) -> "RolloutSpec":
        return RolloutSpec(self.feature, self.percentage, sticky, self.seed)


@dataclass(frozen=True)
class DependencySpec:
    """``dependent`` may only be activated while all prerequisites are active."""
    dependent: str
    prerequisites: tuple[str, ...]

    def __post_init__(self):
        # Keep declaration order but drop duplicates
        object.__setattr__(self, "prerequisites", tuple(dict.fromkeys(self.prerequisites)))


@dataclass
class Snapshot:
    """
    Point-in-time copy of one context's feature values.

    Attributes:
        id: Unique snapshot identifier
        label: Human readable label
        created_at: When captured (UTC)
        kind, context_id: The ContextIdentity the snapshot belongs to
        features: Feature name -> stored value at capture time
    """
    id: str
    label: str
    created_at: datetime
    kind: str
    context_id: str
    features: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    restored_at: datetime | None = None


class FeatureStore(ABC):
    """
    Abstract storage for per-context feature values.

    Implementations:
    - MemoryFeatureStore: In-memory (dev/testing)
    - DatabaseFeatureStore: SQLAlchemy (PostgreSQL, SQLite)

    Writes must be last-write-wins per (feature, kind, id) and never
    partially applied.
    """

    @abstractmethod
    async def get(self, feature: str, kind: str, id: str) -> Any | None:
        """Get the stored value, or None if absent."""
        pass

    @abstractmethod
    async def set(self, feature: str, kind: str, id: str, value: Any) -> None:
        """Store a value, overwriting any previous one."""
        pass

    @abstractmethod
    async def forget(self, feature: str, kind: str, id: str) -> None:
        """Remove the stored value."""
        pass

    @abstractmethod
    async def stored(self, kind: str, id: str) -> dict[str, Any]:
        """All stored values for one context."""
        pass

    @abstractmethod
    async def scoped(self, feature: str) -> list[ScopedRecord]:
        """All scoped records for a feature."""
        pass

    @abstractmethod
    async def set_scoped(self, feature: str, scope: FeatureScope, value: Any) -> None:
        """Store a scoped value, replacing any record with an identical scope."""
        pass

    @abstractmethod
    async def forget_scoped(self, feature: str, scope: FeatureScope) -> bool:
        """Remove the scoped record with an identical scope."""
        pass


class SnapshotRepository(ABC):
    """Abstract snapshot persistence, scoped per context."""

    @abstractmethod
    async def add(self, snapshot: Snapshot) -> Snapshot:
        pass

    @abstractmethod
    async def get(self, snapshot_id: str, kind: str, id: str) -> Snapshot | None:
        pass

    @abstractmethod
    async def list(self, kind: str, id: str) -> list[Snapshot]:
        """Snapshots for one context, oldest first."""
        pass

    @abstractmethod
    async def update(self, snapshot: Snapshot) -> Snapshot:
        pass

    @abstractmethod
    async def delete(self, snapshot_id: str, kind: str, id: str) -> bool:
        pass

    @abstractmethod
    async def clear(self, kind: str, id: str) -> int:
        """Delete every snapshot of a context. Returns the count deleted."""
        pass

    @abstractmethod
    async def prune(self, cutoff: datetime, chunk_size: int = 100) -> int:
        """Delete snapshots created before ``cutoff``, ``chunk_size`` at a time."""
        pass
