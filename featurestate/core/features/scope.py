"""
Scope matching - resolve scoped feature values against a requested scope.
"""

from typing import Any, Iterable, Mapping

from .interfaces import FeatureScope, FeatureStore, ScopedRecord


class ScopeMatcher:
    """
    Matches stored scoped records against a requested scope.

    A stored scope matches when the kinds are equal and every stored
    dimension is either a wildcard (None) or equal to the requested value
    for that dimension. Among several matches the most specific wins:
    fewest wildcards, then the latest write.
    """

    def __init__(self, store: FeatureStore):
        self.store = store

    @staticmethod
    def matches(stored: FeatureScope, requested: FeatureScope) -> bool:
        if stored.kind != requested.kind:
            return False

        for dimension, expected in stored.constraints.items():
            if expected is None:
                continue
            if dimension not in requested.constraints:
                return False
            actual = requested.constraints[dimension]
            if actual is None or actual != expected:
                return False

        return True

    @staticmethod
    def _rank(record: ScopedRecord) -> tuple[int, int]:
        return (-record.scope.wildcard_count, record.sequence)

    def best_match(
        self,
        records: Iterable[ScopedRecord],
        requested: FeatureScope,
    ) -> ScopedRecord | None:
        """Most specific matching record, or None."""
        candidates = [r for r in records if self.matches(r.scope, requested)]
        if not candidates:
            return None
        return max(candidates, key=self._rank)

    async def resolve(
        self,
        feature: str,
        requested: Mapping[str, Any],
        kind: str,
    ) -> Any | None:
        """
        Resolve a feature's scoped value.

        Args:
            feature: Feature name
            requested: Dimension -> value for the requesting context
            kind: Scope kind that must match exactly

        Returns:
            The winning record's value, or None when nothing matches.
        """
        records = await self.store.scoped(feature)
        if not records:
            return None

        record = self.best_match(records, FeatureScope(kind, requested))
        return record.value if record else None
