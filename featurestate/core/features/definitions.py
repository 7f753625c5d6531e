"""
Feature definitions - variant splits, rollouts, prerequisite gates and groups.

Definitions describe features rather than any one context's state, so
they outlive a single FeatureService. In an app, one registry is shared by
every request (see ``get_feature_definitions``):

    definitions = get_feature_definitions()
    definitions.define_rollout(RolloutSpec("new_search", 25))
    definitions.define_group("premium", ["analytics", "priority_support"])
"""

from typing import Iterable, Mapping

import structlog

from .errors import GroupNotFound, InvalidSpecification
from .interfaces import DependencySpec, RolloutSpec, VariantSpec

logger = structlog.get_logger()


class FeatureDefinitions:
    """In-process registry of feature definitions."""

    def __init__(self):
        self.variants: dict[str, VariantSpec] = {}
        self.rollouts: dict[str, RolloutSpec] = {}
        self.dependencies: dict[str, tuple[str, ...]] = {}
        self.groups: dict[str, tuple[str, ...]] = {}

    # ============================================================
    # VARIANTS & ROLLOUTS
    # ============================================================

    def define_variant(self, feature: str, weights: Mapping[str, int]) -> VariantSpec:
        spec = VariantSpec(feature, weights)
        self.variants[feature] = spec
        return spec

    def define_rollout(self, spec: RolloutSpec) -> RolloutSpec:
        self.rollouts[spec.feature] = spec
        return spec

    # ============================================================
    # DEPENDENCIES
    # ============================================================

    def define_dependency(self, spec: DependencySpec) -> DependencySpec:
        """Add prerequisites to a dependent; earlier ones are kept."""
        existing = self.dependencies.get(spec.dependent, ())
        self.dependencies[spec.dependent] = tuple(dict.fromkeys(existing + spec.prerequisites))
        return DependencySpec(spec.dependent, self.dependencies[spec.dependent])

    def prerequisites_of(self, feature: str) -> tuple[str, ...]:
        return self.dependencies.get(feature, ())

    # ============================================================
    # GROUPS
    # ============================================================

    def define_group(self, name: str, features: Iterable[str]) -> tuple[str, ...]:
        """
        Create or replace a group.

        Member order is kept (duplicates dropped); group activation writes
        members in this order.
        """
        if not name:
            raise InvalidSpecification("Group name cannot be empty")
        if isinstance(features, str):
            features = [features]

        members = tuple(dict.fromkeys(features))
        self.groups[name] = members
        logger.debug("group.defined", group=name, features=list(members))
        return members

    def has_group(self, name: str) -> bool:
        return name in self.groups

    def group(self, name: str) -> tuple[str, ...]:
        """
        Members of a group.

        Raises:
            GroupNotFound: No group with this name
        """
        try:
            return self.groups[name]
        except KeyError:
            raise GroupNotFound(name) from None

    def add_to_group(self, name: str, features: Iterable[str]) -> tuple[str, ...]:
        return self.define_group(name, self.group(name) + tuple(features))

    def remove_from_group(self, name: str, features: Iterable[str]) -> tuple[str, ...]:
        removed = set(features)
        return self.define_group(name, [f for f in self.group(name) if f not in removed])

    def delete_group(self, name: str) -> bool:
        return self.groups.pop(name, None) is not None

    def clear(self) -> None:
        """Forget every definition."""
        self.variants.clear()
        self.rollouts.clear()
        self.dependencies.clear()
        self.groups.clear()
