"""
Dependency gating and cascades.

Usage:
    spec = require("auth", "payment").before("checkout")
    service.define_dependency(spec)

    await service.activate("checkout", ctx)   # raises MissingPrerequisites

    teardown = cascade("api").deactivating(["webhooks", "rate_limiting"])
    await service.apply_cascade(teardown, ctx)
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable

import structlog

from .context import ContextIdentity
from .errors import InvalidSpecification, MissingPrerequisites
from .interfaces import DependencySpec

logger = structlog.get_logger()

ActiveReader = Callable[[str, ContextIdentity], Awaitable[bool]]


class DependencyResolver:
    """
    Checks prerequisite features before a dependent is activated.

    The check is all-or-nothing: it never activates anything itself, and on
    failure reports every missing prerequisite.
    """

    def __init__(self, is_active: ActiveReader, display_names: bool = False):
        self._is_active = is_active
        self.display_names = display_names

    async def missing(
        self,
        dependent: str,
        prerequisites: Iterable[str],
        ctx: ContextIdentity,
    ) -> list[str]:
        """Prerequisites that are not active, in declaration order."""
        missing = []
        for prerequisite in dict.fromkeys(prerequisites):
            # A feature can never satisfy its own prerequisite
            if prerequisite == dependent:
                missing.append(prerequisite)
                continue
            if not await self._is_active(prerequisite, ctx):
                missing.append(prerequisite)
        return missing

    async def check(
        self,
        dependent: str,
        prerequisites: Iterable[str],
        ctx: ContextIdentity,
    ) -> None:
        """
        Raise unless every prerequisite is active for ``ctx``.

        Raises:
            MissingPrerequisites: Lists all inactive prerequisites
        """
        missing = await self.missing(dependent, prerequisites, ctx)
        if missing:
            logger.info(
                "feature.prerequisites_missing",
                feature=dependent,
                missing=missing,
                kind=ctx.kind,
                id=ctx.id,
            )
            raise MissingPrerequisites(dependent, missing, display_names=self.display_names)

    async def can_activate(
        self,
        dependent: str,
        prerequisites: Iterable[str],
        ctx: ContextIdentity,
    ) -> bool:
        return not await self.missing(dependent, prerequisites, ctx)


@dataclass(frozen=True)
class RequirementBuilder:
    """First half of ``require(...).before(...)``."""
    prerequisites: tuple[str, ...]

    def before(self, dependent: str) -> DependencySpec:
        return DependencySpec(dependent=dependent, prerequisites=self.prerequisites)


def require(*prerequisites: str) -> RequirementBuilder:
    """Start a dependency declaration."""
    if not prerequisites:
        raise InvalidSpecification("require() needs at least one prerequisite")
    return RequirementBuilder(prerequisites=tuple(prerequisites))


@dataclass(frozen=True)
class CascadeSpec:
    """
    A primary feature plus dependents, toggled together.

    Activation order is primary then dependents; deactivation order is
    dependents then primary, so a dependent is never active while its
    primary is off.
    """
    primary: str
    dependents: tuple[str, ...] | None = None
    activate: bool = True

    def steps(self) -> list[tuple[str, str]]:
        """Ordered ``(operation, feature)`` pairs."""
        if self.dependents is None:
            raise InvalidSpecification(
                f"Cascade for '{self.primary}' has no dependent features; "
                "call activating() or deactivating() first"
            )
        if self.activate:
            return [("activate", self.primary)] + [("activate", f) for f in self.dependents]
        return [("deactivate", f) for f in self.dependents] + [("deactivate", self.primary)]


@dataclass(frozen=True)
class CascadeBuilder:
    primary: str

    def activating(self, features: Iterable[str]) -> CascadeSpec:
        return CascadeSpec(self.primary, tuple(features), activate=True)

    def deactivating(self, features: Iterable[str]) -> CascadeSpec:
        return CascadeSpec(self.primary, tuple(features), activate=False)

    def steps(self) -> list[tuple[str, str]]:
        return CascadeSpec(self.primary).steps()


def cascade(primary: str) -> CascadeBuilder:
    """Start a cascade declaration."""
    return CascadeBuilder(primary)
