"""
Context resolution.

Every engine call works on a ContextIdentity: a ``(kind, id)`` pair that is
the only key used for hashing and storage. Callers get one of three ways:

    # 1. Build it directly
    ctx = ContextIdentity("user", 42)

    # 2. Implement FeatureContextable on your own type
    class Team:
        def to_feature_context(self) -> ContextIdentity:
            return ContextIdentity("team", self.slug)

    # 3. Register a class with an alias and key attribute
    registry = ContextRegistry()
    registry.register(User, "user", key="uuid")
    ctx = resolve_context(user, registry)
"""

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .errors import UnsupportedContextType


@dataclass(frozen=True, slots=True)
class ContextIdentity:
    """
    Normalized resolution context.

    Attributes:
        kind: Stable type alias (e.g. "user", "team"), never a class path
        id: Stable identifier, always stored as a string
    """
    kind: str
    id: str

    def __init__(self, kind: str, id: Any):
        if not isinstance(kind, str) or not kind:
            raise UnsupportedContextType(kind, "kind must be a non-empty string")
        if id is None or isinstance(id, bool):
            raise UnsupportedContextType(id, "id must be a string or integer")
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "id", str(id))

    def storage_key(self) -> str:
        """Key used for per-context storage (e.g. 'user|42')."""
        return f"{self.kind}|{self.id}"

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"

    @classmethod
    def parse(cls, value: str) -> "ContextIdentity":
        """Parse 'kind:id' (the inverse of str())."""
        kind, sep, id_ = value.partition(":")
        if not sep or not id_:
            raise UnsupportedContextType(value, "expected 'kind:id'")
        return cls(kind, id_)


@runtime_checkable
class FeatureContextable(Protocol):
    """Implemented by caller types that know their own feature context."""

    def to_feature_context(self) -> ContextIdentity:
        ...


@dataclass(frozen=True)
class _Registration:
    kind: str
    key: str


class ContextRegistry:
    """
    Maps caller classes to a kind alias and identifier attribute.

    Lookup is by exact class first, then by the class's MRO, so a
    registration for a base class covers its subclasses.
    """

    def __init__(self):
        self._registrations: dict[type, _Registration] = {}

    def register(self, cls: type, kind: str, key: str = "id") -> None:
        """Register ``cls`` under ``kind``, reading its id from ``key``."""
        self._registrations[cls] = _Registration(kind=kind, key=key)

    def unregister(self, cls: type) -> bool:
        return self._registrations.pop(cls, None) is not None

    def lookup(self, cls: type) -> _Registration | None:
        for klass in cls.__mro__:
            registration = self._registrations.get(klass)
            if registration is not None:
                return registration
        return None

    def kinds(self) -> dict[str, type]:
        return {r.kind: cls for cls, r in self._registrations.items()}


def resolve_context(context: Any, registry: ContextRegistry | None = None) -> ContextIdentity:
    """
    Resolve a caller-supplied context into a ContextIdentity.

    Raises:
        UnsupportedContextType: The object is not a ContextIdentity, does not
            implement FeatureContextable, and its class is not registered.
    """
    if isinstance(context, ContextIdentity):
        return context

    if isinstance(context, FeatureContextable):
        identity = context.to_feature_context()
        if not isinstance(identity, ContextIdentity):
            raise UnsupportedContextType(
                context, "to_feature_context() must return a ContextIdentity"
            )
        return identity

    if registry is not None:
        registration = registry.lookup(type(context))
        if registration is not None:
            key = getattr(context, registration.key, None)
            if key is None:
                raise UnsupportedContextType(
                    context, f"attribute '{registration.key}' is missing or None"
                )
            return ContextIdentity(registration.kind, key)

    raise UnsupportedContextType(context)
