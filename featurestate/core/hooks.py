"""
Hook manager for feature mutation events.
"""
from __future__ import annotations

from typing import Callable, Any, Awaitable, TypeVar, ParamSpec
from dataclasses import dataclass, field
from enum import IntEnum
from collections import defaultdict
import logging

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


FEATURE_ACTIVATED = "feature.activated"
FEATURE_DEACTIVATED = "feature.deactivated"


class HookPriority(IntEnum):
    """Hook execution priority (lower runs first)."""
    FIRST = 0
    EARLY = 25
    NORMAL = 50
    LATE = 75
    LAST = 100


@dataclass
class Hook:
    """Registered hook information."""
    name: str
    handler: Callable[..., Awaitable[Any]]
    priority: HookPriority = HookPriority.NORMAL
    once: bool = False  # Run only once then unregister
    source: str = ""


@dataclass
class HookResult:
    """Result from running hooks."""
    hook_name: str
    results: list[Any] = field(default_factory=list)
    errors: list[tuple[str, Exception]] = field(default_factory=list)
    stopped: bool = False


class HookManager:
    """
    Dispatches mutation events to registered handlers.

    Events triggered by FeatureService:
    - feature.activated: a feature was written with a truthy value
    - feature.deactivated: a feature was written with a falsy value

    Handlers receive keyword arguments ``feature``, ``context`` and ``value``.

    Example usage:
    ```python
    hooks = HookManager()

    @hooks.on(FEATURE_ACTIVATED)
    async def audit(feature, context, value):
        ...

    await hooks.trigger(FEATURE_ACTIVATED, feature="beta", context=ctx, value=True)
    ```

    A handler that raises does not abort the write that triggered it; the
    error is logged and collected in ``HookResult.errors``.
    """

    def __init__(self):
        self._hooks: dict[str, list[Hook]] = defaultdict(list)

    def register(
        self,
        name: str,
        handler: Callable[..., Awaitable[Any]],
        *,
        priority: HookPriority = HookPriority.NORMAL,
        once: bool = False,
        source: str = "",
    ) -> Hook:
        """Register a hook handler."""
        hook = Hook(
            name=name,
            handler=handler,
            priority=priority,
            once=once,
            source=source,
        )

        self._hooks[name].append(hook)
        self._hooks[name].sort(key=lambda h: h.priority)

        logger.debug(f"Registered hook: {name} (priority={priority})")
        return hook

    def unregister(self, name: str, handler: Callable) -> bool:
        """Unregister a hook handler."""
        hooks = self._hooks.get(name, [])
        for i, hook in enumerate(hooks):
            if hook.handler is handler:
                del hooks[i]
                return True
        return False

    def on(
        self,
        name: str,
        *,
        priority: HookPriority = HookPriority.NORMAL,
        once: bool = False,
    ) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
        """Decorator to register a hook handler."""
        def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
            self.register(name, func, priority=priority, once=once)
            return func
        return decorator

    async def trigger(
        self,
        name: str,
        *args,
        stop_on_error: bool = False,
        **kwargs,
    ) -> HookResult:
        """
        Trigger all handlers for a hook, in priority order.

        Args:
            name: Hook name to trigger
            stop_on_error: Stop execution if a handler raises
            *args, **kwargs: Passed to handlers
        """
        result = HookResult(hook_name=name)
        hooks_to_remove = []

        for hook in list(self._hooks.get(name, [])):
            try:
                result.results.append(await hook.handler(*args, **kwargs))
            except Exception as e:
                result.errors.append((hook.source or str(hook.handler), e))
                logger.error(f"Hook {name} handler error: {e}")

                if stop_on_error:
                    result.stopped = True
                    break
            finally:
                if hook.once:
                    hooks_to_remove.append(hook)

        for hook in hooks_to_remove:
            if hook in self._hooks[name]:
                self._hooks[name].remove(hook)

        return result

    def has_hooks(self, name: str) -> bool:
        """Check if any hooks are registered for name."""
        return bool(self._hooks.get(name))

    def clear(self, name: str | None = None) -> None:
        """Clear hooks. If name given, clear only that hook."""
        if name:
            self._hooks.pop(name, None)
        else:
            self._hooks.clear()
