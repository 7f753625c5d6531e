"""
Transactional mutation batches.

Usage:
    tx = (
        service.transaction()
        .activate(["feature-a", "feature-b"])
        .deactivate("old-feature")
        .on_failure(notify_oncall)
    )
    await tx.commit(user)      # all-or-nothing
    await tx.rollback(user)    # undo, relative to the latest commit
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable

import structlog

if TYPE_CHECKING:
    from .service import FeatureService

logger = structlog.get_logger()

ACTIVATE = "activate"
DEACTIVATE = "deactivate"

FailureHandler = Callable[[Exception, Any], Any]


class TransactionState(str, Enum):
    BUILT = "built"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    DISCARDED = "discarded"


@dataclass(frozen=True)
class Operation:
    """One queued mutation over one or more features."""
    type: str
    features: tuple[str, ...]
    value: Any = True


def _as_tuple(features: str | Iterable[str]) -> tuple[str, ...]:
    if isinstance(features, str):
        return (features,)
    return tuple(features)


class MutationTransaction:
    """
    Ordered batch of activate/deactivate operations.

    Building is side-effect free: ``activate``/``deactivate``/``on_failure``
    return a new transaction and leave this one untouched. Only ``commit``
    and ``rollback`` touch the store.

    On commit the current value of every referenced feature is captured
    first. If any write fails, every feature touched so far is put back to
    that captured value, the failure handler runs, and the original error
    is re-raised.
    """

    def __init__(
        self,
        service: FeatureService,
        operations: tuple[Operation, ...] = (),
        failure_handler: FailureHandler | None = None,
    ):
        self._service = service
        self._operations = operations
        self._failure_handler = failure_handler
        self._initial_state: dict[str, Any] | None = None
        self._absent: set[str] = set()
        self.state = TransactionState.BUILT

    # ============================================================
    # BUILDING
    # ============================================================

    def _with(self, operation: Operation | None = None, handler: FailureHandler | None = None) -> MutationTransaction:
        operations = self._operations + ((operation,) if operation else ())
        return MutationTransaction(
            self._service,
            operations,
            handler if handler is not None else self._failure_handler,
        )

    def activate(self, features: str | Iterable[str], value: Any = True) -> MutationTransaction:
        """Queue activation of one or more features."""
        return self._with(Operation(ACTIVATE, _as_tuple(features), value))

    def deactivate(self, features: str | Iterable[str]) -> MutationTransaction:
        """Queue deactivation of one or more features."""
        return self._with(Operation(DEACTIVATE, _as_tuple(features), False))

    def then(self, operation: Operation) -> MutationTransaction:
        """Queue a prebuilt operation."""
        return self._with(operation)

    def on_failure(self, handler: FailureHandler) -> MutationTransaction:
        """Register ``handler(error, context)``, run before a failed commit re-raises."""
        return self._with(handler=handler)

    @property
    def operations(self) -> tuple[Operation, ...]:
        return self._operations

    @property
    def failure_handler(self) -> FailureHandler | None:
        return self._failure_handler

    @property
    def initial_state(self) -> dict[str, Any] | None:
        """Baseline captured by the latest commit. Absent features show as False."""
        if self._initial_state is None:
            return None
        return dict(self._initial_state)

    def features(self) -> list[str]:
        """Every feature referenced by any operation, first-seen order."""
        seen: dict[str, None] = {}
        for operation in self._operations:
            for feature in operation.features:
                seen.setdefault(feature, None)
        return list(seen)

    # ============================================================
    # EXECUTION
    # ============================================================

    async def _capture(self, ctx) -> None:
        store = self._service.store
        initial: dict[str, Any] = {}
        absent: set[str] = set()

        for feature in self.features():
            value = await store.get(feature, ctx.kind, ctx.id)
            if value is None:
                absent.add(feature)
                value = False
            initial[feature] = value

        self._initial_state = initial
        self._absent = absent

    async def _restore(self, features: Iterable[str], ctx) -> None:
        for feature in features:
            if feature in self._absent:
                await self._service.forget(feature, ctx)
            else:
                await self._service.write(
                    feature, ctx, self._initial_state[feature], gated=False
                )

    async def commit(self, context: Any) -> MutationTransaction:
        """
        Apply all operations in order for ``context``.

        Re-committing re-captures the baseline, so a later rollback
        restores the state from just before the latest commit.

        Raises:
            Exception: Whatever the failing write raised, after rollback
        """
        ctx = self._service.resolve(context)
        await self._capture(ctx)

        touched: list[str] = []
        try:
            for operation in self._operations:
                if operation.type == ACTIVATE:
                    for feature in operation.features:
                        touched.append(feature)
                        await self._service.write(feature, ctx, operation.value)
                elif operation.type == DEACTIVATE:
                    for feature in operation.features:
                        touched.append(feature)
                        await self._service.write(feature, ctx, False)
                else:
                    logger.debug(
                        "transaction.operation_skipped",
                        operation=operation.type,
                        features=list(operation.features),
                    )
        except Exception as error:
            logger.warning(
                "transaction.failed",
                error=str(error),
                kind=ctx.kind,
                id=ctx.id,
                touched=list(dict.fromkeys(touched)),
            )
            await self._compensate(dict.fromkeys(reversed(touched)), ctx)
            self.state = TransactionState.ROLLED_BACK

            if self._failure_handler is not None:
                outcome = self._failure_handler(error, context)
                if inspect.isawaitable(outcome):
                    await outcome
            raise

        self.state = TransactionState.COMMITTED
        logger.info(
            "transaction.committed",
            kind=ctx.kind,
            id=ctx.id,
            operations=len(self._operations),
        )
        return self

    async def _compensate(self, features: Iterable[str], ctx) -> None:
        """Best-effort revert; keeps going past individual failures."""
        for feature in features:
            try:
                await self._restore([feature], ctx)
            except Exception:
                logger.exception(
                    "transaction.compensation_failed",
                    feature=feature,
                    kind=ctx.kind,
                    id=ctx.id,
                )

    async def rollback(self, context: Any) -> None:
        """Restore the baseline captured by the latest commit. No-op before any commit."""
        if self._initial_state is None:
            return

        ctx = self._service.resolve(context)
        await self._restore(list(self._initial_state), ctx)
        self.state = TransactionState.ROLLED_BACK
        logger.info("transaction.rolled_back", kind=ctx.kind, id=ctx.id)

    def discard(self) -> None:
        """Drop the captured baseline; later rollbacks become no-ops."""
        self._initial_state = None
        self._absent = set()
        self.state = TransactionState.DISCARDED
