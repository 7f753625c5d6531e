"""
Deterministic assignment - bucketing for rollouts and variant splits.

Every (feature, context, seed) maps to a fixed bucket in [0, BUCKET_SPACE).
Rollouts compare the bucket against a percentage threshold; variants walk
a cumulative weight table over the same space. Because the bucket never
changes for a context, raising a rollout percentage only adds contexts.
"""

import hashlib
import random

from .context import ContextIdentity
from .interfaces import RolloutSpec, VariantSpec

BUCKET_SPACE = 10_000


def _encode(*parts: str | None) -> bytes:
    # Length-prefixed so "a:b" + "c" never collides with "a" + "b:c"
    encoded = []
    for part in parts:
        if part is None:
            encoded.append("-")
        else:
            encoded.append(f"{len(part)}:{part}")
    return "|".join(encoded).encode("utf-8")


class AssignmentEngine:
    """
    Hashing primitives for percentage rollout and weighted variants.

    Pure: no store access, no clock, no shared state. The only
    non-deterministic path is a non-sticky rollout, which draws from
    ``rng`` on every call.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def bucket(self, feature: str, ctx: ContextIdentity, seed: str | None = None) -> int:
        """
        Stable bucket for a context.

        Returns an integer in [0, BUCKET_SPACE).
        """
        digest = hashlib.md5(_encode(feature, ctx.kind, ctx.id, seed)).digest()
        return int.from_bytes(digest[:8], "big") % BUCKET_SPACE

    def rollout(self, spec: RolloutSpec, ctx: ContextIdentity) -> bool:
        """Is this context inside the rollout?"""
        if spec.percentage <= 0:
            return False
        if spec.percentage >= 100:
            return True

        threshold = spec.percentage * BUCKET_SPACE // 100

        if not spec.sticky:
            return self._rng.randrange(BUCKET_SPACE) < threshold

        return self.bucket(spec.feature, ctx, spec.seed) < threshold

    def variant(self, spec: VariantSpec, ctx: ContextIdentity) -> str:
        """
        Pick a variant by walking the weights in definition order.

        Each variant owns ``weight * BUCKET_SPACE / 100`` consecutive
        buckets; zero-weight variants own none and are never returned.
        """
        point = self.bucket(spec.feature, ctx)
        cumulative = 0

        for name, weight in spec.weights.items():
            cumulative += weight * BUCKET_SPACE // 100
            if point < cumulative:
                return name

        # Unreachable for validated specs (weights sum to 100)
        return next(name for name, weight in reversed(spec.weights.items()) if weight > 0)
