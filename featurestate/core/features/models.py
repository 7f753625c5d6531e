"""
Feature State Models - SQLAlchemy models for the database backend.

Tables:
- feature_values: Per-context stored values
- feature_scoped_values: Values bound to a scope (constraint set + kind)
- feature_snapshots: Point-in-time copies of a context's values
"""

from datetime import datetime
from typing import Any
from sqlalchemy import JSON, DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from featurestate.models.base import Base, TimestampMixin


class FeatureValueModel(Base, TimestampMixin):
    """
    Stored value of one feature for one context.

    Unique per (feature, context_kind, context_id).
    """

    __tablename__ = "feature_values"
    __table_args__ = (
        UniqueConstraint("feature", "context_kind", "context_id", name="uq_feature_values_key"),
        Index("idx_feature_values_context", "context_kind", "context_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feature: Mapped[str] = mapped_column(String(255), nullable=False)
    context_kind: Mapped[str] = mapped_column(String(100), nullable=False)
    context_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Any JSON-serializable value; only truthiness means "active"
    value: Mapped[Any] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<FeatureValue {self.feature} for {self.context_kind}|{self.context_id}>"


class ScopedFeatureValueModel(Base, TimestampMixin):
    """
    Value of a feature for every context matching a scope.

    The autoincrement id doubles as the write sequence: rewriting a scope
    replaces the row, so the most recent write always has the highest id.
    """

    __tablename__ = "feature_scoped_values"
    __table_args__ = (
        UniqueConstraint("feature", "scope_key", name="uq_feature_scoped_values_key"),
        Index("idx_feature_scoped_values_feature", "feature"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feature: Mapped[str] = mapped_column(String(255), nullable=False)
    scope_kind: Mapped[str] = mapped_column(String(100), nullable=False)
    scope_key: Mapped[str] = mapped_column(String(1000), nullable=False)

    # Example: {"company_id": 10, "org_id": null}
    constraints: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    value: Mapped[Any] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return f"<ScopedFeatureValue {self.feature} [{self.scope_key}]>"


class FeatureSnapshotModel(Base):
    """Snapshot of a context's feature values."""

    __tablename__ = "feature_snapshots"
    __table_args__ = (
        Index("idx_feature_snapshots_context", "context_kind", "context_id"),
        Index("idx_feature_snapshots_created", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    context_kind: Mapped[str] = mapped_column(String(100), nullable=False)
    context_id: Mapped[str] = mapped_column(String(255), nullable=False)
    features: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    restored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<FeatureSnapshot {self.id} '{self.label}'>"
