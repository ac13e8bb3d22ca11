from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


TREE_STATUS_CHECK = "status IN ('PLANTED', 'GROWING', 'MATURE', 'HARVESTED')"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkspaceMember(Base):
    """Read-only projection of the workspace members that can operate a lot."""

    __tablename__ = "workspace_member"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[str] = mapped_column(String(128), nullable=False)
    first_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("ix_workspace_member_workspace", "workspace_id"),)


class TreeLot(Base):
    __tablename__ = "tree_lot"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[str] = mapped_column(String(128), nullable=False)
    lot_code: Mapped[str] = mapped_column(String(64), nullable=False)
    lot_name: Mapped[str] = mapped_column(String(255), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    planted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    gps_center: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # No FK: members live in the identity system and are only mirrored here.
    assigned_operator_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    trees: Mapped[list[Tree]] = relationship("Tree", back_populates="tree_lot")

    __table_args__ = (
        UniqueConstraint("workspace_id", "lot_code", name="uq_tree_lot_code"),
        CheckConstraint("capacity > 0", name="ck_tree_lot_capacity_positive"),
        CheckConstraint("planted_count >= 0", name="ck_tree_lot_planted_count_non_negative"),
        Index("ix_tree_lot_workspace", "workspace_id", "lot_name"),
    )


class Tree(Base):
    __tablename__ = "tree"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[str] = mapped_column(String(128), nullable=False)
    tree_code: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PLANTED", server_default="PLANTED")
    tree_lot_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tree_lot.id", ondelete="RESTRICT"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    tree_lot: Mapped[TreeLot | None] = relationship("TreeLot", back_populates="trees")

    __table_args__ = (
        UniqueConstraint("workspace_id", "tree_code", name="uq_tree_code"),
        CheckConstraint(TREE_STATUS_CHECK, name="ck_tree_status"),
        Index("ix_tree_lot_membership", "tree_lot_id"),
    )
