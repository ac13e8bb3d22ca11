from __future__ import annotations

import uuid
from collections.abc import Callable, Iterable
from typing import Protocol, TypeVar

from sqlalchemy import Select, case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.lots.errors import InfrastructureError
from app.lots.models import Tree, TreeLot, WorkspaceMember, utcnow


T = TypeVar("T")


class AllocationStore(Protocol):
    """Transactional row access the assignment service is written against.

    Reads issued inside ``with_transaction`` observe that transaction's own
    writes. Counter writes bump the lot's ``row_version``; passing
    ``expected_version`` turns them into compare-and-set operations that
    report ``False`` when another transaction got there first.
    Tree moves are always compare-and-set against the lot the caller read.
    """

    workspace_id: str

    def with_transaction(self, fn: Callable[[AllocationStore], T]) -> T: ...

    def find_lot_by_id(self, lot_id: uuid.UUID, *, for_update: bool = False) -> TreeLot | None: ...

    def find_tree_by_id(self, tree_id: uuid.UUID, *, for_update: bool = False) -> Tree | None: ...

    def count_trees_in_lot(self, lot_id: uuid.UUID) -> int: ...

    def count_trees_by_lot(self) -> dict[uuid.UUID, int]: ...

    def list_lots(self, *, for_update: bool = False) -> list[TreeLot]: ...

    def list_trees_in_lot(self, lot_id: uuid.UUID) -> list[Tree]: ...

    def find_operators(self, operator_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, WorkspaceMember]: ...

    def update_tree_lot(self, tree_id: uuid.UUID, lot_id: uuid.UUID, *, expected_lot_id: uuid.UUID | None) -> bool: ...

    def update_lot_operator(self, lot_id: uuid.UUID, operator_id: uuid.UUID) -> None: ...

    def increment_planted_count(
        self,
        lot_id: uuid.UUID,
        delta: int,
        *,
        expected_version: int | None = None,
    ) -> bool: ...

    def set_planted_count(
        self,
        lot_id: uuid.UUID,
        value: int,
        *,
        expected_version: int | None = None,
    ) -> bool: ...


class SqlAlchemyAllocationStore:
    def __init__(self, session: Session, workspace_id: str) -> None:
        self.session = session
        self.workspace_id = workspace_id

    def with_transaction(self, fn: Callable[[AllocationStore], T]) -> T:
        try:
            result = fn(self)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise InfrastructureError(f"lot storage failure: {exc.__class__.__name__}") from exc
        except Exception:
            self.session.rollback()
            raise
        return result

    def find_lot_by_id(self, lot_id: uuid.UUID, *, for_update: bool = False) -> TreeLot | None:
        stmt = self._lot_query().where(TreeLot.id == lot_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalar(stmt.execution_options(populate_existing=True))

    def find_tree_by_id(self, tree_id: uuid.UUID, *, for_update: bool = False) -> Tree | None:
        stmt = select(Tree).where(Tree.id == tree_id, Tree.workspace_id == self.workspace_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalar(stmt.execution_options(populate_existing=True))

    def count_trees_in_lot(self, lot_id: uuid.UUID) -> int:
        stmt = select(func.count()).select_from(Tree).where(Tree.tree_lot_id == lot_id)
        return int(self.session.scalar(stmt) or 0)

    def count_trees_by_lot(self) -> dict[uuid.UUID, int]:
        stmt = (
            select(Tree.tree_lot_id, func.count())
            .where(Tree.workspace_id == self.workspace_id, Tree.tree_lot_id.is_not(None))
            .group_by(Tree.tree_lot_id)
        )
        return {lot_id: int(count) for lot_id, count in self.session.execute(stmt).all()}

    def list_lots(self, *, for_update: bool = False) -> list[TreeLot]:
        stmt = self._lot_query().order_by(TreeLot.id.asc())
        if for_update:
            stmt = stmt.with_for_update()
        return list(self.session.scalars(stmt.execution_options(populate_existing=True)).all())

    def list_trees_in_lot(self, lot_id: uuid.UUID) -> list[Tree]:
        stmt = (
            select(Tree)
            .where(Tree.tree_lot_id == lot_id, Tree.workspace_id == self.workspace_id)
            .order_by(Tree.tree_code.asc())
        )
        return list(self.session.scalars(stmt).all())

    def find_operators(self, operator_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, WorkspaceMember]:
        wanted = {item for item in operator_ids if item is not None}
        if not wanted:
            return {}
        stmt = select(WorkspaceMember).where(
            WorkspaceMember.id.in_(wanted),
            WorkspaceMember.workspace_id == self.workspace_id,
        )
        return {member.id: member for member in self.session.scalars(stmt).all()}

    def update_tree_lot(self, tree_id: uuid.UUID, lot_id: uuid.UUID, *, expected_lot_id: uuid.UUID | None) -> bool:
        result = self.session.execute(
            update(Tree)
            .where(
                Tree.id == tree_id,
                Tree.workspace_id == self.workspace_id,
                Tree.tree_lot_id.is_not_distinct_from(expected_lot_id),
            )
            .values(tree_lot_id=lot_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def update_lot_operator(self, lot_id: uuid.UUID, operator_id: uuid.UUID) -> None:
        self.session.execute(
            update(TreeLot)
            .where(TreeLot.id == lot_id, TreeLot.workspace_id == self.workspace_id)
            .values(assigned_operator_id=operator_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    def increment_planted_count(
        self,
        lot_id: uuid.UUID,
        delta: int,
        *,
        expected_version: int | None = None,
    ) -> bool:
        next_value = TreeLot.planted_count + delta
        if delta < 0:
            next_value = case((TreeLot.planted_count + delta < 0, 0), else_=TreeLot.planted_count + delta)
        return self._write_planted_count(lot_id, next_value, expected_version)

    def set_planted_count(
        self,
        lot_id: uuid.UUID,
        value: int,
        *,
        expected_version: int | None = None,
    ) -> bool:
        if value < 0:
            raise ValueError("planted_count cannot be negative")
        return self._write_planted_count(lot_id, value, expected_version)

    def _write_planted_count(self, lot_id: uuid.UUID, value, expected_version: int | None) -> bool:  # type: ignore[no-untyped-def]
        stmt = update(TreeLot).where(TreeLot.id == lot_id, TreeLot.workspace_id == self.workspace_id)
        if expected_version is not None:
            stmt = stmt.where(TreeLot.row_version == expected_version)
        result = self.session.execute(
            stmt.values(
                planted_count=value,
                row_version=TreeLot.row_version + 1,
                updated_at=utcnow(),
            ).execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _lot_query(self) -> Select[tuple[TreeLot]]:
        return select(TreeLot).where(TreeLot.workspace_id == self.workspace_id)
