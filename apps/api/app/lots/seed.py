from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.lots.models import Tree, TreeLot, WorkspaceMember


class LotSeedHelper:
    """Provisions lots, trees and members for local environments and tests.

    Lot provisioning is owned by another system in production; the helper only
    writes rows that do not exist yet and keeps ``planted_count`` equal to the
    live tree count of every lot it touches.
    """

    def ensure_lot(
        self,
        session: Session,
        *,
        workspace_id: str,
        lot_code: str,
        lot_name: str,
        capacity: int,
        location: str | None = None,
        gps_center: str | None = None,
    ) -> TreeLot:
        lot = session.scalar(
            select(TreeLot).where(TreeLot.workspace_id == workspace_id, TreeLot.lot_code == lot_code)
        )
        if lot is None:
            lot = TreeLot(
                workspace_id=workspace_id,
                lot_code=lot_code,
                lot_name=lot_name,
                capacity=capacity,
                planted_count=0,
                location=location,
                gps_center=gps_center,
            )
            session.add(lot)
            session.flush()
        return lot

    def ensure_member(
        self,
        session: Session,
        *,
        workspace_id: str,
        first_name: str,
        last_name: str,
        email: str | None = None,
        member_id: uuid.UUID | None = None,
    ) -> WorkspaceMember:
        if member_id is not None:
            existing = session.get(WorkspaceMember, member_id)
            if existing is not None:
                return existing
        member = WorkspaceMember(
            id=member_id or uuid.uuid4(),
            workspace_id=workspace_id,
            first_name=first_name,
            last_name=last_name,
            email=email,
        )
        session.add(member)
        session.flush()
        return member

    def plant_trees(
        self,
        session: Session,
        lot: TreeLot | None,
        *,
        workspace_id: str,
        count: int,
        code_prefix: str = "T",
    ) -> list[Tree]:
        existing = session.scalar(select(func.count()).select_from(Tree).where(Tree.workspace_id == workspace_id)) or 0
        trees = [
            Tree(
                workspace_id=workspace_id,
                tree_code=f"{code_prefix}-{existing + index + 1:05d}",
                tree_lot_id=lot.id if lot is not None else None,
            )
            for index in range(count)
        ]
        session.add_all(trees)
        session.flush()
        if lot is not None:
            lot.planted_count = int(
                session.scalar(select(func.count()).select_from(Tree).where(Tree.tree_lot_id == lot.id)) or 0
            )
            session.flush()
        return trees


lot_seed_helper = LotSeedHelper()
