from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from app import audit
from app.core.config import get_settings
from app.lots import ledger
from app.lots.errors import CapacityExceededError, InfrastructureError, NotFoundError
from app.lots.models import Tree, TreeLot, WorkspaceMember
from app.lots.notifications import NotificationSink, resolve_notification_sink
from app.lots.schemas import (
    LotDetailRead,
    LotNotificationSummary,
    LotRead,
    LotSummaryRead,
    LotTreeRead,
    OperatorRead,
    PlantedCountCorrection,
    ReconcileResponse,
    TreeRead,
)
from app.lots.store import AllocationStore, SqlAlchemyAllocationStore
from app.metrics import (
    observe_lot_claim_conflict,
    observe_notification_failure,
    observe_operator_assignment,
    observe_planted_count_drift,
    observe_tree_reassignment,
)
from app.otel import annotate_span, get_tracer


logger = logging.getLogger("app.lots")
tracer = get_tracer("app.lots")


@dataclass(slots=True)
class LotActor:
    user_id: str
    workspace_id: str
    correlation_id: str | None = None


@dataclass(slots=True)
class _TreeMove:
    tree_id: uuid.UUID
    source_lot_id: uuid.UUID | None
    target_lot_id: uuid.UUID
    moved: bool
    occupancy: int
    tree: TreeRead


class _LotClaimConflict(Exception):
    """The target lot or the tree row changed between the read and the claim."""

    def __init__(self, lot_id: uuid.UUID) -> None:
        super().__init__(str(lot_id))
        self.lot_id = lot_id


StoreFactory = Callable[[Session, str], AllocationStore]


@dataclass
class AssignmentService:
    entity_type = "lots.tree_lot"

    notification_sink: NotificationSink | None = None
    store_factory: StoreFactory = SqlAlchemyAllocationStore
    max_claim_attempts: int | None = None

    def list_lots(self, session: Session, actor: LotActor) -> list[LotSummaryRead]:
        store = self._store(session, actor)
        with tracer.start_as_current_span("lots.list_lots") as span:
            annotate_span(span)

            def _read(tx: AllocationStore) -> list[LotSummaryRead]:
                lots = tx.list_lots()
                counts = tx.count_trees_by_lot()
                operators = tx.find_operators(lot.assigned_operator_id for lot in lots)
                return [
                    LotSummaryRead.model_validate(
                        {**self._lot_payload(lot, operators), "tree_count": counts.get(lot.id, 0)}
                    )
                    for lot in lots
                ]

            rows = store.with_transaction(_read)
            span.set_attribute("lot_count", len(rows))

        return sorted(rows, key=lambda row: (row.lot_name.encode("utf-8"), row.lot_code.encode("utf-8")))

    def get_lot(self, session: Session, actor: LotActor, lot_id: uuid.UUID) -> LotDetailRead:
        store = self._store(session, actor)

        def _read(tx: AllocationStore) -> LotDetailRead:
            lot = tx.find_lot_by_id(lot_id)
            if lot is None:
                raise NotFoundError("lot", lot_id)
            trees = tx.list_trees_in_lot(lot.id)
            operators = tx.find_operators([lot.assigned_operator_id] if lot.assigned_operator_id else [])
            return LotDetailRead.model_validate(
                {
                    **self._lot_payload(lot, operators),
                    "tree_count": len(trees),
                    "trees": [LotTreeRead.model_validate(tree) for tree in trees],
                }
            )

        return store.with_transaction(_read)

    def assign_operator(
        self,
        session: Session,
        actor: LotActor,
        lot_id: uuid.UUID,
        operator_id: uuid.UUID,
    ) -> LotRead:
        store = self._store(session, actor)
        with tracer.start_as_current_span("lots.assign_operator") as span:
            annotate_span(span, lot_id=lot_id, operator_id=operator_id)

            def _apply(tx: AllocationStore) -> uuid.UUID | None:
                lot = tx.find_lot_by_id(lot_id, for_update=True)
                if lot is None:
                    raise NotFoundError("lot", lot_id)
                previous_operator_id = lot.assigned_operator_id
                tx.update_lot_operator(lot.id, operator_id)
                return previous_operator_id

            previous_operator_id = store.with_transaction(_apply)

            def _reload(tx: AllocationStore) -> tuple[LotRead, LotNotificationSummary]:
                lot = tx.find_lot_by_id(lot_id)
                if lot is None:
                    raise NotFoundError("lot", lot_id)
                occupancy = tx.count_trees_in_lot(lot.id)
                read = LotRead.model_validate(self._lot_payload(lot, tx.find_operators([operator_id])))
                summary = LotNotificationSummary(
                    lot_id=lot.id,
                    lot_name=lot.lot_name,
                    lot_code=lot.lot_code,
                    capacity=lot.capacity,
                    occupancy=occupancy,
                )
                return read, summary

            updated, summary = store.with_transaction(_reload)

        observe_operator_assignment()
        audit.record(
            actor_user_id=actor.user_id,
            entity_type=self.entity_type,
            entity_id=str(lot_id),
            action="assign_operator",
            before={"assigned_operator_id": str(previous_operator_id) if previous_operator_id else None},
            after={"assigned_operator_id": str(operator_id)},
            correlation_id=actor.correlation_id,
            workspace_id=actor.workspace_id,
        )
        logger.info(
            "lot.operator_assigned",
            extra={"lot_id": str(lot_id), "lot_code": updated.lot_code, "operator_id": str(operator_id)},
        )

        self._notify_operator_assigned(operator_id, summary)
        return updated

    def reassign_tree(
        self,
        session: Session,
        actor: LotActor,
        tree_id: uuid.UUID,
        target_lot_id: uuid.UUID,
    ) -> TreeRead:
        store = self._store(session, actor)
        attempts = self._claim_attempts()

        with tracer.start_as_current_span("lots.reassign_tree") as span:
            annotate_span(span, tree_id=tree_id, target_lot_id=target_lot_id)
            move: _TreeMove | None = None
            for attempt in range(1, attempts + 1):
                try:
                    move = store.with_transaction(lambda tx: self._move_tree(tx, tree_id, target_lot_id))
                except _LotClaimConflict as conflict:
                    observe_lot_claim_conflict()
                    logger.info(
                        "lot.claim_conflict",
                        extra={"tree_id": str(tree_id), "lot_id": str(conflict.lot_id), "attempt": attempt},
                    )
                    continue
                except NotFoundError:
                    observe_tree_reassignment("not_found")
                    raise
                except CapacityExceededError as exc:
                    observe_tree_reassignment("capacity_exceeded")
                    logger.info(
                        "lot.capacity_exceeded",
                        extra={
                            "tree_id": str(tree_id),
                            "target_lot_id": str(target_lot_id),
                            "capacity": exc.capacity,
                            "occupancy": exc.attempted_occupancy - 1,
                        },
                    )
                    raise
                break

            if move is None:
                observe_tree_reassignment("contention")
                span.set_attribute("outcome", "contention")
                raise InfrastructureError(
                    f"lot {target_lot_id} is being modified concurrently; retry the request",
                    code="lot_contention",
                )

            span.set_attribute("outcome", "moved" if move.moved else "unchanged")

        observe_tree_reassignment("moved" if move.moved else "unchanged")
        if move.moved:
            audit.record(
                actor_user_id=actor.user_id,
                entity_type="lots.tree",
                entity_id=str(tree_id),
                action="reassign_lot",
                before={"tree_lot_id": str(move.source_lot_id) if move.source_lot_id else None},
                after={"tree_lot_id": str(move.target_lot_id)},
                correlation_id=actor.correlation_id,
                workspace_id=actor.workspace_id,
            )
            logger.info(
                "lot.tree_reassigned",
                extra={
                    "tree_id": str(tree_id),
                    "source_lot_id": str(move.source_lot_id) if move.source_lot_id else None,
                    "target_lot_id": str(move.target_lot_id),
                    "occupancy": move.occupancy,
                },
            )

        return move.tree

    def reconcile_planted_counts(self, session: Session, actor: LotActor) -> ReconcileResponse:
        store = self._store(session, actor)

        def _apply(tx: AllocationStore) -> ReconcileResponse:
            lots = tx.list_lots(for_update=True)
            counts = tx.count_trees_by_lot()
            corrections: list[PlantedCountCorrection] = []
            for lot in lots:
                value, drifted = ledger.reconciled_count(lot.planted_count, counts.get(lot.id, 0))
                if not drifted:
                    continue
                tx.set_planted_count(lot.id, value)
                corrections.append(
                    PlantedCountCorrection(
                        lot_id=lot.id,
                        lot_code=lot.lot_code,
                        previous=lot.planted_count,
                        current=value,
                        over_capacity=value > lot.capacity,
                    )
                )
            return ReconcileResponse(checked=len(lots), corrections=corrections)

        with tracer.start_as_current_span("lots.reconcile_planted_counts") as span:
            annotate_span(span)
            result = store.with_transaction(_apply)
            span.set_attribute("corrections", len(result.corrections))

        observe_planted_count_drift("reconcile", len(result.corrections))
        for correction in result.corrections:
            logger.warning(
                "lot.planted_count_reconciled",
                extra={
                    "lot_id": str(correction.lot_id),
                    "lot_code": correction.lot_code,
                    "planted_count": correction.current,
                    "previous_planted_count": correction.previous,
                },
            )
        return result

    def _move_tree(self, tx: AllocationStore, tree_id: uuid.UUID, target_lot_id: uuid.UUID) -> _TreeMove:
        tree = tx.find_tree_by_id(tree_id, for_update=True)
        if tree is None:
            raise NotFoundError("tree", tree_id)
        source_lot_id = tree.tree_lot_id

        # Lock in a stable order so two opposite moves cannot deadlock.
        lock_ids = sorted({target_lot_id, source_lot_id} - {None}, key=str)
        locked = {lot_id: tx.find_lot_by_id(lot_id, for_update=True) for lot_id in lock_ids}
        target = locked.get(target_lot_id)
        if target is None:
            raise NotFoundError("lot", target_lot_id)

        occupancy = tx.count_trees_in_lot(target.id)
        if source_lot_id == target.id:
            return _TreeMove(
                tree.id, source_lot_id, target.id, moved=False, occupancy=occupancy, tree=self._tree_read(tx, tree.id)
            )

        ledger.check_capacity(target.lot_name, target.capacity, occupancy)

        _, drifted = ledger.reconciled_count(target.planted_count, occupancy)
        if drifted:
            observe_planted_count_drift("reassign")
            logger.warning(
                "lot.planted_count_drift",
                extra={"lot_id": str(target.id), "planted_count": target.planted_count, "occupancy": occupancy},
            )

        if not tx.set_planted_count(target.id, occupancy + 1, expected_version=target.row_version):
            raise _LotClaimConflict(target.id)

        if not tx.update_tree_lot(tree.id, target.id, expected_lot_id=source_lot_id):
            raise _LotClaimConflict(target.id)
        if source_lot_id is not None and locked.get(source_lot_id) is not None:
            tx.increment_planted_count(source_lot_id, -1)

        return _TreeMove(
            tree.id, source_lot_id, target.id, moved=True, occupancy=occupancy + 1, tree=self._tree_read(tx, tree.id)
        )

    def _tree_read(self, tx: AllocationStore, tree_id: uuid.UUID) -> TreeRead:
        tree = tx.find_tree_by_id(tree_id)
        if tree is None:
            raise NotFoundError("tree", tree_id)
        lot = tx.find_lot_by_id(tree.tree_lot_id) if tree.tree_lot_id else None
        operators = tx.find_operators([lot.assigned_operator_id] if lot and lot.assigned_operator_id else [])
        return self._to_tree_read(tree, lot, operators)

    def _notify_operator_assigned(self, operator_id: uuid.UUID, summary: LotNotificationSummary) -> None:
        sink = self.notification_sink
        try:
            if sink is None:
                sink = resolve_notification_sink()
            sink.notify_operator_assigned(operator_id, summary)
        except Exception as exc:
            backend = getattr(sink, "backend", None) or get_settings().notification_backend
            observe_notification_failure(backend)
            logger.exception(
                "lot.operator_notification_failed",
                extra={
                    "lot_id": str(summary.lot_id),
                    "operator_id": str(operator_id),
                    "backend": backend,
                    "error": str(exc)[:500],
                },
            )

    def _store(self, session: Session, actor: LotActor) -> AllocationStore:
        return self.store_factory(session, actor.workspace_id)

    def _claim_attempts(self) -> int:
        configured = self.max_claim_attempts or get_settings().lot_claim_max_attempts
        return max(1, configured)

    def _lot_payload(self, lot: TreeLot, operators: dict[uuid.UUID, WorkspaceMember]) -> dict[str, Any]:
        operator = operators.get(lot.assigned_operator_id) if lot.assigned_operator_id else None
        return {
            "id": lot.id,
            "workspace_id": lot.workspace_id,
            "lot_code": lot.lot_code,
            "lot_name": lot.lot_name,
            "capacity": lot.capacity,
            "planted_count": lot.planted_count,
            "location": lot.location,
            "gps_center": lot.gps_center,
            "assigned_operator_id": lot.assigned_operator_id,
            "assigned_operator": OperatorRead.model_validate(operator) if operator is not None else None,
            "row_version": lot.row_version,
            "created_at": lot.created_at,
            "updated_at": lot.updated_at,
        }

    def _to_tree_read(
        self,
        tree: Tree,
        lot: TreeLot | None,
        operators: dict[uuid.UUID, WorkspaceMember],
    ) -> TreeRead:
        return TreeRead.model_validate(
            {
                "id": tree.id,
                "workspace_id": tree.workspace_id,
                "tree_code": tree.tree_code,
                "status": tree.status,
                "tree_lot_id": tree.tree_lot_id,
                "tree_lot": LotRead.model_validate(self._lot_payload(lot, operators)) if lot is not None else None,
                "updated_at": tree.updated_at,
            }
        )


assignment_service = AssignmentService()
