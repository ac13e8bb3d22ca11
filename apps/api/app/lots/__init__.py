from app.lots.api import lots_router, trees_router
from app.lots.errors import CapacityExceededError, InfrastructureError, LotsError, NotFoundError, NotificationFailure
from app.lots.models import Tree, TreeLot, WorkspaceMember
from app.lots.schemas import (
    AssignOperatorRequest,
    LotDetailRead,
    LotNotificationSummary,
    LotRead,
    LotSummaryRead,
    ReassignTreeRequest,
    ReconcileResponse,
    TreeRead,
)
from app.lots.service import AssignmentService, LotActor, assignment_service

__all__ = [
    "lots_router",
    "trees_router",
    "TreeLot",
    "Tree",
    "WorkspaceMember",
    "LotsError",
    "NotFoundError",
    "CapacityExceededError",
    "InfrastructureError",
    "NotificationFailure",
    "AssignOperatorRequest",
    "ReassignTreeRequest",
    "LotRead",
    "LotSummaryRead",
    "LotDetailRead",
    "LotNotificationSummary",
    "ReconcileResponse",
    "TreeRead",
    "AssignmentService",
    "LotActor",
    "assignment_service",
]
