from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.context import get_correlation_id, set_workspace_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.config import get_settings
from app.core.database import get_db
from app.lots.errors import CapacityExceededError, InfrastructureError, LotsError, NotFoundError
from app.lots.schemas import (
    AssignOperatorRequest,
    LotDetailRead,
    LotRead,
    LotSummaryRead,
    ReassignTreeRequest,
    ReconcileResponse,
    TreeRead,
)
from app.lots.service import LotActor, assignment_service


lots_router = APIRouter(prefix="/api/lots", tags=["lots"])
trees_router = APIRouter(prefix="/api/trees", tags=["lots.trees"])


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def lots_error_response(request: Request, exc: LotsError) -> JSONResponse:
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, CapacityExceededError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, InfrastructureError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return error_response(request, status_code=status_code, code=exc.code, message=str(exc), details=exc.details())


async def get_lot_actor(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> LotActor:
    context = getattr(request.state, "context", None)
    correlation_id = get_correlation_id() or getattr(context, "request_id", None)

    workspace_id = request.headers.get("x-workspace-id")
    if not workspace_id and auth_user.workspace_id:
        workspace_id = auth_user.workspace_id
        set_workspace_id(workspace_id)
        if context is not None:
            context.workspace_id = workspace_id
    if not workspace_id:
        workspace_id = get_settings().default_workspace_id

    return LotActor(user_id=auth_user.sub, workspace_id=workspace_id, correlation_id=correlation_id)


@lots_router.get("", response_model=list[LotSummaryRead])
def list_lots(
    request: Request,
    db: Session = Depends(get_db),
    actor: LotActor = Depends(get_lot_actor),
) -> list[LotSummaryRead] | JSONResponse:
    try:
        return assignment_service.list_lots(db, actor)
    except LotsError as exc:
        return lots_error_response(request, exc)


@lots_router.post("/reconcile", response_model=ReconcileResponse)
def reconcile_lots(
    request: Request,
    db: Session = Depends(get_db),
    actor: LotActor = Depends(get_lot_actor),
) -> ReconcileResponse | JSONResponse:
    try:
        return assignment_service.reconcile_planted_counts(db, actor)
    except LotsError as exc:
        return lots_error_response(request, exc)


@lots_router.get("/{lot_id}", response_model=LotDetailRead)
def get_lot(
    request: Request,
    lot_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: LotActor = Depends(get_lot_actor),
) -> LotDetailRead | JSONResponse:
    try:
        return assignment_service.get_lot(db, actor, lot_id)
    except LotsError as exc:
        return lots_error_response(request, exc)


@lots_router.put("/{lot_id}/operator", response_model=LotRead)
def assign_operator(
    request: Request,
    lot_id: uuid.UUID,
    payload: AssignOperatorRequest,
    db: Session = Depends(get_db),
    actor: LotActor = Depends(get_lot_actor),
) -> LotRead | JSONResponse:
    try:
        return assignment_service.assign_operator(db, actor, lot_id, payload.operator_id)
    except LotsError as exc:
        return lots_error_response(request, exc)


@trees_router.put("/{tree_id}/lot", response_model=TreeRead)
def reassign_tree(
    request: Request,
    tree_id: uuid.UUID,
    payload: ReassignTreeRequest,
    db: Session = Depends(get_db),
    actor: LotActor = Depends(get_lot_actor),
) -> TreeRead | JSONResponse:
    try:
        return assignment_service.reassign_tree(db, actor, tree_id, payload.lot_id)
    except LotsError as exc:
        return lots_error_response(request, exc)
