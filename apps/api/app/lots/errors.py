from __future__ import annotations

from typing import Any


class LotsError(Exception):
    """Base error for lot allocation failures surfaced to callers."""

    code = "lots_error"

    def details(self) -> dict[str, Any] | None:
        return None


class NotFoundError(LotsError):
    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = str(entity_id)
        self.code = f"{entity}_not_found"
        super().__init__(f"{entity} not found")

    def details(self) -> dict[str, Any]:
        return {"entity": self.entity, "id": self.entity_id}


class CapacityExceededError(LotsError):
    code = "lot_capacity_exceeded"

    def __init__(self, lot_name: str, capacity: int, attempted_occupancy: int) -> None:
        self.lot_name = lot_name
        self.capacity = capacity
        self.attempted_occupancy = attempted_occupancy
        super().__init__(f"Lot {lot_name} is at full capacity ({capacity})")

    def details(self) -> dict[str, Any]:
        return {
            "lot_name": self.lot_name,
            "capacity": self.capacity,
            "attempted_occupancy": self.attempted_occupancy,
        }


class InfrastructureError(LotsError):
    """Storage or transaction failure; nothing was committed, so the call is safe to retry."""

    code = "storage_unavailable"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message)


class NotificationFailure(Exception):
    """Raised by a notification sink; callers log it and never surface it."""

    def __init__(self, backend: str, message: str) -> None:
        self.backend = backend
        super().__init__(message)
