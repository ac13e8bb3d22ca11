from __future__ import annotations

import pytest

from app.lots import ledger
from app.lots.errors import CapacityExceededError


def test_has_capacity_until_occupancy_reaches_capacity() -> None:
    assert ledger.has_capacity(3, 0) is True
    assert ledger.has_capacity(3, 2) is True
    assert ledger.has_capacity(3, 3) is False
    assert ledger.has_capacity(3, 4) is False


def test_check_capacity_reports_attempted_occupancy() -> None:
    ledger.check_capacity("North Ridge", 2, 1)

    with pytest.raises(CapacityExceededError) as exc_info:
        ledger.check_capacity("North Ridge", 2, 2)

    error = exc_info.value
    assert error.code == "lot_capacity_exceeded"
    assert str(error) == "Lot North Ridge is at full capacity (2)"
    assert error.details() == {"lot_name": "North Ridge", "capacity": 2, "attempted_occupancy": 3}


def test_reconciled_count_prefers_live_value() -> None:
    assert ledger.reconciled_count(4, 4) == (4, False)
    assert ledger.reconciled_count(7, 5) == (5, True)
    assert ledger.reconciled_count(0, 2) == (2, True)
