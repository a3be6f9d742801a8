"""
Utilization arithmetic.

Pure helpers shared by the ledger, the selectors and the validation rules.
Percentages are derived on read and never stored.  Threshold comparisons are
done in integer arithmetic (used * 100 against cap * percent) so that 80%
of 100 is exactly 80 with no float rounding at the boundary.
"""

from datetime import datetime
from uuid import UUID

from authorization_kernel.domain.dtos import UtilizationSnapshot


def utilization_percentage(used_units: int, authorized_units: int) -> float:
    if authorized_units <= 0:
        return 0.0
    return used_units * 100 / authorized_units


def remaining_units(used_units: int, authorized_units: int) -> int:
    return authorized_units - used_units


def would_exceed(used_units: int, units: int, authorized_units: int) -> bool:
    return used_units + units > authorized_units


def above_percent(total_units: int, authorized_units: int, percent: int) -> bool:
    """True if total_units is strictly above percent of authorized_units."""
    return total_units * 100 > authorized_units * percent


def build_snapshot(
    authorization_id: UUID,
    used_units: int,
    authorized_units: int,
    last_update_amount: int = 0,
    last_updated: datetime | None = None,
    last_updated_by_id: UUID | None = None,
) -> UtilizationSnapshot:
    return UtilizationSnapshot(
        authorization_id=authorization_id,
        used_units=used_units,
        authorized_units=authorized_units,
        remaining_units=remaining_units(used_units, authorized_units),
        utilization_percentage=utilization_percentage(used_units, authorized_units),
        last_update_amount=last_update_amount,
        last_updated=last_updated,
        last_updated_by_id=last_updated_by_id,
    )
