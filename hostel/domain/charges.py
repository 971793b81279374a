"""Monthly billing catalogue and invoice assembly."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from hostel.domain.errors import InputValidationError


ROOM_RENT = "room"


@dataclass(frozen=True)
class Charge:
    id: str
    name: str
    amount: float


SERVICE_CHARGES: dict[str, Charge] = {
    charge.id: charge
    for charge in (
        Charge("wifi", "WiFi", 1000.0),
        Charge("electricity", "Electricity", 500.0),
        Charge("water", "Water", 300.0),
        Charge("gym_basic", "Gym (Basic Plan)", 800.0),
        Charge("gym_premium", "Gym (Premium Plan)", 1200.0),
        Charge("meal", "Meal Plan", 3000.0),
        Charge("maintenance", "Maintenance", 500.0),
    )
}


@dataclass(frozen=True)
class Invoice:
    student_id: str
    month: str
    charges: list[Charge]

    @property
    def total(self) -> float:
        return float(sum(charge.amount for charge in self.charges))

    @property
    def services_description(self) -> str:
        return ", ".join(charge.name for charge in self.charges)

    @property
    def description(self) -> str:
        return f"Payment for: {self.services_description}"

    @property
    def reference_number(self) -> str:
        period = self.month.replace("-", "")
        return f"PAY-{self.student_id[:4]}-{period}-{self.services_description}".upper()


def build_invoice(
    *,
    student_id: str,
    month: str,
    room_price: float,
    selected: Sequence[str],
) -> Invoice:
    """Resolve selected charge ids into an invoice; room rent uses the allocated room's price."""
    if not selected:
        raise InputValidationError("Please select at least one payment type")

    charges: list[Charge] = []
    seen: set[str] = set()
    for charge_id in selected:
        if charge_id in seen:
            continue
        seen.add(charge_id)
        if charge_id == ROOM_RENT:
            charges.append(Charge(ROOM_RENT, "Room Rent", float(room_price)))
            continue
        charge = SERVICE_CHARGES.get(charge_id)
        if charge is None:
            raise InputValidationError(f"Unknown payment type: {charge_id}")
        charges.append(charge)
    return Invoice(student_id=student_id, month=month, charges=charges)
